"""
Location Engine - trigger events from the CRUD layer

The CRUD layer writes markers and then tells the engine what happened.
Each event runs in its own session and transaction:

    on_marker_created               -> ClusterResolver.assign
    on_marker_coordinates_changed   -> re-resolve if moved > ~200m, else recompute
    on_marker_deleted               -> CentroidMaintainer.recompute
    on_location_type_or_parent_changed -> HierarchyManager.set_placement
    run_orphan_repair               -> batch attach parentless landmarks

Failure policy:
    - resolution failures on create/update are logged and swallowed; the
      marker is left without a location_id (valid, degraded state)
    - recompute failures after a delete are logged and swallowed
    - hierarchy violations raise and nothing is written
"""

import logging
from dataclasses import dataclass, field
from typing import Optional, List, Dict, Any

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

import config
from database import Database
from models import Location, Marker
from services.location.centroid import CentroidMaintainer
from services.location.clustering import ClusterResolver
from services.location.errors import LocationError, InvalidHierarchy
from services.location.hierarchy import (
    HierarchyManager, OrphanRepairReport, Placement, REPAIR_CITY_CREATED, REPAIR_SKIPPED,
)
from services.location.locking import SpatialLock
from services.location.membership import install_membership_hooks
from services.location.registry import LocationRegistry

logger = logging.getLogger(__name__)


@dataclass
class LocationServices:
    """The location components bound to one session"""
    db: Session
    registry: LocationRegistry
    maintainer: CentroidMaintainer
    resolver: ClusterResolver
    hierarchy: HierarchyManager


@dataclass
class MigrationReport:
    total_processed: int = 0
    assigned: int = 0
    failed: int = 0
    total_locations: int = 0
    avg_markers_per_location: float = 0.0
    errors: List[Dict[str, Any]] = field(default_factory=list)


def location_to_dict(location: Location, marker_count: Optional[int] = None) -> Dict[str, Any]:
    data = {
        "id": location.id,
        "latitude": location.latitude,
        "longitude": location.longitude,
        "city": location.city,
        "district": location.district,
        "country": location.country,
        "name": location.name,
        "type": location.type,
        "parent_location_id": location.parent_location_id,
        "created_at": location.created_at,
        "updated_at": location.updated_at,
    }
    if marker_count is not None:
        data["marker_count"] = marker_count
    return data


class LocationEngine:

    def __init__(self, database: Database, spatial_lock: Optional[SpatialLock] = None,
                 auto_parent_city: bool = config.AUTO_PARENT_CITY):
        self.database = database
        self.spatial_lock = spatial_lock or SpatialLock()
        self.auto_parent_city = auto_parent_city
        install_membership_hooks(database.SessionLocal)

    def services(self, db: Session) -> LocationServices:
        registry = LocationRegistry(db)
        maintainer = CentroidMaintainer(registry)
        return LocationServices(
            db=db,
            registry=registry,
            maintainer=maintainer,
            resolver=ClusterResolver(registry, maintainer, auto_parent_city=self.auto_parent_city),
            hierarchy=HierarchyManager(registry, maintainer),
        )

    # =========================================================================
    # MARKER EVENTS
    # =========================================================================

    def on_marker_created(
        self,
        marker_id: int,
        lat: float,
        lng: float,
        city: Optional[str] = None,
        district: Optional[str] = None,
        country: Optional[str] = None,
    ) -> Optional[str]:
        """Assign a new marker to a location. Returns None if that failed."""
        db = self.database.session()
        try:
            with self.spatial_lock.guard(db, lat):
                location_id = self.services(db).resolver.assign(marker_id, lat, lng, city, district, country)
                db.commit()
            logger.info(f"Marker {marker_id} assigned to location {location_id}")
            return location_id
        except (LocationError, SQLAlchemyError) as e:
            db.rollback()
            logger.error(f"Failed to assign location to marker {marker_id}: {e}", exc_info=True)
            return None
        finally:
            db.close()

    def on_marker_coordinates_changed(
        self,
        marker_id: int,
        old_lat: float,
        old_lng: float,
        new_lat: float,
        new_lng: float,
        city: Optional[str] = None,
        district: Optional[str] = None,
        country: Optional[str] = None,
    ) -> Optional[str]:
        """Re-resolve a moved marker. Returns its location id, or None on failure."""
        db = self.database.session()
        try:
            with self.spatial_lock.guard(db, new_lat):
                location_id = self.services(db).resolver.reassign_if_moved(
                    marker_id, old_lat, old_lng, new_lat, new_lng, city, district, country,
                )
                db.commit()
            return location_id
        except (LocationError, SQLAlchemyError) as e:
            db.rollback()
            logger.error(f"Failed to reassign location for marker {marker_id}: {e}", exc_info=True)
            return None
        finally:
            db.close()

    def on_marker_deleted(self, marker_id: int, location_id: Optional[str]):
        """Refresh (or drop) the location a deleted marker belonged to"""
        if not location_id:
            return
        db = self.database.session()
        try:
            self.services(db).maintainer.recompute_safely(location_id)
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.warning(f"Centroid update after deleting marker {marker_id} failed: {e}", exc_info=True)
        finally:
            db.close()

    # =========================================================================
    # HIERARCHY EVENTS
    # =========================================================================

    def on_location_type_or_parent_changed(self, location_id: str, placement: Placement) -> Optional[Dict[str, Any]]:
        """The updated location, or None if the change left it with nothing referencing it"""
        with self.database.session_scope() as db:
            location = self.services(db).hierarchy.set_placement(location_id, placement)
            return location_to_dict(location) if location is not None else None

    def switch_marker_type(self, marker_id: int, new_type: str) -> str:
        with self.database.session_scope() as db:
            return self.services(db).hierarchy.switch_marker_type(marker_id, new_type)

    def update_markers_hierarchy(self, marker_ids: List[int], placement: Placement) -> List[int]:
        with self.database.session_scope() as db:
            return self.services(db).hierarchy.update_markers_hierarchy(marker_ids, placement)

    def run_orphan_repair(self) -> OrphanRepairReport:
        """
        Attach every parentless landmark to a city matching its exact
        (city, country). One transaction per landmark; re-runnable.
        """
        report = OrphanRepairReport()

        with self.database.session_scope() as db:
            orphan_ids = [landmark.id for landmark in LocationRegistry(db).orphan_landmarks()]
        report.total_orphans = len(orphan_ids)
        logger.info(f"Found {report.total_orphans} orphan landmarks")

        for landmark_id in orphan_ids:
            db = self.database.session()
            try:
                outcome = self.services(db).hierarchy.repair_orphan(landmark_id)
                db.commit()
                if outcome == REPAIR_SKIPPED:
                    report.skipped += 1
                    continue
                report.fixed += 1
                if outcome == REPAIR_CITY_CREATED:
                    report.cities_created += 1
            except InvalidHierarchy as e:
                db.rollback()
                logger.warning(f"Skipping landmark {landmark_id}: {e}")
                report.add_error(landmark_id, str(e))
            except (LocationError, SQLAlchemyError) as e:
                db.rollback()
                logger.error(f"Failed to fix landmark {landmark_id}: {e}", exc_info=True)
                report.add_error(landmark_id, str(e))
            finally:
                db.close()

        with self.database.session_scope() as db:
            report.remaining_orphans = LocationRegistry(db).count_orphan_landmarks()

        logger.info(
            f"Orphan repair done: {report.fixed} fixed, {report.failed} failed, {report.skipped} skipped, "
            f"{report.cities_created} cities created, {report.remaining_orphans} remaining"
        )
        return report

    # =========================================================================
    # BACKFILL
    # =========================================================================

    def assign_unlocated_markers(self) -> MigrationReport:
        """Assign a location to every marker that has none, oldest first"""
        report = MigrationReport()

        with self.database.session_scope() as db:
            rows = db.execute(
                select(Marker.id, Marker.latitude, Marker.longitude, Marker.city, Marker.district, Marker.country)
                .where(Marker.location_id.is_(None))
                .order_by(Marker.created_at, Marker.id)
            ).all()
        report.total_processed = len(rows)
        logger.info(f"Found {len(rows)} markers without location ids")

        for marker_id, lat, lng, city, district, country in rows:
            location_id = self.on_marker_created(marker_id, lat, lng, city, district, country)
            if location_id:
                report.assigned += 1
            else:
                report.failed += 1
                report.errors.append({"marker_id": marker_id, "error": "Location assignment failed"})

        with self.database.session_scope() as db:
            counts = LocationRegistry(db).marker_counts()
        report.total_locations = len(counts)
        if counts:
            report.avg_markers_per_location = round(sum(counts.values()) / len(counts), 2)

        return report

    # =========================================================================
    # LOCATION METADATA
    # =========================================================================

    def get_location(self, location_id: str) -> Dict[str, Any]:
        with self.database.session_scope() as db:
            registry = LocationRegistry(db)
            location = registry.require(location_id)
            count = registry.marker_counts(location_id).get(location_id, 0)
            return location_to_dict(location, count)

    def list_locations(self) -> List[Dict[str, Any]]:
        with self.database.session_scope() as db:
            registry = LocationRegistry(db)
            counts = registry.marker_counts()
            return [location_to_dict(loc, counts.get(loc.id, 0)) for loc in registry.list_all()]

    def rename_location(self, location_id: str, name: Optional[str]) -> Dict[str, Any]:
        """Set the display name; empty clears it"""
        if name is not None and len(name) > config.LOCATION_NAME_MAX_LENGTH:
            raise ValueError(f"Name must be {config.LOCATION_NAME_MAX_LENGTH} characters or less")
        with self.database.session_scope() as db:
            location = LocationRegistry(db).update(location_id, name=name or None)
            return location_to_dict(location)

