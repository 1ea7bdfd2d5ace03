"""
City / Landmark hierarchy

Two-level taxonomy: a landmark may hang under a city. Rules enforced here:

    - a parent must exist and be a city
    - nothing is its own parent
    - a city that stops being a city orphans its children in the same
      operation (children keep existing, parent_location_id = NULL)

Placement is a closed variant (Unset | City | Landmark(parent_id)) so a
parent can only be expressed for landmarks.

Violations raise InvalidHierarchy / LocationNotFound before anything is
written, so a rejected change leaves state untouched.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional, Union, List, Dict, Tuple

from sqlalchemy import select

from models import Location, Marker, LOCATION_TYPE_CITY, LOCATION_TYPE_LANDMARK
from services.location.centroid import CentroidMaintainer
from services.location.errors import InvalidHierarchy, MarkerNotFound
from services.location.registry import LocationRegistry

logger = logging.getLogger(__name__)


# =============================================================================
# PLACEMENT VARIANT
# =============================================================================

@dataclass(frozen=True)
class Unset:
    type_value = None


@dataclass(frozen=True)
class City:
    type_value = LOCATION_TYPE_CITY


@dataclass(frozen=True)
class Landmark:
    parent_id: Optional[str] = None
    type_value = LOCATION_TYPE_LANDMARK


Placement = Union[Unset, City, Landmark]


def placement_from(type_value: Optional[str], parent_id: Optional[str] = None) -> Placement:
    """Build a Placement from the stored (type, parent_location_id) pair"""
    if type_value == LOCATION_TYPE_LANDMARK:
        return Landmark(parent_id)
    if parent_id is not None:
        raise InvalidHierarchy("Only landmarks can have a parent city")
    if type_value == LOCATION_TYPE_CITY:
        return City()
    if type_value is None:
        return Unset()
    raise InvalidHierarchy(f"Unknown location type: {type_value!r}")


# =============================================================================
# ORPHAN REPAIR REPORT
# =============================================================================

REPAIR_LINKED = "linked"
REPAIR_CITY_CREATED = "city_created"
REPAIR_SKIPPED = "skipped"


@dataclass
class OrphanRepairReport:
    total_orphans: int = 0
    fixed: int = 0
    failed: int = 0
    skipped: int = 0
    cities_created: int = 0
    remaining_orphans: int = 0
    errors: List[Dict[str, str]] = field(default_factory=list)

    def add_error(self, landmark_id: str, error: str):
        self.failed += 1
        self.errors.append({"landmark_id": landmark_id, "error": error})


def find_or_create_city(
    registry: LocationRegistry,
    city: str,
    district: Optional[str],
    country: Optional[str],
    lat: float,
    lng: float,
    match_country: bool = False,
) -> Tuple[Location, bool]:
    """
    Canonical city location for `city` (exact string match, and exact country
    match when match_country is set). Created at (lat, lng) if missing.
    Returns (location, created).
    """
    existing = registry.find_city(city, country, match_country=match_country)
    if existing is not None:
        return existing, False

    location = registry.create(
        lat, lng,
        city=city,
        district=district,
        country=country,
        type=LOCATION_TYPE_CITY,
        name=city or country or "Unknown City",
    )
    return location, True


# =============================================================================
# HIERARCHY MANAGER
# =============================================================================

class HierarchyManager:

    def __init__(self, registry: LocationRegistry, maintainer: CentroidMaintainer):
        self.registry = registry
        self.maintainer = maintainer

    @property
    def db(self):
        return self.registry.db

    def validate_parent(self, entity_id: Optional[str], parent_id: str) -> Location:
        """Parent must exist, be a city, and not be the entity itself"""
        if entity_id is not None and parent_id == entity_id:
            raise InvalidHierarchy("A location cannot be its own parent")

        parent = self.registry.require(parent_id, "Parent location")
        if not parent.is_city:
            raise InvalidHierarchy(f"Parent location {parent_id} must be of type 'city'")
        return parent

    # -------------------------------------------------------------------------
    # Location-level transitions
    # -------------------------------------------------------------------------

    def set_placement(self, location_id: str, placement: Placement) -> Optional[Location]:
        """
        Apply a type/parent change to a location.

        A city that stops being a city, and a parent that loses a child, are
        re-checked afterwards and removed if nothing references them any more.
        Returns None if the location itself was removed that way.
        """
        location = self.registry.require(location_id)

        parent_id = None
        if isinstance(placement, Landmark) and placement.parent_id is not None:
            self.validate_parent(location_id, placement.parent_id)
            parent_id = placement.parent_id

        was_city = location.is_city
        old_parent_id = location.parent_location_id

        if was_city and not isinstance(placement, City):
            self.registry.orphan_children(location_id)

        old_type = location.type
        location = self.registry.update(
            location_id,
            type=placement.type_value,
            parent_location_id=parent_id,
        )
        logger.info(
            f"Location {location_id}: {old_type or 'unset'} -> {placement.type_value or 'unset'}"
            f" (parent={parent_id})"
        )

        if was_city and not isinstance(placement, City):
            self.maintainer.recompute(location_id)
        if old_parent_id and old_parent_id != parent_id:
            self.maintainer.recompute(old_parent_id)

        return self.registry.get(location_id)

    def set_parent(self, location_id: str, parent_id: Optional[str]) -> Optional[Location]:
        """Attach a landmark to a city, or detach it with parent_id=None"""
        location = self.registry.require(location_id)
        if parent_id is not None and parent_id == location_id:
            raise InvalidHierarchy("A location cannot be its own parent")
        if not location.is_landmark:
            raise InvalidHierarchy("Only landmarks can have a parent city")
        return self.set_placement(location_id, Landmark(parent_id))

    # -------------------------------------------------------------------------
    # Marker-level transitions
    # -------------------------------------------------------------------------

    def _require_marker(self, marker_id: int) -> Marker:
        marker = self.db.get(Marker, marker_id)
        if marker is None:
            raise MarkerNotFound(marker_id)
        return marker

    def create_landmark_under_city(
        self,
        parent_city_id: str,
        lat: float,
        lng: float,
        city_name: str,
        district: Optional[str] = None,
        country: Optional[str] = None,
    ) -> Location:
        """New landmark under a city, auto-named "<city> <n>" """
        count = self.registry.count_landmarks_under(parent_city_id, name_prefix=city_name)
        return self.registry.create(
            lat, lng,
            city=city_name,
            district=district,
            country=country,
            type=LOCATION_TYPE_LANDMARK,
            parent_id=parent_city_id,
            name=f"{city_name} {count + 1}",
        )

    def switch_marker_type(self, marker_id: int, new_type: str) -> str:
        """
        Move a marker between a city and a landmark.

        landmark -> city: the marker is redirected to the landmark's parent city
        city -> landmark: a new landmark is created under the city at the
                          marker's coordinates and the marker moves there

        Returns the marker's location id afterwards.
        """
        if new_type not in (LOCATION_TYPE_CITY, LOCATION_TYPE_LANDMARK):
            raise InvalidHierarchy(f"Cannot switch marker to type {new_type!r}")

        marker = self._require_marker(marker_id)
        if not marker.location_id:
            raise InvalidHierarchy(f"Marker {marker_id} has no location")
        current = self.registry.require(marker.location_id)

        if new_type == LOCATION_TYPE_CITY and current.is_landmark:
            if not current.parent_location_id:
                raise InvalidHierarchy("Landmark has no parent city - cannot convert to city type")
            new_location_id = current.parent_location_id
            parent_id = None

        elif new_type == LOCATION_TYPE_LANDMARK and current.is_city:
            city_name = marker.city or current.city or current.name or "Location"
            landmark = self.create_landmark_under_city(
                current.id,
                marker.latitude,
                marker.longitude,
                city_name,
                marker.district or current.district,
                marker.country or current.country,
            )
            new_location_id = landmark.id
            parent_id = current.id

        else:
            return current.id

        old_location_id = current.id
        marker.location_id = new_location_id
        marker.type = new_type
        marker.parent_location_id = parent_id
        self.db.flush()

        self.maintainer.recompute(old_location_id)
        self.maintainer.recompute(new_location_id)

        logger.info(f"Marker {marker_id} switched to {new_type}: {old_location_id} -> {new_location_id}")
        return new_location_id

    def update_markers_hierarchy(self, marker_ids: List[int], placement: Placement) -> List[int]:
        """Set type/parent on several markers at once"""
        if not marker_ids:
            raise ValueError("No marker ids given")

        markers = list(self.db.execute(
            select(Marker).where(Marker.id.in_(marker_ids)).order_by(Marker.id)
        ).scalars())
        found = {m.id for m in markers}
        for marker_id in marker_ids:
            if marker_id not in found:
                raise MarkerNotFound(marker_id)

        parent_id = None
        if isinstance(placement, Landmark) and placement.parent_id is not None:
            self.validate_parent(None, placement.parent_id)
            if any(m.location_id == placement.parent_id for m in markers):
                raise InvalidHierarchy("A marker cannot be its own parent")
            parent_id = placement.parent_id

        for marker in markers:
            marker.type = placement.type_value
            marker.parent_location_id = parent_id
        self.db.flush()

        return [m.id for m in markers]

    # -------------------------------------------------------------------------
    # Orphan repair
    # -------------------------------------------------------------------------

    def repair_orphan(self, landmark_id: str) -> str:
        """
        Attach one parentless landmark to the city matching its exact
        (city, country), creating the city if needed.

        Returns REPAIR_LINKED, REPAIR_CITY_CREATED, or REPAIR_SKIPPED when the
        landmark is gone, retyped or already has a parent. Raises
        InvalidHierarchy when it has neither city nor country to match on.
        """
        landmark = self.registry.get(landmark_id)
        if landmark is None or not landmark.is_landmark or landmark.parent_location_id:
            return REPAIR_SKIPPED    # changed since it was listed

        if not landmark.city and not landmark.country:
            raise InvalidHierarchy("No city or country information available")

        city, created = find_or_create_city(
            self.registry,
            landmark.city,
            landmark.district,
            landmark.country,
            landmark.latitude,
            landmark.longitude,
            match_country=True,
        )
        if city.id == landmark.id:
            raise InvalidHierarchy("A location cannot be its own parent")

        self.registry.update(landmark_id, parent_location_id=city.id)
        logger.info(f"Linked landmark {landmark_id} ({landmark.name}) to city {city.id}")
        return REPAIR_CITY_CREATED if created else REPAIR_LINKED
