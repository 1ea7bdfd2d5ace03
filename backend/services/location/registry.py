"""
Location Registry

Persistent store of canonical locations: proximity lookup, create, read,
update, delete. Every other location component goes through this class;
none of them issue their own queries against the locations table.

Proximity search is a scan. A latitude band filter narrows it in SQL
(points outside the band cannot be within the threshold), then each
candidate is checked with haversine. The first candidate inside the
threshold wins, not the nearest one. Existing cluster membership depends
on that, so keep it unless the data is migrated.
"""

import logging
import math
from typing import Optional, List, Dict, Any

from sqlalchemy import select, update, func, or_, exists as sql_exists
from sqlalchemy.orm import Session

from models import Location, Marker, LOCATION_TYPE_CITY, LOCATION_TYPE_LANDMARK
from services.location.distance import haversine_km, EARTH_RADIUS_KM, Point
from services.location.errors import LocationNotFound
from services.location.location_id import generate_unique_location_id

logger = logging.getLogger(__name__)

LOCATION_THRESHOLD_KM = 0.2     # 200 meters

# Kilometers per degree of latitude on the haversine sphere
KM_PER_DEGREE_LAT = 2 * math.pi * EARTH_RADIUS_KM / 360

# Fields callers may change through update()
UPDATABLE_FIELDS = {
    "latitude", "longitude", "city", "district", "country",
    "name", "type", "parent_location_id",
}


class LocationRegistry:
    """Source of truth for locations, bound to one SQLAlchemy session"""

    def __init__(self, db: Session):
        self.db = db

    # =========================================================================
    # READ
    # =========================================================================

    def exists(self, location_id: str) -> bool:
        return self.db.execute(
            select(sql_exists().where(Location.id == location_id))
        ).scalar()

    def get(self, location_id: str) -> Optional[Location]:
        return self.db.get(Location, location_id)

    def require(self, location_id: str, what: str = "Location") -> Location:
        location = self.get(location_id)
        if location is None:
            raise LocationNotFound(location_id, what)
        return location

    def find_within(self, lat: float, lng: float, threshold_km: float = LOCATION_THRESHOLD_KM,
                    include_cities: bool = False) -> Optional[str]:
        """
        Id of the first location whose centroid is within threshold_km of
        (lat, lng), or None.

        City locations are containers for landmarks, not point clusters,
        and are skipped unless include_cities is set.
        """
        band = threshold_km / KM_PER_DEGREE_LAT + 1e-9
        stmt = (
            select(Location.id, Location.latitude, Location.longitude)
            .where(Location.latitude.between(lat - band, lat + band))
        )
        if not include_cities:
            stmt = stmt.where(or_(Location.type.is_(None), Location.type != LOCATION_TYPE_CITY))
        rows = self.db.execute(stmt)
        for location_id, loc_lat, loc_lng in rows:
            if haversine_km(lat, lng, loc_lat, loc_lng) <= threshold_km:
                return location_id
        return None

    def members_of(self, location_id: str) -> List[Point]:
        """Coordinates of every marker currently pointing at this location"""
        rows = self.db.execute(
            select(Marker.latitude, Marker.longitude)
            .where(Marker.location_id == location_id)
            .order_by(Marker.id)
        )
        return [(lat, lng) for lat, lng in rows]

    def count_children(self, location_id: str) -> int:
        return self.db.execute(
            select(func.count()).select_from(Location)
            .where(Location.parent_location_id == location_id)
        ).scalar()

    def find_city(self, city: str, country: Optional[str] = None, match_country: bool = False) -> Optional[Location]:
        """
        First city-typed location with this exact city string.
        With match_country the country must match too (None matches None).
        """
        stmt = select(Location).where(Location.type == LOCATION_TYPE_CITY)
        stmt = stmt.where(Location.city.is_(None) if city is None else Location.city == city)
        if match_country:
            stmt = stmt.where(Location.country.is_(None) if country is None else Location.country == country)
        return self.db.execute(stmt.order_by(Location.created_at, Location.id).limit(1)).scalars().first()

    def count_landmarks_under(self, parent_id: str, name_prefix: Optional[str] = None) -> int:
        stmt = (
            select(func.count()).select_from(Location)
            .where(Location.parent_location_id == parent_id)
        )
        if name_prefix is None:
            stmt = stmt.where(Location.type == LOCATION_TYPE_LANDMARK)
        else:
            escaped = name_prefix.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
            stmt = stmt.where(Location.name.like(f"{escaped} %", escape="\\"))
        return self.db.execute(stmt).scalar()

    def orphan_landmarks(self) -> List[Location]:
        return list(self.db.execute(
            select(Location)
            .where(Location.type == LOCATION_TYPE_LANDMARK, Location.parent_location_id.is_(None))
            .order_by(Location.city, Location.name, Location.id)
        ).scalars())

    def count_orphan_landmarks(self) -> int:
        return self.db.execute(
            select(func.count()).select_from(Location)
            .where(Location.type == LOCATION_TYPE_LANDMARK, Location.parent_location_id.is_(None))
        ).scalar()

    def marker_counts(self, location_id: Optional[str] = None) -> Dict[str, int]:
        """Marker count per location id (locations without markers are absent)"""
        stmt = (
            select(Marker.location_id, func.count(Marker.id))
            .where(Marker.location_id.is_not(None))
            .group_by(Marker.location_id)
        )
        if location_id is not None:
            stmt = stmt.where(Marker.location_id == location_id)
        return {loc_id: count for loc_id, count in self.db.execute(stmt)}

    def list_all(self) -> List[Location]:
        return list(self.db.execute(
            select(Location).order_by(Location.city, Location.name, Location.id)
        ).scalars())

    # =========================================================================
    # WRITE
    # =========================================================================

    def create(
        self,
        lat: float,
        lng: float,
        city: Optional[str] = None,
        district: Optional[str] = None,
        country: Optional[str] = None,
        type: Optional[str] = None,
        parent_id: Optional[str] = None,
        name: Optional[str] = None,
    ) -> Location:
        """Insert a location with a freshly generated unique id"""
        location_id = generate_unique_location_id(self.exists)
        location = Location(
            id=location_id,
            latitude=lat,
            longitude=lng,
            city=city,
            district=district,
            country=country,
            name=name,
            type=type,
            parent_location_id=parent_id,
        )
        self.db.add(location)
        self.db.flush()
        logger.info(f"Created location {location_id} ({type or 'unset'}) at ({lat:.6f}, {lng:.6f}) name={name!r}")
        return location

    def update(self, location_id: str, **fields: Any) -> Location:
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update location fields: {', '.join(sorted(unknown))}")

        location = self.require(location_id)
        for key, value in fields.items():
            setattr(location, key, value)
        self.db.flush()
        return location

    def orphan_children(self, location_id: str) -> int:
        """
        Clear parent_location_id on every location and marker pointing at
        location_id. Returns the number of child locations orphaned.
        """
        result = self.db.execute(
            update(Location)
            .where(Location.parent_location_id == location_id)
            .values(parent_location_id=None)
            .execution_options(synchronize_session="fetch")
        )
        self.db.execute(
            update(Marker)
            .where(Marker.parent_location_id == location_id)
            .values(parent_location_id=None)
            .execution_options(synchronize_session="fetch")
        )
        if result.rowcount:
            logger.info(f"Orphaned {result.rowcount} children of location {location_id}")
        return result.rowcount

    def delete(self, location_id: str) -> bool:
        """
        Delete a location. Children are orphaned and markers still pointing
        at it are detached first. Returns False if it did not exist.
        """
        location = self.get(location_id)
        if location is None:
            return False

        self.orphan_children(location_id)
        self.db.execute(
            update(Marker)
            .where(Marker.location_id == location_id)
            .values(location_id=None)
            .execution_options(synchronize_session="fetch")
        )
        self.db.delete(location)
        self.db.flush()
        logger.info(f"Deleted location {location_id}")
        return True
