"""
Cluster resolution

Finds or creates the location a marker belongs to and keeps the marker's
location_id pointer current.

    1. look for an existing location within 200m (first match)
    2. reuse it, or create a new one; with a city string the new location
       becomes a landmark "<city> <n>" under the city's canonical location
    3. point the marker at it
    4. recompute the centroid (and the previous location's, if it changed)

Callers that can run concurrently must hold SpatialLock around assign()
through commit, see locking.py.
"""

import logging
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

import config
from models import Location, Marker, LOCATION_TYPE_LANDMARK
from services.location.centroid import CentroidMaintainer
from services.location.errors import ClusterResolutionFailed, MarkerNotFound
from services.location.hierarchy import find_or_create_city
from services.location.registry import LocationRegistry, LOCATION_THRESHOLD_KM

logger = logging.getLogger(__name__)

# Cheap pre-check before re-resolving a moved marker (~200m of latitude)
MOVE_PRECHECK_DEG = 0.002


def moved_beyond_precheck(old_lat: float, old_lng: float, new_lat: float, new_lng: float) -> bool:
    return abs(new_lat - old_lat) > MOVE_PRECHECK_DEG or abs(new_lng - old_lng) > MOVE_PRECHECK_DEG


class ClusterResolver:

    def __init__(self, registry: LocationRegistry, maintainer: CentroidMaintainer,
                 auto_parent_city: bool = config.AUTO_PARENT_CITY):
        self.registry = registry
        self.maintainer = maintainer
        self.auto_parent_city = auto_parent_city

    @property
    def db(self):
        return self.registry.db

    def create_location(
        self,
        lat: float,
        lng: float,
        city: Optional[str] = None,
        district: Optional[str] = None,
        country: Optional[str] = None,
    ) -> Location:
        """New location for a point that matched nothing"""
        if not city:
            return self.registry.create(lat, lng, city=None, district=district, country=country)

        if not self.auto_parent_city:
            # left parentless for the orphan repair job to attach
            return self.registry.create(
                lat, lng, city=city, district=district, country=country,
                type=LOCATION_TYPE_LANDMARK, name=f"{city} 1",
            )

        parent, _ = find_or_create_city(self.registry, city, district, country, lat, lng)
        count = self.registry.count_landmarks_under(parent.id)
        return self.registry.create(
            lat, lng,
            city=city,
            district=district,
            country=country,
            type=LOCATION_TYPE_LANDMARK,
            parent_id=parent.id,
            name=f"{city} {count + 1}",
        )

    def assign(
        self,
        marker_id: int,
        lat: float,
        lng: float,
        city: Optional[str] = None,
        district: Optional[str] = None,
        country: Optional[str] = None,
    ) -> str:
        """Resolve the marker's location and return its id"""
        try:
            marker = self.db.get(Marker, marker_id)
            if marker is None:
                raise MarkerNotFound(marker_id)
            previous_id = marker.location_id

            location_id = self.registry.find_within(lat, lng, LOCATION_THRESHOLD_KM)
            if location_id:
                logger.debug(f"Marker {marker_id} matched existing location {location_id}")
            else:
                location_id = self.create_location(lat, lng, city, district, country).id

            marker.location_id = location_id
            self.db.flush()

            self.maintainer.recompute(location_id)
        except SQLAlchemyError as e:
            raise ClusterResolutionFailed(f"Could not assign marker {marker_id}: {e}") from e

        if previous_id and previous_id != location_id:
            self.maintainer.recompute_safely(previous_id)

        return location_id

    def reassign_if_moved(
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
        """
        Re-resolve a marker whose coordinates changed by more than the
        pre-check distance. Smaller moves only refresh the current
        location's centroid.
        """
        marker = self.db.get(Marker, marker_id)
        if marker is None:
            raise MarkerNotFound(marker_id)

        if marker.location_id is None or moved_beyond_precheck(old_lat, old_lng, new_lat, new_lng):
            return self.assign(marker_id, new_lat, new_lng, city, district, country)

        self.maintainer.recompute_safely(marker.location_id)
        return marker.location_id
