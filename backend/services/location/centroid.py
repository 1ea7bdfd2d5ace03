"""
Centroid maintenance

A location's latitude/longitude is the mean of its member markers. This
has to be recomputed after every change that could move a marker in or
out of a location, or move one inside it. A location left with no members
is deleted, unless it is a city that still has landmarks under it.
"""

import logging
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from services.location.distance import centroid, Point
from services.location.errors import LocationError
from services.location.registry import LocationRegistry

logger = logging.getLogger(__name__)


class CentroidMaintainer:

    def __init__(self, registry: LocationRegistry):
        self.registry = registry

    def recompute(self, location_id: str) -> Optional[Point]:
        """
        Recompute and store the centroid of location_id.

        Returns the new (lat, lng), or None if the location is gone
        (already deleted, or deleted here because it has no members).
        """
        location = self.registry.get(location_id)
        if location is None:
            return None

        members = self.registry.members_of(location_id)
        if not members:
            if self.registry.count_children(location_id):
                logger.debug(f"Location {location_id} has no markers but still has children, keeping it")
                return None

            parent_id = location.parent_location_id
            self.registry.delete(location_id)
            if parent_id:
                # the parent may have been kept alive only by this child
                self.recompute(parent_id)
            return None

        lat, lng = centroid(members)
        self.registry.update(location_id, latitude=lat, longitude=lng)
        logger.debug(f"Location {location_id} centroid ({lat:.6f}, {lng:.6f}) from {len(members)} markers")
        return lat, lng

    def recompute_safely(self, location_id: Optional[str]) -> Optional[Point]:
        """
        recompute() for callers that already finished their own mutation.
        A stale centroid heals on the next membership change, so failures
        are logged and not raised.
        """
        if not location_id:
            return None
        try:
            return self.recompute(location_id)
        except (SQLAlchemyError, LocationError) as e:
            logger.warning(f"Centroid recompute failed for location {location_id}: {e}", exc_info=True)
            return None
