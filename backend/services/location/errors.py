"""
Location service errors

Hierarchy errors are user-facing validation failures and block the mutation.
Resolution errors are recovered by the engine (marker stays without a location).
"""


class LocationError(Exception):
    """Base class for all location service errors"""


class LocationNotFound(LocationError):
    """Referenced location (or parent) does not exist"""

    def __init__(self, location_id, what: str = "Location"):
        self.location_id = location_id
        super().__init__(f"{what} {location_id} not found")


class MarkerNotFound(LocationError):
    def __init__(self, marker_id):
        self.marker_id = marker_id
        super().__init__(f"Marker {marker_id} not found")


class InvalidHierarchy(LocationError):
    """Self-parent, non-city parent, or a type switch that has nowhere to go"""


class IdExhausted(LocationError):
    """Every id draw collided with an existing location"""

    def __init__(self, attempts: int):
        self.attempts = attempts
        super().__init__(f"Failed to generate unique location ID after {attempts} attempts")


class ClusterResolutionFailed(LocationError):
    """Registry I/O failed while assigning a marker or recomputing a centroid"""
