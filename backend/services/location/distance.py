"""
Distance Calculations for Location Services

Haversine formula for great-circle distance between two lat/lng points,
plus the arithmetic centroid used for location clustering.

The centroid is a plain mean of degrees. It is wrong for clusters that
straddle the antimeridian or sit on a pole; location clusters are 200m
wide so this only matters for data right at those seams.
"""

import math
from typing import Iterable, Tuple

EARTH_RADIUS_KM = 6371.0

Point = Tuple[float, float]


def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """
    Calculate great-circle distance between two points in kilometers.
    Uses the Haversine formula.
    """
    lat1_r = math.radians(lat1)
    lat2_r = math.radians(lat2)
    dlat = math.radians(lat2 - lat1)
    dlng = math.radians(lng2 - lng1)

    a = (math.sin(dlat / 2) ** 2 +
         math.cos(lat1_r) * math.cos(lat2_r) * math.sin(dlng / 2) ** 2)
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_KM * c


def distance_km(a: Point, b: Point) -> float:
    """Distance between two (lat, lng) tuples in kilometers"""
    return haversine_km(a[0], a[1], b[0], b[1])


def centroid(points: Iterable[Point]) -> Point:
    """
    Arithmetic mean of (lat, lng) points.
    Returns (0.0, 0.0) for an empty input, which callers must not treat as
    a real coordinate.
    """
    count = 0
    sum_lat = 0.0
    sum_lng = 0.0
    for lat, lng in points:
        sum_lat += lat
        sum_lng += lng
        count += 1

    if count == 0:
        return 0.0, 0.0

    return sum_lat / count, sum_lng / count
