"""
Pytest configuration and shared fixtures for location engine tests.

This file provides:
- A throwaway SQLite database per test (file-backed so threads can share it)
- A LocationEngine bound to it
- Helpers to insert markers the way the CRUD layer would
"""

from typing import Callable, Optional

import pytest

from database import Database
from models import Location, Marker
from services.location.engine import LocationEngine


# ==============================================================================
# Sample Coordinates
# ==============================================================================

PARIS_A = (48.8566, 2.3522)
PARIS_B = (48.8570, 2.3530)     # ~75m from PARIS_A
PARIS_FAR = (48.8656, 2.3522)   # ~1km north of PARIS_A
LONDON = (51.5074, -0.1278)


# ==============================================================================
# Database
# ==============================================================================

@pytest.fixture
def database(tmp_path) -> Database:
    """Fresh SQLite database with the schema created."""
    db = Database(f"sqlite:///{tmp_path / 'locations.db'}")
    db.create_all()
    yield db
    db.dispose()


@pytest.fixture
def session(database):
    """Plain session for registry-level tests (no engine hooks)."""
    db = database.session()
    yield db
    db.rollback()
    db.close()


@pytest.fixture
def engine(database) -> LocationEngine:
    return LocationEngine(database, auto_parent_city=True)


# ==============================================================================
# Markers
# ==============================================================================

@pytest.fixture
def make_marker(database) -> Callable[..., int]:
    """Insert a marker (no location yet) and return its id."""

    def _make(lat: float, lng: float, city: Optional[str] = None,
              country: Optional[str] = None, district: Optional[str] = None,
              title: str = "marker") -> int:
        with database.session_scope() as db:
            marker = Marker(title=title, latitude=lat, longitude=lng,
                            city=city, district=district, country=country)
            db.add(marker)
            db.flush()
            return marker.id

    return _make


@pytest.fixture
def create_marker(engine, make_marker) -> Callable[..., int]:
    """Insert a marker and fire on_marker_created, like the CRUD layer does."""

    def _create(lat: float, lng: float, city: Optional[str] = None,
                country: Optional[str] = None, district: Optional[str] = None) -> int:
        marker_id = make_marker(lat, lng, city=city, country=country, district=district)
        engine.on_marker_created(marker_id, lat, lng, city, district, country)
        return marker_id

    return _create


# ==============================================================================
# Utilities
# ==============================================================================

def get_marker(database: Database, marker_id: int) -> Optional[Marker]:
    with database.session_scope() as db:
        marker = db.get(Marker, marker_id)
        if marker is not None:
            db.expunge(marker)
        return marker


def get_location(database: Database, location_id: str) -> Optional[Location]:
    with database.session_scope() as db:
        location = db.get(Location, location_id)
        if location is not None:
            db.expunge(location)
        return location


def all_locations(database: Database):
    with database.session_scope() as db:
        locations = db.query(Location).order_by(Location.id).all()
        for location in locations:
            db.expunge(location)
        return locations


def assert_approx_equal(a: float, b: float, tolerance: float = 1e-9):
    """Assert two floats are approximately equal."""
    assert abs(a - b) < tolerance, f"{a} != {b} (tolerance={tolerance})"


def assert_location_invariants(database: Database):
    """
    Every location's centroid is the mean of its markers, and a location
    without markers only survives as a city that still has children.
    """
    with database.session_scope() as db:
        for location in db.query(Location).all():
            members = db.query(Marker).filter(Marker.location_id == location.id).all()
            if members:
                mean_lat = sum(m.latitude for m in members) / len(members)
                mean_lng = sum(m.longitude for m in members) / len(members)
                assert_approx_equal(location.latitude, mean_lat)
                assert_approx_equal(location.longitude, mean_lng)
            else:
                children = db.query(Location).filter(Location.parent_location_id == location.id).count()
                assert location.type == "city" and children > 0, f"empty location left behind: {location!r}"

            if location.parent_location_id is not None:
                parent = db.get(Location, location.parent_location_id)
                assert parent is not None and parent.type == "city"
                assert parent.id != location.id
