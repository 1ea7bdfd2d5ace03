"""
Tests for cluster resolution (services/location/clustering.py) driven
through the engine's marker events.
"""

import pytest
from sqlalchemy.exc import OperationalError

from models import LOCATION_TYPE_CITY, LOCATION_TYPE_LANDMARK
from services.location import registry as registry_module
from services.location.clustering import moved_beyond_precheck, MOVE_PRECHECK_DEG
from services.location.engine import LocationEngine
from services.location.errors import IdExhausted
from services.location.registry import LocationRegistry
from tests.conftest import (
    PARIS_A, PARIS_B, PARIS_FAR, LONDON,
    get_marker, get_location, all_locations, assert_approx_equal, assert_location_invariants,
)


# ==============================================================================
# Assignment
# ==============================================================================

class TestAssign:

    def test_paris_and_london_scenario(self, database, create_marker):
        a = create_marker(*PARIS_A, city="Paris")
        b = create_marker(*PARIS_B, city="Paris")
        c = create_marker(*LONDON, city="London")

        marker_a = get_marker(database, a)
        marker_b = get_marker(database, b)
        marker_c = get_marker(database, c)

        assert marker_a.location_id is not None
        assert marker_a.location_id == marker_b.location_id
        assert marker_c.location_id not in (None, marker_a.location_id)

        paris = get_location(database, marker_a.location_id)
        assert_approx_equal(paris.latitude, (PARIS_A[0] + PARIS_B[0]) / 2)
        assert_approx_equal(paris.longitude, (PARIS_A[1] + PARIS_B[1]) / 2)

        london = get_location(database, marker_c.location_id)
        assert (london.latitude, london.longitude) == LONDON
        assert_location_invariants(database)

    def test_points_far_apart_get_distinct_locations(self, database, create_marker):
        first = create_marker(*PARIS_A)
        second = create_marker(*PARIS_FAR)

        first_loc = get_marker(database, first).location_id
        second_loc = get_marker(database, second).location_id
        assert first_loc and second_loc
        assert first_loc != second_loc

    def test_point_just_outside_threshold(self, database, create_marker):
        first = create_marker(0.0, 0.0)
        second = create_marker(0.0019, 0.0)    # ~211m
        assert get_marker(database, first).location_id != get_marker(database, second).location_id

    def test_point_just_inside_threshold(self, database, create_marker):
        first = create_marker(0.0, 0.0)
        second = create_marker(0.0017, 0.0)    # ~189m
        assert get_marker(database, first).location_id == get_marker(database, second).location_id

    def test_bare_location_without_city(self, database, create_marker):
        marker_id = create_marker(*LONDON)
        location = get_location(database, get_marker(database, marker_id).location_id)
        assert location.type is None
        assert location.parent_location_id is None
        assert location.name is None
        assert len(all_locations(database)) == 1

    def test_city_creates_landmark_under_city(self, database, create_marker):
        marker_id = create_marker(*PARIS_A, city="Paris", country="France", district="1er")
        landmark = get_location(database, get_marker(database, marker_id).location_id)

        assert landmark.type == LOCATION_TYPE_LANDMARK
        assert landmark.name == "Paris 1"
        assert landmark.district == "1er"

        city = get_location(database, landmark.parent_location_id)
        assert city.type == LOCATION_TYPE_CITY
        assert city.city == "Paris"
        assert city.name == "Paris"
        assert city.country == "France"

    def test_second_landmark_in_same_city_is_numbered(self, database, create_marker):
        first = create_marker(*PARIS_A, city="Paris")
        second = create_marker(*PARIS_FAR, city="Paris")

        first_loc = get_location(database, get_marker(database, first).location_id)
        second_loc = get_location(database, get_marker(database, second).location_id)

        assert first_loc.parent_location_id == second_loc.parent_location_id
        assert first_loc.name == "Paris 1"
        assert second_loc.name == "Paris 2"
        cities = [loc for loc in all_locations(database) if loc.type == LOCATION_TYPE_CITY]
        assert len(cities) == 1

    def test_without_auto_parent_city(self, database, make_marker):
        engine = LocationEngine(database, auto_parent_city=False)
        marker_id = make_marker(*PARIS_A, city="Paris")
        location_id = engine.on_marker_created(marker_id, *PARIS_A, city="Paris")

        location = get_location(database, location_id)
        assert location.type == LOCATION_TYPE_LANDMARK
        assert location.parent_location_id is None
        assert location.name == "Paris 1"

    def test_returns_location_id(self, database, engine, make_marker):
        marker_id = make_marker(*PARIS_A)
        location_id = engine.on_marker_created(marker_id, *PARIS_A)
        assert location_id == get_marker(database, marker_id).location_id


# ==============================================================================
# Failure recovery
# ==============================================================================

class TestAssignFailures:

    def test_missing_marker_returns_none(self, engine, database):
        assert engine.on_marker_created(9999, *PARIS_A) is None
        assert all_locations(database) == []

    def test_registry_error_leaves_marker_unlocated(self, database, engine, make_marker, monkeypatch):
        def broken(self, *args, **kwargs):
            raise OperationalError("SELECT", {}, Exception("connection lost"))

        monkeypatch.setattr(LocationRegistry, "find_within", broken)
        marker_id = make_marker(*PARIS_A)

        assert engine.on_marker_created(marker_id, *PARIS_A) is None
        assert get_marker(database, marker_id).location_id is None
        assert get_marker(database, marker_id).latitude == PARIS_A[0]

    def test_id_exhaustion_leaves_marker_unlocated(self, database, engine, make_marker, monkeypatch):
        def exhausted(exists):
            raise IdExhausted(5)

        monkeypatch.setattr(registry_module, "generate_unique_location_id", exhausted)
        marker_id = make_marker(*PARIS_A, city="Paris")

        assert engine.on_marker_created(marker_id, *PARIS_A, city="Paris") is None
        assert get_marker(database, marker_id).location_id is None
        assert all_locations(database) == []

    def test_migration_picks_up_unlocated_markers(self, database, engine, make_marker):
        first = make_marker(*PARIS_A)
        second = make_marker(*PARIS_B)
        third = make_marker(*LONDON)

        report = engine.assign_unlocated_markers()

        assert report.total_processed == 3
        assert report.assigned == 3
        assert report.failed == 0
        assert report.total_locations == 2
        assert report.avg_markers_per_location == 1.5
        assert get_marker(database, first).location_id == get_marker(database, second).location_id
        assert get_marker(database, third).location_id is not None

        again = engine.assign_unlocated_markers()
        assert again.total_processed == 0


# ==============================================================================
# Coordinate updates
# ==============================================================================

def move_marker(database, marker_id, lat, lng):
    """What the CRUD layer does before firing the event"""
    from models import Marker
    with database.session_scope() as db:
        marker = db.get(Marker, marker_id)
        old = (marker.latitude, marker.longitude)
        marker.latitude = lat
        marker.longitude = lng
    return old


class TestCoordinateChanges:

    def test_precheck(self):
        assert not moved_beyond_precheck(0.0, 0.0, MOVE_PRECHECK_DEG, 0.0)
        assert moved_beyond_precheck(0.0, 0.0, 0.0, MOVE_PRECHECK_DEG * 1.5)
        assert moved_beyond_precheck(0.0, 0.0, -0.01, 0.0)

    def test_small_move_keeps_location_and_updates_centroid(self, database, engine, create_marker):
        marker_id = create_marker(*PARIS_A)
        location_id = get_marker(database, marker_id).location_id

        new = (PARIS_A[0] + 0.0005, PARIS_A[1])
        old = move_marker(database, marker_id, *new)
        result = engine.on_marker_coordinates_changed(marker_id, *old, *new)

        assert result == location_id
        location = get_location(database, location_id)
        assert_approx_equal(location.latitude, new[0])
        assert_location_invariants(database)

    def test_large_move_migrates_and_drops_empty_location(self, database, engine, create_marker):
        marker_id = create_marker(*PARIS_A)
        old_location_id = get_marker(database, marker_id).location_id

        old = move_marker(database, marker_id, *LONDON)
        new_location_id = engine.on_marker_coordinates_changed(marker_id, *old, *LONDON)

        assert new_location_id not in (None, old_location_id)
        assert get_location(database, old_location_id) is None
        assert get_marker(database, marker_id).location_id == new_location_id
        assert_location_invariants(database)

    def test_large_move_recomputes_old_location(self, database, engine, create_marker):
        staying = create_marker(*PARIS_A)
        leaving = create_marker(*PARIS_B)
        shared = get_marker(database, staying).location_id
        assert get_marker(database, leaving).location_id == shared

        old = move_marker(database, leaving, *LONDON)
        engine.on_marker_coordinates_changed(leaving, *old, *LONDON)

        location = get_location(database, shared)
        assert (location.latitude, location.longitude) == PARIS_A
        assert_location_invariants(database)

    def test_unlocated_marker_is_assigned_on_small_move(self, database, engine, make_marker):
        marker_id = make_marker(*PARIS_A)
        result = engine.on_marker_coordinates_changed(marker_id, *PARIS_A, PARIS_A[0] + 0.0001, PARIS_A[1])
        assert result is not None
        assert get_marker(database, marker_id).location_id == result
