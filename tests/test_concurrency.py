"""
Concurrent cluster creation

Without the spatial lock, two markers landing close together can both
miss in find_within and create two locations within 200m of each other.
With the lock held through commit they end up in one location.
"""

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from services.location.locking import SpatialLock, band_keys, latitude_band, BAND_DEG
from services.location.registry import LocationRegistry
from tests.conftest import PARIS_A, LONDON, get_marker, all_locations, assert_location_invariants


# ==============================================================================
# Band keys
# ==============================================================================

class TestBandKeys:

    def test_three_consecutive_bands(self):
        band = latitude_band(PARIS_A[0])
        assert band_keys(PARIS_A[0]) == [band - 1, band, band + 1]

    def test_neighbours_across_a_band_edge_share_keys(self):
        below, above = 48.99999, 49.00001
        assert latitude_band(below) != latitude_band(above)
        assert set(band_keys(below)) & set(band_keys(above))

    @pytest.mark.parametrize("lat", [-33.8688, 0.0, 0.0005, 48.8566, 89.999])
    def test_points_200m_apart_share_a_key(self, lat):
        step = 0.0018    # ~200m of latitude
        for other in (lat - step, lat + step):
            assert set(band_keys(lat)) & set(band_keys(other))

    def test_band_width(self):
        assert latitude_band(0.0) == 0
        assert latitude_band(BAND_DEG * 1.5) == 1
        assert latitude_band(-BAND_DEG * 0.5) == -1


# ==============================================================================
# SpatialLock
# ==============================================================================

class TestSpatialLock:

    def test_distant_guards_do_not_block(self, session):
        lock = SpatialLock()
        with lock.guard(session, PARIS_A[0]):
            with lock.guard(session, LONDON[0]) as keys:
                assert keys == band_keys(LONDON[0])

    def test_nearby_guard_waits(self, session):
        lock = SpatialLock()
        entered = threading.Event()

        def contender():
            lock._lock_for(latitude_band(PARIS_A[0])).acquire()
            entered.set()
            lock._lock_for(latitude_band(PARIS_A[0])).release()

        with lock.guard(session, PARIS_A[0] + 0.001):
            thread = threading.Thread(target=contender)
            thread.start()
            assert not entered.wait(0.2)
        thread.join(timeout=5)
        assert entered.is_set()

    def test_released_on_error(self, session):
        lock = SpatialLock()
        with pytest.raises(RuntimeError):
            with lock.guard(session, PARIS_A[0]):
                raise RuntimeError("boom")
        for key in band_keys(PARIS_A[0]):
            assert not lock._lock_for(key).locked()


# ==============================================================================
# Cluster creation races
# ==============================================================================

class TestClusterCreationRace:

    def test_unguarded_check_then_act_duplicates(self, database):
        """Both sessions miss before either writes: two locations 30m apart"""
        first, second = database.session(), database.session()
        try:
            reg_a, reg_b = LocationRegistry(first), LocationRegistry(second)
            assert reg_a.find_within(*PARIS_A) is None
            assert reg_b.find_within(PARIS_A[0] + 0.0003, PARIS_A[1]) is None

            reg_a.create(*PARIS_A)
            first.commit()
            reg_b.create(PARIS_A[0] + 0.0003, PARIS_A[1])
            second.commit()
        finally:
            first.close()
            second.close()

        assert len(all_locations(database)) == 2

    def test_guarded_concurrent_creates_share_one_location(self, database, engine, make_marker):
        workers = 8
        points = [(PARIS_A[0] + 0.00005 * i, PARIS_A[1] - 0.00005 * i) for i in range(workers)]
        marker_ids = [make_marker(lat, lng) for lat, lng in points]
        barrier = threading.Barrier(workers)

        def create(marker_id, point):
            barrier.wait()
            return engine.on_marker_created(marker_id, *point)

        with ThreadPoolExecutor(max_workers=workers) as pool:
            results = list(pool.map(create, marker_ids, points))

        assert None not in results
        assert len(set(results)) == 1
        assert len(all_locations(database)) == 1
        assert {get_marker(database, m).location_id for m in marker_ids} == set(results)
        assert_location_invariants(database)

