"""
Spatial lock for cluster creation

assign() is check-then-act: look for a location within 200m, create one
if there is none. Two markers landing near each other at the same time
can both see "no match" and create two locations. SpatialLock serializes
assign() calls that could interfere.

Keys are latitude bands of BAND_DEG degrees (~1.1km). Two points within
200m are in the same or adjacent bands, so every caller takes its own
band and both neighbours, in ascending order. Any two conflicting callers
then share a lock and the ascending order rules out deadlock.

On PostgreSQL the bands are also taken as transaction-scoped advisory
locks, which covers multiple worker processes. The caller must commit
before leaving the guard.
"""

import logging
import math
import threading
from contextlib import contextmanager
from typing import Dict, List

from sqlalchemy import text
from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

BAND_DEG = 0.01

# Namespaces advisory lock keys so they don't collide with other users
ADVISORY_NAMESPACE = 0x10CA7 << 32


def latitude_band(lat: float) -> int:
    return math.floor(lat / BAND_DEG)


def band_keys(lat: float) -> List[int]:
    band = latitude_band(lat)
    return [band - 1, band, band + 1]


class SpatialLock:

    def __init__(self):
        self._locks: Dict[int, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    def _lock_for(self, band: int) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(band)
            if lock is None:
                lock = self._locks[band] = threading.Lock()
            return lock

    @contextmanager
    def guard(self, db: Session, lat: float):
        """Hold the band locks around (lat) until the block exits"""
        keys = band_keys(lat)
        held = []
        try:
            for key in keys:
                lock = self._lock_for(key)
                lock.acquire()
                held.append(lock)

            if db.get_bind().dialect.name == "postgresql":
                for key in keys:
                    db.execute(text("SELECT pg_advisory_xact_lock(:key)"), {"key": ADVISORY_NAMESPACE + key})

            yield keys
        finally:
            for lock in reversed(held):
                lock.release()
