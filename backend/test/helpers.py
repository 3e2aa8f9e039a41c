"""Test helpers shared by the test modules and conftest."""

import threading

# Kilometres per degree of latitude on a 6371 km sphere.
KM_PER_DEGREE = 111.19492664455873

ORIGIN = {"lat": 0.0, "lng": 0.0}


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


def run_now(fn, *args):
    fn(*args)


def km_north(km: float) -> dict:
    """A point `km` kilometres due north of (0, 0)."""
    return {"lat": km / KM_PER_DEGREE, "lng": 0.0}


class AtomicCollection:
    """
    mongomock collection whose find_one_and_update runs under a lock.
    mongomock finds and then updates in two steps; a MongoDB server applies
    the filter and the update atomically, which threaded tests rely on.
    """

    def __init__(self, collection, lock: threading.Lock):
        self._collection = collection
        self._lock = lock

    def find_one_and_update(self, *args, **kwargs):
        with self._lock:
            return self._collection.find_one_and_update(*args, **kwargs)

    def __getattr__(self, name):
        return getattr(self._collection, name)
