"""
Geodesy helpers: Haversine distance, the static ETA heuristic, and nearest-first
ordering of anything that has a {lat, lng} location.
"""
import math
from typing import Callable, Iterable, List, Optional

from errors import LocationUnavailable

EARTH_RADIUS_KM = 6371.0

# Rough city driving estimate used when no mapping provider is involved.
MINUTES_PER_KM = 2
MIN_ETA_MINUTES = 5


def haversine(a: dict, b: dict) -> float:
    """Great-circle distance in kilometres between two {lat, lng} points."""
    rlat1 = math.radians(a["lat"])
    rlat2 = math.radians(b["lat"])
    dlat = math.radians(b["lat"] - a["lat"])
    dlng = math.radians(b["lng"] - a["lng"])

    h = (
        math.sin(dlat / 2) ** 2
        + math.cos(rlat1) * math.cos(rlat2) * math.sin(dlng / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))
    return EARTH_RADIUS_KM * c


def eta_minutes(distance_km: float) -> int:
    # Halves round up.
    return max(MIN_ETA_MINUTES, math.floor(distance_km * MINUTES_PER_KM + 0.5))


def _location_of(item: dict) -> dict:
    return item["location"]


def nearest(origin: dict, items: Iterable[dict],
            key: Callable[[dict], dict] = _location_of) -> Optional[tuple]:
    """
    Return (item, distance_km) for the item closest to origin, or None if empty.
    Ties go to the first item encountered so the choice is deterministic.
    """
    best = None
    best_distance = None
    for item in items:
        distance = haversine(origin, key(item))
        if best is None or distance < best_distance:
            best, best_distance = item, distance
    if best is None:
        return None
    return best, best_distance


def sort_by_distance(origin: dict, items: Iterable[dict],
                     key: Callable[[dict], dict] = _location_of) -> List[dict]:
    """Stable nearest-first ordering."""
    return sorted(items, key=lambda item: haversine(origin, key(item)))


def parse_location(value) -> dict:
    """Validate a client-supplied {lat, lng} and return it with float coordinates."""
    if not isinstance(value, dict):
        raise LocationUnavailable()
    try:
        lat = float(value["lat"])
        lng = float(value["lng"])
    except (KeyError, TypeError, ValueError):
        raise LocationUnavailable()
    if math.isnan(lat) or math.isnan(lng) or not (-90 <= lat <= 90) or not (-180 <= lng <= 180):
        raise LocationUnavailable()
    return {"lat": lat, "lng": lng}
