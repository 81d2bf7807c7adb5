"""Coordinate-level cleanup of location lists."""
from __future__ import annotations

import math
from typing import Any, Dict, Iterable, List

from ..schemas import Location

COORDINATE_PRECISION = 4  # ~11 m


def coordinate_key(lat: float, lng: float, precision: int = COORDINATE_PRECISION) -> str:
    # "+ 0.0" folds -0.0 into 0.0 so both sides of the meridian share a key.
    return f"{round(lat, precision) + 0.0},{round(lng, precision) + 0.0}"


def deduplicate_locations(locations: Iterable[Location]) -> List[Location]:
    """Keep the first location for every rounded coordinate, in order."""

    seen: set[str] = set()
    unique: List[Location] = []
    for location in locations:
        key = coordinate_key(location.lat, location.lng)
        if key in seen:
            continue
        seen.add(key)
        unique.append(location)
    return unique


def is_plausible_coordinate(lat: object, lng: object) -> bool:
    """Reject placeholders geocoders return for unresolvable text."""

    if isinstance(lat, bool) or isinstance(lng, bool):
        return False
    if not isinstance(lat, (int, float)) or not isinstance(lng, (int, float)):
        return False
    if not (math.isfinite(lat) and math.isfinite(lng)):
        return False
    if not (-90 <= lat <= 90 and -180 <= lng <= 180):
        return False
    if abs(lat) < 0.01 and abs(lng) < 0.01:
        return False
    # Antarctic point with lng ~0 used as a null-island style placeholder.
    if lat < -72 and abs(lng) < 1:
        return False
    return True


def deduplicate_entries(entries: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Same rule applied to raw catalog location dicts, which are kept as read.

    Entries without numeric coordinates are left in place.
    """

    seen: set[str] = set()
    unique: List[Dict[str, Any]] = []
    for entry in entries:
        try:
            key = coordinate_key(float(entry["lat"]), float(entry["lng"]))
        except (KeyError, TypeError, ValueError):
            unique.append(entry)
            continue
        if key in seen:
            continue
        seen.add(key)
        unique.append(entry)
    return unique
