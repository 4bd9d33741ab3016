"""
Stable cache/dedupe keys for place searches.

Two logically equal searches (same rounded center, radius bucket, category
and normalized query) always produce byte-identical keys.
"""

from __future__ import annotations

import math
from typing import Optional, Sequence

MIN_RADIUS_M = 50
COORD_PRECISION = 6
KEY_SEPARATOR = "|"

Center = Sequence[float]


def is_valid_center(center: Optional[Center]) -> bool:
    if center is None or len(center) != 2:
        return False
    try:
        lat, lng = float(center[0]), float(center[1])
    except (TypeError, ValueError):
        return False
    if not (math.isfinite(lat) and math.isfinite(lng)):
        return False
    return -90.0 <= lat <= 90.0 and -180.0 <= lng <= 180.0


def normalize_radius(radius: float) -> int:
    """Floor to whole meters, never below MIN_RADIUS_M."""
    try:
        value = float(radius)
    except (TypeError, ValueError):
        return MIN_RADIUS_M
    if not math.isfinite(value):
        return MIN_RADIUS_M
    return max(MIN_RADIUS_M, int(math.floor(value)))


def normalize_query(query: Optional[str]) -> str:
    return (query or "").strip().lower()


def compute_geo_key(
    center: Optional[Center],
    radius: float,
    category: Optional[str],
    query: Optional[str],
) -> Optional[str]:
    """
    Key for a search, or None while there is no usable center yet.
    """
    if not is_valid_center(center):
        return None
    # round before formatting so -0.0000001 and 0.0 share a key
    lat = round(float(center[0]), COORD_PRECISION) + 0.0
    lng = round(float(center[1]), COORD_PRECISION) + 0.0
    parts = [
        f"{lat:.{COORD_PRECISION}f}",
        f"{lng:.{COORD_PRECISION}f}",
        str(normalize_radius(radius)),
        category or "all",
        normalize_query(query),
    ]
    return KEY_SEPARATOR.join(parts)


def request_key(geo_key: str, radius: float) -> str:
    """Concrete request key: the GeoKey plus the radius actually fetched."""
    return f"{geo_key}::r={normalize_radius(radius)}"
