from __future__ import annotations

from typing import Any, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict

# [south, west, north, east]
BBox = Tuple[float, float, float, float]


class GeoJSONPolygon(BaseModel):
    type: Literal["Polygon", "MultiPolygon"]
    coordinates: List[Any]


class GeocodeFound(BaseModel):
    model_config = ConfigDict(frozen=True)

    found: Literal[True] = True
    lat: float
    lng: float
    name: str
    source: Literal["nominatim", "overpass"] = "nominatim"
    bbox: Optional[BBox] = None
    polygon: Optional[GeoJSONPolygon] = None


class GeocodeNotFound(BaseModel):
    model_config = ConfigDict(frozen=True)

    found: Literal[False] = False
    error: str
    detail: Optional[str] = None


GeocodePayload = Union[GeocodeFound, GeocodeNotFound]

# The area lookup returns the same payload shapes as the geocoder.
AreaFound = GeocodeFound
AreaNotFound = GeocodeNotFound
AreaPayload = GeocodePayload


def _is_position(pt: Any) -> bool:
    return (
        isinstance(pt, (list, tuple))
        and len(pt) == 2
        and all(isinstance(v, (int, float)) and not isinstance(v, bool) for v in pt)
    )


def _is_ring_list(rings: Any) -> bool:
    return isinstance(rings, list) and all(
        isinstance(ring, list) and all(_is_position(pt) for pt in ring) for ring in rings
    )


def normalize_geojson(geometry: Any) -> Optional[GeoJSONPolygon]:
    """
    Keep only well-formed Polygon/MultiPolygon geometries.

    Nominatim returns Point/LineString geojson for small features; those are
    dropped rather than passed on as a broken overlay.
    """
    if not isinstance(geometry, dict) or not isinstance(geometry.get("type"), str):
        return None
    coords = geometry.get("coordinates")
    if geometry["type"] == "Polygon" and _is_ring_list(coords):
        return GeoJSONPolygon(type="Polygon", coordinates=coords)
    if geometry["type"] == "MultiPolygon" and isinstance(coords, list) and all(
        _is_ring_list(poly) for poly in coords
    ):
        return GeoJSONPolygon(type="MultiPolygon", coordinates=coords)
    return None
