from __future__ import annotations

import math
import re
from typing import Dict, Optional, Sequence, Tuple

import httpx

from localfinder.core.config import Settings, get_settings
from localfinder.core.logging import get_logger
from localfinder.models.geo import AreaFound, AreaNotFound, AreaPayload, BBox, normalize_geojson
from localfinder.services.nominatim_service import NominatimService, parse_bbox, to_number
from localfinder.services.overpass_service import OverpassPlacesService, OverpassResponseError

logger = get_logger()

DEFAULT_AREA_RADIUS_KM = 50.0

ERR_MISSING_QUERY = "Missing q"
ERR_NOT_FOUND = "Area not found"
ERR_LOOKUP_FAILED = "Area lookup failed"


def area_viewbox(lat: float, lng: float, radius_km: float = DEFAULT_AREA_RADIUS_KM) -> str:
    safe_cos = max(0.05, math.cos(math.radians(lat)))
    d_lat = radius_km / 111
    d_lng = radius_km / (111 * safe_cos)
    # left,top,right,bottom
    return f"{lng - d_lng},{lat + d_lat},{lng + d_lng},{lat - d_lat}"


def build_relation_query(name: str) -> str:
    # regex metacharacters and quotes match any single character
    pattern = re.sub(r'[\\"^$.|?*+()\[\]{}]', ".", name)
    return (
        "[out:json][timeout:25];\n"
        "(\n"
        f'  relation["boundary"="administrative"]["name"~"{pattern}",i];\n'
        f'  relation["place"]["name"~"{pattern}",i];\n'
        ");\n"
        "out center bb;"
    )


def _bbox_centroid(bbox: BBox) -> Tuple[float, float]:
    south, west, north, east = bbox
    return ((south + north) / 2, (west + east) / 2)


class AreaService:
    """
    Resolve an area name (suburb, city, region) to a centroid, bbox and
    boundary: Nominatim first, Overpass relation lookup as fallback.
    """

    def __init__(
        self,
        nominatim: NominatimService,
        overpass: OverpassPlacesService,
        *,
        country_codes: Optional[str] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        s = settings or get_settings()
        self.nominatim = nominatim
        self.overpass = overpass
        self.country_codes = country_codes if country_codes is not None else s.area_country_codes()

    async def _nominatim_best(self, query: str, near: Optional[Tuple[float, float]], radius_km: float) -> Optional[AreaFound]:
        base: Dict[str, str] = {
            "format": "jsonv2",
            "addressdetails": "1",
            "limit": "5",
            "q": query,
            "polygon_geojson": "1",
        }
        if self.country_codes:
            base["countrycodes"] = self.country_codes

        results = []
        if near is not None:
            results = await self.nominatim.search(
                {**base, "viewbox": area_viewbox(near[0], near[1], radius_km), "bounded": "0"}
            )
        if not results:
            results = await self.nominatim.search(base)
        if not results:
            return None

        best = results[0]
        lat, lng = to_number(best.get("lat")), to_number(best.get("lon"))
        if lat is None or lng is None:
            return None
        display = str(best.get("display_name") or "")
        return AreaFound(
            lat=lat,
            lng=lng,
            name=display.split(",")[0].strip() or query,
            source="nominatim",
            bbox=parse_bbox(best.get("boundingbox")),
            polygon=normalize_geojson(best.get("geojson")),
        )

    async def _overpass_relation(self, query: str, near: Optional[Tuple[float, float]]) -> Optional[AreaFound]:
        elements = await self.overpass.query_elements(build_relation_query(query))
        relation = next(
            (e for e in elements if isinstance(e, dict) and e.get("type") == "relation"),
            None,
        )
        if relation is None:
            return None

        tags = relation.get("tags") or {}
        name = tags.get("name") or tags.get("name:en") or tags.get("name:af") or query

        bbox: Optional[BBox] = None
        bounds = relation.get("bounds")
        if isinstance(bounds, dict):
            values = [to_number(bounds.get(k)) for k in ("minlat", "minlon", "maxlat", "maxlon")]
            if all(v is not None for v in values):
                bbox = (values[0], values[1], values[2], values[3])  # type: ignore[assignment]

        lat, lng = near if near is not None else (0.0, 0.0)
        center = relation.get("center")
        center_lat = to_number(center.get("lat")) if isinstance(center, dict) else None
        center_lng = to_number(center.get("lon")) if isinstance(center, dict) else None
        if center_lat is not None and center_lng is not None:
            lat, lng = center_lat, center_lng
        elif bbox is not None:
            lat, lng = _bbox_centroid(bbox)

        return AreaFound(lat=lat, lng=lng, name=name, source="overpass", bbox=bbox)

    async def resolve(
        self,
        query: str,
        *,
        near: Optional[Sequence[float]] = None,
        radius_km: float = DEFAULT_AREA_RADIUS_KM,
    ) -> AreaPayload:
        q = (query or "").strip()
        if not q:
            return AreaNotFound(error=ERR_MISSING_QUERY)

        bias: Optional[Tuple[float, float]] = None
        if near is not None and len(near) == 2:
            lat, lng = to_number(near[0]), to_number(near[1])
            if lat is not None and lng is not None:
                bias = (lat, lng)

        try:
            found = await self._nominatim_best(q, bias, radius_km)
            if found is None:
                logger.info("area_nominatim_empty", query=q)
                found = await self._overpass_relation(q, bias)
        except (httpx.HTTPError, OverpassResponseError, ValueError) as e:
            logger.warning("area_lookup_failed", query=q, error=str(e), error_type=type(e).__name__)
            return AreaNotFound(error=ERR_LOOKUP_FAILED, detail=str(e) or type(e).__name__)

        if found is None:
            return AreaNotFound(error=ERR_NOT_FOUND)
        logger.debug("area_resolved", query=q, source=found.source, lat=found.lat, lng=found.lng)
        return found
