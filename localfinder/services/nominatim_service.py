# -*- coding: utf-8 -*-
"""
NominatimService - OSM Nominatim geocoding for the search box
- Resolves free text to a best-match center, bbox and boundary polygon
- Optional bias: bounded viewbox around a point
- Enforces a minimum delay between upstream requests
- Caches payloads (found and not-found) for a short window
- Never raises past its boundary: failures become GeocodeNotFound
"""

from __future__ import annotations

import asyncio
import math
import time
from typing import Any, Dict, List, Optional, Sequence, Tuple

import httpx

from localfinder.core.config import Settings, get_settings
from localfinder.core.logging import get_logger
from localfinder.models.geo import BBox, GeocodeFound, GeocodeNotFound, GeocodePayload, normalize_geojson

logger = get_logger()

DEFAULT_BIAS_RADIUS_M = 10_000
METERS_PER_DEGREE = 111_000


def to_number(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def parse_bbox(raw: Any) -> Optional[BBox]:
    """Nominatim [south, north, west, east] strings -> [south, west, north, east]."""
    if not isinstance(raw, (list, tuple)) or len(raw) != 4:
        return None
    south, north, west, east = (to_number(v) for v in raw)
    if south is None or north is None or west is None or east is None:
        return None
    return (south, west, north, east)


def bias_viewbox(lat: float, lng: float, radius_m: float) -> str:
    """Viewbox "minLng,maxLat,maxLng,minLat" of radius_m around a point."""
    lat_delta = radius_m / METERS_PER_DEGREE
    cos_lat = math.cos(math.radians(lat))
    lng_delta = radius_m / (METERS_PER_DEGREE * cos_lat) if cos_lat else radius_m / METERS_PER_DEGREE
    return f"{lng - lng_delta},{lat + lat_delta},{lng + lng_delta},{lat - lat_delta}"


def _cache_key(query: str, near: Optional[Sequence[float]]) -> str:
    lat_part = f"{near[0]:.4f}" if near else "nil"
    lng_part = f"{near[1]:.4f}" if near else "nil"
    return f"{query.lower()}|{lat_part}|{lng_part}"


class NominatimService:
    """
    Geocoding service using OSM's Nominatim API.
    """

    def __init__(
        self,
        *,
        base_url: Optional[str] = None,
        timeout_s: Optional[float] = None,
        min_delay_s: Optional[float] = None,
        cache_ttl_s: Optional[float] = None,
        user_agent: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        settings: Optional[Settings] = None,
    ):
        s = settings or get_settings()
        self.base_url = base_url or s.NOMINATIM_BASE_URL
        self.timeout_s = timeout_s if timeout_s is not None else s.NOMINATIM_TIMEOUT_S
        self.min_delay_s = min_delay_s if min_delay_s is not None else s.NOMINATIM_MIN_DELAY_S
        self.cache_ttl_s = cache_ttl_s if cache_ttl_s is not None else s.GEOCODE_CACHE_TTL_S
        self.user_agent = user_agent or s.CONTACT_USER_AGENT
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(self.timeout_s),
            headers={"User-Agent": self.user_agent},
        )
        self._last_request = 0.0
        self._lock = asyncio.Lock()
        self._cache: Dict[str, Tuple[float, GeocodePayload]] = {}

    async def __aenter__(self) -> "NominatimService":
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.aclose()

    async def aclose(self):
        """Close the HTTP client."""
        if self._owns_client:
            await self._client.aclose()

    async def _enforce_rate_limit(self) -> None:
        """
        Nominatim usage policy: at most one request per second.
        """
        async with self._lock:
            elapsed = time.monotonic() - self._last_request
            if elapsed < self.min_delay_s:
                sleep_time = self.min_delay_s - elapsed
                logger.debug(
                    "geocoding_rate_limit_delay",
                    elapsed_s=round(elapsed, 3),
                    sleep_time_s=round(sleep_time, 3),
                )
                await asyncio.sleep(sleep_time)
            self._last_request = time.monotonic()

    def _get_cached(self, key: str) -> Optional[GeocodePayload]:
        hit = self._cache.get(key)
        if hit is None:
            return None
        ts, payload = hit
        if time.monotonic() - ts > self.cache_ttl_s:
            del self._cache[key]
            return None
        return payload

    def _set_cached(self, key: str, payload: GeocodePayload) -> GeocodePayload:
        self._cache[key] = (time.monotonic(), payload)
        return payload

    async def search(self, params: Dict[str, str]) -> List[Dict[str, Any]]:
        """
        Raw Nominatim search. Raises httpx errors and ValueError on a
        non-array body; callers translate those into payloads.
        """
        await self._enforce_rate_limit()
        response = await self._client.get(
            self.base_url,
            params=params,
            headers={"Accept": "application/json", "Accept-Language": "en"},
        )
        logger.debug(
            "geocoding_response_received",
            status_code=response.status_code,
            retry_after=response.headers.get("Retry-After"),
        )
        response.raise_for_status()
        data = response.json()
        if not isinstance(data, list):
            raise ValueError("Unexpected response shape")
        return [item for item in data if isinstance(item, dict)]

    async def geocode(
        self,
        query: str,
        *,
        bias_center: Optional[Sequence[float]] = None,
        bias_radius_km: Optional[float] = None,
        bias_radius_m: Optional[float] = None,
    ) -> GeocodePayload:
        """
        Resolve free text to a best-match location.

        Args:
            query: Place or area name.
            bias_center: (lat, lng) to bound the search around.
            bias_radius_km: Bias radius in km (takes precedence).
            bias_radius_m: Bias radius in meters.

        Returns:
            GeocodeFound, or GeocodeNotFound for empty queries, no results and
            upstream failures alike.
        """
        q = (query or "").strip()
        if not q:
            return GeocodeNotFound(error="Empty query")

        near: Optional[Tuple[float, float]] = None
        if bias_center is not None and len(bias_center) == 2:
            lat, lng = to_number(bias_center[0]), to_number(bias_center[1])
            if lat is not None and lng is not None:
                near = (lat, lng)

        key = _cache_key(q, near)
        cached = self._get_cached(key)
        if cached is not None:
            return cached

        params = {
            "q": q,
            "format": "jsonv2",
            "addressdetails": "0",
            "polygon_geojson": "1",
            "limit": "1",
        }
        if near is not None:
            if bias_radius_km and bias_radius_km > 0:
                radius_m = bias_radius_km * 1000
            elif bias_radius_m and bias_radius_m > 0:
                radius_m = bias_radius_m
            else:
                radius_m = DEFAULT_BIAS_RADIUS_M
            params["viewbox"] = bias_viewbox(near[0], near[1], radius_m)
            params["bounded"] = "1"
            params["lat"] = str(near[0])
            params["lon"] = str(near[1])

        try:
            results = await self.search(params)
        except httpx.HTTPStatusError as e:
            response = e.response
            logger.warning("geocoding_http_error", query=q, status_code=response.status_code)
            return self._set_cached(
                key,
                GeocodeNotFound(
                    error="Geocode failed",
                    detail=f"Upstream {response.status_code} {response.reason_phrase}".strip(),
                ),
            )
        except ValueError:
            logger.warning("geocoding_unexpected_shape", query=q)
            return self._set_cached(key, GeocodeNotFound(error="Unexpected response shape"))
        except httpx.HTTPError as e:
            logger.warning("geocoding_network_error", query=q, error=str(e), error_type=type(e).__name__)
            return self._set_cached(key, GeocodeNotFound(error="Geocode failed", detail=str(e) or type(e).__name__))

        if not results:
            logger.debug("geocoding_no_results", query=q)
            return self._set_cached(key, GeocodeNotFound(error="No results"))

        first = results[0]
        lat, lng = to_number(first.get("lat")), to_number(first.get("lon"))
        if lat is None or lng is None:
            return self._set_cached(key, GeocodeNotFound(error="Result missing coordinates"))

        payload = GeocodeFound(
            lat=lat,
            lng=lng,
            name=first.get("display_name") or q,
            source="nominatim",
            bbox=parse_bbox(first.get("boundingbox")),
            polygon=normalize_geojson(first.get("geojson")),
        )
        logger.debug("geocoding_success", query=q, lat=lat, lng=lng)
        return self._set_cached(key, payload)
