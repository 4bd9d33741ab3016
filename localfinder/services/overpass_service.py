# -*- coding: utf-8 -*-
"""
OverpassPlacesService - Overpass API integration for "places near me"
- Builds Overpass QL around-queries for nodes/ways/relations per category
- Tries each configured mirror in order, with a per-request timeout
- Normalizes elements to Place (name/address/category derivation)
- Short-lived response cache so repeated map views don't hit the mirrors
- Never raises past its boundary: failures become FetchErr
"""

from __future__ import annotations

import asyncio
import math
import time
from json import JSONDecodeError
from typing import Any, Dict, List, Optional

import httpx

from localfinder.core.config import Settings, get_settings
from localfinder.core.logging import get_logger
from localfinder.models.places import UNNAMED_PLACE, Place
from localfinder.models.results import ErrorKind, FetchErr, FetchOk, FetchResult
from localfinder.services.categories import (
    ALL_CATEGORY,
    category_filters,
    classify_tags,
    matches_category,
    normalize_category,
)
from localfinder.services.result_cache import ResultCache

logger = get_logger()

MIN_RADIUS_M = 150
MAX_RADIUS_M = 30_000
DEFAULT_RADIUS_M = 3000
QUERY_TIMEOUT_S = 25
MAX_ELEMENTS = 200

# Preference order for a display name.
_NAME_TAGS = (
    "name",
    "name:en",
    "brand",
    "operator",
    "official_name",
    "alt_name",
    "short_name",
    "addr:housename",
    "addr:place",
)


class OverpassResponseError(Exception):
    """Body did not have the shape of an Overpass JSON result."""


def clamp_radius(radius: Optional[float]) -> int:
    if radius is None:
        return DEFAULT_RADIUS_M
    try:
        value = float(radius)
    except (TypeError, ValueError):
        return DEFAULT_RADIUS_M
    if not math.isfinite(value):
        return DEFAULT_RADIUS_M
    return int(max(MIN_RADIUS_M, min(value, MAX_RADIUS_M)))


def build_overpass_query(lat: float, lng: float, radius: int, category: Optional[str]) -> str:
    """Category-based union query (no free-text search)."""
    around = f"around:{radius},{lat},{lng}"
    blocks = []
    for snippet in category_filters(category):
        blocks.append(
            f"  node{snippet}({around});\n"
            f"  way{snippet}({around});\n"
            f"  relation{snippet}({around});"
        )
    union = "\n".join(blocks)
    return f"[out:json][timeout:{QUERY_TIMEOUT_S}];\n(\n{union}\n);\nout center tags {MAX_ELEMENTS};"


def _display_name(tags: Dict[str, str]) -> str:
    for key in _NAME_TAGS:
        if tags.get(key):
            return tags[key]
    brand = tags.get("brand")
    if brand and tags.get("shop"):
        return f"{brand} {tags['shop']}"
    if brand and tags.get("amenity"):
        return f"{brand} {tags['amenity']}"
    return UNNAMED_PLACE


def _format_address(tags: Dict[str, str]) -> Optional[str]:
    if tags.get("addr:full"):
        return tags["addr:full"]
    parts = [tags.get("addr:housenumber"), tags.get("addr:street"), tags.get("addr:city")]
    parts = [p for p in parts if p]
    return ", ".join(parts) if parts else None


def normalize_element(element: Any, requested_category: Optional[str] = None) -> Optional[Place]:
    """
    Normalize one Overpass element to a Place.

    Returns None for elements without usable coordinates, and for elements
    outside the requested category (the filter is enforced here as well as
    in the query).
    """
    if not isinstance(element, dict):
        return None

    element_type = element.get("type", "node")
    tags = element.get("tags") or {}
    if not isinstance(tags, dict):
        tags = {}
    tags = {str(k): str(v) for k, v in tags.items() if v is not None}

    if element_type == "node":
        lat, lng = element.get("lat"), element.get("lon")
    else:
        center = element.get("center")
        if not isinstance(center, dict):
            return None
        lat, lng = center.get("lat"), center.get("lon")
    if not isinstance(lat, (int, float)) or not isinstance(lng, (int, float)):
        return None
    if not (math.isfinite(lat) and math.isfinite(lng)):
        return None

    requested = normalize_category(requested_category)
    if requested == ALL_CATEGORY:
        category = classify_tags(tags)
    elif matches_category(tags, requested):
        category = requested
    else:
        return None

    return Place(
        id=f"{element_type}/{element.get('id', 0)}",
        name=_display_name(tags),
        lat=float(lat),
        lng=float(lng),
        category=category,
        address=_format_address(tags),
        tags=tags,
    )


def normalize_elements(elements: List[Any], requested_category: Optional[str] = None) -> List[Place]:
    places: List[Place] = []
    seen = set()
    for element in elements:
        place = normalize_element(element, requested_category)
        if place is None or place.id in seen:
            continue
        seen.add(place.id)
        places.append(place)
    return places


class OverpassPlacesService:
    def __init__(
        self,
        *,
        endpoints: Optional[List[str]] = None,
        timeout_s: Optional[float] = None,
        user_agent: Optional[str] = None,
        cache_ttl_s: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
        settings: Optional[Settings] = None,
    ):
        s = settings or get_settings()
        self.endpoints = list(endpoints) if endpoints else s.overpass_endpoints()
        self.timeout_s = timeout_s if timeout_s is not None else s.OVERPASS_TIMEOUT_S
        self.user_agent = user_agent or s.CONTACT_USER_AGENT
        self.cache_ttl_s = cache_ttl_s if cache_ttl_s is not None else s.OVERPASS_CACHE_TTL_S
        self._cache = ResultCache(max_entries=s.SEARCH_CACHE_MAX_ENTRIES)
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(self.timeout_s),
            headers={"User-Agent": self.user_agent},
        )

    async def __aenter__(self) -> "OverpassPlacesService":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    async def aclose(self):
        if self._owns_client:
            await self._client.aclose()

    def _categorize_error_message(self, error: Optional[Exception], status_code: Optional[int] = None) -> str:
        """
        Categorize error messages with standardized prefixes for log analysis.
        """
        error_str = str(error) if error else ""

        if status_code == 504 or isinstance(error, (httpx.TimeoutException, asyncio.TimeoutError)):
            return "TIMEOUT: HTTP 504" if status_code == 504 else "TIMEOUT: request timed out"
        if status_code == 429:
            return "RATE_LIMIT: HTTP 429"
        if status_code and status_code >= 500:
            return f"SERVER_5XX: HTTP {status_code}"
        if isinstance(error, OverpassResponseError):
            return f"DECODE_ERROR: {error_str[:200]}"
        if isinstance(error, (httpx.ConnectError, httpx.NetworkError)):
            return f"NETWORK_ERROR: {error_str[:200]}"
        if status_code:
            return f"HTTP_ERROR: HTTP {status_code}"
        return f"ERROR: {error_str[:200]}"

    def _parse_overpass_response(self, response: httpx.Response) -> List[Any]:
        """Parse an Overpass body; raises OverpassResponseError on a bad shape."""
        try:
            data = response.json()
        except (JSONDecodeError, ValueError):
            snippet = (response.text or "")[:200]
            raise OverpassResponseError(f"JSON decode failed, body[:200]={snippet!r}")
        if not isinstance(data, dict) or not isinstance(data.get("elements"), list):
            raise OverpassResponseError("missing 'elements' list")
        return data["elements"]

    async def _post_query(self, endpoint: str, query: str) -> List[Any]:
        response = await self._client.post(
            endpoint,
            data={"data": query},
            headers={
                "User-Agent": self.user_agent,
                "Content-Type": "application/x-www-form-urlencoded; charset=UTF-8",
            },
            timeout=self.timeout_s,
        )
        response.raise_for_status()
        return self._parse_overpass_response(response)

    async def query_elements(self, overpass_query: str) -> List[Any]:
        """Raw elements from the first mirror that answers; re-raises the last failure."""
        last_exc: Optional[Exception] = None
        for endpoint in self.endpoints:
            try:
                return await self._post_query(endpoint, overpass_query)
            except (httpx.HTTPError, OverpassResponseError) as e:
                status = e.response.status_code if isinstance(e, httpx.HTTPStatusError) else None
                logger.warning(
                    "overpass_mirror_failed",
                    endpoint=endpoint,
                    error_message=self._categorize_error_message(e, status),
                )
                last_exc = e
        raise last_exc or OverpassResponseError("no Overpass endpoints configured")

    def _cache_key(self, lat: float, lng: float, radius: int, category: str) -> str:
        return f"{lat:.5f}|{lng:.5f}|{radius}|{category}"

    async def fetch_places(
        self,
        *,
        lat: float,
        lng: float,
        radius: Optional[float] = None,
        category: Optional[str] = None,
        query: Optional[str] = None,
    ) -> FetchResult:
        """
        Places around (lat, lng) for a category, tried against each mirror in turn.

        The free-text query is accepted for interface compatibility; text
        matching happens client-side.
        """
        if not (isinstance(lat, (int, float)) and isinstance(lng, (int, float))
                and math.isfinite(lat) and math.isfinite(lng)):
            return FetchErr(ErrorKind.INVALID_REQUEST, "Missing lat/lng")

        radius_m = clamp_radius(radius)
        category_key = normalize_category(category)
        cache_key = self._cache_key(lat, lng, radius_m, category_key)

        cached = self._cache.get(cache_key)
        if cached is not None and self._cache.is_fresh(cached, self.cache_ttl_s):
            logger.debug("overpass_cache_hit", key=cache_key, count=len(cached.places))
            return FetchOk(places=cached.places)

        overpass_query = build_overpass_query(lat, lng, radius_m, category_key)
        logger.info(
            "overpass_search_start",
            lat=round(lat, 5),
            lng=round(lng, 5),
            radius=radius_m,
            category=category_key,
            mirrors=len(self.endpoints),
        )

        last_error: Optional[str] = None
        last_kind = ErrorKind.UPSTREAM_UNAVAILABLE
        for attempt, endpoint in enumerate(self.endpoints, start=1):
            started = time.monotonic()
            try:
                elements = await self._post_query(endpoint, overpass_query)
            except httpx.HTTPStatusError as e:
                last_error = self._categorize_error_message(e, e.response.status_code)
                last_kind = ErrorKind.UPSTREAM_UNAVAILABLE
            except OverpassResponseError as e:
                last_error = self._categorize_error_message(e)
                last_kind = ErrorKind.MALFORMED_RESPONSE
            except httpx.HTTPError as e:
                last_error = self._categorize_error_message(e)
                last_kind = ErrorKind.UPSTREAM_UNAVAILABLE
            else:
                places = normalize_elements(elements, category_key)
                self._cache.put(cache_key, places)
                logger.info(
                    "overpass_search_done",
                    endpoint=endpoint,
                    attempt=attempt,
                    found=len(elements),
                    normalized=len(places),
                    duration_ms=int((time.monotonic() - started) * 1000),
                )
                return FetchOk(places=tuple(places))

            logger.warning(
                "overpass_mirror_failed",
                endpoint=endpoint,
                attempt=attempt,
                error_message=last_error,
                duration_ms=int((time.monotonic() - started) * 1000),
            )

        logger.warning("overpass_all_mirrors_failed", mirrors=len(self.endpoints), error_message=last_error)
        return FetchErr(last_kind, last_error or "Overpass failed or timed out")
