"""
PlacesProvider that calls the app's own /api/overpass route over HTTP.

Used when the coordinator runs outside the API process (scripts, other
frontends). Accepts the three body shapes the route has served over time:
a bare array, {"data": [...]} and {"results": [...]}.
"""

from __future__ import annotations

from typing import Any, List, Optional

import httpx
from pydantic import ValidationError

from localfinder.core.config import Settings, get_settings
from localfinder.core.logging import get_logger
from localfinder.models.places import Place
from localfinder.models.results import ErrorKind, FetchErr, FetchOk, FetchResult

logger = get_logger()

DEFAULT_TIMEOUT_S = 30.0


def _extract_items(body: Any) -> Optional[List[Any]]:
    if isinstance(body, list):
        return body
    if isinstance(body, dict):
        for field in ("data", "results"):
            if isinstance(body.get(field), list):
                return body[field]
    return None


class ProxyPlacesClient:
    def __init__(
        self,
        base_url: str,
        *,
        timeout_s: float = DEFAULT_TIMEOUT_S,
        client: Optional[httpx.AsyncClient] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        s = settings or get_settings()
        self.base_url = base_url.rstrip("/")
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout_s),
            headers={"User-Agent": s.CONTACT_USER_AGENT},
        )

    async def __aenter__(self) -> "ProxyPlacesClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def fetch_places(
        self,
        *,
        lat: float,
        lng: float,
        radius: int,
        category: str,
        query: Optional[str] = None,
    ) -> FetchResult:
        params = {
            "lat": lat,
            "lng": lng,
            "radius": int(radius),
            "category": category or "all",
        }
        if query:
            params["q"] = query

        try:
            response = await self._client.get(
                f"{self.base_url}/api/overpass",
                params=params,
                headers={"Cache-Control": "no-store"},
            )
        except httpx.HTTPError as e:
            logger.warning("proxy_request_failed", error=str(e), error_type=type(e).__name__)
            return FetchErr(ErrorKind.UPSTREAM_UNAVAILABLE, str(e) or type(e).__name__)

        if not response.is_success:
            logger.warning("proxy_http_error", status_code=response.status_code)
            return FetchErr(ErrorKind.UPSTREAM_UNAVAILABLE, f"HTTP {response.status_code}")

        try:
            body = response.json()
        except ValueError:
            return FetchErr(ErrorKind.MALFORMED_RESPONSE, "response is not JSON")

        items = _extract_items(body)
        if items is None:
            return FetchErr(ErrorKind.MALFORMED_RESPONSE, "no place list in response")
        if isinstance(body, dict) and body.get("error") and not items:
            # the route reports upstream failure as {error, data: []} with a 200
            return FetchErr(ErrorKind.UPSTREAM_UNAVAILABLE, str(body["error"]))

        try:
            places = tuple(Place.model_validate(item) for item in items)
        except ValidationError as e:
            logger.warning("proxy_malformed_place", error=str(e)[:200])
            return FetchErr(ErrorKind.MALFORMED_RESPONSE, "malformed place in response")
        return FetchOk(places=places)
