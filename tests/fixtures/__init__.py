# tests/fixtures/__init__.py
"""
Test fixtures for the places search tests.

Factory functions and fakes:
- make_place()
- make_node() / make_way()  (raw Overpass elements)
- make_settings()
- FakeClock
- FakeProvider
"""

from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional

from localfinder.core.config import Settings
from localfinder.models.places import Place
from localfinder.models.results import ErrorKind, FetchErr, FetchOk, FetchResult

JHB = (-26.2041, 28.0473)


def make_place(
    place_id: str = "node/1",
    name: str = "Test Cafe",
    lat: float = JHB[0],
    lng: float = JHB[1],
    category: str = "coffee",
    tags: Optional[Dict[str, str]] = None,
    address: Optional[str] = None,
) -> Place:
    """Factory function to create a test Place."""
    return Place(
        id=place_id,
        name=name,
        lat=lat,
        lng=lng,
        category=category,
        address=address,
        tags=tags if tags is not None else {"amenity": "cafe", "name": name},
    )


def make_node(node_id: int = 1, tags: Optional[Dict[str, str]] = None, lat: float = JHB[0], lon: float = JHB[1]) -> Dict[str, Any]:
    return {"type": "node", "id": node_id, "lat": lat, "lon": lon, "tags": tags or {}}


def make_way(way_id: int = 1, tags: Optional[Dict[str, str]] = None, center: Optional[Dict[str, float]] = None) -> Dict[str, Any]:
    element: Dict[str, Any] = {"type": "way", "id": way_id, "tags": tags or {}}
    if center is not None:
        element["center"] = center
    return element


def make_settings(**overrides: Any) -> Settings:
    """Settings with test endpoints and no .env influence on the values that matter."""
    values: Dict[str, Any] = {
        "CONTACT_USER_AGENT": "LocalFinderTests/1.0 (tests@example.com)",
        "OVERPASS_ENDPOINTS": "https://overpass.test/api/interpreter,https://mirror.overpass.test/api/interpreter",
        "NOMINATIM_BASE_URL": "https://nominatim.test/search",
        "NOMINATIM_MIN_DELAY_S": 0.0,
        "CORS_ALLOW_ORIGINS": "http://localhost:3000",
        "AREA_COUNTRY_CODES": "",
    }
    values.update(overrides)
    return Settings(**values)


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeProvider:
    """
    PlacesProvider double.

    responses maps a radius to a FetchResult (or an exception to raise);
    `default` answers every other radius. Set `gate` to hold every call until
    the event is set, or `gates` to hold calls for one radius only.
    """

    def __init__(
        self,
        default: Optional[FetchResult] = None,
        responses: Optional[Dict[int, Any]] = None,
        gate: Optional[asyncio.Event] = None,
        gates: Optional[Dict[int, asyncio.Event]] = None,
    ) -> None:
        self.default = default if default is not None else FetchOk(places=())
        self.responses = dict(responses or {})
        self.gate = gate
        self.gates = dict(gates or {})
        self.calls: List[Dict[str, Any]] = []
        self.cancelled = 0

    @property
    def call_count(self) -> int:
        return len(self.calls)

    def radii(self) -> List[int]:
        return [c["radius"] for c in self.calls]

    async def fetch_places(
        self,
        *,
        lat: float,
        lng: float,
        radius: int,
        category: str,
        query: Optional[str] = None,
    ) -> FetchResult:
        self.calls.append({"lat": lat, "lng": lng, "radius": radius, "category": category, "query": query})
        try:
            gate = self.gates.get(radius, self.gate)
            if gate is not None:
                await gate.wait()
            else:
                await asyncio.sleep(0)
        except asyncio.CancelledError:
            self.cancelled += 1
            raise
        answer = self.responses.get(radius, self.default)
        if isinstance(answer, BaseException):
            raise answer
        return answer


def ok(*places: Place) -> FetchOk:
    return FetchOk(places=tuple(places))


def upstream_error(detail: str = "HTTP 500") -> FetchErr:
    return FetchErr(ErrorKind.UPSTREAM_UNAVAILABLE, detail)
