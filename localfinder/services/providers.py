from __future__ import annotations

from typing import Optional, Protocol, runtime_checkable

from localfinder.models.results import FetchResult


@runtime_checkable
class PlacesProvider(Protocol):
    """
    Area search capability consumed by the FetchCoordinator.

    Implementations normalise every failure into FetchErr; only
    asyncio.CancelledError may escape.
    """

    async def fetch_places(
        self,
        *,
        lat: float,
        lng: float,
        radius: int,
        category: str,
        query: Optional[str] = None,
    ) -> FetchResult:
        ...
