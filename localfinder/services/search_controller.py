from __future__ import annotations

import asyncio
from typing import Callable, FrozenSet, Optional, Sequence

from localfinder.core.logging import get_logger
from localfinder.models.geo import GeocodeFound
from localfinder.models.places import Place
from localfinder.services.geo_key import normalize_query
from localfinder.services.nominatim_service import NominatimService
from localfinder.services.places_store import AreaOverlay, PlacesStore, StoreState, clamp_zoom
from localfinder.services.radius_escalator import matches_query

logger = get_logger()

GEOCODE_BIAS_RADIUS_KM = 60
AREA_ZOOM = 16
PLACE_ZOOM = 17


def best_match(places: Sequence[Place], query: str) -> Optional[Place]:
    """First place matching the query, else the first place."""
    if not places:
        return None
    q = normalize_query(query)
    if q:
        for place in places:
            if matches_query(place, q):
                return place
    return places[0]


class SearchController:
    """
    Search box submit flow.

    submit() sets the query, geocodes it near the current center and moves
    the view there with the area overlay. The next published result set
    then picks the best matching place.
    """

    def __init__(self, store: PlacesStore, geocoder: NominatimService) -> None:
        self.store = store
        self.geocoder = geocoder
        self.selected = asyncio.Event()
        self._pending_query: Optional[str] = None
        self._unsubscribe: Optional[Callable[[], None]] = None

    def start(self) -> None:
        if self._unsubscribe is None:
            self._unsubscribe = self.store.subscribe(self._on_store_change)

    def close(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self._pending_query = None

    def __enter__(self) -> "SearchController":
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    async def submit(self, text: str) -> Optional[GeocodeFound]:
        """
        Returns the geocoded location, or None when the text is empty,
        there is no center to search near, or nothing was found.
        """
        text = (text or "").strip()
        self.selected.clear()
        self._pending_query = text or None
        self.store.set_query(text)

        center = self.store.state.center
        if not text or center is None:
            self.store.set_area(None)
            return None

        payload = await self.geocoder.geocode(
            text, bias_center=center, bias_radius_km=GEOCODE_BIAS_RADIUS_KM
        )
        if not isinstance(payload, GeocodeFound):
            logger.info("search_geocode_miss", query=text, error=payload.error)
            self.store.set_area(None)
            return None

        logger.info("search_geocoded", query=text, lat=payload.lat, lng=payload.lng, source=payload.source)
        self.store.update(
            center=(payload.lat, payload.lng),
            zoom=clamp_zoom(AREA_ZOOM),
            area=AreaOverlay(key=payload.name, bbox=payload.bbox, polygon=payload.polygon),
        )
        return payload

    def clear(self) -> None:
        self._pending_query = None
        self.store.update(query="", area=None)

    def _on_store_change(self, state: StoreState, changed: FrozenSet[str]) -> None:
        if "places" not in changed or self._pending_query is None or not state.places:
            return
        # Selecting moves the center, which starts a new search; run it after
        # the current publish has returned.
        asyncio.get_running_loop().call_soon(self._select_best)

    def _select_best(self) -> None:
        query = self._pending_query
        if query is None:
            return
        best = best_match(self.store.state.places, query)
        if best is None:
            return
        self._pending_query = None
        logger.info("search_selected", query=query, place_id=best.id)
        self.store.update(
            selected_place=best,
            center=(best.lat, best.lng),
            zoom=clamp_zoom(PLACE_ZOOM),
        )
        self.selected.set()
