"""
Tests for SearchController (geocode on submit, area overlay, best-match selection).
"""

from __future__ import annotations

import asyncio

import httpx
import pytest

from localfinder.services.fetch_coordinator import CoordinatorConfig, FetchCoordinator, SearchServices
from localfinder.services.nominatim_service import NominatimService
from localfinder.services.places_store import AreaOverlay, PlacesStore
from localfinder.services.request_deduper import RequestDeduper
from localfinder.services.result_cache import ResultCache
from localfinder.services.search_controller import SearchController, best_match
from tests.fixtures import JHB, FakeProvider, make_place, make_settings, ok

SANDTON = {
    "lat": "-26.1076",
    "lon": "28.0567",
    "display_name": "Sandton, Johannesburg, South Africa",
    "boundingbox": ["-26.15", "-26.05", "28.00", "28.10"],
}

BEAN_THERE = make_place("node/1", name="Bean There", lat=-26.20, lng=28.04)
FATHER = make_place("node/2", name="Father Coffee", lat=-26.19, lng=28.03)


def _geocoder(seen: list, body=None) -> NominatimService:
    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=[SANDTON] if body is None else body)

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return NominatimService(settings=make_settings(), client=client)


def test_best_match_prefers_query_hit():
    assert best_match([BEAN_THERE, FATHER], "father") == FATHER
    assert best_match([BEAN_THERE, FATHER], "spur") == BEAN_THERE
    assert best_match([], "father") is None


@pytest.mark.asyncio
async def test_submit_geocodes_then_selects_best_place():
    seen = []
    store = PlacesStore()
    store.update(center=JHB, radius=1200, category="coffee")
    provider = FakeProvider(default=ok(BEAN_THERE, FATHER))
    coordinator = FetchCoordinator(
        store,
        provider,
        SearchServices(cache=ResultCache(), deduper=RequestDeduper()),
        CoordinatorConfig(debounce_s=0.05, min_loading_s=0.01),
    )

    async with coordinator:
        await coordinator.wait_settled()
        with SearchController(store, _geocoder(seen)) as controller:
            found = await controller.submit("  Father Coffee ")

            assert found is not None
            assert store.state.query == "Father Coffee"
            assert store.state.center == (-26.1076, 28.0567)
            assert store.state.zoom == 16
            assert store.state.area == AreaOverlay(
                key="Sandton, Johannesburg, South Africa",
                bbox=(-26.15, 28.0, -26.05, 28.1),
            )

            await asyncio.wait_for(controller.selected.wait(), timeout=1)
            await coordinator.wait_settled()

    params = seen[0].url.params
    assert params["q"] == "Father Coffee"
    assert (params["lat"], params["lon"]) == (str(JHB[0]), str(JHB[1]))
    assert store.state.selected_place == FATHER
    assert store.state.center == (FATHER.lat, FATHER.lng)
    assert store.state.zoom == 17


@pytest.mark.asyncio
async def test_submit_not_found_clears_area():
    seen = []
    store = PlacesStore()
    store.update(center=JHB, area=AreaOverlay(key="Old area"))
    controller = SearchController(store, _geocoder(seen, body=[]))

    assert await controller.submit("Atlantis") is None
    assert len(seen) == 1
    assert store.state.area is None
    assert store.state.query == "Atlantis"
    assert store.state.center == JHB


@pytest.mark.asyncio
async def test_empty_submit_does_not_geocode():
    seen = []
    store = PlacesStore()
    store.update(center=JHB, query="spur", area=AreaOverlay(key="Old area"))
    controller = SearchController(store, _geocoder(seen))

    assert await controller.submit("   ") is None
    assert seen == []
    assert store.state.query == ""
    assert store.state.area is None


@pytest.mark.asyncio
async def test_submit_without_center_does_not_geocode():
    seen = []
    store = PlacesStore()
    controller = SearchController(store, _geocoder(seen))

    assert await controller.submit("Sandton") is None
    assert seen == []
    assert store.state.query == "Sandton"


@pytest.mark.asyncio
async def test_published_places_select_only_once():
    store = PlacesStore()
    store.update(center=JHB)
    with SearchController(store, _geocoder([], body=[])) as controller:
        await controller.submit("father")
        store.set_places([BEAN_THERE, FATHER])
        await asyncio.wait_for(controller.selected.wait(), timeout=1)
        store.set_places([BEAN_THERE])
        await asyncio.sleep(0)

    assert store.state.selected_place == FATHER


@pytest.mark.asyncio
async def test_clear_drops_query_area_and_pending_selection():
    store = PlacesStore()
    store.update(center=JHB)
    with SearchController(store, _geocoder([])) as controller:
        await controller.submit("Sandton")
        controller.clear()
        store.set_places([BEAN_THERE])
        await asyncio.sleep(0)

    assert store.state.query == ""
    assert store.state.area is None
    assert store.state.selected_place is None
    assert not controller.selected.is_set()
