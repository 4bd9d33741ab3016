"""
Tests for FetchCoordinator (debounce, cache, de-duplication, widening, cancellation).

Timing values are scaled down (10 ms debounce, 20 ms minimum spinner) so the
suite runs fast; the production values come from Settings.
"""

from __future__ import annotations

import asyncio
from typing import List, Optional, Tuple

import pytest

from localfinder.services.fetch_coordinator import (
    CoordinatorConfig,
    CoordinatorState,
    FetchCoordinator,
    SearchServices,
)
from localfinder.services.geo_key import compute_geo_key
from localfinder.services.places_store import PlacesStore, StoreState
from localfinder.services.radius_escalator import RadiusEscalator
from localfinder.services.request_deduper import RequestDeduper
from localfinder.services.result_cache import ResultCache
from tests.fixtures import JHB, FakeProvider, make_place, make_settings, ok, upstream_error

DEBOUNCE_S = 0.01
MIN_LOADING_S = 0.02


def make_services() -> SearchServices:
    return SearchServices(cache=ResultCache(), deduper=RequestDeduper())


def make_coordinator(
    provider: FakeProvider,
    *,
    store: Optional[PlacesStore] = None,
    services: Optional[SearchServices] = None,
    escalator: Optional[RadiusEscalator] = None,
    **config,
) -> Tuple[PlacesStore, FetchCoordinator]:
    store = store or PlacesStore()
    cfg = CoordinatorConfig(
        debounce_s=config.pop("debounce_s", DEBOUNCE_S),
        min_loading_s=config.pop("min_loading_s", MIN_LOADING_S),
        escalator=escalator or RadiusEscalator(),
        **config,
    )
    return store, FetchCoordinator(store, provider, services or make_services(), cfg)


def record(store: PlacesStore, field: str) -> List[Tuple[float, object]]:
    """(loop time, value) for every change of one store field."""
    loop = asyncio.get_running_loop()
    seen: List[Tuple[float, object]] = []

    def _listener(state: StoreState, changed) -> None:
        if field in changed:
            seen.append((loop.time(), getattr(state, field)))

    store.subscribe(_listener)
    return seen


async def wait_for_calls(provider: FakeProvider, n: int) -> None:
    async def _poll() -> None:
        while provider.call_count < n:
            await asyncio.sleep(0.001)

    await asyncio.wait_for(_poll(), timeout=1)


@pytest.mark.asyncio
async def test_single_search_publishes_once():
    """Coffee around Johannesburg: one network call, one publish, spinner >= minimum."""
    places = [make_place(f"node/{i}", name=f"Cafe {i}") for i in range(3)]
    provider = FakeProvider(default=ok(*places))
    store, coordinator = make_coordinator(provider)
    published = record(store, "places")
    loading = record(store, "loading")
    store.update(center=JHB, radius=1200, category="coffee")

    async with coordinator:
        await coordinator.wait_settled()

    assert provider.call_count == 1
    assert provider.calls[0] == {
        "lat": JHB[0], "lng": JHB[1], "radius": 1200, "category": "coffee", "query": None,
    }
    assert coordinator.publish_count == 1
    assert len(published) == 1
    assert [p.id for p in store.state.places] == ["node/0", "node/1", "node/2"]
    assert store.state.error is None
    assert not store.state.loading
    assert coordinator.state is CoordinatorState.SETTLED

    (on_at, on), (off_at, off) = loading
    assert on is True and off is False
    assert off_at - on_at >= MIN_LOADING_S - 0.005


@pytest.mark.asyncio
async def test_same_key_twice_within_window_skips_network():
    """A second view of the same search within 5 s is served from cache."""
    provider = FakeProvider(default=ok(make_place()))
    services = make_services()
    map_store, map_view = make_coordinator(provider, services=services)
    list_store, list_view = make_coordinator(provider, services=services)
    for store in (map_store, list_store):
        store.update(center=JHB, radius=1200, category="coffee")

    async with map_view:
        await map_view.wait_settled()
    async with list_view:
        await list_view.wait_settled()

    assert provider.call_count == 1
    assert [p.id for p in list_store.state.places] == ["node/1"]
    assert list_view.publish_count >= 1


@pytest.mark.asyncio
async def test_returning_to_cached_search_skips_network():
    provider = FakeProvider(default=ok(make_place()))
    store, coordinator = make_coordinator(provider)
    store.update(center=JHB, radius=1200, category="coffee")

    async with coordinator:
        await coordinator.wait_settled()
        store.set_category("bar")
        await coordinator.wait_settled()
        store.set_category("coffee")
        await coordinator.wait_settled()

    assert [c["category"] for c in provider.calls] == ["coffee", "bar"]
    assert [p.id for p in store.state.places] == ["node/1"]


@pytest.mark.asyncio
async def test_concurrent_coordinators_share_one_request():
    gate = asyncio.Event()
    provider = FakeProvider(default=ok(make_place()), gate=gate)
    services = make_services()
    store_a, coord_a = make_coordinator(provider, services=services)
    store_b, coord_b = make_coordinator(provider, services=services)
    for store in (store_a, store_b):
        store.update(center=JHB, radius=1200, category="coffee")

    async with coord_a, coord_b:
        await wait_for_calls(provider, 1)
        await asyncio.sleep(DEBOUNCE_S * 3)
        gate.set()
        await asyncio.gather(coord_a.wait_settled(), coord_b.wait_settled())

    assert provider.call_count == 1
    assert services.deduper.producer_calls == 1
    assert store_a.state.places == store_b.state.places != ()


@pytest.mark.asyncio
async def test_upstream_failure_sets_error_and_clears_loading():
    """HTTP 500 from the provider: error published, places empty, loading off."""
    provider = FakeProvider(default=upstream_error("HTTP 500"))
    store, coordinator = make_coordinator(provider)
    store.update(center=JHB, radius=1200, category="coffee")

    async with coordinator:
        await coordinator.wait_settled()

    assert store.state.error
    assert "HTTP 500" in store.state.error
    assert store.state.places == ()
    assert not store.state.loading


@pytest.mark.asyncio
async def test_failure_keeps_last_known_places():
    provider = FakeProvider(default=ok(make_place("node/7")))
    # never fresh and never suppressed: every attempt goes to the provider
    store, coordinator = make_coordinator(provider, cache_ttl_s=0, recent_window_s=0)
    store.update(center=JHB, radius=1200, category="coffee")

    async with coordinator:
        await coordinator.wait_settled()
        provider.default = upstream_error()
        store.set_category("bar")
        await coordinator.wait_settled()
        assert store.state.places == ()
        store.set_category("coffee")
        await coordinator.wait_settled()

    assert provider.call_count == 3
    assert store.state.error
    assert [p.id for p in store.state.places] == ["node/7"]
    assert not store.state.loading


@pytest.mark.asyncio
async def test_provider_exception_becomes_error():
    provider = FakeProvider(responses={1200: RuntimeError("boom")})
    store, coordinator = make_coordinator(provider)
    store.update(center=JHB, radius=1200, category="coffee")

    async with coordinator:
        await coordinator.wait_settled()

    assert store.state.error == "Places service unavailable: boom"
    assert not store.state.loading


@pytest.mark.asyncio
async def test_sparse_query_widens_and_merges():
    """"spur" with two matches at 1200 m: a 2400 m fetch follows and results merge by id."""
    near = [
        make_place("node/1", name="Spur Rosebank"),
        make_place("node/2", name="Spur Killarney"),
        make_place("node/9", name="Wimpy"),
    ]
    far = [
        make_place("node/1", name="Spur Rosebank (far copy)"),
        make_place("node/3", name="Spur Sandton"),
        make_place("node/4", name="Spur Fourways"),
    ]
    provider = FakeProvider(responses={1200: ok(*near), 2400: ok(*far)})
    services = make_services()
    store, coordinator = make_coordinator(
        provider, services=services, escalator=RadiusEscalator(query_min_radius_m=0)
    )
    store.update(center=JHB, radius=1200, category="restaurant", query="spur")

    async with coordinator:
        await coordinator.wait_settled()

    assert provider.radii() == [1200, 2400]
    assert provider.calls[0]["query"] == "spur"
    assert [p.id for p in store.state.places] == ["node/1", "node/2", "node/3", "node/4"]
    assert store.state.places[0].name == "Spur Rosebank"

    key = compute_geo_key(JHB, 1200, "restaurant", "spur")
    cached = services.cache.get(key)
    assert {p.id for p in cached.places} == {"node/1", "node/2", "node/3", "node/4", "node/9"}


@pytest.mark.asyncio
async def test_query_raises_radius_to_minimum_before_widening():
    provider = FakeProvider(default=ok())
    store, coordinator = make_coordinator(provider)
    store.update(center=JHB, radius=1200, category="restaurant", query="spur")

    async with coordinator:
        await coordinator.wait_settled()

    assert provider.radii() == [6000, 12000]


@pytest.mark.asyncio
async def test_enough_matches_do_not_widen():
    places = [make_place(f"node/{i}", name=f"Spur {i}") for i in range(5)]
    provider = FakeProvider(default=ok(*places))
    store, coordinator = make_coordinator(provider, escalator=RadiusEscalator(query_min_radius_m=0))
    store.update(center=JHB, radius=1200, category="restaurant", query="spur")

    async with coordinator:
        await coordinator.wait_settled()

    assert provider.radii() == [1200]
    assert len(store.state.places) == 5


@pytest.mark.asyncio
async def test_widen_failure_keeps_first_results():
    provider = FakeProvider(
        responses={1200: ok(make_place("node/1", name="Spur")), 2400: upstream_error()}
    )
    store, coordinator = make_coordinator(provider, escalator=RadiusEscalator(query_min_radius_m=0))
    store.update(center=JHB, radius=1200, category="restaurant", query="spur")

    async with coordinator:
        await coordinator.wait_settled()

    assert [p.id for p in store.state.places] == ["node/1"]
    assert store.state.error is None


@pytest.mark.asyncio
async def test_last_input_wins_and_cancellation_is_silent():
    gate = asyncio.Event()
    provider = FakeProvider(
        responses={1200: ok(make_place("node/old")), 2000: ok(make_place("node/new"))},
        gate=gate,
    )
    store, coordinator = make_coordinator(provider)
    errors = record(store, "error")
    store.update(center=JHB, radius=1200, category="coffee")

    async with coordinator:
        await wait_for_calls(provider, 1)
        store.set_radius(2000)
        await wait_for_calls(provider, 2)
        gate.set()
        await coordinator.wait_settled()

    assert provider.radii() == [1200, 2000]
    assert provider.cancelled == 1
    assert [p.id for p in store.state.places] == ["node/new"]
    assert coordinator.publish_count == 1
    assert store.state.error is None
    assert all(value is None for _, value in errors)
    assert not store.state.loading


@pytest.mark.asyncio
async def test_older_request_resolving_last_is_ignored():
    """B resolves before A; A finishing later must not overwrite B."""
    gates = {1200: asyncio.Event(), 2000: asyncio.Event()}
    provider = FakeProvider(
        responses={1200: ok(make_place("node/r1200")), 2000: ok(make_place("node/r2000"))},
        gates=gates,
    )
    services = make_services()
    store, coordinator = make_coordinator(provider, services=services)
    other_store, other = make_coordinator(provider, services=services)
    for s in (store, other_store):
        s.update(center=JHB, radius=1200, category="coffee")

    async with coordinator, other:
        await wait_for_calls(provider, 1)
        await asyncio.sleep(DEBOUNCE_S * 3)
        store.set_radius(2000)
        await wait_for_calls(provider, 2)

        gates[2000].set()
        await coordinator.wait_settled()
        assert [p.id for p in store.state.places] == ["node/r2000"]
        assert other_store.state.places == ()

        gates[1200].set()
        await other.wait_settled()

    assert provider.radii() == [1200, 2000]
    assert provider.cancelled == 0
    assert [p.id for p in store.state.places] == ["node/r2000"]
    assert [p.id for p in other_store.state.places] == ["node/r1200"]
    assert coordinator.publish_count == 1


@pytest.mark.asyncio
async def test_input_burst_is_debounced():
    provider = FakeProvider(default=ok())
    store, coordinator = make_coordinator(provider, debounce_s=0.05)
    store.update(center=JHB, radius=1200, category="coffee")

    async with coordinator:
        for radius in (1300, 1400, 1500):
            store.set_radius(radius)
            await asyncio.sleep(0.005)
        await coordinator.wait_settled()

    assert provider.radii() == [1500]


@pytest.mark.asyncio
async def test_no_center_stays_idle():
    provider = FakeProvider()
    store, coordinator = make_coordinator(provider)

    async with coordinator:
        await coordinator.wait_settled()
        assert coordinator.state is CoordinatorState.IDLE
        store.set_center((200.0, 10.0))
        await coordinator.wait_settled()
        assert coordinator.state is CoordinatorState.IDLE

    assert provider.call_count == 0
    assert not store.state.loading


@pytest.mark.asyncio
async def test_unrelated_store_changes_do_not_refetch():
    provider = FakeProvider(default=ok(make_place()))
    store, coordinator = make_coordinator(provider)
    store.update(center=JHB, radius=1200, category="coffee")

    async with coordinator:
        await coordinator.wait_settled()
        generation = coordinator.generation
        store.set_zoom(16)
        store.set_selected_place(store.state.places[0])
        await coordinator.wait_settled()

    assert coordinator.generation == generation
    assert provider.call_count == 1


@pytest.mark.asyncio
async def test_fresh_cache_revalidates_in_background():
    services = make_services()
    key = compute_geo_key(JHB, 1200, "coffee", "")
    services.cache.put(key, [make_place("node/stale", name="Old Cafe")])
    provider = FakeProvider(default=ok(make_place("node/fresh", name="New Cafe")))
    store, coordinator = make_coordinator(provider, services=services)
    published = record(store, "places")
    store.update(center=JHB, radius=1200, category="coffee")

    async with coordinator:
        await coordinator.wait_settled()

    assert [[p.id for p in value] for _, value in published] == [["node/stale"], ["node/fresh"]]
    assert provider.call_count == 1
    assert not services.cache.needs_revalidate(key, 30)


@pytest.mark.asyncio
async def test_revalidation_within_gap_is_skipped():
    services = make_services()
    key = compute_geo_key(JHB, 1200, "coffee", "")
    services.cache.put(key, [make_place("node/cached")])
    services.cache.mark_revalidated(key)
    provider = FakeProvider(default=ok(make_place("node/fresh")))
    store, coordinator = make_coordinator(provider, services=services)
    store.update(center=JHB, radius=1200, category="coffee")

    async with coordinator:
        await coordinator.wait_settled()

    assert provider.call_count == 0
    assert [p.id for p in store.state.places] == ["node/cached"]


@pytest.mark.asyncio
async def test_background_revalidation_failure_is_quiet():
    services = make_services()
    key = compute_geo_key(JHB, 1200, "coffee", "")
    services.cache.put(key, [make_place("node/cached")])
    provider = FakeProvider(default=upstream_error())
    store, coordinator = make_coordinator(provider, services=services)
    store.update(center=JHB, radius=1200, category="coffee")

    async with coordinator:
        await coordinator.wait_settled()

    assert provider.call_count == 1
    assert [p.id for p in store.state.places] == ["node/cached"]
    assert store.state.error is None


def test_config_from_settings():
    settings = make_settings(
        SEARCH_DEBOUNCE_S=1.0,
        SEARCH_CACHE_TTL_S=60,
        QUERY_MIN_RADIUS_M=4000,
        SEARCH_CACHE_MAX_ENTRIES=10,
    )
    cfg = CoordinatorConfig.from_settings(settings)
    assert cfg.debounce_s == 0.35  # clamped to the 250-350 ms window
    assert cfg.cache_ttl_s == 60
    assert cfg.escalator.query_min_radius_m == 4000
    assert SearchServices.create(settings).cache.max_entries == 10
