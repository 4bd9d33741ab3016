# -*- coding: utf-8 -*-
"""
FetchCoordinator - keeps the published place list in step with the view
- Observes center/radius/category/query on the PlacesStore
- Debounces input bursts (drag, zoom, typing) before fetching
- Serves fresh cache entries immediately, revalidating in the background
- De-duplicates concurrent upstream calls through the shared RequestDeduper
- Widens sparse text searches via the RadiusEscalator
- Last request started wins: a generation counter gates every publish

States: IDLE (no valid center) -> DEBOUNCING -> FETCHING -> SETTLED.
Any input change cancels the active attempt and restarts the debounce.
"""

from __future__ import annotations

import asyncio
import itertools
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Optional, Set, Tuple

from localfinder.core.config import Settings, get_settings
from localfinder.core.logging import get_logger
from localfinder.core.request_id import with_search_id
from localfinder.models.places import Place
from localfinder.models.results import ErrorKind, FetchErr, FetchOk, FetchResult
from localfinder.services.geo_key import (
    compute_geo_key,
    is_valid_center,
    normalize_query,
    normalize_radius,
    request_key,
)
from localfinder.services.places_store import SEARCH_INPUTS, PlacesStore, StoreState
from localfinder.services.providers import PlacesProvider
from localfinder.services.radius_escalator import RadiusEscalator
from localfinder.services.request_deduper import RequestDeduper
from localfinder.services.result_cache import ResultCache

logger = get_logger()

_instance_ids = itertools.count(1)


class CoordinatorState(str, Enum):
    IDLE = "idle"
    DEBOUNCING = "debouncing"
    FETCHING = "fetching"
    SETTLED = "settled"


@dataclass(frozen=True)
class CoordinatorConfig:
    debounce_s: float = 0.3
    min_loading_s: float = 0.25
    cache_ttl_s: float = 120.0
    swr_gap_s: float = 30.0
    recent_window_s: float = 5.0
    escalator: RadiusEscalator = field(default_factory=RadiusEscalator)

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "CoordinatorConfig":
        s = settings or get_settings()
        return cls(
            debounce_s=s.SEARCH_DEBOUNCE_S,
            min_loading_s=s.SEARCH_MIN_LOADING_S,
            cache_ttl_s=s.SEARCH_CACHE_TTL_S,
            swr_gap_s=s.SEARCH_SWR_GAP_S,
            recent_window_s=s.SEARCH_RECENT_WINDOW_S,
            escalator=RadiusEscalator.from_settings(s),
        )


@dataclass
class SearchServices:
    """
    Cache and in-flight registry shared by every coordinator of one
    application instance (map and sidebar share one cache).
    """

    cache: ResultCache
    deduper: RequestDeduper[FetchResult]

    @classmethod
    def create(cls, settings: Optional[Settings] = None) -> "SearchServices":
        s = settings or get_settings()
        return cls(
            cache=ResultCache(max_entries=s.SEARCH_CACHE_MAX_ENTRIES),
            deduper=RequestDeduper(),
        )


@dataclass(frozen=True)
class SearchInputs:
    center: Optional[Tuple[float, float]]
    radius: int
    category: str
    query: str

    @classmethod
    def from_state(cls, state: StoreState) -> "SearchInputs":
        return cls(
            center=state.center,
            radius=state.radius,
            category=state.category,
            query=state.query,
        )


class FetchCoordinator:
    def __init__(
        self,
        store: PlacesStore,
        provider: PlacesProvider,
        services: SearchServices,
        config: Optional[CoordinatorConfig] = None,
    ) -> None:
        self.store = store
        self.provider = provider
        self.services = services
        self.config = config or CoordinatorConfig()
        self.state = CoordinatorState.IDLE
        self.generation = 0
        self.publish_count = 0
        self.name = f"coord{next(_instance_ids)}"

        self._inputs: Optional[SearchInputs] = None
        self._active: Optional[asyncio.Task] = None
        self._loading_tasks: Set[asyncio.Task] = set()
        self._loading_since = 0.0
        self._unsubscribe = None

    # ------------------------------------------------------------------ lifecycle

    def start(self) -> None:
        """Subscribe to the store and evaluate the current inputs once."""
        if self._unsubscribe is None:
            self._unsubscribe = self.store.subscribe(self._on_store_change)
        self.notify()

    async def aclose(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self._cancel_active()
        pending = [t for t in [self._active, *self._loading_tasks] if t is not None and not t.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._active = None

    async def __aenter__(self) -> "FetchCoordinator":
        self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    async def wait_settled(self) -> None:
        """Wait until the latest attempt and its loading indicator are done."""
        while True:
            task = self._active
            if task is not None and not task.done():
                await asyncio.wait({task})
                continue
            pending = {t for t in self._loading_tasks if not t.done()}
            if pending:
                await asyncio.wait(pending)
                continue
            return

    # ------------------------------------------------------------------ transitions

    def _on_store_change(self, _state: StoreState, changed: Iterable[str]) -> None:
        if SEARCH_INPUTS.intersection(changed):
            self.notify()

    def notify(self) -> None:
        """
        Re-evaluate the store inputs. Must run inside the event loop.
        """
        inputs = SearchInputs.from_state(self.store.state)
        if inputs == self._inputs:
            return
        self._inputs = inputs
        self._cancel_active()
        self.generation += 1
        generation = self.generation

        if not is_valid_center(inputs.center):
            self.state = CoordinatorState.IDLE
            self.store.set_loading(False)
            logger.debug("search_idle", coordinator=self.name, generation=generation)
            return

        self.state = CoordinatorState.DEBOUNCING
        task = asyncio.get_running_loop().create_task(self._run(generation, inputs))
        task.add_done_callback(self._on_attempt_done)
        self._active = task

    def _cancel_active(self) -> None:
        task = self._active
        if task is not None and not task.done():
            task.cancel()
            logger.debug("search_superseded", coordinator=self.name, generation=self.generation)

    def _on_attempt_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is None:
            return
        logger.error(
            "search_attempt_crashed",
            coordinator=self.name,
            error=str(exc),
            error_type=type(exc).__name__,
        )
        if task is self._active:
            self.store.update(loading=False, error="Failed to load places")
            self.state = CoordinatorState.SETTLED

    def _is_current(self, generation: int) -> bool:
        return generation == self.generation

    # ------------------------------------------------------------------ attempt

    async def _run(self, generation: int, inputs: SearchInputs) -> None:
        with with_search_id(f"{self.name}-{generation}"):
            await asyncio.sleep(self.config.debounce_s)
            await self._fetch(generation, inputs)

    async def _fetch(self, generation: int, inputs: SearchInputs) -> None:
        self.state = CoordinatorState.FETCHING
        key = compute_geo_key(inputs.center, inputs.radius, inputs.category, inputs.query)
        if key is None:  # guarded by notify(); kept for direct callers
            self.state = CoordinatorState.IDLE
            return

        escalator = self.config.escalator
        cache = self.services.cache
        has_query = escalator.has_query(inputs.query)
        base_radius = normalize_radius(inputs.radius)

        self._begin_loading()
        entry = cache.get(key)
        if entry is not None and cache.is_fresh(entry, self.config.cache_ttl_s):
            self._publish(generation, escalator.filter_places(entry.places, inputs.query), source="cache")
            self._end_loading(generation)
            self.state = CoordinatorState.SETTLED
            if cache.needs_revalidate(key, self.config.swr_gap_s):
                cache.mark_revalidated(key)
                logger.debug("search_revalidate_started", key=key)
                await self._load(generation, inputs, key, base_radius, has_query, background=True)
            return

        try:
            await self._load(generation, inputs, key, base_radius, has_query, background=False)
        finally:
            self._end_loading(generation)
        if self._is_current(generation):
            self.state = CoordinatorState.SETTLED

    async def _load(
        self,
        generation: int,
        inputs: SearchInputs,
        key: str,
        base_radius: int,
        has_query: bool,
        *,
        background: bool,
    ) -> None:
        escalator = self.config.escalator
        effective = escalator.escalate(base_radius, has_query)

        result = await self._fetch_dedupe(key, inputs, effective)
        if isinstance(result, FetchErr):
            if background:
                logger.warning("search_revalidate_failed", key=key, kind=result.kind.value, detail=result.detail)
            else:
                self._publish_failure(generation, inputs, key, result)
            return

        places = list(result.places)
        if has_query:
            matches = escalator.filter_places(places, inputs.query)
            wider = escalator.widened_radius(effective)
            if escalator.should_widen(len(matches)) and wider > effective:
                logger.info("search_widening", key=key, matches=len(matches), radius=effective, widened_radius=wider)
                more = await self._fetch_dedupe(key, inputs, wider)
                if isinstance(more, FetchOk):
                    places = escalator.merge(places, more.places)
                else:
                    logger.warning("search_widen_failed", key=key, kind=more.kind.value, detail=more.detail)

        if not self._is_current(generation):
            logger.debug("search_result_discarded", key=key, generation=generation)
            return

        self.services.cache.put(key, places)
        self._publish(
            generation,
            escalator.filter_places(places, inputs.query),
            source="revalidate" if background else "network",
        )
        self.services.cache.mark_served(request_key(key, effective))

    async def _fetch_dedupe(self, key: str, inputs: SearchInputs, radius: int) -> FetchResult:
        cache = self.services.cache
        rkey = request_key(key, radius)
        cached = cache.get(key)
        if cached is not None and cache.recently_served(rkey, self.config.recent_window_s):
            logger.debug("search_recently_served", request_key=rkey)
            return FetchOk(places=cached.places)

        return await self.services.deduper.run(
            rkey, lambda: self._call_provider(inputs, normalize_radius(radius))
        )

    async def _call_provider(self, inputs: SearchInputs, radius: int) -> FetchResult:
        lat, lng = inputs.center  # type: ignore[misc]
        query = normalize_query(inputs.query) or None
        try:
            return await self.provider.fetch_places(
                lat=lat,
                lng=lng,
                radius=radius,
                category=inputs.category or "all",
                query=query,
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(
                "search_provider_exception",
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )
            return FetchErr(ErrorKind.UPSTREAM_UNAVAILABLE, str(e) or type(e).__name__)

    # ------------------------------------------------------------------ publishing

    def _publish(self, generation: int, places: Iterable[Place], *, source: str) -> bool:
        if not self._is_current(generation):
            return False
        published = tuple(places)
        self.store.update(places=published, error=None)
        self.publish_count += 1
        logger.info("search_published", coordinator=self.name, count=len(published), source=source)
        return True

    def _publish_failure(self, generation: int, inputs: SearchInputs, key: str, err: FetchErr) -> None:
        if not self._is_current(generation):
            return
        entry = self.services.cache.get(key)
        last_known = self.config.escalator.filter_places(entry.places, inputs.query) if entry else []
        self.store.update(places=tuple(last_known), error=err.message)
        logger.warning(
            "search_failed",
            coordinator=self.name,
            kind=err.kind.value,
            detail=err.detail,
            last_known=len(last_known),
        )

    def _begin_loading(self) -> None:
        self._loading_since = asyncio.get_running_loop().time()
        self.store.update(loading=True, error=None)

    def _end_loading(self, generation: int) -> None:
        loop = asyncio.get_running_loop()
        delay = max(0.0, self.config.min_loading_s - (loop.time() - self._loading_since))
        task = loop.create_task(self._loading_off(generation, delay))
        self._loading_tasks.add(task)
        task.add_done_callback(self._loading_tasks.discard)

    async def _loading_off(self, generation: int, delay: float) -> None:
        if delay > 0:
            await asyncio.sleep(delay)
        if self._is_current(generation):
            self.store.set_loading(False)
