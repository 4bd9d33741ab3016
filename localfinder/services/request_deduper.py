from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Generic, TypeVar

from localfinder.core.logging import get_logger

logger = get_logger()

T = TypeVar("T")


@dataclass
class _InFlight(Generic[T]):
    task: "asyncio.Task[T]"
    waiters: int = 0


class RequestDeduper(Generic[T]):
    """
    In-flight registry: concurrent callers for the same key share one task.

    The registry entry is dropped from the task's done callback. That callback
    is registered before anyone awaits the task, so it always runs before any
    waiter resumes and a call made after settlement starts a fresh fetch.
    """

    def __init__(self) -> None:
        self._in_flight: Dict[str, _InFlight[T]] = {}
        self.producer_calls = 0

    def __len__(self) -> int:
        return len(self._in_flight)

    def in_flight(self, key: str) -> bool:
        return key in self._in_flight

    def _evict(self, key: str, task: "asyncio.Task[T]") -> None:
        entry = self._in_flight.get(key)
        if entry is not None and entry.task is task:
            del self._in_flight[key]

    async def run(self, key: str, producer: Callable[[], Awaitable[T]]) -> T:
        entry = self._in_flight.get(key)
        if entry is None:
            self.producer_calls += 1
            task = asyncio.ensure_future(producer())
            entry = _InFlight(task=task)
            self._in_flight[key] = entry
            task.add_done_callback(lambda t, k=key: self._evict(k, t))
            logger.debug("dedupe_started", key=key)
        else:
            logger.debug("dedupe_joined", key=key, waiters=entry.waiters)

        entry.waiters += 1
        try:
            return await asyncio.shield(entry.task)
        except asyncio.CancelledError:
            # Last waiter gone: nobody wants the answer any more.
            if entry.waiters == 1 and not entry.task.done():
                self._evict(key, entry.task)
                entry.task.cancel()
                logger.debug("dedupe_cancelled", key=key)
            raise
        finally:
            entry.waiters -= 1
