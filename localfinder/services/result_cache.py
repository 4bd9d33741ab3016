from __future__ import annotations

import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, Optional, Tuple

from localfinder.models.places import Place

DEFAULT_TTL_S = 120.0
DEFAULT_SWR_GAP_S = 30.0
DEFAULT_RECENT_WINDOW_S = 5.0

Clock = Callable[[], float]


@dataclass(frozen=True, slots=True)
class CacheEntry:
    key: str
    # when the places were fetched, not when the entry was last read
    timestamp: float
    places: Tuple[Place, ...]


class ResultCache:
    """
    GeoKey -> CacheEntry map with stale-while-revalidate bookkeeping.

    Stale entries are still returned by get(); callers decide with
    is_fresh() whether to serve them directly. Revalidation triggers and
    served-request completions are tracked separately from entry timestamps.

    max_entries bounds the map (least recently used entry goes first);
    None keeps every entry for the lifetime of the cache.
    """

    def __init__(self, *, max_entries: Optional[int] = None, clock: Clock = time.monotonic) -> None:
        if max_entries is not None and max_entries < 1:
            raise ValueError("max_entries must be >= 1 or None")
        self.max_entries = max_entries
        self._clock = clock
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._revalidated_at: Dict[str, float] = {}
        self._served_at: Dict[str, float] = {}

    def now(self) -> float:
        return self._clock()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def get(self, key: str) -> Optional[CacheEntry]:
        entry = self._entries.get(key)
        if entry is not None:
            self._entries.move_to_end(key)
        return entry

    def put(self, key: str, places: Iterable[Place]) -> CacheEntry:
        entry = CacheEntry(key=key, timestamp=self.now(), places=tuple(places))
        self._entries[key] = entry
        self._entries.move_to_end(key)
        self._enforce_bound()
        return entry

    def is_fresh(self, entry: CacheEntry, ttl: float = DEFAULT_TTL_S) -> bool:
        return self.now() - entry.timestamp < ttl

    def needs_revalidate(self, key: str, swr_gap: float = DEFAULT_SWR_GAP_S) -> bool:
        last = self._revalidated_at.get(key)
        if last is None:
            return True
        return self.now() - last >= swr_gap

    def mark_revalidated(self, key: str) -> None:
        self._revalidated_at[key] = self.now()

    def recently_served(self, request_key: str, window: float = DEFAULT_RECENT_WINDOW_S) -> bool:
        last = self._served_at.get(request_key)
        if last is None:
            return False
        return self.now() - last < window

    def mark_served(self, request_key: str) -> None:
        self._served_at[request_key] = self.now()

    def clear(self) -> None:
        self._entries.clear()
        self._revalidated_at.clear()
        self._served_at.clear()

    def _enforce_bound(self) -> None:
        if self.max_entries is None:
            return
        while len(self._entries) > self.max_entries:
            evicted, _ = self._entries.popitem(last=False)
            self._revalidated_at.pop(evicted, None)
            prefix = f"{evicted}::"
            for request_key in [k for k in self._served_at if k.startswith(prefix)]:
                del self._served_at[request_key]
