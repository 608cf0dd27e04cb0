"""Time-bounded result cache.

Entries expire ``ttl_seconds`` after they were stored. When the cache is
full, expired entries are dropped first and then the oldest entries, until
there is room for the new one.
"""

from __future__ import annotations

import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Generic, Hashable, Optional, TypeVar

from pricecast.config import CACHE

V = TypeVar("V")


@dataclass
class _Entry(Generic[V]):
    value: V
    stored_at: float


class ResultCache(Generic[V]):
    def __init__(
        self,
        ttl_seconds: float = CACHE.ttl_seconds,
        max_entries: int = CACHE.max_entries,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError(f"ttl_seconds must be positive (got {ttl_seconds}).")
        if max_entries <= 0:
            raise ValueError(f"max_entries must be positive (got {max_entries}).")
        self.ttl_seconds = float(ttl_seconds)
        self.max_entries = int(max_entries)
        self._clock = clock
        self._entries: "OrderedDict[Hashable, _Entry[V]]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def _expired(self, entry: _Entry[V], now: float) -> bool:
        return now - entry.stored_at >= self.ttl_seconds

    def get(self, key: Hashable, default: Any = None) -> Optional[V]:
        entry = self._entries.get(key)
        if entry is None:
            return default
        if self._expired(entry, self._clock()):
            del self._entries[key]
            return default
        return entry.value

    def set(self, key: Hashable, value: V) -> None:
        now = self._clock()
        self._entries.pop(key, None)
        if len(self._entries) >= self.max_entries:
            self.evict_expired(now)
        while len(self._entries) >= self.max_entries:
            self._entries.popitem(last=False)
        self._entries[key] = _Entry(value=value, stored_at=now)

    def evict_expired(self, now: Optional[float] = None) -> int:
        now = self._clock() if now is None else now
        stale = [k for k, e in self._entries.items() if self._expired(e, now)]
        for k in stale:
            del self._entries[k]
        return len(stale)

    def clear(self) -> None:
        self._entries.clear()
