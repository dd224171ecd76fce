"""Bounded in-memory cache with lazy expiry and sentinel values."""

import time
from collections import OrderedDict
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Generic, Optional, TypeVar, Union

V = TypeVar("V")

EVICTION_TARGET_RATIO = 0.8


class CacheSentinel(str, Enum):
    """Short-lived markers for lookups that came back empty or failed."""

    EMPTY = "empty"
    ERROR = "error"


@dataclass
class CacheEntry(Generic[V]):
    value: Union[V, CacheSentinel]
    expires_at: float


class TTLCache(Generic[V]):
    """String-keyed cache bounded by ``max_entries``.

    Entries expire lazily on read. The bound is enforced on ``set`` of a new
    key: expired entries go first, then the oldest insertions until the cache
    sits at 80% of ``max_entries``. Sentinels use ``sentinel_ttl_seconds`` so a
    failing upstream is not hammered while good answers keep their full TTL.
    """

    def __init__(
        self,
        ttl_seconds: float,
        max_entries: int,
        *,
        sentinel_ttl_seconds: Optional[float] = None,
        sweep_interval_seconds: float = 600.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_entries < 1:
            raise ValueError("max_entries must be positive")
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self.sentinel_ttl_seconds = ttl_seconds if sentinel_ttl_seconds is None else sentinel_ttl_seconds
        self.sweep_interval_seconds = sweep_interval_seconds
        self._clock = clock
        self._entries: "OrderedDict[str, CacheEntry[V]]" = OrderedDict()
        self._last_sweep = clock()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None

    def get(self, key: str) -> Union[V, CacheSentinel, None]:
        self._maybe_sweep()
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() >= entry.expires_at:
            del self._entries[key]
            return None
        return entry.value

    def set(self, key: str, value: V) -> None:
        self._store(key, value, self.ttl_seconds)

    def set_sentinel(self, key: str, sentinel: CacheSentinel) -> None:
        self._store(key, sentinel, self.sentinel_ttl_seconds)

    def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        self._entries.clear()

    def sweep(self) -> int:
        """Drop every expired entry. Returns how many were removed."""
        now = self._clock()
        self._last_sweep = now
        expired = [key for key, entry in self._entries.items() if now >= entry.expires_at]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def _store(self, key: str, value: Union[V, CacheSentinel], ttl: float) -> None:
        # Assigning an existing key keeps its first-insertion position for eviction
        if key not in self._entries and len(self._entries) >= self.max_entries:
            self._evict()
        self._entries[key] = CacheEntry(value=value, expires_at=self._clock() + ttl)

    def _evict(self) -> None:
        self.sweep()
        target = int(self.max_entries * EVICTION_TARGET_RATIO)
        while self._entries and len(self._entries) > target:
            self._entries.popitem(last=False)

    def _maybe_sweep(self) -> None:
        if self._clock() - self._last_sweep >= self.sweep_interval_seconds:
            self.sweep()
