import math
import threading
import time
from collections.abc import Callable, Hashable
from dataclasses import dataclass
from typing import Any

from cachetools import TLRUCache

# TTL value meaning "keep until evicted"
NEVER_EXPIRES = 0

_MISSING = object()


@dataclass
class CacheEntry:
    data: Any
    ttl_seconds: float


def _time_to_use(key: Hashable, entry: CacheEntry, now: float) -> float:
    if entry.ttl_seconds is None or entry.ttl_seconds <= NEVER_EXPIRES:
        return math.inf
    return now + entry.ttl_seconds


class ResultCache:
    """
    Bounded get-or-compute cache with a time-to-live per entry.

    Thread-safe wrapper around cachetools.TLRUCache. Every entry carries its
    own TTL so one cache can hold short-lived and permanent results side by
    side. Entries may be evicted at any time once the cache is full, so
    callers must always be able to recompute a value.
    """

    def __init__(
        self,
        max_entries: int = 4096,
        default_ttl_seconds: float = NEVER_EXPIRES,
        enabled: bool = True,
        timer: Callable[[], float] = time.monotonic,
    ):
        self.default_ttl_seconds = default_ttl_seconds
        self.enabled = enabled
        self._cache = TLRUCache(maxsize=max_entries, ttu=_time_to_use, timer=timer)
        self._lock = threading.Lock()

    def get(self, key: Hashable, default: Any = None) -> Any:
        """
        Retrieve a value if cached and not expired.

        Args:
            key: The cache key to look up.
            default: Returned when the key is missing or expired.

        Returns:
            The cached value, else default.
        """
        if not self.enabled:
            return default
        with self._lock:
            entry = self._cache.get(key)
        if entry is None:
            return default
        return entry.data

    def put(self, key: Hashable, value: Any, ttl_seconds: float | None = None) -> None:
        """
        Cache a value.

        Args:
            key: The cache key.
            value: The value to store.
            ttl_seconds: Lifetime of the entry; defaults to the cache's TTL.
                NEVER_EXPIRES keeps the entry until it is evicted.
        """
        if not self.enabled:
            return
        if ttl_seconds is None:
            ttl_seconds = self.default_ttl_seconds
        with self._lock:
            self._cache[key] = CacheEntry(data=value, ttl_seconds=ttl_seconds)

    def get_or_compute(
        self,
        key: Hashable,
        compute: Callable[[], Any],
        ttl_seconds: float | None = None,
    ) -> Any:
        """
        Return the cached value for key, computing and storing it on a miss.

        The lock is not held while compute() runs, so two callers missing at
        the same time may both compute. The first stored value wins and is
        returned to both; a live entry is never overwritten here.
        """
        cached = self.get(key, _MISSING)
        if cached is not _MISSING:
            return cached

        value = compute()
        if not self.enabled:
            return value
        if ttl_seconds is None:
            ttl_seconds = self.default_ttl_seconds

        with self._lock:
            existing = self._cache.get(key)
            if existing is not None:
                return existing.data
            self._cache[key] = CacheEntry(data=value, ttl_seconds=ttl_seconds)
        return value

    def invalidate(self, key: Hashable) -> None:
        """Remove a single entry, if present."""
        with self._lock:
            self._cache.pop(key, None)

    def clear(self) -> None:
        """Drop every entry."""
        with self._lock:
            self._cache.clear()

    def __contains__(self, key: Hashable) -> bool:
        if not self.enabled:
            return False
        with self._lock:
            return key in self._cache

    def __len__(self) -> int:
        with self._lock:
            self._cache.expire()
            return len(self._cache)
