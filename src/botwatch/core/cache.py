"""
Bounded in-process cache with per-entry TTL.

The dedup gate keeps recently seen dedup records here so a burst of
candidates for the same key does not hit the store each time. The store
stays authoritative; entries expire after a short TTL and are dropped
whenever a write to the store fails.

    CacheBackend (Protocol)
    └── InMemoryCache  -- single process, LRU bound, TTL, hit/miss counters

Tags:
    cache, in-memory, ttl, lru, botwatch
"""

from __future__ import annotations

import threading
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol

__all__ = ["CacheBackend", "CacheStats", "InMemoryCache"]


class CacheBackend(Protocol):
    """What the dedup gate needs from a cache."""

    def get(self, key: str) -> Any | None:
        """Cached value, or ``None`` if missing or expired."""
        ...

    def set(self, key: str, value: Any, *, ttl_seconds: int | None = None) -> None:
        ...

    def delete(self, key: str) -> None:
        ...

    def evict_expired(self) -> int:
        """Drop expired entries and return how many were dropped."""
        ...

    def size(self) -> int:
        ...


@dataclass(frozen=True)
class CacheStats:
    size: int
    max_size: int
    hits: int
    misses: int

    @property
    def hit_ratio(self) -> float:
        lookups = self.hits + self.misses
        return self.hits / lookups if lookups else 0.0


class InMemoryCache:
    """LRU-bounded dict with expiry timestamps.

    Expired entries are removed lazily on lookup and in bulk by
    :meth:`evict_expired`. ``timer`` returns seconds and is injectable so the
    cache can follow a fake clock.

    Example:
        cache = InMemoryCache(max_size=500, default_ttl_seconds=30)
        cache.set("r1|bot1|u1|robot_status", record)
        record = cache.get("r1|bot1|u1|robot_status")
    """

    def __init__(
        self,
        *,
        max_size: int = 10_000,
        default_ttl_seconds: int | None = 3600,
        timer: Callable[[], float] = time.time,
    ):
        if max_size <= 0:
            raise ValueError("max_size must be positive")
        self._entries: OrderedDict[str, tuple[Any, float | None]] = OrderedDict()
        self._lock = threading.Lock()
        self._max_size = max_size
        self._default_ttl = default_ttl_seconds
        self._timer = timer
        self._hits = 0
        self._misses = 0

    def _is_stale(self, expires_at: float | None, now: float) -> bool:
        return expires_at is not None and now > expires_at

    def get(self, key: str) -> Any | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and self._is_stale(entry[1], self._timer()):
                del self._entries[key]
                entry = None
            if entry is None:
                self._misses += 1
                return None
            self._hits += 1
            self._entries.move_to_end(key)
            return entry[0]

    def set(self, key: str, value: Any, *, ttl_seconds: int | None = None) -> None:
        """Store ``value``; ``ttl_seconds=None`` falls back to the default TTL."""
        ttl = self._default_ttl if ttl_seconds is None else ttl_seconds
        expires_at = self._timer() + ttl if ttl else None
        with self._lock:
            self._entries[key] = (value, expires_at)
            self._entries.move_to_end(key)
            while len(self._entries) > self._max_size:
                self._entries.popitem(last=False)

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def exists(self, key: str) -> bool:
        with self._lock:
            entry = self._entries.get(key)
            return entry is not None and not self._is_stale(entry[1], self._timer())

    def evict_expired(self) -> int:
        now = self._timer()
        with self._lock:
            stale = [key for key, (_, expires_at) in self._entries.items() if self._is_stale(expires_at, now)]
            for key in stale:
                del self._entries[key]
        return len(stale)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def size(self) -> int:
        return len(self._entries)

    def stats(self) -> CacheStats:
        with self._lock:
            return CacheStats(size=len(self._entries), max_size=self._max_size, hits=self._hits, misses=self._misses)
