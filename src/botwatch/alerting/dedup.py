"""
Cooldown-based deduplication of candidate alerts.

A dedup key identifies one ``(rule, subject, recipient, event kind)``
combination. A candidate is a duplicate while the key's last trigger is
younger than the key's cooldown period (strict ``<``: exactly at the
boundary it fires again).

Lookups go through a short-TTL in-process cache and fall back to the store.
The store is the source of truth. The cache TTL must stay below the
shortest cooldown.

Concurrency:
    ``check_duplicate`` and ``record_trigger`` for one key must not
    interleave with another dispatch for the same key. Callers hold
    ``DedupGate.lock(...)`` around check, send and record.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, replace
from typing import Any

from botwatch.alerting.models import DedupRecord, DuplicateCheck
from botwatch.alerting.store.protocol import AlertStore
from botwatch.core.cache import InMemoryCache
from botwatch.core.logging import get_logger
from botwatch.core.timestamps import Clock, utc_now

logger = get_logger(__name__)

__all__ = ["DedupGate", "KeyedLock", "dedup_key"]


def dedup_key(rule_id: str, subject_id: str, recipient_id: str, event_kind: str) -> str:
    """Deterministic key for one (rule, subject, recipient, kind) tuple."""
    return f"{rule_id}|{subject_id}|{recipient_id}|{event_kind}"


@dataclass
class _LockEntry:
    lock: asyncio.Lock
    refs: int = 0


class KeyedLock:
    """One ``asyncio.Lock`` per key, dropped when nobody holds or waits on it."""

    def __init__(self) -> None:
        self._entries: dict[str, _LockEntry] = {}

    @asynccontextmanager
    async def acquire(self, key: str) -> AsyncIterator[None]:
        entry = self._entries.get(key)
        if entry is None:
            entry = self._entries[key] = _LockEntry(asyncio.Lock())
        entry.refs += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.refs -= 1
            if entry.refs == 0:
                del self._entries[key]

    def __len__(self) -> int:
        return len(self._entries)


class DedupGate:
    """
    Suppresses repeats of the same alert to the same recipient within a cooldown.

    Fails open: any error while checking returns "not a duplicate".
    """

    def __init__(
        self,
        store: AlertStore,
        *,
        cache: InMemoryCache | None = None,
        cache_ttl_seconds: int = 30,
        cache_max_size: int = 10_000,
        default_cooldown_seconds: int = 300,
        clock: Clock = utc_now,
    ):
        self._store = store
        self._clock = clock
        self._cache_ttl = cache_ttl_seconds
        self._cache = cache if cache is not None else InMemoryCache(
            max_size=cache_max_size,
            default_ttl_seconds=cache_ttl_seconds,
            timer=lambda: clock().timestamp(),
        )
        self._locks = KeyedLock()
        self.default_cooldown_seconds = default_cooldown_seconds

    def lock(self, rule_id: str, subject_id: str, recipient_id: str, event_kind: str):
        """Async context manager serializing dispatches for one dedup key."""
        return self._locks.acquire(dedup_key(rule_id, subject_id, recipient_id, event_kind))

    def _lookup(self, key: str) -> DedupRecord | None:
        cached = self._cache.get(key)
        if cached is not None:
            return replace(cached)

        record = self._store.get_dedup_record(key)
        if record is not None:
            self._cache.set(key, replace(record), ttl_seconds=self._cache_ttl)
        return record

    def check_duplicate(
        self,
        rule_id: str,
        subject_id: str,
        recipient_id: str,
        event_kind: str,
    ) -> DuplicateCheck:
        key = dedup_key(rule_id, subject_id, recipient_id, event_kind)
        try:
            record = self._lookup(key)
        except Exception as e:
            logger.warning("dedup_check_failed", dedup_key=key, error=str(e))
            return DuplicateCheck(is_duplicate=False)

        if record is None:
            return DuplicateCheck(is_duplicate=False)

        elapsed = (self._clock() - record.last_trigger_time).total_seconds()
        is_duplicate = elapsed < record.cooldown_period
        if is_duplicate:
            logger.debug(
                "dedup_suppressed",
                dedup_key=key,
                elapsed_seconds=elapsed,
                cooldown_seconds=record.cooldown_period,
            )
        return DuplicateCheck(is_duplicate=is_duplicate, record=record)

    def record_trigger(
        self,
        rule_id: str,
        subject_id: str,
        recipient_id: str,
        event_kind: str,
        cooldown_period: int | None = None,
    ) -> DedupRecord | None:
        """Upsert the key's record after a successful send.

        Returns the stored record, or ``None`` if the store failed (logged).
        """
        key = dedup_key(rule_id, subject_id, recipient_id, event_kind)
        now = self._clock()
        try:
            record = self._store.touch_dedup_record(key, now)
            if record is None:
                record = self._store.insert_dedup_record(
                    DedupRecord(
                        dedup_key=key,
                        rule_id=rule_id,
                        subject_id=subject_id,
                        recipient_id=recipient_id,
                        event_kind=event_kind,
                        first_trigger_time=now,
                        last_trigger_time=now,
                        trigger_count=1,
                        cooldown_period=cooldown_period or self.default_cooldown_seconds,
                    )
                )
        except Exception as e:
            self._cache.delete(key)
            logger.warning("dedup_record_failed", dedup_key=key, error=str(e))
            return None

        self._cache.set(key, replace(record), ttl_seconds=self._cache_ttl)
        return record

    def clean_expired(self) -> int:
        """Delete records idle for more than twice their cooldown; evict stale cache entries."""
        deleted = self._store.delete_expired_dedup_records(self._clock())
        evicted = self._cache.evict_expired()
        logger.info("dedup_cleaned", deleted=deleted, cache_evicted=evicted)
        return deleted

    def get_stats(self) -> dict[str, Any]:
        cache = self._cache.stats()
        try:
            stats = self._store.dedup_stats()
        except Exception as e:
            logger.warning("dedup_stats_failed", error=str(e))
            stats = {"total_count": 0, "active_count": 0, "avg_trigger_count": 0.0}
        return {
            **stats,
            "cache_size": cache.size,
            "cache_hits": cache.hits,
            "cache_misses": cache.misses,
        }
