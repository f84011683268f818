"""
Clock and identifier helpers.

Every service takes a :data:`Clock` so tests can pin "now". Rows the pipeline
writes are keyed by ULIDs, which sort by creation time; ids generated within
the same millisecond by this process still sort in generation order.

Tags:
    timestamps, ulid, utc, clock, botwatch
"""

from __future__ import annotations

import secrets
import threading
import time
from collections.abc import Callable
from datetime import UTC, datetime

Clock = Callable[[], datetime]

# Crockford base32, as used by ULID
_ALPHABET = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"
_RANDOM_BITS = 80

_ulid_lock = threading.Lock()
_last_ms = -1
_last_random = 0


def utc_now() -> datetime:
    """Timezone-aware current time in UTC."""
    return datetime.now(UTC)


def ensure_utc(dt: datetime) -> datetime:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on round-trip)."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def _base32(value: int, length: int) -> str:
    chars = []
    for _ in range(length):
        value, index = divmod(value, 32)
        chars.append(_ALPHABET[index])
    return "".join(reversed(chars))


def generate_ulid() -> str:
    """26-character ULID: 48-bit millisecond time, 80-bit monotonic random part."""
    global _last_ms, _last_random

    with _ulid_lock:
        now_ms = time.time_ns() // 1_000_000
        if now_ms <= _last_ms:
            now_ms = _last_ms
            _last_random = (_last_random + 1) % (1 << _RANDOM_BITS)
        else:
            _last_ms = now_ms
            _last_random = secrets.randbits(_RANDOM_BITS)
        return _base32(now_ms, 10) + _base32(_last_random, 16)


def to_iso8601(dt: datetime | None) -> str | None:
    return dt.isoformat() if dt is not None else None


def from_iso8601(s: str | None) -> datetime | None:
    """Parse an ISO 8601 string; naive values are taken as UTC."""
    if s is None:
        return None
    return ensure_utc(datetime.fromisoformat(s))
