"""Scheduler backend protocol.

Backends control WHEN ticks happen; the services that own them (RuleEngine,
dedup maintenance) control WHAT happens on each tick. A backend never
retries, queues or inspects a tick: it calls the callback and keeps time.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

TickCallback = Callable[[], Awaitable[None]]


@runtime_checkable
class SchedulerBackend(Protocol):
    """Protocol for pluggable tick backends.

    Implementations:
        - AsyncioTickBackend: runs inside the caller's event loop (default)
    """

    name: str

    async def start(
        self,
        tick_callback: TickCallback,
        interval_seconds: float = 60.0,
    ) -> None:
        """Start ticking. The first tick fires immediately."""
        ...

    async def stop(self) -> None:
        """Stop ticking, letting an in-flight tick finish."""
        ...

    def get_health(self) -> BackendHealth:
        """Return backend health status."""
        ...


@dataclass
class BackendHealth:
    """Point-in-time view of a backend, flattened by ``to_dict`` for status output."""

    healthy: bool
    backend: str
    tick_count: int = 0
    failed_ticks: int = 0
    last_tick: datetime | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "healthy": self.healthy,
            "backend": self.backend,
            "tick_count": self.tick_count,
            "failed_ticks": self.failed_ticks,
            "last_tick": self.last_tick.isoformat() if self.last_tick else None,
            **self.extra,
        }
