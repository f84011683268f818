"""Asyncio tick backend.

┌──────────────────────────────────────────────────────────────────────────────┐
│  ASYNCIO BACKEND                                                              │
│                                                                               │
│   start()                                                                     │
│      │                                                                        │
│      ▼                                                                        │
│   ┌─────────────────────────────────────────────────────────┐                 │
│   │              loop task                                  │                 │
│   │                                                         │                 │
│   │   while True:                                           │                 │
│   │       tick_count += 1                                   │                 │
│   │       spawn task(tick_callback())   ◄── not awaited     │                 │
│   │       wait(stop_event, interval)                        │                 │
│   └─────────────────────────────────────────────────────────┘                 │
│                                                                               │
│   stop()                                                                      │
│      stop_event.set(); await loop task; await in-flight ticks                 │
└──────────────────────────────────────────────────────────────────────────────┘

Ticks are fired on a fixed cadence and are NOT awaited by the loop, so an
overrunning tick never delays the next one. Deciding whether to skip an
overlapping tick is the callback owner's job.
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Any

from botwatch.core.logging import get_logger
from botwatch.core.timestamps import utc_now

from .protocol import BackendHealth, TickCallback

logger = get_logger(__name__)


class AsyncioTickBackend:
    """Fixed-interval tick backend running in the current event loop.

    Example:
        >>> backend = AsyncioTickBackend(name="rule-engine")
        >>> await backend.start(engine.tick, interval_seconds=60)
        >>> # ... later ...
        >>> await backend.stop()
    """

    def __init__(self, name: str = "asyncio") -> None:
        self.name = name
        self._stop_event: asyncio.Event | None = None
        self._loop_task: asyncio.Task[None] | None = None
        self._in_flight: set[asyncio.Task[Any]] = set()
        self._tick_count = 0
        self._failed_ticks = 0
        self._last_tick: datetime | None = None
        self._interval: float = 60.0

    async def start(
        self,
        tick_callback: TickCallback,
        interval_seconds: float = 60.0,
    ) -> None:
        """Start ticking; the first tick fires immediately.

        Args:
            tick_callback: Async function to call on each tick.
            interval_seconds: Tick period.
        """
        if self.is_running:
            logger.warning("scheduler_backend_already_started", backend=self.name)
            return

        self._interval = interval_seconds
        self._stop_event = asyncio.Event()
        self._loop_task = asyncio.create_task(
            self._loop(tick_callback, interval_seconds, self._stop_event),
            name=f"{self.name}-ticker",
        )
        logger.info("scheduler_backend_started", backend=self.name, interval_seconds=interval_seconds)

    async def _loop(
        self,
        tick_callback: TickCallback,
        interval_seconds: float,
        stop_event: asyncio.Event,
    ) -> None:
        while not stop_event.is_set():
            self._tick_count += 1
            self._last_tick = utc_now()

            task = asyncio.create_task(self._run_tick(tick_callback))
            self._in_flight.add(task)
            task.add_done_callback(self._in_flight.discard)

            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval_seconds)
            except asyncio.TimeoutError:
                continue

    async def _run_tick(self, tick_callback: TickCallback) -> None:
        try:
            await tick_callback()
        except Exception as e:
            self._failed_ticks += 1
            logger.exception("scheduler_tick_failed", backend=self.name, error=str(e))

    async def stop(self) -> None:
        """Stop ticking. In-flight ticks are allowed to finish."""
        if self._loop_task is None:
            return

        assert self._stop_event is not None
        self._stop_event.set()
        await self._loop_task
        self._loop_task = None

        if self._in_flight:
            await asyncio.gather(*list(self._in_flight), return_exceptions=True)

        logger.info("scheduler_backend_stopped", backend=self.name, tick_count=self._tick_count)

    def get_health(self) -> BackendHealth:
        """Return structured health status."""
        return BackendHealth(
            healthy=self.is_running,
            backend=self.name,
            tick_count=self._tick_count,
            failed_ticks=self._failed_ticks,
            last_tick=self._last_tick,
            extra={
                "interval_seconds": self._interval,
                "in_flight": len(self._in_flight),
            },
        )

    @property
    def is_running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    @property
    def tick_count(self) -> int:
        return self._tick_count

    @property
    def last_tick(self) -> datetime | None:
        return self._last_tick
