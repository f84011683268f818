"""
In-memory live-update bus.

Each subscriber owns a bounded ``asyncio.Queue``. ``publish`` only ever calls
``put_nowait``; when a subscriber's queue is full the oldest pending event is
dropped to make room, so a stalled dashboard loses history instead of
holding up the pipeline.

Tags:
    botwatch, events, in-memory, asyncio, fan-out, drop-oldest
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import AsyncIterator
from dataclasses import dataclass, field

from botwatch.core.events import Event
from botwatch.core.logging import get_logger

__all__ = ["InMemoryEventBus", "Subscription"]

logger = get_logger(__name__)


@dataclass
class Subscription:
    """A subscriber's handle: its pattern, queue and drop counter."""

    id: str
    pattern: str
    queue: asyncio.Queue[Event]
    dropped: int = field(default=0)

    def offer(self, event: Event) -> None:
        """Enqueue without blocking, evicting the oldest event when full."""
        while True:
            try:
                self.queue.put_nowait(event)
                return
            except asyncio.QueueFull:
                try:
                    self.queue.get_nowait()
                    self.dropped += 1
                except asyncio.QueueEmpty:
                    pass

    async def get(self) -> Event:
        """Wait for the next event."""
        return await self.queue.get()

    def get_nowait(self) -> Event:
        return self.queue.get_nowait()

    def pending(self) -> int:
        return self.queue.qsize()

    async def __aiter__(self) -> AsyncIterator[Event]:
        while True:
            yield await self.queue.get()


class InMemoryEventBus:
    """In-process fan-out bus for single-node deployments.

    Example::

        bus = InMemoryEventBus(queue_size=10)
        sub = await bus.subscribe("alert*")
        await bus.publish(Event(event_type="alert", source="trigger"))
        assert sub.get_nowait().event_type == "alert"
    """

    def __init__(self, queue_size: int = 100) -> None:
        self._queue_size = queue_size
        self._subscriptions: dict[str, Subscription] = {}
        self._closed = False

    async def publish(self, event: Event) -> None:
        """Offer an event to every matching subscriber."""
        if self._closed:
            return

        for sub in list(self._subscriptions.values()):
            if not event.matches(sub.pattern):
                continue
            before = sub.dropped
            sub.offer(event)
            if sub.dropped != before:
                logger.warning(
                    "live_update_dropped",
                    subscription_id=sub.id,
                    event_type=event.event_type,
                    dropped_total=sub.dropped,
                )

    async def subscribe(self, pattern: str = "*") -> Subscription:
        """Subscribe to events matching a pattern (``*``, ``alert*``, exact)."""
        sub = Subscription(
            id=f"sub_{uuid.uuid4().hex[:12]}",
            pattern=pattern,
            queue=asyncio.Queue(maxsize=self._queue_size),
        )
        self._subscriptions[sub.id] = sub
        logger.info("live_update_subscribed", subscription_id=sub.id, total=len(self._subscriptions))
        return sub

    async def unsubscribe(self, subscription_id: str) -> None:
        """Remove a subscription."""
        if self._subscriptions.pop(subscription_id, None) is not None:
            logger.info(
                "live_update_unsubscribed",
                subscription_id=subscription_id,
                total=len(self._subscriptions),
            )

    async def close(self) -> None:
        """Mark bus as closed and clear subscriptions."""
        self._closed = True
        self._subscriptions.clear()

    @property
    def subscription_count(self) -> int:
        """Number of active subscriptions."""
        return len(self._subscriptions)
