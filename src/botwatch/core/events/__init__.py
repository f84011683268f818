"""Live-update event model and bus protocol.

Dashboards want to hear about new, acknowledged and closed alerts as they
happen. The pipeline publishes ``Event`` objects to an ``EventBus``; any
number of subscribers each drain their own bounded queue. Publishing is
best-effort: a slow or absent subscriber never blocks the publisher or the
other subscribers.

Usage::

    from botwatch.core.events import Event
    from botwatch.core.events.memory import InMemoryEventBus

    bus = InMemoryEventBus(queue_size=100)
    sub = await bus.subscribe("alert*")

    await bus.publish(Event(event_type="alert", source="trigger", payload={...}))
    event = await sub.get()

Modules
-------
memory      InMemoryEventBus -- per-subscriber bounded queues, drop-oldest
"""

from __future__ import annotations

import uuid
from fnmatch import fnmatchcase
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from botwatch.core.timestamps import utc_now

__all__ = [
    "Event",
    "EventBus",
    "ALERT",
    "ALERT_ACKNOWLEDGED",
    "ALERT_CLOSED",
]

# Event types published by the alerting pipeline
ALERT = "alert"
ALERT_ACKNOWLEDGED = "alert_acknowledged"
ALERT_CLOSED = "alert_closed"


@dataclass(frozen=True)
class Event:
    """Immutable live-update payload.

    Attributes:
        event_type: ``alert``, ``alert_acknowledged`` or ``alert_closed``
        source: Origin component
        payload: Event-specific data
        timestamp: When the event occurred (UTC)
        event_id: Unique event identifier
    """

    event_type: str
    source: str
    payload: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=utc_now)
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def matches(self, pattern: str) -> bool:
        """Shell-style match of the event type, e.g. ``alert*``."""
        return fnmatchcase(self.event_type, pattern)

    def to_dict(self) -> dict[str, Any]:
        """Wire shape pushed to dashboards: ``{type, data}`` plus metadata."""
        return {
            "type": self.event_type,
            "data": self.payload,
            "source": self.source,
            "timestamp": self.timestamp.isoformat(),
            "event_id": self.event_id,
        }


@runtime_checkable
class EventBus(Protocol):
    """Protocol for live-update fan-out."""

    async def publish(self, event: Event) -> None:
        """Deliver to every matching subscriber without waiting on any of them."""
        ...

    async def subscribe(self, pattern: str = "*") -> Any:
        """Register a subscriber and return its subscription handle."""
        ...

    async def unsubscribe(self, subscription_id: str) -> None:
        """Remove a subscription."""
        ...

    async def close(self) -> None:
        """Stop accepting events and drop all subscriptions."""
        ...
