"""
Alert lifecycle state machine.

::

    pending        -> sent | no_recipients | acknowledged | closed
    sent           -> acknowledged | closed
    no_recipients  -> closed
    acknowledged   -> closed

``closed`` is terminal. ``acknowledged`` may be skipped. Every transition
returns a new ``AlertEvent``; persisting it is the caller's job.
"""

from __future__ import annotations

import math
from dataclasses import replace
from datetime import datetime

from botwatch.alerting.models import AlertEvent, AlertStatus
from botwatch.core.errors import InvalidTransitionError
from botwatch.core.timestamps import Clock, utc_now

__all__ = ["AlertLifecycle", "ALLOWED_TRANSITIONS", "can_transition", "resolved_duration"]

ALLOWED_TRANSITIONS: dict[AlertStatus, frozenset[AlertStatus]] = {
    AlertStatus.PENDING: frozenset(
        {AlertStatus.SENT, AlertStatus.NO_RECIPIENTS, AlertStatus.ACKNOWLEDGED, AlertStatus.CLOSED}
    ),
    AlertStatus.SENT: frozenset({AlertStatus.ACKNOWLEDGED, AlertStatus.CLOSED}),
    AlertStatus.NO_RECIPIENTS: frozenset({AlertStatus.CLOSED}),
    AlertStatus.ACKNOWLEDGED: frozenset({AlertStatus.CLOSED}),
    AlertStatus.CLOSED: frozenset(),
}


def can_transition(current: AlertStatus, target: AlertStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def resolved_duration(created_at: datetime, closed_at: datetime) -> int:
    """Whole seconds from creation to close, never negative."""
    return max(0, math.floor((closed_at - created_at).total_seconds()))


class AlertLifecycle:
    """Applies lifecycle transitions to alert events."""

    def __init__(self, clock: Clock = utc_now):
        self._clock = clock

    def _move(self, event: AlertEvent, target: AlertStatus, **changes) -> AlertEvent:
        if not can_transition(event.status, target):
            raise InvalidTransitionError(event.id, event.status.value, target.value)
        return replace(event, status=target, **changes)

    def mark_sent(self, event: AlertEvent) -> AlertEvent:
        return self._move(event, AlertStatus.SENT)

    def mark_no_recipients(self, event: AlertEvent) -> AlertEvent:
        return self._move(event, AlertStatus.NO_RECIPIENTS)

    def acknowledge(self, event: AlertEvent, user_id: str) -> AlertEvent:
        return self._move(
            event,
            AlertStatus.ACKNOWLEDGED,
            acknowledged_at=self._clock(),
            acknowledged_by=user_id,
        )

    def close(self, event: AlertEvent, user_id: str) -> AlertEvent:
        closed_at = self._clock()
        return self._move(
            event,
            AlertStatus.CLOSED,
            closed_at=closed_at,
            closed_by=user_id,
            resolved_duration=resolved_duration(event.created_at, closed_at),
        )
