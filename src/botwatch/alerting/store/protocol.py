"""AlertStore protocol.

The pipeline's only view of persistence. Two implementations ship:
:class:`~botwatch.alerting.store.memory.InMemoryAlertStore` for tests and
single-process development, and
:class:`~botwatch.alerting.store.sql.SqlAlertStore` over SQLAlchemy.

Implementations raise on structural failure (store unreachable); the
services decide whether that fails open or propagates.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from botwatch.alerting.models import (
    AlertEvent,
    AlertLevel,
    AlertStatus,
    AlertRule,
    DedupRecord,
    Notification,
    Recipient,
)


@runtime_checkable
class AlertStore(Protocol):
    """Persistence for rules, recipients, alert events, dedup records and notifications."""

    # -- rules / recipients (read-only here) -----------------------------------

    def list_enabled_rules(self) -> list[AlertRule]:
        ...

    def get_rule(self, rule_id: str) -> AlertRule | None:
        ...

    def find_recipients(self, subject_id: str, level: AlertLevel) -> list[Recipient]:
        """Enabled recipients scoped to *subject_id* and subscribed to *level*."""
        ...

    # -- alert events ----------------------------------------------------------

    def create_alert_event(self, event: AlertEvent) -> None:
        ...

    def get_alert_event(self, alert_id: str) -> AlertEvent | None:
        ...

    def save_alert_event(self, event: AlertEvent, *, expected_status: AlertStatus | None = None) -> bool:
        """Persist status, acknowledgement and closure fields.

        With ``expected_status`` the write only happens while the stored row
        is still in that status; returns False when it was not.
        """
        ...

    # -- dedup records ---------------------------------------------------------

    def get_dedup_record(self, dedup_key: str) -> DedupRecord | None:
        ...

    def insert_dedup_record(self, record: DedupRecord) -> DedupRecord:
        """Insert a new record; falls back to :meth:`touch_dedup_record` if the key exists."""
        ...

    def touch_dedup_record(self, dedup_key: str, now: datetime) -> DedupRecord | None:
        """Increment trigger_count, advance last_trigger_time (never backwards), mark active."""
        ...

    def delete_expired_dedup_records(self, now: datetime) -> int:
        """Delete records whose last trigger is older than twice their cooldown."""
        ...

    def dedup_stats(self) -> dict[str, Any]:
        ...

    # -- notifications ---------------------------------------------------------

    def add_notification(self, notification: Notification) -> None:
        ...

    def count_sent_notifications(
        self,
        *,
        recipient_id: str | None = None,
        rule_id: str | None = None,
        since: datetime | None = None,
        exclude_closed_alerts: bool = False,
    ) -> int:
        """Count notifications with status ``sent`` matching every given filter."""
        ...

    def list_notifications(self, alert_id: str) -> list[Notification]:
        ...

    def notification_stats(self, minute_cutoff: datetime, hour_cutoff: datetime) -> dict[str, Any]:
        ...
