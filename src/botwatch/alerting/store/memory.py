"""
In-memory alert store.

Manifesto:
    Tests and single-process development need the whole pipeline without a
    database. This store keeps plain dicts and lists behind a lock and
    returns copies, so callers can never mutate stored state by accident.

Tags:
    botwatch, alerting, store, in-memory, testing
"""

from __future__ import annotations

import threading
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Any

from botwatch.alerting.models import (
    AlertEvent,
    AlertLevel,
    AlertRule,
    AlertStatus,
    DedupRecord,
    Notification,
    NotificationStatus,
    Recipient,
)

__all__ = ["InMemoryAlertStore"]


class InMemoryAlertStore:
    """Dict-backed :class:`~botwatch.alerting.store.protocol.AlertStore`."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._rules: dict[str, AlertRule] = {}
        self._recipients: dict[str, Recipient] = {}
        self._events: dict[str, AlertEvent] = {}
        self._dedup: dict[str, DedupRecord] = {}
        self._notifications: list[Notification] = []

    # -- configuration seeding -------------------------------------------------

    def add_rule(self, rule: AlertRule) -> None:
        with self._lock:
            self._rules[rule.id] = rule

    def add_recipient(self, recipient: Recipient) -> None:
        with self._lock:
            self._recipients[recipient.id] = recipient

    # -- rules / recipients ----------------------------------------------------

    def list_enabled_rules(self) -> list[AlertRule]:
        with self._lock:
            return [rule for rule in self._rules.values() if rule.enabled]

    def get_rule(self, rule_id: str) -> AlertRule | None:
        with self._lock:
            return self._rules.get(rule_id)

    def find_recipients(self, subject_id: str, level: AlertLevel) -> list[Recipient]:
        with self._lock:
            return [r for r in self._recipients.values() if r.matches(subject_id, level)]

    # -- alert events ----------------------------------------------------------

    def create_alert_event(self, event: AlertEvent) -> None:
        with self._lock:
            if event.id in self._events:
                raise KeyError(f"Duplicate alert id: {event.id}")
            self._events[event.id] = replace(event, metadata=dict(event.metadata))

    def get_alert_event(self, alert_id: str) -> AlertEvent | None:
        with self._lock:
            event = self._events.get(alert_id)
            return replace(event) if event else None

    def save_alert_event(self, event: AlertEvent, *, expected_status: AlertStatus | None = None) -> bool:
        with self._lock:
            current = self._events.get(event.id)
            if current is None:
                raise KeyError(f"Unknown alert id: {event.id}")
            if expected_status is not None and current.status is not expected_status:
                return False
            self._events[event.id] = replace(event)
            return True

    # -- dedup records ---------------------------------------------------------

    def get_dedup_record(self, dedup_key: str) -> DedupRecord | None:
        with self._lock:
            record = self._dedup.get(dedup_key)
            return replace(record) if record else None

    def insert_dedup_record(self, record: DedupRecord) -> DedupRecord:
        with self._lock:
            if record.dedup_key in self._dedup:
                return self._touch(self._dedup[record.dedup_key], record.last_trigger_time)
            self._dedup[record.dedup_key] = replace(record)
            return replace(record)

    def touch_dedup_record(self, dedup_key: str, now: datetime) -> DedupRecord | None:
        with self._lock:
            record = self._dedup.get(dedup_key)
            return self._touch(record, now) if record is not None else None

    @staticmethod
    def _touch(record: DedupRecord, now: datetime) -> DedupRecord:
        record.trigger_count += 1
        record.last_trigger_time = max(record.last_trigger_time, now)
        record.status = "active"
        return replace(record)

    def delete_expired_dedup_records(self, now: datetime) -> int:
        with self._lock:
            expired = [
                key
                for key, record in self._dedup.items()
                if record.last_trigger_time < now - timedelta(seconds=2 * record.cooldown_period)
            ]
            for key in expired:
                del self._dedup[key]
            return len(expired)

    def dedup_stats(self) -> dict[str, Any]:
        with self._lock:
            records = list(self._dedup.values())
        total = len(records)
        return {
            "total_count": total,
            "active_count": sum(1 for r in records if r.status == "active"),
            "avg_trigger_count": (sum(r.trigger_count for r in records) / total) if total else 0.0,
        }

    # -- notifications ---------------------------------------------------------

    def add_notification(self, notification: Notification) -> None:
        with self._lock:
            self._notifications.append(replace(notification))

    def count_sent_notifications(
        self,
        *,
        recipient_id: str | None = None,
        rule_id: str | None = None,
        since: datetime | None = None,
        exclude_closed_alerts: bool = False,
    ) -> int:
        with self._lock:
            count = 0
            for n in self._notifications:
                if n.status is not NotificationStatus.SENT:
                    continue
                if recipient_id is not None and n.recipient_id != recipient_id:
                    continue
                if rule_id is not None and n.rule_id != rule_id:
                    continue
                if since is not None and n.created_at < since:
                    continue
                if exclude_closed_alerts:
                    event = self._events.get(n.alert_id)
                    if event is not None and event.status is AlertStatus.CLOSED:
                        continue
                count += 1
            return count

    def list_notifications(self, alert_id: str) -> list[Notification]:
        with self._lock:
            return [replace(n) for n in self._notifications if n.alert_id == alert_id]

    def notification_stats(self, minute_cutoff: datetime, hour_cutoff: datetime) -> dict[str, Any]:
        with self._lock:
            notifications = list(self._notifications)
        return {
            "total_notifications": len(notifications),
            "last_minute_count": sum(1 for n in notifications if n.created_at >= minute_cutoff),
            "last_hour_count": sum(1 for n in notifications if n.created_at >= hour_cutoff),
            "success_count": sum(1 for n in notifications if n.status is NotificationStatus.SENT),
            "failure_count": sum(1 for n in notifications if n.status is NotificationStatus.FAILED),
        }
