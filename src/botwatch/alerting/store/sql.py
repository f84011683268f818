"""SQLAlchemy-backed alert store.

Every public method runs in its own short transaction. Dedup upserts are
race-safe across processes: the trigger-count increment is a single
``UPDATE ... SET trigger_count = trigger_count + 1`` and a losing
concurrent ``INSERT`` on the unique ``dedup_key`` falls back to that
update.

Tags:
    botwatch, alerting, store, sqlalchemy, repository
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import case, delete, func, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from botwatch.alerting.models import (
    AlertEvent,
    AlertLevel,
    AlertRule,
    AlertStatus,
    DedupRecord,
    Notification,
    NotificationStatus,
    Recipient,
    RuleKind,
)
from botwatch.core.orm.base import BotwatchBase
from botwatch.core.orm.session import botwatch_session_factory
from botwatch.core.orm.tables import (
    AlertDedupRecordTable,
    AlertEventTable,
    AlertNotificationTable,
    AlertRecipientTable,
    AlertRuleTable,
)
from botwatch.core.timestamps import ensure_utc, generate_ulid

__all__ = ["SqlAlertStore"]


def _opt_utc(value: datetime | None) -> datetime | None:
    return ensure_utc(value) if value is not None else None


def _rule_from_row(row: AlertRuleTable) -> AlertRule:
    return AlertRule(
        id=row.id,
        rule_name=row.rule_name,
        rule_kind=RuleKind(row.rule_kind),
        threshold=row.threshold,
        alert_level=AlertLevel(row.alert_level),
        max_notify_count=row.max_notify_count,
        cooldown_seconds=row.cooldown_seconds,
        enabled=bool(row.is_enabled),
    )


def _recipient_from_row(row: AlertRecipientTable) -> Recipient:
    return Recipient(
        id=row.id,
        name=row.name,
        enabled=bool(row.enabled),
        robot_ids=frozenset(row.robot_ids or ()),
        alert_levels=frozenset(AlertLevel(level) for level in (row.alert_levels or ())),
    )


def _event_from_row(row: AlertEventTable) -> AlertEvent:
    return AlertEvent(
        id=row.id,
        rule_id=row.rule_id,
        rule_name=row.rule_name,
        event_kind=row.event_kind,
        subject_id=row.subject_id,
        level=AlertLevel(row.level),
        message=row.message,
        status=AlertStatus(row.status),
        created_at=ensure_utc(row.created_at),
        metadata=dict(row.metadata_json or {}),
        acknowledged_at=_opt_utc(row.acknowledged_at),
        acknowledged_by=row.acknowledged_by,
        closed_at=_opt_utc(row.closed_at),
        closed_by=row.closed_by,
        resolved_duration=row.resolved_duration,
    )


def _dedup_from_row(row: AlertDedupRecordTable) -> DedupRecord:
    return DedupRecord(
        dedup_key=row.dedup_key,
        rule_id=row.rule_id,
        subject_id=row.subject_id,
        recipient_id=row.recipient_id,
        event_kind=row.event_kind,
        first_trigger_time=ensure_utc(row.first_trigger_time),
        last_trigger_time=ensure_utc(row.last_trigger_time),
        trigger_count=row.trigger_count,
        cooldown_period=row.cooldown_period,
        status=row.status,
    )


def _notification_from_row(row: AlertNotificationTable) -> Notification:
    return Notification(
        id=row.id,
        alert_id=row.alert_id,
        recipient_id=row.recipient_id,
        rule_id=row.rule_id,
        status=NotificationStatus(row.status),
        created_at=ensure_utc(row.created_at),
        method=row.method,
        delivery_command_id=row.delivery_command_id,
        reason=row.reason,
        error_message=row.error_message,
        sent_at=_opt_utc(row.sent_at),
    )


class SqlAlertStore:
    """:class:`~botwatch.alerting.store.protocol.AlertStore` over SQLAlchemy.

    Example::

        engine = create_botwatch_engine("sqlite:///botwatch.db")
        store = SqlAlertStore(engine)
        store.create_schema()
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        self._session_factory = botwatch_session_factory(engine)

    def create_schema(self) -> None:
        """Create every botwatch table that does not exist yet."""
        BotwatchBase.metadata.create_all(self.engine)

    # -- configuration seeding -------------------------------------------------

    def add_rule(self, rule: AlertRule) -> None:
        with self._session_factory.begin() as session:
            session.merge(
                AlertRuleTable(
                    id=rule.id,
                    rule_name=rule.rule_name,
                    rule_kind=rule.rule_kind.value,
                    threshold=rule.threshold,
                    alert_level=rule.alert_level.value,
                    max_notify_count=rule.max_notify_count,
                    cooldown_seconds=rule.cooldown_seconds,
                    is_enabled=rule.enabled,
                )
            )

    def add_recipient(self, recipient: Recipient) -> None:
        with self._session_factory.begin() as session:
            session.merge(
                AlertRecipientTable(
                    id=recipient.id,
                    name=recipient.name,
                    enabled=recipient.enabled,
                    robot_ids=sorted(recipient.robot_ids),
                    alert_levels=sorted(level.value for level in recipient.alert_levels),
                )
            )

    # -- rules / recipients ----------------------------------------------------

    def list_enabled_rules(self) -> list[AlertRule]:
        with self._session_factory() as session:
            rows = session.scalars(
                select(AlertRuleTable).where(AlertRuleTable.is_enabled.is_(True)).order_by(AlertRuleTable.id)
            ).all()
            return [_rule_from_row(row) for row in rows]

    def get_rule(self, rule_id: str) -> AlertRule | None:
        with self._session_factory() as session:
            row = session.get(AlertRuleTable, rule_id)
            return _rule_from_row(row) if row else None

    def find_recipients(self, subject_id: str, level: AlertLevel) -> list[Recipient]:
        # JSON containment is not portable; scope filtering happens in Python
        with self._session_factory() as session:
            rows = session.scalars(
                select(AlertRecipientTable).where(AlertRecipientTable.enabled.is_(True)).order_by(AlertRecipientTable.id)
            ).all()
            recipients = [_recipient_from_row(row) for row in rows]
        return [r for r in recipients if r.matches(subject_id, level)]

    # -- alert events ----------------------------------------------------------

    def create_alert_event(self, event: AlertEvent) -> None:
        with self._session_factory.begin() as session:
            session.add(
                AlertEventTable(
                    id=event.id,
                    rule_id=event.rule_id,
                    rule_name=event.rule_name,
                    event_kind=event.event_kind,
                    subject_id=event.subject_id,
                    level=event.level.value,
                    message=event.message,
                    metadata_json=event.metadata or None,
                    status=event.status.value,
                    created_at=event.created_at,
                )
            )

    def get_alert_event(self, alert_id: str) -> AlertEvent | None:
        with self._session_factory() as session:
            row = session.get(AlertEventTable, alert_id)
            return _event_from_row(row) if row else None

    def save_alert_event(self, event: AlertEvent, *, expected_status: AlertStatus | None = None) -> bool:
        stmt = update(AlertEventTable).where(AlertEventTable.id == event.id)
        if expected_status is not None:
            stmt = stmt.where(AlertEventTable.status == expected_status.value)
        with self._session_factory.begin() as session:
            result = session.execute(
                stmt
                .values(
                    status=event.status.value,
                    acknowledged_at=event.acknowledged_at,
                    acknowledged_by=event.acknowledged_by,
                    closed_at=event.closed_at,
                    closed_by=event.closed_by,
                    resolved_duration=event.resolved_duration,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount:
                return True
            if session.get(AlertEventTable, event.id) is None:
                raise KeyError(f"Unknown alert id: {event.id}")
            return False

    # -- dedup records ---------------------------------------------------------

    def get_dedup_record(self, dedup_key: str) -> DedupRecord | None:
        with self._session_factory() as session:
            row = session.scalars(
                select(AlertDedupRecordTable).where(AlertDedupRecordTable.dedup_key == dedup_key)
            ).first()
            return _dedup_from_row(row) if row else None

    def insert_dedup_record(self, record: DedupRecord) -> DedupRecord:
        try:
            with self._session_factory.begin() as session:
                session.add(
                    AlertDedupRecordTable(
                        id=generate_ulid(),
                        dedup_key=record.dedup_key,
                        rule_id=record.rule_id,
                        subject_id=record.subject_id,
                        recipient_id=record.recipient_id,
                        event_kind=record.event_kind,
                        first_trigger_time=record.first_trigger_time,
                        last_trigger_time=record.last_trigger_time,
                        trigger_count=record.trigger_count,
                        cooldown_period=record.cooldown_period,
                        status=record.status,
                        created_at=record.first_trigger_time,
                        updated_at=record.last_trigger_time,
                    )
                )
        except IntegrityError:
            touched = self.touch_dedup_record(record.dedup_key, record.last_trigger_time)
            if touched is None:
                raise
            return touched
        return record

    def touch_dedup_record(self, dedup_key: str, now: datetime) -> DedupRecord | None:
        table = AlertDedupRecordTable
        with self._session_factory.begin() as session:
            result = session.execute(
                update(table)
                .where(table.dedup_key == dedup_key)
                .values(
                    trigger_count=table.trigger_count + 1,
                    last_trigger_time=case(
                        (table.last_trigger_time < now, now),
                        else_=table.last_trigger_time,
                    ),
                    status="active",
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                return None
            row = session.scalars(select(table).where(table.dedup_key == dedup_key)).one()
            return _dedup_from_row(row)

    def delete_expired_dedup_records(self, now: datetime) -> int:
        table = AlertDedupRecordTable
        with self._session_factory.begin() as session:
            rows = session.execute(
                select(table.id, table.last_trigger_time, table.cooldown_period)
            ).all()
            expired = [
                row.id
                for row in rows
                if ensure_utc(row.last_trigger_time) < now - timedelta(seconds=2 * row.cooldown_period)
            ]
            if expired:
                session.execute(delete(table).where(table.id.in_(expired)))
            return len(expired)

    def dedup_stats(self) -> dict[str, Any]:
        table = AlertDedupRecordTable
        with self._session_factory() as session:
            row = session.execute(
                select(
                    func.count(table.id),
                    func.coalesce(func.sum(case((table.status == "active", 1), else_=0)), 0),
                    func.avg(table.trigger_count),
                )
            ).one()
        return {
            "total_count": int(row[0] or 0),
            "active_count": int(row[1] or 0),
            "avg_trigger_count": float(row[2] or 0.0),
        }

    # -- notifications ---------------------------------------------------------

    def add_notification(self, notification: Notification) -> None:
        with self._session_factory.begin() as session:
            session.add(
                AlertNotificationTable(
                    id=notification.id,
                    alert_id=notification.alert_id,
                    recipient_id=notification.recipient_id,
                    rule_id=notification.rule_id,
                    delivery_command_id=notification.delivery_command_id,
                    method=notification.method,
                    status=notification.status.value,
                    reason=notification.reason,
                    error_message=notification.error_message,
                    sent_at=notification.sent_at,
                    created_at=notification.created_at,
                )
            )

    def count_sent_notifications(
        self,
        *,
        recipient_id: str | None = None,
        rule_id: str | None = None,
        since: datetime | None = None,
        exclude_closed_alerts: bool = False,
    ) -> int:
        table = AlertNotificationTable
        stmt = select(func.count(table.id)).where(table.status == NotificationStatus.SENT.value)
        if recipient_id is not None:
            stmt = stmt.where(table.recipient_id == recipient_id)
        if rule_id is not None:
            stmt = stmt.where(table.rule_id == rule_id)
        if since is not None:
            stmt = stmt.where(table.created_at >= since)
        if exclude_closed_alerts:
            stmt = stmt.join_from(table, AlertEventTable, AlertEventTable.id == table.alert_id).where(
                AlertEventTable.status != AlertStatus.CLOSED.value
            )
        with self._session_factory() as session:
            return int(session.scalar(stmt) or 0)

    def list_notifications(self, alert_id: str) -> list[Notification]:
        table = AlertNotificationTable
        with self._session_factory() as session:
            rows = session.scalars(
                select(table).where(table.alert_id == alert_id).order_by(table.created_at, table.id)
            ).all()
            return [_notification_from_row(row) for row in rows]

    def notification_stats(self, minute_cutoff: datetime, hour_cutoff: datetime) -> dict[str, Any]:
        table = AlertNotificationTable

        def _count_where(condition: Any) -> Any:
            return func.coalesce(func.sum(case((condition, 1), else_=0)), 0)

        with self._session_factory() as session:
            row = session.execute(
                select(
                    func.count(table.id),
                    _count_where(table.created_at >= minute_cutoff),
                    _count_where(table.created_at >= hour_cutoff),
                    _count_where(table.status == NotificationStatus.SENT.value),
                    _count_where(table.status == NotificationStatus.FAILED.value),
                )
            ).one()
        return {
            "total_notifications": int(row[0] or 0),
            "last_minute_count": int(row[1] or 0),
            "last_hour_count": int(row[2] or 0),
            "success_count": int(row[3] or 0),
            "failure_count": int(row[4] or 0),
        }
