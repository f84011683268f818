"""Alerting table definitions.

Tables
------
alert_rules          rule definitions (read-only to the pipeline)
alert_recipients     operators and their robot / level subscriptions
alert_events         one row per candidate alert that reached fan-out
alert_dedup_records  one row per (rule, subject, recipient, kind) key
alert_notifications  append-only audit trail the rate limiter counts
robots               state read model consulted by rule evaluators
robot_commands       outbound command queue used as the delivery channel

Tags:
    botwatch, orm, sqlalchemy, tables, alerting
"""

from __future__ import annotations

import datetime

from sqlalchemy import ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from botwatch.core.orm.base import BotwatchBase


class AlertRuleTable(BotwatchBase):
    __tablename__ = "alert_rules"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    rule_name: Mapped[str] = mapped_column(nullable=False)
    rule_kind: Mapped[str] = mapped_column(String(32), nullable=False)
    threshold: Mapped[float] = mapped_column(nullable=False)
    alert_level: Mapped[str] = mapped_column(String(16), nullable=False, default="warning")
    max_notify_count: Mapped[int | None] = mapped_column()
    cooldown_seconds: Mapped[int | None] = mapped_column()
    is_enabled: Mapped[bool] = mapped_column(nullable=False, default=True)
    created_at: Mapped[datetime.datetime | None] = mapped_column()
    updated_at: Mapped[datetime.datetime | None] = mapped_column()


class AlertRecipientTable(BotwatchBase):
    __tablename__ = "alert_recipients"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(nullable=False)
    enabled: Mapped[bool] = mapped_column(nullable=False, default=True)
    robot_ids: Mapped[list] = mapped_column(nullable=False, default=list)
    alert_levels: Mapped[list] = mapped_column(nullable=False, default=list)


class AlertEventTable(BotwatchBase):
    __tablename__ = "alert_events"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    rule_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    rule_name: Mapped[str | None] = mapped_column()
    event_kind: Mapped[str] = mapped_column(String(32), nullable=False)
    subject_id: Mapped[str] = mapped_column(String(64), nullable=False)
    level: Mapped[str] = mapped_column(String(16), nullable=False)
    message: Mapped[str] = mapped_column(nullable=False)
    metadata_json: Mapped[dict | None] = mapped_column()
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")
    created_at: Mapped[datetime.datetime] = mapped_column(nullable=False)
    acknowledged_at: Mapped[datetime.datetime | None] = mapped_column()
    acknowledged_by: Mapped[str | None] = mapped_column()
    closed_at: Mapped[datetime.datetime | None] = mapped_column()
    closed_by: Mapped[str | None] = mapped_column()
    resolved_duration: Mapped[int | None] = mapped_column()


class AlertDedupRecordTable(BotwatchBase):
    __tablename__ = "alert_dedup_records"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    dedup_key: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    rule_id: Mapped[str] = mapped_column(String(64), nullable=False)
    subject_id: Mapped[str] = mapped_column(String(64), nullable=False)
    recipient_id: Mapped[str] = mapped_column(String(64), nullable=False)
    event_kind: Mapped[str] = mapped_column(String(32), nullable=False)
    first_trigger_time: Mapped[datetime.datetime] = mapped_column(nullable=False)
    last_trigger_time: Mapped[datetime.datetime] = mapped_column(nullable=False)
    trigger_count: Mapped[int] = mapped_column(nullable=False, default=1)
    cooldown_period: Mapped[int] = mapped_column(nullable=False, default=300)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="active")
    created_at: Mapped[datetime.datetime] = mapped_column(nullable=False)
    updated_at: Mapped[datetime.datetime] = mapped_column(nullable=False)


class AlertNotificationTable(BotwatchBase):
    __tablename__ = "alert_notifications"
    __table_args__ = (
        Index("ix_alert_notifications_recipient_created", "recipient_id", "created_at"),
        Index("ix_alert_notifications_rule_created", "rule_id", "created_at"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    alert_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("alert_events.id"), nullable=False, index=True
    )
    recipient_id: Mapped[str] = mapped_column(String(64), nullable=False)
    rule_id: Mapped[str] = mapped_column(String(64), nullable=False)
    delivery_command_id: Mapped[str | None] = mapped_column()
    method: Mapped[str | None] = mapped_column(String(32))
    status: Mapped[str] = mapped_column(String(32), nullable=False)
    reason: Mapped[str | None] = mapped_column()
    error_message: Mapped[str | None] = mapped_column()
    sent_at: Mapped[datetime.datetime | None] = mapped_column()
    created_at: Mapped[datetime.datetime] = mapped_column(nullable=False)


class RobotTable(BotwatchBase):
    __tablename__ = "robots"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str | None] = mapped_column()
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="online")
    is_active: Mapped[bool] = mapped_column(nullable=False, default=True)
    last_check_at: Mapped[datetime.datetime | None] = mapped_column()
    health_score: Mapped[float | None] = mapped_column()
    executions_total: Mapped[int] = mapped_column(nullable=False, default=0)
    executions_failed: Mapped[int] = mapped_column(nullable=False, default=0)
    ai_error_count: Mapped[int] = mapped_column(nullable=False, default=0)


class RobotCommandTable(BotwatchBase):
    __tablename__ = "robot_commands"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    robot_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    command_type: Mapped[str] = mapped_column(String(64), nullable=False)
    payload: Mapped[dict] = mapped_column(nullable=False)
    priority: Mapped[int] = mapped_column(nullable=False, default=5)
    max_retries: Mapped[int] = mapped_column(nullable=False, default=3)
    retry_count: Mapped[int] = mapped_column(nullable=False, default=0)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")
    created_at: Mapped[datetime.datetime] = mapped_column(nullable=False)


__all__ = [
    "AlertRuleTable",
    "AlertRecipientTable",
    "AlertEventTable",
    "AlertDedupRecordTable",
    "AlertNotificationTable",
    "RobotTable",
    "RobotCommandTable",
]
