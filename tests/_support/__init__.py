"""Shared test doubles: fake clock, recording channel, failing store, factories."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta

from botwatch.alerting.channels.base import BaseChannel
from botwatch.alerting.models import (
    AlertLevel,
    AlertRule,
    CandidateAlert,
    Recipient,
    RuleKind,
)
from botwatch.alerting.store.memory import InMemoryAlertStore
from botwatch.core.errors import DeliveryError, StorageError

EPOCH = datetime(2026, 3, 1, 12, 0, 0, tzinfo=UTC)


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime = EPOCH):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float = 0, *, minutes: float = 0) -> datetime:
        self.now += timedelta(seconds=seconds, minutes=minutes)
        return self.now


class RecordingChannel(BaseChannel):
    """Delivery channel that remembers every submission."""

    def __init__(self, *, fail_for: set[str] | None = None, hang: bool = False):
        super().__init__("test")
        self.fail_for = fail_for or set()
        self.hang = hang
        self.release = asyncio.Event()
        self.submissions: list[dict] = []

    async def submit(self, recipient, priority, body, max_retries, *, robot_id=None) -> str:
        if self.hang:
            await self.release.wait()
        if recipient.id in self.fail_for:
            raise DeliveryError(f"rejected {recipient.id}")
        self.submissions.append(
            {
                "recipient_id": recipient.id,
                "priority": priority,
                "body": body,
                "max_retries": max_retries,
                "robot_id": robot_id,
            }
        )
        return f"cmd-{len(self.submissions)}"


class BrokenStore(InMemoryAlertStore):
    """In-memory store whose gate-facing queries fail like an unreachable database."""

    def _outage(self, *args, **kwargs):
        raise StorageError("database unreachable")

    get_dedup_record = _outage
    touch_dedup_record = _outage
    insert_dedup_record = _outage
    count_sent_notifications = _outage
    dedup_stats = _outage
    notification_stats = _outage


def make_rule(**overrides) -> AlertRule:
    values = dict(
        id="r1",
        rule_name="Robot offline",
        rule_kind=RuleKind.ROBOT_STATUS,
        threshold=5,
        alert_level=AlertLevel.CRITICAL,
        max_notify_count=3,
        cooldown_seconds=300,
    )
    values.update(overrides)
    return AlertRule(**values)


def make_recipient(**overrides) -> Recipient:
    values = dict(
        id="u1",
        name="Alice",
        enabled=True,
        robot_ids=frozenset({"bot1"}),
        alert_levels=frozenset({AlertLevel.CRITICAL}),
    )
    values.update(overrides)
    return Recipient(**values)


def make_candidate(**overrides) -> CandidateAlert:
    values = dict(
        rule_id="r1",
        rule_name="Robot offline",
        rule_kind=RuleKind.ROBOT_STATUS,
        level=AlertLevel.CRITICAL,
        subject_id="bot1",
        message="Robot bot1 offline for 10 minutes",
        cooldown_seconds=300,
    )
    values.update(overrides)
    return CandidateAlert(**values)
