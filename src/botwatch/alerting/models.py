"""
Alerting data model: enums and dataclasses.

Design Principles:
- Rules and recipients are read-only configuration snapshots
- AlertEvent and Notification are owned by the TriggerService
- DedupRecord is owned by the DedupGate
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class RuleKind(str, Enum):
    """Rule kinds the engine knows how to evaluate."""

    ROBOT_STATUS = "robot_status"
    EXECUTION_FAILURE = "execution_failure"
    ROBOT_HEALTH = "robot_health"
    AI_ERROR = "ai_error"


class AlertLevel(str, Enum):
    """Alert levels, ordered INFO < WARNING < CRITICAL."""

    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"

    def _order(self) -> list[AlertLevel]:
        return [AlertLevel.INFO, AlertLevel.WARNING, AlertLevel.CRITICAL]

    def __lt__(self, other: AlertLevel) -> bool:
        return self._order().index(self) < self._order().index(other)

    def __le__(self, other: AlertLevel) -> bool:
        return self._order().index(self) <= self._order().index(other)

    def __ge__(self, other: AlertLevel) -> bool:
        return self._order().index(self) >= self._order().index(other)

    def __gt__(self, other: AlertLevel) -> bool:
        return self._order().index(self) > self._order().index(other)


class AlertStatus(str, Enum):
    """Lifecycle status of an AlertEvent."""

    PENDING = "pending"
    SENT = "sent"
    NO_RECIPIENTS = "no_recipients"
    ACKNOWLEDGED = "acknowledged"
    CLOSED = "closed"


class NotificationStatus(str, Enum):
    """Outcome of one (alert, recipient) dispatch."""

    SENT = "sent"
    FAILED = "failed"
    SKIPPED_DUPLICATE = "skipped_duplicate"
    SKIPPED_LIMITED = "skipped_limited"


# ---------------------------------------------------------------------------
# Configuration snapshots
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AlertRule:
    """An operational rule. Immutable during an evaluation pass."""

    id: str
    rule_name: str
    rule_kind: RuleKind
    threshold: float
    alert_level: AlertLevel = AlertLevel.WARNING
    max_notify_count: int | None = None
    cooldown_seconds: int | None = None
    enabled: bool = True


@dataclass(frozen=True)
class Recipient:
    """An operator who may receive notifications."""

    id: str
    name: str
    enabled: bool = True
    robot_ids: frozenset[str] = frozenset()
    alert_levels: frozenset[AlertLevel] = frozenset()

    def matches(self, subject_id: str, level: AlertLevel) -> bool:
        """Enabled, scoped to the subject and subscribed to the level."""
        return self.enabled and subject_id in self.robot_ids and level in self.alert_levels


# ---------------------------------------------------------------------------
# Pipeline records
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CandidateAlert:
    """An unsent proposal produced by rule evaluation."""

    rule_id: str
    rule_name: str
    rule_kind: RuleKind
    level: AlertLevel
    subject_id: str
    message: str
    metadata: dict[str, Any] = field(default_factory=dict)
    cooldown_seconds: int | None = None


@dataclass
class AlertEvent:
    """Persisted alert (AlertHistory row)."""

    id: str
    rule_id: str
    rule_name: str | None
    event_kind: str
    subject_id: str
    level: AlertLevel
    message: str
    status: AlertStatus
    created_at: datetime
    metadata: dict[str, Any] = field(default_factory=dict)
    acknowledged_at: datetime | None = None
    acknowledged_by: str | None = None
    closed_at: datetime | None = None
    closed_by: str | None = None
    resolved_duration: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "rule_id": self.rule_id,
            "rule_name": self.rule_name,
            "event_kind": self.event_kind,
            "subject_id": self.subject_id,
            "level": self.level.value,
            "message": self.message,
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
            "acknowledged_at": self.acknowledged_at.isoformat() if self.acknowledged_at else None,
            "acknowledged_by": self.acknowledged_by,
            "closed_at": self.closed_at.isoformat() if self.closed_at else None,
            "closed_by": self.closed_by,
            "resolved_duration": self.resolved_duration,
        }


@dataclass
class DedupRecord:
    """Cooldown bookkeeping for one dedup key."""

    dedup_key: str
    rule_id: str
    subject_id: str
    recipient_id: str
    event_kind: str
    first_trigger_time: datetime
    last_trigger_time: datetime
    trigger_count: int
    cooldown_period: int
    status: str = "active"


@dataclass
class Notification:
    """One append-only audit row per (alert, recipient) dispatch."""

    id: str
    alert_id: str
    recipient_id: str
    rule_id: str
    status: NotificationStatus
    created_at: datetime
    method: str | None = None
    delivery_command_id: str | None = None
    reason: str | None = None
    error_message: str | None = None
    sent_at: datetime | None = None


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DuplicateCheck:
    """Result of DedupGate.check_duplicate."""

    is_duplicate: bool
    record: DedupRecord | None = None


@dataclass(frozen=True)
class LimitCheck:
    """Result of RateLimiter.check_limit."""

    allowed: bool
    reason: str | None = None
    remaining: int = 0
    message: str | None = None


@dataclass
class RecipientResult:
    """Per-recipient dispatch outcome."""

    recipient_id: str
    status: NotificationStatus
    delivery_command_id: str | None = None
    reason: str | None = None
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.status is NotificationStatus.SENT


@dataclass
class TriggerResult:
    """Return contract of TriggerService.trigger_alert."""

    success: bool
    alert_id: str
    sent_count: int
    total_recipients: int
    message: str | None = None
    results: list[RecipientResult] = field(default_factory=list)


__all__ = [
    "RuleKind",
    "AlertLevel",
    "AlertStatus",
    "NotificationStatus",
    "AlertRule",
    "Recipient",
    "CandidateAlert",
    "AlertEvent",
    "DedupRecord",
    "Notification",
    "DuplicateCheck",
    "LimitCheck",
    "RecipientResult",
    "TriggerResult",
]
