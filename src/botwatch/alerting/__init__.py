"""
Alerting pipeline.

Components, leaf first:

- DedupGate      suppresses repeats within a cooldown window
- RateLimiter    sliding-window ceilings over the notification log
- RuleEngine     periodic, isolated rule evaluation
- TriggerService per-candidate fan-out and lifecycle
- AlertPipeline  composition root wiring all of the above
"""

from botwatch.alerting.dedup import DedupGate
from botwatch.alerting.lifecycle import AlertLifecycle
from botwatch.alerting.models import (
    AlertEvent,
    AlertLevel,
    AlertRule,
    AlertStatus,
    CandidateAlert,
    DedupRecord,
    DuplicateCheck,
    LimitCheck,
    Notification,
    NotificationStatus,
    Recipient,
    RecipientResult,
    RuleKind,
    TriggerResult,
)
from botwatch.alerting.pipeline import AlertPipeline, build_pipeline
from botwatch.alerting.rate_limiter import RateLimiter, RateLimits
from botwatch.alerting.rule_engine import EvaluationSummary, RuleEngine
from botwatch.alerting.trigger import TriggerService

__all__ = [
    "AlertEvent",
    "AlertLevel",
    "AlertLifecycle",
    "AlertPipeline",
    "AlertRule",
    "AlertStatus",
    "CandidateAlert",
    "DedupGate",
    "DedupRecord",
    "DuplicateCheck",
    "EvaluationSummary",
    "LimitCheck",
    "Notification",
    "NotificationStatus",
    "RateLimiter",
    "RateLimits",
    "Recipient",
    "RecipientResult",
    "RuleEngine",
    "RuleKind",
    "TriggerResult",
    "TriggerService",
    "build_pipeline",
]
