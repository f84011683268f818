"""
Multi-window rate limiting over the notification audit trail.

No counters are kept in memory: every check counts ``sent`` notifications
in the store against a sliding cutoff (``now - 60s``, ``now - 3600s``).
Checks run in a fixed order and stop at the first ceiling hit:

1. per recipient, trailing minute
2. per recipient, trailing hour
3. per rule (any recipient), trailing minute
4. per (recipient, rule), lifetime -- excluding notifications whose alert
   has been closed

Storage errors fail open.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, fields, replace
from datetime import timedelta
from typing import Any

from botwatch.alerting.models import AlertLevel, LimitCheck
from botwatch.alerting.store.protocol import AlertStore
from botwatch.core.errors import InvalidConfigError
from botwatch.core.logging import get_logger
from botwatch.core.timestamps import Clock, utc_now

logger = get_logger(__name__)

__all__ = ["RateLimiter", "RateLimits"]

MINUTE = timedelta(seconds=60)
HOUR = timedelta(seconds=3600)

# Headroom reported when the limiter fails open
FAIL_OPEN_REMAINING = 999

USER_PER_MINUTE = "user_per_minute_limit_exceeded"
USER_PER_HOUR = "user_per_hour_limit_exceeded"
RULE_PER_MINUTE = "rule_per_minute_limit_exceeded"
PER_RULE_USER = "per_rule_user_limit_exceeded"


@dataclass
class RateLimits:
    """Ceilings applied by :class:`RateLimiter`. All values are positive ints."""

    per_user_per_minute: int = 10
    per_user_per_hour: int = 50
    per_rule_per_minute: int = 20
    default_max_notify_count: int = 3

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


class RateLimiter:
    """Decides whether one more notification may go to a recipient for a rule."""

    def __init__(self, store: AlertStore, limits: RateLimits | None = None, *, clock: Clock = utc_now):
        self._store = store
        self._limits = limits or RateLimits()
        self._clock = clock

    def check_limit(
        self,
        recipient_id: str,
        rule_id: str,
        level: AlertLevel | None = None,
        *,
        max_notify_count: int | None = None,
    ) -> LimitCheck:
        """Check every tier in order; short-circuit on the first ceiling hit.

        Args:
            recipient_id: Recipient about to be notified
            rule_id: Rule that produced the alert
            level: Alert level (informational; every level shares the ceilings)
            max_notify_count: Lifetime cap override; defaults to the rule's
                ``max_notify_count``, then ``RateLimits.default_max_notify_count``
        """
        limits = self._limits
        now = self._clock()
        try:
            headroom: list[int] = []

            count = self._store.count_sent_notifications(recipient_id=recipient_id, since=now - MINUTE)
            if count >= limits.per_user_per_minute:
                return self._deny(
                    USER_PER_MINUTE,
                    f"recipient {recipient_id} reached {limits.per_user_per_minute} notifications per minute",
                )
            headroom.append(limits.per_user_per_minute - count)

            count = self._store.count_sent_notifications(recipient_id=recipient_id, since=now - HOUR)
            if count >= limits.per_user_per_hour:
                return self._deny(
                    USER_PER_HOUR,
                    f"recipient {recipient_id} reached {limits.per_user_per_hour} notifications per hour",
                )
            headroom.append(limits.per_user_per_hour - count)

            count = self._store.count_sent_notifications(rule_id=rule_id, since=now - MINUTE)
            if count >= limits.per_rule_per_minute:
                return self._deny(
                    RULE_PER_MINUTE,
                    f"rule {rule_id} reached {limits.per_rule_per_minute} notifications per minute",
                )
            headroom.append(limits.per_rule_per_minute - count)

            if max_notify_count is None:
                rule = self._store.get_rule(rule_id)
                max_notify_count = rule.max_notify_count if rule else None
            cap = max_notify_count or limits.default_max_notify_count

            count = self._store.count_sent_notifications(
                recipient_id=recipient_id,
                rule_id=rule_id,
                exclude_closed_alerts=True,
            )
            if count >= cap:
                return self._deny(
                    PER_RULE_USER,
                    f"recipient {recipient_id} reached {cap} notifications for rule {rule_id}",
                )
            headroom.append(cap - count)
        except Exception as e:
            logger.warning(
                "rate_limit_check_failed",
                recipient_id=recipient_id,
                rule_id=rule_id,
                error=str(e),
            )
            return LimitCheck(allowed=True, remaining=FAIL_OPEN_REMAINING)

        return LimitCheck(allowed=True, remaining=min(headroom))

    def _deny(self, reason: str, message: str) -> LimitCheck:
        logger.info("rate_limited", reason=reason, detail=message)
        return LimitCheck(allowed=False, reason=reason, remaining=0, message=message)

    def reset_user_count(self, recipient_id: str, rule_id: str) -> None:
        """Release the lifetime cap for a (recipient, rule) pair.

        Nothing is deleted: the lifetime count already ignores notifications
        tied to closed alerts, so closing the alert is what frees the quota.
        """
        logger.info("rate_limit_user_count_reset", recipient_id=recipient_id, rule_id=rule_id)

    def update_limits(self, **new_limits: int) -> RateLimits:
        """Replace some ceilings. Applies to subsequent checks only."""
        known = {f.name for f in fields(RateLimits)}
        for key, value in new_limits.items():
            if key not in known:
                raise InvalidConfigError(key, value, f"Unknown rate limit: {key}")
            if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
                raise InvalidConfigError(key, value, f"Rate limit {key} must be a positive integer")

        self._limits = replace(self._limits, **new_limits)
        logger.info("rate_limits_updated", **self._limits.to_dict())
        return self.get_limits()

    def get_limits(self) -> RateLimits:
        return replace(self._limits)

    def get_stats(self) -> dict[str, Any]:
        now = self._clock()
        try:
            stats = self._store.notification_stats(now - MINUTE, now - HOUR)
        except Exception as e:
            logger.warning("rate_limit_stats_failed", error=str(e))
            stats = {
                "total_notifications": 0,
                "last_minute_count": 0,
                "last_hour_count": 0,
                "success_count": 0,
                "failure_count": 0,
            }
        return {**stats, "limits": self._limits.to_dict()}
