"""
TriggerService: one candidate alert, end to end.

Flow per candidate::

    create AlertEvent(pending)
      -> resolve recipients            (none: no_recipients, stop)
      -> per recipient, sequentially and isolated:
           dedup check -> rate limit -> render -> submit -> record -> dedup record
      -> pending -> sent (if anything went out)
      -> best-effort live update

Only a failure to create the AlertEvent row reaches the caller. Every
per-recipient failure becomes a ``failed`` notification row.
"""

from __future__ import annotations

import asyncio
from typing import Any

from botwatch.alerting.channels.base import DeliveryChannel, priority_for
from botwatch.alerting.dedup import DedupGate
from botwatch.alerting.lifecycle import AlertLifecycle
from botwatch.alerting.models import (
    AlertEvent,
    AlertLevel,
    AlertStatus,
    CandidateAlert,
    Notification,
    NotificationStatus,
    Recipient,
    RecipientResult,
    TriggerResult,
)
from botwatch.alerting.rate_limiter import RateLimiter
from botwatch.alerting.store.protocol import AlertStore
from botwatch.core.errors import (
    AlertNotFoundError,
    AlertPersistenceError,
    ErrorContext,
    InvalidTransitionError,
)
from botwatch.core.errors import TimeoutError as DeliveryTimeoutError
from botwatch.core.events import ALERT, ALERT_ACKNOWLEDGED, ALERT_CLOSED, Event, EventBus
from botwatch.core.logging import LogContext, get_logger
from botwatch.core.timestamps import Clock, generate_ulid, utc_now

logger = get_logger(__name__)

__all__ = ["TriggerService", "render_message"]

LEVEL_TAGS = {
    AlertLevel.INFO: "[INFO]",
    AlertLevel.WARNING: "[WARNING]",
    AlertLevel.CRITICAL: "[CRITICAL]",
}


def render_message(event: AlertEvent) -> str:
    """Notification body for an alert. Same input, same text."""
    title = event.rule_name or event.event_kind
    return (
        f"{LEVEL_TAGS[event.level]} {title} ({event.event_kind})\n"
        f"\n"
        f"Robot: {event.subject_id}\n"
        f"Time: {event.created_at:%Y-%m-%d %H:%M:%S} UTC\n"
        f"Details: {event.message}\n"
        f"\n"
        f"Please handle promptly."
    )


class TriggerService:
    """Orchestrates fan-out and owns the alert lifecycle."""

    def __init__(
        self,
        store: AlertStore,
        dedup: DedupGate,
        rate_limiter: RateLimiter,
        channel: DeliveryChannel,
        *,
        bus: EventBus | None = None,
        lifecycle: AlertLifecycle | None = None,
        clock: Clock = utc_now,
        delivery_timeout_seconds: float = 10.0,
        delivery_max_retries: int = 3,
        default_cooldown_seconds: int = 300,
    ):
        self._store = store
        self._dedup = dedup
        self._rate_limiter = rate_limiter
        self._channel = channel
        self._bus = bus
        self._clock = clock
        self._lifecycle = lifecycle or AlertLifecycle(clock)
        self._delivery_timeout = delivery_timeout_seconds
        self._delivery_max_retries = delivery_max_retries
        self._default_cooldown = default_cooldown_seconds

    # ------------------------------------------------------------------
    # Fan-out
    # ------------------------------------------------------------------

    async def trigger_alert(self, candidate: CandidateAlert) -> TriggerResult:
        """Persist, gate and deliver one candidate alert.

        Raises:
            AlertPersistenceError: The AlertEvent row could not be created.
        """
        event = AlertEvent(
            id=generate_ulid(),
            rule_id=candidate.rule_id,
            rule_name=candidate.rule_name,
            event_kind=candidate.rule_kind.value,
            subject_id=candidate.subject_id,
            level=candidate.level,
            message=candidate.message,
            status=AlertStatus.PENDING,
            created_at=self._clock(),
            metadata=dict(candidate.metadata),
        )
        try:
            self._store.create_alert_event(event)
        except Exception as e:
            raise AlertPersistenceError(
                f"Could not create alert event for rule {candidate.rule_id}: {e}",
                context=ErrorContext(rule_id=candidate.rule_id, subject_id=candidate.subject_id),
                cause=e,
            ) from e

        async with LogContext(alert_id=event.id, rule_id=event.rule_id):
            recipients = self._store.find_recipients(event.subject_id, event.level)
            if not recipients:
                event = self._lifecycle.mark_no_recipients(event)
                self._store.save_alert_event(event, expected_status=AlertStatus.PENDING)
                logger.info("alert_no_recipients", subject_id=event.subject_id, level=event.level.value)
                return TriggerResult(
                    success=False,
                    alert_id=event.id,
                    sent_count=0,
                    total_recipients=0,
                    message="no recipients",
                )

            results = []
            for recipient in recipients:
                results.append(await self._dispatch(event, candidate, recipient))

            sent_count = sum(1 for r in results if r.success)
            if sent_count:
                sent = self._lifecycle.mark_sent(event)
                if self._store.save_alert_event(sent, expected_status=AlertStatus.PENDING):
                    event = sent
                else:
                    # acknowledged or closed while deliveries were in flight
                    logger.info("alert_status_changed_during_fanout", alert_id=event.id)

            logger.info(
                "alert_triggered",
                subject_id=event.subject_id,
                level=event.level.value,
                sent_count=sent_count,
                total_recipients=len(recipients),
            )

            await self._broadcast(
                ALERT,
                {
                    "alert_id": event.id,
                    "rule_id": event.rule_id,
                    "level": event.level.value,
                    "subject_id": event.subject_id,
                    "message": event.message,
                    "recipient_count": len(recipients),
                    "sent_count": sent_count,
                },
            )

        return TriggerResult(
            success=True,
            alert_id=event.id,
            sent_count=sent_count,
            total_recipients=len(recipients),
            results=results,
        )

    async def _dispatch(self, event: AlertEvent, candidate: CandidateAlert, recipient: Recipient) -> RecipientResult:
        try:
            return await self._dispatch_one(event, candidate, recipient)
        except Exception as e:
            logger.exception("recipient_dispatch_failed", recipient_id=recipient.id, error=str(e))
            self._record(event, recipient, NotificationStatus.FAILED, error_message=str(e))
            return RecipientResult(recipient_id=recipient.id, status=NotificationStatus.FAILED, error=str(e))

    async def _dispatch_one(
        self,
        event: AlertEvent,
        candidate: CandidateAlert,
        recipient: Recipient,
    ) -> RecipientResult:
        key_parts = (event.rule_id, event.subject_id, recipient.id, event.event_kind)

        async with self._dedup.lock(*key_parts):
            if self._dedup.check_duplicate(*key_parts).is_duplicate:
                self._record(event, recipient, NotificationStatus.SKIPPED_DUPLICATE, reason="duplicate")
                return RecipientResult(
                    recipient_id=recipient.id,
                    status=NotificationStatus.SKIPPED_DUPLICATE,
                    reason="duplicate",
                )

            limit = self._rate_limiter.check_limit(recipient.id, event.rule_id, event.level)
            if not limit.allowed:
                self._record(event, recipient, NotificationStatus.SKIPPED_LIMITED, reason=limit.reason)
                return RecipientResult(
                    recipient_id=recipient.id,
                    status=NotificationStatus.SKIPPED_LIMITED,
                    reason=limit.reason,
                )

            body = render_message(event)
            try:
                delivery_id = await asyncio.wait_for(
                    self._channel.submit(
                        recipient,
                        priority_for(event.level),
                        body,
                        self._delivery_max_retries,
                        robot_id=event.subject_id,
                    ),
                    timeout=self._delivery_timeout,
                )
            except asyncio.TimeoutError as e:
                raise DeliveryTimeoutError(
                    f"Delivery timed out after {self._delivery_timeout}s",
                    context=ErrorContext(alert_id=event.id, recipient_id=recipient.id, channel=self._channel.method),
                    cause=e,
                ) from e

            now = self._clock()
            self._store.add_notification(
                Notification(
                    id=generate_ulid(),
                    alert_id=event.id,
                    recipient_id=recipient.id,
                    rule_id=event.rule_id,
                    status=NotificationStatus.SENT,
                    created_at=now,
                    method=self._channel.method,
                    delivery_command_id=delivery_id,
                    sent_at=now,
                )
            )
            self._dedup.record_trigger(
                *key_parts,
                cooldown_period=candidate.cooldown_seconds or self._default_cooldown,
            )

        logger.info("notification_sent", recipient_id=recipient.id, delivery_id=delivery_id)
        return RecipientResult(
            recipient_id=recipient.id,
            status=NotificationStatus.SENT,
            delivery_command_id=delivery_id,
        )

    def _record(
        self,
        event: AlertEvent,
        recipient: Recipient,
        status: NotificationStatus,
        *,
        reason: str | None = None,
        error_message: str | None = None,
    ) -> None:
        notification = Notification(
            id=generate_ulid(),
            alert_id=event.id,
            recipient_id=recipient.id,
            rule_id=event.rule_id,
            status=status,
            created_at=self._clock(),
            method=self._channel.method if status is NotificationStatus.FAILED else None,
            reason=reason,
            error_message=error_message,
        )
        if status is not NotificationStatus.FAILED:
            self._store.add_notification(notification)
            return

        # Already on the failure path; the audit row is best-effort
        try:
            self._store.add_notification(notification)
        except Exception as e:
            logger.error("notification_record_failed", recipient_id=recipient.id, error=str(e))

    async def _broadcast(self, event_type: str, payload: dict[str, Any]) -> None:
        if self._bus is None:
            return
        try:
            await self._bus.publish(Event(event_type=event_type, source="trigger", payload=payload))
        except Exception as e:
            logger.warning("live_update_publish_failed", event_type=event_type, error=str(e))

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _require(self, alert_id: str) -> AlertEvent:
        event = self._store.get_alert_event(alert_id)
        if event is None:
            raise AlertNotFoundError(alert_id)
        return event

    def _save_from(self, current: AlertEvent, event: AlertEvent) -> None:
        """Write a transition only if no one moved the alert since it was read."""
        if not self._store.save_alert_event(event, expected_status=current.status):
            latest = self._require(current.id)
            raise InvalidTransitionError(current.id, latest.status.value, event.status.value)

    async def acknowledge_alert(self, alert_id: str, user_id: str) -> AlertEvent:
        """Mark an alert acknowledged. Allowed from ``pending`` or ``sent``.

        Raises:
            AlertNotFoundError: Unknown alert id.
            InvalidTransitionError: Alert is not pending or sent.
        """
        current = self._require(alert_id)
        event = self._lifecycle.acknowledge(current, user_id)
        self._save_from(current, event)
        logger.info("alert_acknowledged", alert_id=alert_id, user_id=user_id)

        await self._broadcast(ALERT_ACKNOWLEDGED, {"alert_id": alert_id, "user_id": user_id})
        return event

    async def close_alert(self, alert_id: str, user_id: str) -> AlertEvent:
        """Close an alert and release the recipients' lifetime quota.

        Closing an already closed alert returns it unchanged and publishes
        nothing.

        Raises:
            AlertNotFoundError: Unknown alert id.
        """
        event = self._require(alert_id)
        if event.status is AlertStatus.CLOSED:
            logger.info("alert_already_closed", alert_id=alert_id)
            return event

        current, event = event, self._lifecycle.close(event, user_id)
        self._save_from(current, event)

        notified = sorted(
            {
                n.recipient_id
                for n in self._store.list_notifications(alert_id)
                if n.status is NotificationStatus.SENT
            }
        )
        for recipient_id in notified:
            self._rate_limiter.reset_user_count(recipient_id, event.rule_id)

        logger.info(
            "alert_closed",
            alert_id=alert_id,
            user_id=user_id,
            resolved_duration=event.resolved_duration,
        )
        await self._broadcast(
            ALERT_CLOSED,
            {
                "alert_id": alert_id,
                "user_id": user_id,
                "resolved_duration": event.resolved_duration,
            },
        )
        return event

    def get_alert(self, alert_id: str) -> AlertEvent | None:
        return self._store.get_alert_event(alert_id)

    def list_notifications(self, alert_id: str) -> list[Notification]:
        return self._store.list_notifications(alert_id)
