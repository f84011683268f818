"""Tests for botwatch.alerting.trigger: fan-out, gating and lifecycle operations."""

import asyncio

import pytest

from botwatch.alerting.dedup import DedupGate
from botwatch.alerting.models import AlertLevel, AlertStatus, NotificationStatus
from botwatch.alerting.rate_limiter import RateLimiter
from botwatch.alerting.trigger import TriggerService, render_message
from botwatch.core.errors import AlertNotFoundError, AlertPersistenceError, InvalidTransitionError
from botwatch.core.events import ALERT, ALERT_ACKNOWLEDGED, ALERT_CLOSED
from botwatch.core.events.memory import InMemoryEventBus

from _support import BrokenStore, RecordingChannel, make_candidate, make_recipient, make_rule


@pytest.fixture
def bus():
    return InMemoryEventBus()


@pytest.fixture
def service(seeded_store, dedup, rate_limiter, channel, bus, clock):
    return TriggerService(seeded_store, dedup, rate_limiter, channel, bus=bus, clock=clock, delivery_timeout_seconds=0.2)


class TestTriggerAlert:
    @pytest.mark.asyncio
    async def test_delivers_to_matching_recipient(self, service, seeded_store, channel):
        result = await service.trigger_alert(make_candidate())

        assert result.success is True
        assert result.sent_count == 1
        assert result.total_recipients == 1

        event = seeded_store.get_alert_event(result.alert_id)
        assert event.status is AlertStatus.SENT

        [notification] = seeded_store.list_notifications(result.alert_id)
        assert notification.status is NotificationStatus.SENT
        assert notification.method == "test"
        assert notification.delivery_command_id == "cmd-1"
        assert notification.sent_at is not None

        [submission] = channel.submissions
        assert submission["priority"] == 10
        assert submission["max_retries"] == 3
        assert submission["robot_id"] == "bot1"

    @pytest.mark.asyncio
    async def test_warning_gets_normal_priority(self, service, seeded_store, channel):
        seeded_store.add_recipient(make_recipient(id="u2", alert_levels=frozenset({AlertLevel.WARNING})))
        await service.trigger_alert(make_candidate(level=AlertLevel.WARNING))
        assert channel.submissions[0]["priority"] == 5

    @pytest.mark.asyncio
    async def test_no_recipients(self, service, seeded_store, channel):
        result = await service.trigger_alert(make_candidate(subject_id="bot-unknown"))

        assert result.sent_count == 0
        assert result.total_recipients == 0
        assert seeded_store.get_alert_event(result.alert_id).status is AlertStatus.NO_RECIPIENTS
        assert seeded_store.list_notifications(result.alert_id) == []
        assert channel.submissions == []

    @pytest.mark.asyncio
    async def test_duplicate_within_cooldown(self, service, seeded_store, clock):
        await service.trigger_alert(make_candidate())
        clock.advance(30)
        second = await service.trigger_alert(make_candidate())

        [notification] = seeded_store.list_notifications(second.alert_id)
        assert notification.status is NotificationStatus.SKIPPED_DUPLICATE
        assert second.sent_count == 0
        assert seeded_store.get_alert_event(second.alert_id).status is AlertStatus.PENDING

    @pytest.mark.asyncio
    async def test_rate_limited(self, service, seeded_store, rate_limiter):
        rate_limiter.update_limits(per_rule_per_minute=1)
        seeded_store.add_recipient(make_recipient(id="u2", name="Bob"))

        result = await service.trigger_alert(make_candidate())

        statuses = {r.recipient_id: (r.status, r.reason) for r in result.results}
        assert statuses["u1"] == (NotificationStatus.SENT, None)
        assert statuses["u2"] == (NotificationStatus.SKIPPED_LIMITED, "rule_per_minute_limit_exceeded")

        limited = [n for n in seeded_store.list_notifications(result.alert_id) if n.recipient_id == "u2"]
        assert limited[0].reason == "rule_per_minute_limit_exceeded"

    @pytest.mark.asyncio
    async def test_delivery_failure_isolated(self, seeded_store, dedup, rate_limiter, clock):
        seeded_store.add_recipient(make_recipient(id="u2", name="Bob"))
        channel = RecordingChannel(fail_for={"u1"})
        service = TriggerService(seeded_store, dedup, rate_limiter, channel, clock=clock)

        result = await service.trigger_alert(make_candidate())

        assert result.sent_count == 1
        assert result.total_recipients == 2
        by_recipient = {n.recipient_id: n for n in seeded_store.list_notifications(result.alert_id)}
        assert by_recipient["u1"].status is NotificationStatus.FAILED
        assert "rejected u1" in by_recipient["u1"].error_message
        assert by_recipient["u2"].status is NotificationStatus.SENT

    @pytest.mark.asyncio
    async def test_failed_send_does_not_start_cooldown(self, seeded_store, dedup, rate_limiter, clock):
        failing = TriggerService(seeded_store, dedup, rate_limiter, RecordingChannel(fail_for={"u1"}), clock=clock)
        await failing.trigger_alert(make_candidate())

        assert dedup.check_duplicate("r1", "bot1", "u1", "robot_status").is_duplicate is False

        working = TriggerService(seeded_store, dedup, rate_limiter, RecordingChannel(), clock=clock)
        result = await working.trigger_alert(make_candidate())
        assert result.sent_count == 1

    @pytest.mark.asyncio
    async def test_delivery_timeout_recorded_as_failed(self, seeded_store, dedup, rate_limiter, clock):
        channel = RecordingChannel(hang=True)
        service = TriggerService(seeded_store, dedup, rate_limiter, channel, clock=clock, delivery_timeout_seconds=0.05)

        result = await service.trigger_alert(make_candidate())

        [notification] = seeded_store.list_notifications(result.alert_id)
        assert notification.status is NotificationStatus.FAILED
        assert "timed out" in notification.error_message

    @pytest.mark.asyncio
    async def test_persistence_failure_raises(self, dedup, rate_limiter, channel, clock):
        class NoWrites(BrokenStore):
            def create_alert_event(self, event):
                raise RuntimeError("disk full")

        service = TriggerService(NoWrites(), dedup, rate_limiter, channel, clock=clock)
        with pytest.raises(AlertPersistenceError) as exc:
            await service.trigger_alert(make_candidate())
        assert exc.value.context.rule_id == "r1"

    @pytest.mark.asyncio
    async def test_gates_fail_open(self, channel, clock):
        store = BrokenStore()
        store.add_rule(make_rule())
        store.add_recipient(make_recipient())
        service = TriggerService(
            store,
            DedupGate(store, clock=clock),
            RateLimiter(store, clock=clock),
            channel,
            clock=clock,
        )

        result = await service.trigger_alert(make_candidate())
        assert result.sent_count == 1

    @pytest.mark.asyncio
    async def test_broadcasts_alert(self, service, bus):
        sub = await bus.subscribe()
        result = await service.trigger_alert(make_candidate())

        event = sub.get_nowait()
        assert event.event_type == ALERT
        assert event.payload["alert_id"] == result.alert_id
        assert event.payload["level"] == "critical"
        assert event.payload["subject_id"] == "bot1"
        assert event.payload["recipient_count"] == 1

    @pytest.mark.asyncio
    async def test_broadcast_failure_swallowed(self, seeded_store, dedup, rate_limiter, channel, clock):
        class ExplodingBus(InMemoryEventBus):
            async def publish(self, event):
                raise RuntimeError("socket closed")

        service = TriggerService(seeded_store, dedup, rate_limiter, channel, bus=ExplodingBus(), clock=clock)
        result = await service.trigger_alert(make_candidate())
        assert result.sent_count == 1


class TestRenderMessage:
    @pytest.mark.asyncio
    async def test_deterministic(self, service, seeded_store):
        result = await service.trigger_alert(make_candidate())
        event = seeded_store.get_alert_event(result.alert_id)

        body = render_message(event)
        assert body == render_message(event)
        assert body.startswith("[CRITICAL] Robot offline (robot_status)")
        assert "Robot: bot1" in body
        assert "Time: 2026-03-01 12:00:00 UTC" in body
        assert "Details: Robot bot1 offline for 10 minutes" in body


class TestAcknowledge:
    @pytest.mark.asyncio
    async def test_acknowledge_sent_alert(self, service, seeded_store, bus, clock):
        result = await service.trigger_alert(make_candidate())
        sub = await bus.subscribe(ALERT_ACKNOWLEDGED)
        clock.advance(60)

        event = await service.acknowledge_alert(result.alert_id, "ops")

        assert event.status is AlertStatus.ACKNOWLEDGED
        assert seeded_store.get_alert_event(result.alert_id).acknowledged_by == "ops"
        assert sub.get_nowait().payload == {"alert_id": result.alert_id, "user_id": "ops"}

    @pytest.mark.asyncio
    async def test_unknown_alert(self, service):
        with pytest.raises(AlertNotFoundError):
            await service.acknowledge_alert("missing", "ops")

    @pytest.mark.asyncio
    async def test_acknowledge_closed_rejected(self, service, seeded_store):
        result = await service.trigger_alert(make_candidate())
        await service.close_alert(result.alert_id, "ops")

        with pytest.raises(InvalidTransitionError):
            await service.acknowledge_alert(result.alert_id, "ops")
        assert seeded_store.get_alert_event(result.alert_id).status is AlertStatus.CLOSED


class TestClose:
    @pytest.mark.asyncio
    async def test_close_from_sent(self, service, seeded_store, bus, clock):
        result = await service.trigger_alert(make_candidate())
        sub = await bus.subscribe(ALERT_CLOSED)
        clock.advance(90.5)

        event = await service.close_alert(result.alert_id, "ops")

        assert event.status is AlertStatus.CLOSED
        assert event.resolved_duration == 90
        assert event.resolved_duration >= 0
        stored = seeded_store.get_alert_event(result.alert_id)
        assert stored.closed_by == "ops"
        assert sub.get_nowait().payload["resolved_duration"] == 90

    @pytest.mark.asyncio
    async def test_close_twice_is_noop(self, service, bus, clock):
        result = await service.trigger_alert(make_candidate())
        first = await service.close_alert(result.alert_id, "ops")
        sub = await bus.subscribe()
        clock.advance(100)

        second = await service.close_alert(result.alert_id, "someone-else")

        assert second.closed_at == first.closed_at
        assert second.closed_by == "ops"
        assert sub.pending() == 0

    @pytest.mark.asyncio
    async def test_unknown_alert(self, service):
        with pytest.raises(AlertNotFoundError):
            await service.close_alert("missing", "ops")

    @pytest.mark.asyncio
    async def test_close_resets_recipient_counts(self, seeded_store, dedup, channel, clock, monkeypatch):
        limiter = RateLimiter(seeded_store, clock=clock)
        service = TriggerService(seeded_store, dedup, limiter, channel, clock=clock)
        calls = []
        monkeypatch.setattr(limiter, "reset_user_count", lambda rid, rule: calls.append((rid, rule)))

        result = await service.trigger_alert(make_candidate())
        await service.close_alert(result.alert_id, "ops")

        assert calls == [("u1", "r1")]

    @pytest.mark.asyncio
    async def test_close_no_recipients_alert(self, service):
        result = await service.trigger_alert(make_candidate(subject_id="bot-unknown"))
        event = await service.close_alert(result.alert_id, "ops")
        assert event.status is AlertStatus.CLOSED

    @pytest.mark.asyncio
    async def test_close_during_fanout_stays_closed(self, seeded_store, dedup, rate_limiter, clock):
        channel = RecordingChannel(hang=True)
        service = TriggerService(seeded_store, dedup, rate_limiter, channel, clock=clock, delivery_timeout_seconds=5)

        task = asyncio.create_task(service.trigger_alert(make_candidate()))
        while not seeded_store._events:
            await asyncio.sleep(0)
        [alert_id] = seeded_store._events
        clock.advance(30)

        closed = await service.close_alert(alert_id, "ops")
        channel.release.set()
        result = await task

        assert result.sent_count == 1
        stored = seeded_store.get_alert_event(alert_id)
        assert stored.status is AlertStatus.CLOSED
        assert stored.closed_by == "ops"
        assert stored.closed_at == closed.closed_at
        assert stored.resolved_duration == 30


class TestQueries:
    @pytest.mark.asyncio
    async def test_get_alert_and_notifications(self, service):
        result = await service.trigger_alert(make_candidate())
        assert service.get_alert(result.alert_id).id == result.alert_id
        assert len(service.list_notifications(result.alert_id)) == 1
        assert service.get_alert("missing") is None
