"""Behavioural tests shared by InMemoryAlertStore and SqlAlertStore."""

from dataclasses import replace
from datetime import timedelta

import pytest

from botwatch.alerting.models import (
    AlertEvent,
    AlertLevel,
    AlertStatus,
    DedupRecord,
    Notification,
    NotificationStatus,
)
from botwatch.alerting.store import AlertStore, InMemoryAlertStore, SqlAlertStore
from botwatch.core.timestamps import generate_ulid

from _support import EPOCH, make_recipient, make_rule


@pytest.fixture(params=["memory", "sql"])
def any_store(request, sql_store) -> AlertStore:
    if request.param == "memory":
        return InMemoryAlertStore()
    return sql_store


def make_event(alert_id: str = "a1", **overrides) -> AlertEvent:
    values = dict(
        id=alert_id,
        rule_id="r1",
        rule_name="Robot offline",
        event_kind="robot_status",
        subject_id="bot1",
        level=AlertLevel.CRITICAL,
        message="offline",
        status=AlertStatus.PENDING,
        created_at=EPOCH,
    )
    values.update(overrides)
    return AlertEvent(**values)


def make_notification(alert_id="a1", *, recipient_id="u1", rule_id="r1", status=NotificationStatus.SENT, at=EPOCH):
    return Notification(
        id=generate_ulid(),
        alert_id=alert_id,
        recipient_id=recipient_id,
        rule_id=rule_id,
        status=status,
        created_at=at,
    )


def make_dedup(key="r1|bot1|u1|robot_status", *, at=EPOCH, cooldown=300) -> DedupRecord:
    return DedupRecord(
        dedup_key=key,
        rule_id="r1",
        subject_id="bot1",
        recipient_id="u1",
        event_kind="robot_status",
        first_trigger_time=at,
        last_trigger_time=at,
        trigger_count=1,
        cooldown_period=cooldown,
    )


class TestProtocol:
    def test_both_implementations_satisfy_protocol(self, sql_store):
        assert isinstance(InMemoryAlertStore(), AlertStore)
        assert isinstance(sql_store, AlertStore)
        assert isinstance(sql_store, SqlAlertStore)


class TestRulesAndRecipients:
    def test_only_enabled_rules_listed(self, any_store):
        any_store.add_rule(make_rule(id="r1"))
        any_store.add_rule(make_rule(id="r2", enabled=False))

        assert [r.id for r in any_store.list_enabled_rules()] == ["r1"]
        assert any_store.get_rule("r2").enabled is False
        assert any_store.get_rule("missing") is None

    def test_rule_round_trip(self, any_store):
        rule = make_rule(threshold=7.5, max_notify_count=None, cooldown_seconds=None)
        any_store.add_rule(rule)
        assert any_store.get_rule("r1") == rule

    def test_find_recipients_by_scope_and_level(self, any_store):
        any_store.add_recipient(make_recipient(id="u1"))
        any_store.add_recipient(make_recipient(id="u2", robot_ids=frozenset({"bot2"})))
        any_store.add_recipient(make_recipient(id="u3", alert_levels=frozenset({AlertLevel.INFO})))
        any_store.add_recipient(make_recipient(id="u4", enabled=False))

        found = any_store.find_recipients("bot1", AlertLevel.CRITICAL)
        assert [r.id for r in found] == ["u1"]
        assert found[0].alert_levels == frozenset({AlertLevel.CRITICAL})


class TestAlertEvents:
    def test_create_and_get(self, any_store):
        any_store.create_alert_event(make_event(metadata={"elapsed_minutes": 10.0}))
        event = any_store.get_alert_event("a1")

        assert event.status is AlertStatus.PENDING
        assert event.created_at == EPOCH
        assert event.metadata == {"elapsed_minutes": 10.0}
        assert any_store.get_alert_event("missing") is None

    def test_save_updates_lifecycle_fields(self, any_store):
        event = make_event()
        any_store.create_alert_event(event)

        closed_at = EPOCH + timedelta(minutes=5)
        any_store.save_alert_event(
            replace(event, status=AlertStatus.CLOSED, closed_at=closed_at, closed_by="ops", resolved_duration=300)
        )

        stored = any_store.get_alert_event("a1")
        assert stored.status is AlertStatus.CLOSED
        assert stored.closed_at == closed_at
        assert stored.closed_by == "ops"
        assert stored.resolved_duration == 300

    def test_save_unknown_event_raises(self, any_store):
        with pytest.raises(KeyError):
            any_store.save_alert_event(make_event("ghost"))

    def test_save_with_expected_status(self, any_store):
        event = make_event()
        any_store.create_alert_event(event)
        closed = replace(event, status=AlertStatus.CLOSED, closed_at=EPOCH, closed_by="ops", resolved_duration=0)
        assert any_store.save_alert_event(closed, expected_status=AlertStatus.PENDING) is True

        sent = replace(event, status=AlertStatus.SENT)
        assert any_store.save_alert_event(sent, expected_status=AlertStatus.PENDING) is False

        stored = any_store.get_alert_event("a1")
        assert stored.status is AlertStatus.CLOSED
        assert stored.closed_by == "ops"

    def test_save_with_expected_status_unknown_raises(self, any_store):
        with pytest.raises(KeyError):
            any_store.save_alert_event(make_event("ghost"), expected_status=AlertStatus.PENDING)


class TestDedupRecords:
    def test_insert_and_get(self, any_store):
        any_store.insert_dedup_record(make_dedup())
        record = any_store.get_dedup_record("r1|bot1|u1|robot_status")

        assert record.trigger_count == 1
        assert record.last_trigger_time == EPOCH
        assert record.cooldown_period == 300

    def test_touch_increments_and_refreshes(self, any_store):
        any_store.insert_dedup_record(make_dedup())
        later = EPOCH + timedelta(seconds=90)

        record = any_store.touch_dedup_record("r1|bot1|u1|robot_status", later)

        assert record.trigger_count == 2
        assert record.last_trigger_time == later
        assert record.first_trigger_time == EPOCH
        assert record.status == "active"

    def test_last_trigger_time_never_moves_back(self, any_store):
        any_store.insert_dedup_record(make_dedup(at=EPOCH + timedelta(minutes=10)))

        record = any_store.touch_dedup_record("r1|bot1|u1|robot_status", EPOCH)

        assert record.last_trigger_time == EPOCH + timedelta(minutes=10)
        assert record.trigger_count == 2

    def test_touch_missing_returns_none(self, any_store):
        assert any_store.touch_dedup_record("nope", EPOCH) is None

    def test_insert_existing_key_touches(self, any_store):
        any_store.insert_dedup_record(make_dedup())
        record = any_store.insert_dedup_record(make_dedup(at=EPOCH + timedelta(seconds=5)))

        assert record.trigger_count == 2
        assert record.last_trigger_time == EPOCH + timedelta(seconds=5)

    def test_delete_expired_uses_twice_cooldown(self, any_store):
        any_store.insert_dedup_record(make_dedup("old", at=EPOCH, cooldown=60))
        any_store.insert_dedup_record(make_dedup("fresh", at=EPOCH + timedelta(seconds=100), cooldown=60))

        deleted = any_store.delete_expired_dedup_records(EPOCH + timedelta(seconds=121))

        assert deleted == 1
        assert any_store.get_dedup_record("old") is None
        assert any_store.get_dedup_record("fresh") is not None

    def test_stats(self, any_store):
        any_store.insert_dedup_record(make_dedup("a"))
        any_store.insert_dedup_record(make_dedup("b"))
        any_store.touch_dedup_record("b", EPOCH)
        any_store.touch_dedup_record("b", EPOCH)

        stats = any_store.dedup_stats()
        assert stats == {"total_count": 2, "active_count": 2, "avg_trigger_count": 2.0}

    def test_stats_empty(self, any_store):
        assert any_store.dedup_stats() == {"total_count": 0, "active_count": 0, "avg_trigger_count": 0.0}


class TestNotifications:
    def test_counts_only_sent(self, any_store):
        any_store.create_alert_event(make_event())
        any_store.add_notification(make_notification())
        any_store.add_notification(make_notification(status=NotificationStatus.FAILED))
        any_store.add_notification(make_notification(status=NotificationStatus.SKIPPED_DUPLICATE))

        assert any_store.count_sent_notifications(recipient_id="u1") == 1

    def test_sliding_window_cutoff(self, any_store):
        any_store.create_alert_event(make_event())
        any_store.add_notification(make_notification(at=EPOCH - timedelta(seconds=61)))
        any_store.add_notification(make_notification(at=EPOCH - timedelta(seconds=30)))
        any_store.add_notification(make_notification(at=EPOCH))

        since = EPOCH - timedelta(seconds=60)
        assert any_store.count_sent_notifications(recipient_id="u1", since=since) == 2
        assert any_store.count_sent_notifications(recipient_id="u1") == 3

    def test_filters_by_rule_and_recipient(self, any_store):
        any_store.create_alert_event(make_event())
        any_store.add_notification(make_notification(recipient_id="u1", rule_id="r1"))
        any_store.add_notification(make_notification(recipient_id="u2", rule_id="r1"))
        any_store.add_notification(make_notification(recipient_id="u1", rule_id="r2"))

        assert any_store.count_sent_notifications(rule_id="r1") == 2
        assert any_store.count_sent_notifications(recipient_id="u1", rule_id="r1") == 1

    def test_exclude_closed_alerts(self, any_store):
        any_store.create_alert_event(make_event("open"))
        any_store.create_alert_event(make_event("done", status=AlertStatus.CLOSED))
        any_store.add_notification(make_notification("open"))
        any_store.add_notification(make_notification("done"))

        assert any_store.count_sent_notifications(recipient_id="u1", rule_id="r1") == 2
        assert any_store.count_sent_notifications(recipient_id="u1", rule_id="r1", exclude_closed_alerts=True) == 1

    def test_list_for_alert(self, any_store):
        any_store.create_alert_event(make_event("a1"))
        any_store.create_alert_event(make_event("a2"))
        any_store.add_notification(make_notification("a1", recipient_id="u1"))
        any_store.add_notification(make_notification("a2", recipient_id="u2"))
        any_store.add_notification(
            make_notification("a1", recipient_id="u3", status=NotificationStatus.SKIPPED_LIMITED, at=EPOCH + timedelta(seconds=1))
        )

        listed = any_store.list_notifications("a1")
        assert [n.recipient_id for n in listed] == ["u1", "u3"]
        assert listed[1].status is NotificationStatus.SKIPPED_LIMITED

    def test_notification_stats(self, any_store):
        any_store.create_alert_event(make_event())
        any_store.add_notification(make_notification(at=EPOCH))
        any_store.add_notification(make_notification(at=EPOCH - timedelta(minutes=30)))
        any_store.add_notification(make_notification(status=NotificationStatus.FAILED, at=EPOCH - timedelta(hours=2)))

        stats = any_store.notification_stats(EPOCH - timedelta(minutes=1), EPOCH - timedelta(hours=1))
        assert stats == {
            "total_notifications": 3,
            "last_minute_count": 1,
            "last_hour_count": 2,
            "success_count": 2,
            "failure_count": 1,
        }
