"""Tests for botwatch.alerting.rule_engine: passes, isolation, skipping and scheduling."""

import asyncio
import time
from datetime import timedelta

import pytest

from botwatch.alerting.evaluators import (
    AiErrorEvaluator,
    EvaluatorRegistry,
    RobotHealthEvaluator,
    RobotStatusEvaluator,
)
from botwatch.alerting.models import RuleKind
from botwatch.alerting.rule_engine import RuleEngine
from botwatch.alerting.state import RobotSnapshot
from botwatch.alerting.trigger import TriggerService
from botwatch.core.errors import AlertPersistenceError

from _support import make_rule


class ExplodingEvaluator:
    kind = RuleKind.EXECUTION_FAILURE

    def load_state(self, provider):
        raise RuntimeError("execution stats unavailable")

    def evaluate(self, rule, state, now):
        return []


class SlowEvaluator:
    kind = RuleKind.EXECUTION_FAILURE

    def load_state(self, provider):
        time.sleep(0.5)
        return []

    def evaluate(self, rule, state, now):
        return []


def registry_with(evaluator) -> EvaluatorRegistry:
    return EvaluatorRegistry([RobotStatusEvaluator(), RobotHealthEvaluator(), AiErrorEvaluator(), evaluator])


@pytest.fixture
def engine(seeded_store, robots, trigger, clock):
    return RuleEngine(seeded_store, robots, trigger, interval_seconds=3600, rule_timeout_seconds=1.0, clock=clock)


class TestEvaluationPass:
    @pytest.mark.asyncio
    async def test_offline_robot_alerts(self, engine, seeded_store, channel):
        summary = await engine.evaluate_now()

        assert summary.rules_evaluated == 1
        assert summary.candidates == 1
        assert summary.alerts_triggered == 1
        assert summary.notifications_sent == 1
        assert summary.rule_failures == 0
        assert len(channel.submissions) == 1
        assert "offline for 10 minutes" in channel.submissions[0]["body"]

    @pytest.mark.asyncio
    async def test_disabled_rules_ignored(self, seeded_store, robots, trigger, clock):
        seeded_store.add_rule(make_rule(enabled=False))
        engine = RuleEngine(seeded_store, robots, trigger, clock=clock)

        summary = await engine.evaluate_now()
        assert summary.rules_evaluated == 0

    @pytest.mark.asyncio
    async def test_failing_rule_isolated(self, seeded_store, robots, trigger, clock, channel):
        seeded_store.add_rule(make_rule(id="r2", rule_kind=RuleKind.EXECUTION_FAILURE, threshold=10))
        engine = RuleEngine(seeded_store, robots, trigger, registry=registry_with(ExplodingEvaluator()), clock=clock)

        summary = await engine.evaluate_now()

        assert summary.rules_evaluated == 2
        assert summary.rule_failures == 1
        assert summary.alerts_triggered == 1
        assert len(channel.submissions) == 1
        assert engine.get_status()["rule_failures"] == 1

    @pytest.mark.asyncio
    async def test_slow_rule_times_out(self, seeded_store, robots, trigger, clock):
        seeded_store.add_rule(make_rule(id="r2", rule_kind=RuleKind.EXECUTION_FAILURE, threshold=10))
        engine = RuleEngine(
            seeded_store,
            robots,
            trigger,
            registry=registry_with(SlowEvaluator()),
            rule_timeout_seconds=0.05,
            clock=clock,
        )

        summary = await engine.evaluate_now()

        assert summary.rule_failures == 1
        assert summary.alerts_triggered == 1

    @pytest.mark.asyncio
    async def test_persistence_failure_counted(self, seeded_store, robots, trigger, clock, monkeypatch):
        seeded_store.add_rule(make_rule(id="r2", rule_name="Second rule"))
        robots.upsert(
            RobotSnapshot(robot_id="bot2", status="offline", last_check_at=clock() - timedelta(minutes=30))
        )
        original = trigger.trigger_alert

        async def flaky(candidate):
            if candidate.subject_id == "bot2" and candidate.rule_id == "r1":
                raise AlertPersistenceError("insert failed")
            return await original(candidate)

        monkeypatch.setattr(trigger, "trigger_alert", flaky)
        engine = RuleEngine(seeded_store, robots, trigger, clock=clock)

        summary = await engine.evaluate_now()

        assert summary.candidates == 4
        assert summary.persistence_failures == 1
        assert summary.alerts_triggered == 3

    @pytest.mark.asyncio
    async def test_second_pass_is_deduplicated(self, engine, channel, clock):
        await engine.evaluate_now()
        clock.advance(minutes=1)
        summary = await engine.evaluate_now()

        assert summary.alerts_triggered == 1
        assert summary.notifications_sent == 0
        assert len(channel.submissions) == 1


class TestOverlap:
    @pytest.mark.asyncio
    async def test_concurrent_pass_skipped(self, seeded_store, robots, clock, dedup, rate_limiter):
        from _support import RecordingChannel

        channel = RecordingChannel(hang=True)
        trigger = TriggerService(seeded_store, dedup, rate_limiter, channel, clock=clock, delivery_timeout_seconds=5)
        engine = RuleEngine(seeded_store, robots, trigger, clock=clock)

        first = asyncio.create_task(engine.evaluate_now())
        for _ in range(100):
            if engine.get_status()["in_flight"]:
                break
            await asyncio.sleep(0.01)

        assert await engine.evaluate_now() is None
        await engine.evaluate_once()

        channel.release.set()
        summary = await first
        assert summary.notifications_sent == 1
        assert engine.get_status()["skipped_ticks"] == 2
        assert engine.get_status()["in_flight"] is False


class TestScheduling:
    @pytest.mark.asyncio
    async def test_start_runs_first_pass_immediately(self, engine, channel):
        await engine.start()
        for _ in range(200):
            if engine.get_status()["passes"]:
                break
            await asyncio.sleep(0.01)
        await engine.stop()

        assert engine.get_status()["passes"] == 1
        assert len(channel.submissions) == 1

    @pytest.mark.asyncio
    async def test_start_twice_is_noop(self, engine):
        await engine.start()
        await engine.start()
        assert engine.is_running
        await engine.stop()
        assert not engine.is_running

    @pytest.mark.asyncio
    async def test_stop_without_start(self, engine):
        await engine.stop()
        assert not engine.is_running

    @pytest.mark.asyncio
    async def test_status_shape(self, engine, clock):
        await engine.evaluate_now()
        status = engine.get_status()

        assert status["running"] is False
        assert status["interval_seconds"] == 3600
        assert status["rule_timeout_seconds"] == 1.0
        assert status["passes"] == 1
        assert status["last_evaluation_at"].startswith("2026-03-01T12:00:00")
        assert status["last_summary"]["alerts_triggered"] == 1
        assert status["backend"]["backend"] == "rule-engine"
