"""
Shared pytest fixtures for botwatch tests.

Provides a fake clock, in-memory and in-memory-SQLite stores, a recording
delivery channel, a robot state provider and a fully wired pipeline.
"""

from __future__ import annotations

from datetime import timedelta

import pytest

from _support import FakeClock, RecordingChannel, make_recipient, make_rule
from botwatch.alerting.dedup import DedupGate
from botwatch.alerting.pipeline import AlertPipeline
from botwatch.alerting.rate_limiter import RateLimiter
from botwatch.alerting.state import InMemoryRobotStateProvider, RobotSnapshot
from botwatch.alerting.store import InMemoryAlertStore, SqlAlertStore
from botwatch.alerting.trigger import TriggerService
from botwatch.core.orm.session import create_botwatch_engine
from botwatch.core.settings import BotwatchSettings


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> InMemoryAlertStore:
    return InMemoryAlertStore()


@pytest.fixture
def sql_engine():
    engine = create_botwatch_engine("sqlite://")
    yield engine
    engine.dispose()


@pytest.fixture
def sql_store(sql_engine) -> SqlAlertStore:
    s = SqlAlertStore(sql_engine)
    s.create_schema()
    return s


@pytest.fixture
def channel() -> RecordingChannel:
    return RecordingChannel()


@pytest.fixture
def robots(clock) -> InMemoryRobotStateProvider:
    """bot1 offline for ten minutes."""
    return InMemoryRobotStateProvider(
        [
            RobotSnapshot(
                robot_id="bot1",
                name="Front desk",
                status="offline",
                last_check_at=clock() - timedelta(minutes=10),
            )
        ]
    )


@pytest.fixture
def settings() -> BotwatchSettings:
    return BotwatchSettings(
        _env_file=None,
        database_url="sqlite://",
        evaluation_interval_seconds=3600,
        dedup_cleanup_interval_seconds=3600,
        rule_timeout_seconds=1.0,
        delivery_timeout_seconds=1.0,
    )


@pytest.fixture
def dedup(store, clock) -> DedupGate:
    return DedupGate(store, clock=clock)


@pytest.fixture
def rate_limiter(store, clock) -> RateLimiter:
    return RateLimiter(store, clock=clock)


@pytest.fixture
def trigger(store, dedup, rate_limiter, channel, clock) -> TriggerService:
    return TriggerService(store, dedup, rate_limiter, channel, clock=clock, delivery_timeout_seconds=1.0)


@pytest.fixture
def seeded_store(store) -> InMemoryAlertStore:
    """Rule r1 (critical, 5 minutes) and recipient u1 scoped to bot1."""
    store.add_rule(make_rule())
    store.add_recipient(make_recipient())
    return store


@pytest.fixture
def pipeline(seeded_store, robots, channel, settings, clock) -> AlertPipeline:
    return AlertPipeline(
        store=seeded_store,
        state_provider=robots,
        channel=channel,
        settings=settings,
        clock=clock,
    )
