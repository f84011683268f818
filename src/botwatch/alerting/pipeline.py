"""
Composition root for the alerting pipeline.

``AlertPipeline`` owns one instance of every component and wires them
together: the dedup cache and the rate limits live here, not in module
globals, so tests build a pipeline with a fake clock and an in-memory store.

Example::

    settings = BotwatchSettings()
    pipeline = build_pipeline(settings)
    async with pipeline:
        ...  # engine ticking, dedup maintenance running

Admin operations (acknowledge, close, stats, limits) go through the same
object, whether called from the CLI or from a long-running service.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy.engine import Engine

from botwatch.alerting.channels import CommandQueueChannel, DeliveryChannel
from botwatch.alerting.dedup import DedupGate
from botwatch.alerting.evaluators import EvaluatorRegistry
from botwatch.alerting.models import AlertEvent, CandidateAlert, Notification, TriggerResult
from botwatch.alerting.rate_limiter import RateLimiter, RateLimits
from botwatch.alerting.rule_engine import EvaluationSummary, RuleEngine
from botwatch.alerting.state import RobotStateProvider, SqlRobotStateProvider
from botwatch.alerting.store import AlertStore, SqlAlertStore
from botwatch.alerting.trigger import TriggerService
from botwatch.core.events import EventBus
from botwatch.core.events.memory import InMemoryEventBus, Subscription
from botwatch.core.logging import get_logger
from botwatch.core.orm.session import create_botwatch_engine
from botwatch.core.scheduling import AsyncioTickBackend, SchedulerBackend
from botwatch.core.settings import BotwatchSettings
from botwatch.core.timestamps import Clock, utc_now

logger = get_logger(__name__)

__all__ = ["AlertPipeline", "build_pipeline"]


class AlertPipeline:
    """All alerting components, constructed once and shared by reference."""

    def __init__(
        self,
        *,
        store: AlertStore,
        state_provider: RobotStateProvider,
        channel: DeliveryChannel,
        settings: BotwatchSettings | None = None,
        bus: EventBus | None = None,
        registry: EvaluatorRegistry | None = None,
        engine_backend: SchedulerBackend | None = None,
        maintenance_backend: SchedulerBackend | None = None,
        clock: Clock = utc_now,
        db_engine: Engine | None = None,
    ):
        settings = settings or BotwatchSettings()
        self.settings = settings
        self.store = store
        self.bus = bus or InMemoryEventBus(queue_size=settings.live_update_queue_size)
        self.db_engine = db_engine

        self.dedup = DedupGate(
            store,
            cache_ttl_seconds=settings.dedup_cache_ttl_seconds,
            cache_max_size=settings.dedup_cache_max_size,
            default_cooldown_seconds=settings.default_cooldown_seconds,
            clock=clock,
        )
        self.rate_limiter = RateLimiter(
            store,
            RateLimits(
                per_user_per_minute=settings.rate_per_user_per_minute,
                per_user_per_hour=settings.rate_per_user_per_hour,
                per_rule_per_minute=settings.rate_per_rule_per_minute,
                default_max_notify_count=settings.default_max_notify_count,
            ),
            clock=clock,
        )
        self.trigger = TriggerService(
            store,
            self.dedup,
            self.rate_limiter,
            channel,
            bus=self.bus,
            clock=clock,
            delivery_timeout_seconds=settings.delivery_timeout_seconds,
            delivery_max_retries=settings.delivery_max_retries,
            default_cooldown_seconds=settings.default_cooldown_seconds,
        )
        self.engine = RuleEngine(
            store,
            state_provider,
            self.trigger,
            registry=registry,
            backend=engine_backend,
            interval_seconds=settings.evaluation_interval_seconds,
            rule_timeout_seconds=settings.rule_timeout_seconds,
            clock=clock,
        )
        self._maintenance = maintenance_backend or AsyncioTickBackend(name="dedup-maintenance")

    # -- lifecycle -------------------------------------------------------------

    async def start(self) -> None:
        await self.engine.start()
        await self._maintenance.start(self._clean_dedup, self.settings.dedup_cleanup_interval_seconds)

    async def stop(self) -> None:
        await self.engine.stop()
        await self._maintenance.stop()
        await self.bus.close()
        if self.db_engine is not None:
            self.db_engine.dispose()

    async def __aenter__(self) -> AlertPipeline:
        await self.start()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.stop()

    async def _clean_dedup(self) -> None:
        self.dedup.clean_expired()

    # -- alert operations ------------------------------------------------------

    async def trigger_alert(self, candidate: CandidateAlert) -> TriggerResult:
        return await self.trigger.trigger_alert(candidate)

    async def acknowledge_alert(self, alert_id: str, user_id: str) -> AlertEvent:
        return await self.trigger.acknowledge_alert(alert_id, user_id)

    async def close_alert(self, alert_id: str, user_id: str) -> AlertEvent:
        return await self.trigger.close_alert(alert_id, user_id)

    def get_alert(self, alert_id: str) -> AlertEvent | None:
        return self.trigger.get_alert(alert_id)

    def list_notifications(self, alert_id: str) -> list[Notification]:
        return self.trigger.list_notifications(alert_id)

    async def evaluate_now(self) -> EvaluationSummary | None:
        return await self.engine.evaluate_now()

    # -- admin -----------------------------------------------------------------

    def get_dedup_stats(self) -> dict[str, Any]:
        return self.dedup.get_stats()

    def get_rate_limiter_stats(self) -> dict[str, Any]:
        return self.rate_limiter.get_stats()

    def update_limits(self, **limits: int) -> RateLimits:
        return self.rate_limiter.update_limits(**limits)

    def get_limits(self) -> RateLimits:
        return self.rate_limiter.get_limits()

    def get_status(self) -> dict[str, Any]:
        return {
            "engine": self.engine.get_status(),
            "maintenance": self._maintenance.get_health().to_dict(),
        }

    # -- live updates ----------------------------------------------------------

    async def subscribe(self, pattern: str = "*") -> Subscription:
        return await self.bus.subscribe(pattern)

    async def unsubscribe(self, subscription_id: str) -> None:
        await self.bus.unsubscribe(subscription_id)


def build_pipeline(
    settings: BotwatchSettings | None = None,
    *,
    channel: DeliveryChannel | None = None,
    create_schema: bool = False,
    clock: Clock = utc_now,
) -> AlertPipeline:
    """Build a database-backed pipeline from settings.

    Args:
        settings: Loaded settings (defaults read from the environment)
        channel: Delivery channel; defaults to the robot command queue
        create_schema: Create missing tables before returning
        clock: Timestamp source shared by every component
    """
    settings = settings or BotwatchSettings()
    engine = create_botwatch_engine(settings.database_url, echo=settings.debug)

    store = SqlAlertStore(engine)
    if create_schema:
        store.create_schema()

    logger.info("pipeline_built", database_url=engine.url.render_as_string(hide_password=True))
    return AlertPipeline(
        store=store,
        state_provider=SqlRobotStateProvider(engine),
        channel=channel or CommandQueueChannel(engine, clock=clock),
        settings=settings,
        clock=clock,
        db_engine=engine,
    )
