"""
RuleEngine: periodic evaluation of alert rules.

Each tick loads the enabled rules, evaluates them concurrently (one bounded
task per rule), merges the candidates and hands them to the TriggerService
one by one. A tick that arrives while the previous pass is still running is
skipped, not queued.

Failure isolation:
- a rule that raises or exceeds ``rule_timeout_seconds`` is logged and
  contributes no candidates; it is retried on the next tick
- a candidate whose AlertEvent cannot be persisted is logged; the others
  still go out
- failing to list rules at all propagates to the caller of the pass
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any

from botwatch.alerting.evaluators import EvaluatorRegistry
from botwatch.alerting.models import AlertRule, CandidateAlert
from botwatch.alerting.state import RobotStateProvider
from botwatch.alerting.store.protocol import AlertStore
from botwatch.alerting.trigger import TriggerService
from botwatch.core.errors import AlertPersistenceError, ErrorContext, RuleEvaluationError
from botwatch.core.logging import get_logger
from botwatch.core.scheduling import AsyncioTickBackend, SchedulerBackend
from botwatch.core.timestamps import Clock, to_iso8601, utc_now

logger = get_logger(__name__)

__all__ = ["RuleEngine", "EvaluationSummary"]


@dataclass
class EvaluationSummary:
    """Outcome of one evaluation pass."""

    rules_evaluated: int = 0
    rule_failures: int = 0
    candidates: int = 0
    alerts_triggered: int = 0
    notifications_sent: int = 0
    persistence_failures: int = 0
    duration_seconds: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class RuleEngine:
    """Schedules and runs rule evaluation passes."""

    def __init__(
        self,
        store: AlertStore,
        state_provider: RobotStateProvider,
        trigger: TriggerService,
        *,
        registry: EvaluatorRegistry | None = None,
        backend: SchedulerBackend | None = None,
        interval_seconds: float = 60.0,
        rule_timeout_seconds: float = 5.0,
        clock: Clock = utc_now,
    ):
        self._store = store
        self._state = state_provider
        self._trigger = trigger
        self._registry = registry or EvaluatorRegistry()
        self._backend = backend or AsyncioTickBackend(name="rule-engine")
        self._interval = interval_seconds
        self._rule_timeout = rule_timeout_seconds
        self._clock = clock

        self._running = False
        self._in_flight = False
        self._last_evaluation_at: datetime | None = None
        self._last_summary: EvaluationSummary | None = None
        self._passes = 0
        self._skipped_ticks = 0
        self._rule_failures = 0

    # -- lifecycle -------------------------------------------------------------

    async def start(self) -> None:
        """Start ticking; the first pass runs immediately. No-op if running."""
        if self._running:
            logger.debug("rule_engine_already_running")
            return
        await self._backend.start(self.evaluate_once, self._interval)
        self._running = True
        logger.info("rule_engine_started", interval_seconds=self._interval)

    async def stop(self) -> None:
        """Stop ticking. An in-flight pass is allowed to finish."""
        if not self._running:
            return
        await self._backend.stop()
        self._running = False
        logger.info("rule_engine_stopped", passes=self._passes, skipped_ticks=self._skipped_ticks)

    @property
    def is_running(self) -> bool:
        return self._running

    # -- evaluation ------------------------------------------------------------

    async def evaluate_once(self) -> None:
        """Run one pass unless another is in flight."""
        await self._guarded_pass()

    async def evaluate_now(self) -> EvaluationSummary | None:
        """Run one pass on demand. Returns ``None`` if a pass is already running."""
        return await self._guarded_pass()

    async def _guarded_pass(self) -> EvaluationSummary | None:
        if self._in_flight:
            self._skipped_ticks += 1
            logger.warning("rule_evaluation_skipped", reason="previous pass still running")
            return None

        self._in_flight = True
        try:
            return await self._run_pass()
        finally:
            self._in_flight = False

    async def _run_pass(self) -> EvaluationSummary:
        started = time.monotonic()
        now = self._clock()
        summary = EvaluationSummary()

        rules = self._store.list_enabled_rules()
        summary.rules_evaluated = len(rules)

        batches = await asyncio.gather(*(self._evaluate_rule(rule, now) for rule in rules))
        candidates = [candidate for batch in batches if batch is not None for candidate in batch]
        summary.rule_failures = sum(1 for batch in batches if batch is None)
        summary.candidates = len(candidates)

        for candidate in candidates:
            try:
                result = await self._trigger.trigger_alert(candidate)
            except AlertPersistenceError as e:
                summary.persistence_failures += 1
                logger.error("alert_persistence_failed", **e.to_dict())
                continue
            summary.alerts_triggered += 1
            summary.notifications_sent += result.sent_count

        summary.duration_seconds = time.monotonic() - started
        self._passes += 1
        self._rule_failures += summary.rule_failures
        self._last_evaluation_at = now
        self._last_summary = summary

        logger.info("rule_evaluation_completed", **summary.to_dict())
        return summary

    async def _evaluate_rule(self, rule: AlertRule, now: datetime) -> list[CandidateAlert] | None:
        """Candidates for one rule, or ``None`` if the rule failed."""
        evaluator = self._registry.get(rule.rule_kind)
        try:
            state = await asyncio.wait_for(
                asyncio.to_thread(evaluator.load_state, self._state),
                timeout=self._rule_timeout,
            )
            return evaluator.evaluate(rule, state, now)
        except asyncio.TimeoutError as e:
            error = RuleEvaluationError(
                f"Rule {rule.id} exceeded {self._rule_timeout}s",
                context=ErrorContext(rule_id=rule.id),
                cause=e,
            )
        except Exception as e:
            error = RuleEvaluationError(
                f"Rule {rule.id} failed: {e}",
                context=ErrorContext(rule_id=rule.id),
                cause=e,
            )
        logger.error("rule_evaluation_failed", **error.to_dict())
        return None

    # -- status ----------------------------------------------------------------

    def get_status(self) -> dict[str, Any]:
        return {
            "running": self._running,
            "in_flight": self._in_flight,
            "interval_seconds": self._interval,
            "rule_timeout_seconds": self._rule_timeout,
            "last_evaluation_at": to_iso8601(self._last_evaluation_at),
            "last_summary": self._last_summary.to_dict() if self._last_summary else None,
            "passes": self._passes,
            "skipped_ticks": self._skipped_ticks,
            "rule_failures": self._rule_failures,
            "backend": self._backend.get_health().to_dict(),
        }
