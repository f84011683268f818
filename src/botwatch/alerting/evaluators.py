"""
Rule evaluators: one implementation per ``RuleKind``.

Each evaluator splits into two halves:

* ``load_state(provider)`` -- blocking read from the state provider. The
  engine runs it in a worker thread.
* ``evaluate(rule, state, now)`` -- pure function producing candidates.
  No I/O, no clock reads; ``now`` is passed in.

``EvaluatorRegistry`` refuses to build unless every ``RuleKind`` has an
evaluator, so adding a kind without an evaluator fails at startup instead
of silently skipping rules.
"""

from __future__ import annotations

import math
from collections.abc import Iterable
from datetime import datetime
from typing import Protocol, runtime_checkable

from botwatch.alerting.models import AlertRule, CandidateAlert, RuleKind
from botwatch.alerting.state import RobotSnapshot, RobotStateProvider
from botwatch.core.errors import ConfigError

__all__ = [
    "RuleEvaluator",
    "RobotStatusEvaluator",
    "ExecutionFailureEvaluator",
    "RobotHealthEvaluator",
    "AiErrorEvaluator",
    "EvaluatorRegistry",
    "default_evaluators",
]


@runtime_checkable
class RuleEvaluator(Protocol):
    """Evaluates rules of one kind."""

    kind: RuleKind

    def load_state(self, provider: RobotStateProvider) -> list[RobotSnapshot]:
        ...

    def evaluate(self, rule: AlertRule, state: list[RobotSnapshot], now: datetime) -> list[CandidateAlert]:
        ...


def _candidate(rule: AlertRule, robot: RobotSnapshot, message: str, **metadata) -> CandidateAlert:
    return CandidateAlert(
        rule_id=rule.id,
        rule_name=rule.rule_name,
        rule_kind=rule.rule_kind,
        level=rule.alert_level,
        subject_id=robot.robot_id,
        message=message,
        metadata={"robot_name": robot.name, **metadata},
        cooldown_seconds=rule.cooldown_seconds,
    )


class RobotStatusEvaluator:
    """Offline for at least ``threshold`` minutes since the last check."""

    kind = RuleKind.ROBOT_STATUS

    def load_state(self, provider: RobotStateProvider) -> list[RobotSnapshot]:
        return provider.offline_robots()

    def evaluate(self, rule: AlertRule, state: list[RobotSnapshot], now: datetime) -> list[CandidateAlert]:
        candidates = []
        for robot in state:
            if robot.last_check_at is None:
                continue
            elapsed_minutes = (now - robot.last_check_at).total_seconds() / 60
            if elapsed_minutes >= rule.threshold:
                candidates.append(
                    _candidate(
                        rule,
                        robot,
                        f"Robot {robot.name or robot.robot_id} offline for {math.floor(elapsed_minutes)} minutes",
                        elapsed_minutes=elapsed_minutes,
                        last_check_at=robot.last_check_at.isoformat(),
                    )
                )
        return candidates


class ExecutionFailureEvaluator:
    """Failure rate (percent) at or above ``threshold``."""

    kind = RuleKind.EXECUTION_FAILURE

    def load_state(self, provider: RobotStateProvider) -> list[RobotSnapshot]:
        return provider.active_robots()

    def evaluate(self, rule: AlertRule, state: list[RobotSnapshot], now: datetime) -> list[CandidateAlert]:
        candidates = []
        for robot in state:
            rate = robot.failure_rate
            if rate is None or rate < rule.threshold:
                continue
            candidates.append(
                _candidate(
                    rule,
                    robot,
                    f"Robot {robot.name or robot.robot_id} execution failure rate {rate:.1f}%",
                    failure_rate=rate,
                    executions_total=robot.executions_total,
                    executions_failed=robot.executions_failed,
                )
            )
        return candidates


class RobotHealthEvaluator:
    """Health score at or below ``threshold``."""

    kind = RuleKind.ROBOT_HEALTH

    def load_state(self, provider: RobotStateProvider) -> list[RobotSnapshot]:
        return provider.active_robots()

    def evaluate(self, rule: AlertRule, state: list[RobotSnapshot], now: datetime) -> list[CandidateAlert]:
        return [
            _candidate(
                rule,
                robot,
                f"Robot {robot.name or robot.robot_id} health score {robot.health_score:g}",
                health_score=robot.health_score,
            )
            for robot in state
            if robot.health_score is not None and robot.health_score <= rule.threshold
        ]


class AiErrorEvaluator:
    """AI error count at or above ``threshold`` (and above zero)."""

    kind = RuleKind.AI_ERROR

    def load_state(self, provider: RobotStateProvider) -> list[RobotSnapshot]:
        return provider.active_robots()

    def evaluate(self, rule: AlertRule, state: list[RobotSnapshot], now: datetime) -> list[CandidateAlert]:
        return [
            _candidate(
                rule,
                robot,
                f"Robot {robot.name or robot.robot_id} reported {robot.ai_error_count} AI errors",
                ai_error_count=robot.ai_error_count,
            )
            for robot in state
            if robot.ai_error_count > 0 and robot.ai_error_count >= rule.threshold
        ]


def default_evaluators() -> list[RuleEvaluator]:
    return [
        RobotStatusEvaluator(),
        ExecutionFailureEvaluator(),
        RobotHealthEvaluator(),
        AiErrorEvaluator(),
    ]


class EvaluatorRegistry:
    """Exhaustive mapping from ``RuleKind`` to evaluator."""

    def __init__(self, evaluators: Iterable[RuleEvaluator] | None = None):
        self._evaluators: dict[RuleKind, RuleEvaluator] = {}
        for evaluator in evaluators if evaluators is not None else default_evaluators():
            self._evaluators[evaluator.kind] = evaluator

        missing = [kind.value for kind in RuleKind if kind not in self._evaluators]
        if missing:
            raise ConfigError(f"No evaluator registered for rule kinds: {', '.join(missing)}")

    def get(self, kind: RuleKind) -> RuleEvaluator:
        return self._evaluators[kind]

    def kinds(self) -> list[RuleKind]:
        return list(self._evaluators)
