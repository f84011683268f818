"""Robot state read model consulted by rule evaluators.

Evaluators never query storage directly. They ask a ``RobotStateProvider``
for snapshots, which keeps each evaluation a pure function of
``(rule, snapshots, now)`` and lets tests substitute a dict.

Tags:
    botwatch, alerting, state, read-model
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol, runtime_checkable

from sqlalchemy import select
from sqlalchemy.engine import Engine

from botwatch.core.orm.session import botwatch_session_factory
from botwatch.core.orm.tables import RobotTable
from botwatch.core.timestamps import ensure_utc

__all__ = [
    "RobotSnapshot",
    "RobotStateProvider",
    "InMemoryRobotStateProvider",
    "SqlRobotStateProvider",
]

OFFLINE = "offline"


@dataclass(frozen=True)
class RobotSnapshot:
    """Point-in-time view of one monitored robot."""

    robot_id: str
    name: str | None = None
    status: str = "online"
    is_active: bool = True
    last_check_at: datetime | None = None
    health_score: float | None = None
    executions_total: int = 0
    executions_failed: int = 0
    ai_error_count: int = 0

    @property
    def failure_rate(self) -> float | None:
        """Failed executions as a percentage, ``None`` without executions."""
        if self.executions_total <= 0:
            return None
        return self.executions_failed / self.executions_total * 100.0


@runtime_checkable
class RobotStateProvider(Protocol):
    """Read model answering "which robots are offline, and since when"."""

    def active_robots(self) -> list[RobotSnapshot]:
        """All active robots."""
        ...

    def offline_robots(self) -> list[RobotSnapshot]:
        """Active robots marked offline with a known last-check time."""
        ...


class InMemoryRobotStateProvider:
    """Dict-backed provider for tests and local runs."""

    def __init__(self, robots: list[RobotSnapshot] | None = None) -> None:
        self._lock = threading.Lock()
        self._robots: dict[str, RobotSnapshot] = {}
        for robot in robots or []:
            self._robots[robot.robot_id] = robot

    def upsert(self, robot: RobotSnapshot) -> None:
        with self._lock:
            self._robots[robot.robot_id] = robot

    def remove(self, robot_id: str) -> None:
        with self._lock:
            self._robots.pop(robot_id, None)

    def active_robots(self) -> list[RobotSnapshot]:
        with self._lock:
            return [r for r in self._robots.values() if r.is_active]

    def offline_robots(self) -> list[RobotSnapshot]:
        return [r for r in self.active_robots() if r.status == OFFLINE and r.last_check_at is not None]


def _snapshot_from_row(row: RobotTable) -> RobotSnapshot:
    return RobotSnapshot(
        robot_id=row.id,
        name=row.name,
        status=row.status,
        is_active=bool(row.is_active),
        last_check_at=ensure_utc(row.last_check_at) if row.last_check_at else None,
        health_score=row.health_score,
        executions_total=row.executions_total or 0,
        executions_failed=row.executions_failed or 0,
        ai_error_count=row.ai_error_count or 0,
    )


class SqlRobotStateProvider:
    """Reads robot snapshots from the ``robots`` table."""

    def __init__(self, engine: Engine) -> None:
        self._session_factory = botwatch_session_factory(engine)

    def upsert(self, robot: RobotSnapshot) -> None:
        with self._session_factory.begin() as session:
            session.merge(
                RobotTable(
                    id=robot.robot_id,
                    name=robot.name,
                    status=robot.status,
                    is_active=robot.is_active,
                    last_check_at=robot.last_check_at,
                    health_score=robot.health_score,
                    executions_total=robot.executions_total,
                    executions_failed=robot.executions_failed,
                    ai_error_count=robot.ai_error_count,
                )
            )

    def active_robots(self) -> list[RobotSnapshot]:
        with self._session_factory() as session:
            rows = session.scalars(
                select(RobotTable).where(RobotTable.is_active.is_(True)).order_by(RobotTable.id)
            ).all()
            return [_snapshot_from_row(row) for row in rows]

    def offline_robots(self) -> list[RobotSnapshot]:
        with self._session_factory() as session:
            rows = session.scalars(
                select(RobotTable)
                .where(
                    RobotTable.is_active.is_(True),
                    RobotTable.status == OFFLINE,
                    RobotTable.last_check_at.is_not(None),
                )
                .order_by(RobotTable.id)
            ).all()
            return [_snapshot_from_row(row) for row in rows]
