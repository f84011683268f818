"""Engine and session construction for the alert store.

* ``create_botwatch_engine``   -- engine from a URL, with SQLite adjustments
* ``BotwatchSession``          -- session that keeps attributes loaded after commit
* ``botwatch_session_factory`` -- ``sessionmaker`` producing ``BotwatchSession``

The stores, the robot read model and the command-queue channel each build
their own factory from one shared engine.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool


def _is_memory_sqlite(url: str) -> bool:
    database = make_url(url).database
    return not database or database == ":memory:"


def create_botwatch_engine(url: str = "sqlite:///botwatch.db", *, echo: bool = False, **kwargs: Any) -> Engine:
    """Create the engine behind every store.

    SQLite connections may be used from worker threads (rule state loads,
    command inserts), and an in-memory database is pinned to a single
    connection so every session sees the same tables. Foreign keys are
    switched on per connection.
    """
    if not url.startswith("sqlite"):
        return create_engine(url, echo=echo, pool_pre_ping=True, **kwargs)

    kwargs.setdefault("connect_args", {"check_same_thread": False})
    if _is_memory_sqlite(url):
        kwargs.setdefault("poolclass", StaticPool)
    engine = create_engine(url, echo=echo, **kwargs)

    @event.listens_for(engine, "connect")
    def _enable_foreign_keys(dbapi_connection: Any, _record: Any) -> None:
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    return engine


class BotwatchSession(Session):
    """Session with ``expire_on_commit=False``.

    Rows are converted to dataclasses after the transaction commits; expiring
    them would trigger a reload on a closed session.
    """

    def __init__(self, bind: Engine | None = None, **kwargs: Any) -> None:
        kwargs.setdefault("expire_on_commit", False)
        super().__init__(bind=bind, **kwargs)


def botwatch_session_factory(engine: Engine) -> sessionmaker[BotwatchSession]:
    return sessionmaker(bind=engine, class_=BotwatchSession)
