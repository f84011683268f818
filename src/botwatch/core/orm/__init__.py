"""Optional SQLAlchemy 2.0 ORM layer for the alert store."""

from botwatch.core.orm.base import BotwatchBase
from botwatch.core.orm.session import (
    BotwatchSession,
    botwatch_session_factory,
    create_botwatch_engine,
)

__all__ = [
    "BotwatchBase",
    "BotwatchSession",
    "botwatch_session_factory",
    "create_botwatch_engine",
]
