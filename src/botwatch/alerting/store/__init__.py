"""Alert persistence: protocol plus in-memory and SQLAlchemy implementations."""

from botwatch.alerting.store.memory import InMemoryAlertStore
from botwatch.alerting.store.protocol import AlertStore
from botwatch.alerting.store.sql import SqlAlertStore

__all__ = [
    "AlertStore",
    "InMemoryAlertStore",
    "SqlAlertStore",
]
