"""Tick scheduling for periodic pipeline work.

Modules
-------
protocol         SchedulerBackend protocol, BackendHealth
asyncio_backend  AsyncioTickBackend (default)
"""

from .asyncio_backend import AsyncioTickBackend
from .protocol import BackendHealth, SchedulerBackend, TickCallback

__all__ = [
    "AsyncioTickBackend",
    "BackendHealth",
    "SchedulerBackend",
    "TickCallback",
]
