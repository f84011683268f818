"""
Structured logging for the alerting pipeline.

Every dedup suppression, rate-limit decision and delivery failure is logged
as a snake_case event with keyword fields, so a single alert can be traced
afterwards by ``alert_id``:

    logger.warning("dedup_check_failed", dedup_key=key, error=str(e))

Processor chain built by :func:`configure_logging`::

    merge_contextvars -> [timestamp] -> log level -> stack/exc info
        -> service name -> (JSON: ECS field names, exc formatting) -> renderer

JSON is rendered when stdout is not a terminal, coloured console output
otherwise. Per-alert fields are bound with :class:`LogContext`, which also
works across ``await`` points since it is backed by contextvars.

Tags:
    logging, structlog, contextvars, json-logging, botwatch
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Mapping
from contextvars import Token
from typing import Any

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

__all__ = [
    "configure_logging",
    "get_logger",
    "bind_context",
    "unbind_context",
    "clear_context",
    "LogContext",
]

# ECS names for the fields the JSON renderer emits
_ECS_RENAMES = {"timestamp": "@timestamp", "level": "log.level", "logger_name": "log.logger"}


def _service_processor(service: str) -> Processor:
    def add_service(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
        event_dict.setdefault("service.name", service)
        return event_dict

    return add_service


def _ecs_field_names(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    for old, new in _ECS_RENAMES.items():
        if old in event_dict:
            event_dict[new] = event_dict.pop(old)
    return event_dict


def configure_logging(
    level: str = "INFO",
    json_format: bool | None = None,
    service: str = "botwatch",
    add_timestamp: bool = True,
) -> None:
    """Configure structlog (and the stdlib root logger) once at startup.

    Args:
        level: Minimum level name, e.g. ``"DEBUG"`` or ``"WARNING"``
        json_format: Force JSON (True) or console (False); ``None`` picks
            JSON when stdout is not a terminal
        service: Value of the ``service.name`` field
        add_timestamp: Include an ISO 8601 UTC timestamp
    """
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        raise ValueError(f"Unknown log level: {level}")
    if json_format is None:
        json_format = not sys.stdout.isatty()

    processors: list[Processor] = [structlog.contextvars.merge_contextvars]
    if add_timestamp:
        processors.append(structlog.processors.TimeStamper(fmt="iso", utc=True))
    processors += [
        structlog.stdlib.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        _service_processor(service),
    ]
    if json_format:
        processors += [_ecs_field_names, structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # SQLAlchemy logs through the stdlib
    logging.basicConfig(format="%(levelname)s %(name)s %(message)s", stream=sys.stderr, level=numeric_level)


def get_logger(name: str | None = None) -> Any:
    """Logger with ``logger_name=<name>`` bound; pass ``__name__``."""
    if name is None:
        return structlog.get_logger()
    return structlog.get_logger(logger_name=name)


def bind_context(**kwargs: Any) -> Mapping[str, Token[Any]]:
    """Bind fields to every subsequent log call in this context."""
    return structlog.contextvars.bind_contextvars(**kwargs)


def unbind_context(*keys: str) -> None:
    structlog.contextvars.unbind_contextvars(*keys)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()


class LogContext:
    """Bind fields for a block, restoring the previous values on exit.

    Usable as ``with`` or ``async with``; nested contexts that rebind a key
    hand the outer value back when they end.
    """

    def __init__(self, **fields: Any):
        self._fields = fields
        self._tokens: Mapping[str, Token[Any]] = {}

    def __enter__(self) -> LogContext:
        self._tokens = bind_context(**self._fields)
        return self

    def __exit__(self, *exc_info: Any) -> None:
        structlog.contextvars.reset_contextvars(**self._tokens)

    async def __aenter__(self) -> LogContext:
        return self.__enter__()

    async def __aexit__(self, *exc_info: Any) -> None:
        self.__exit__(*exc_info)
