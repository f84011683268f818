"""Botwatch core -- platform primitives shared by the alerting pipeline.

Architecture::

    errors.py       Structured error hierarchy (BotwatchError, TransientError)
    logging.py      structlog configuration and helpers
    settings.py     pydantic-settings BotwatchSettings
    timestamps.py   ULID generation + UTC helpers, Clock type
    cache.py        CacheBackend protocol + InMemoryCache
    events/         Live-update Event model + InMemoryEventBus
    scheduling/     Tick backends (AsyncioTickBackend)
    orm/            SQLAlchemy 2.0 tables, engine and session factory
"""
