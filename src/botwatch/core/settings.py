"""Runtime settings for the botwatch alerting pipeline.

Settings are read once at process start (environment variables prefixed
``BOTWATCH_`` and an optional ``.env`` file) and handed to
:func:`botwatch.alerting.pipeline.build_pipeline`. Services never read the
environment themselves.

Examples:
    >>> from botwatch.core.settings import BotwatchSettings
    >>> settings = BotwatchSettings(evaluation_interval_seconds=30)
    >>> settings.default_cooldown_seconds
    300

Tags:
    settings, configuration, pydantic, environment, botwatch
"""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BotwatchSettings(BaseSettings):
    """Settings for the alerting pipeline.

    Fields
    ──────
    database_url                : SQLAlchemy URL of the alert store
    evaluation_interval_seconds : RuleEngine tick interval
    rule_timeout_seconds        : Upper bound for one rule evaluation
    delivery_timeout_seconds    : Upper bound for one channel submission
    default_cooldown_seconds    : Dedup cooldown when a rule does not set one
    dedup_cache_ttl_seconds     : TTL of the in-process dedup cache
    rate_*                      : Sliding-window ceilings for the RateLimiter
    """

    model_config = SettingsConfigDict(
        env_prefix="BOTWATCH_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Storage ──────────────────────────────────────────────────
    database_url: str = "sqlite:///botwatch.db"

    # ── Observability ────────────────────────────────────────────
    debug: bool = False
    log_level: str = "INFO"
    log_json: bool | None = None

    # ── Rule engine ──────────────────────────────────────────────
    evaluation_interval_seconds: float = Field(default=60.0, gt=0)
    rule_timeout_seconds: float = Field(default=5.0, gt=0)

    # ── Delivery ─────────────────────────────────────────────────
    delivery_timeout_seconds: float = Field(default=10.0, gt=0)
    delivery_max_retries: int = Field(default=3, ge=0)

    # ── Dedup ────────────────────────────────────────────────────
    default_cooldown_seconds: int = Field(default=300, gt=0)
    dedup_cache_ttl_seconds: int = Field(default=30, gt=0)
    dedup_cache_max_size: int = Field(default=10_000, gt=0)
    dedup_cleanup_interval_seconds: float = Field(default=3600.0, gt=0)

    # ── Rate limits ──────────────────────────────────────────────
    rate_per_user_per_minute: int = Field(default=10, gt=0)
    rate_per_user_per_hour: int = Field(default=50, gt=0)
    rate_per_rule_per_minute: int = Field(default=20, gt=0)
    default_max_notify_count: int = Field(default=3, gt=0)

    # ── Live updates ─────────────────────────────────────────────
    live_update_queue_size: int = Field(default=100, gt=0)
