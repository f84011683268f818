"""
Structured error types for botwatch.

Every failure the alerting pipeline can raise carries a category, an explicit
retry flag, structured context and the chained cause, so the narrow scopes
that catch them (per rule, per recipient) can log and convert them without
losing information.

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────────┐
        │                       BotwatchError                              │
        │  (category, retryable, retry_after, context, cause)             │
        ├─────────────────────────────────────────────────────────────────┤
        │                                                                  │
        │  TransientError     ConfigError        StorageError              │
        │  (retryable=True)   (CONFIG)           (STORAGE)                 │
        │       │                  │                  │                    │
        │  TimeoutError       MissingConfig      AlertPersistenceError     │
        │  DeliveryError      InvalidConfig                                │
        │                                                                  │
        │  RuleEvaluationError          AlertLifecycleError                │
        │  (EVALUATION)                 (LIFECYCLE)                        │
        │                                    │                             │
        │                     AlertNotFoundError  InvalidTransitionError   │
        └─────────────────────────────────────────────────────────────────┘

Guardrails:
    ❌ DON'T: Raise bare Exception from pipeline code
    ✅ DO: Pick the narrowest BotwatchError subclass

    ❌ DON'T: Swallow the original exception
    ✅ DO: Pass it as cause= for error chaining

Tags:
    error-handling, exception-hierarchy, retry-logic, error-context, botwatch
"""

from __future__ import annotations

import builtins
from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any

from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError


class ErrorCategory(str, Enum):
    """Standard error categories for classification and routing."""

    # Infrastructure errors (usually transient)
    NETWORK = "NETWORK"           # Delivery channel, timeouts
    DATABASE = "DATABASE"         # Store unreachable, query failure
    STORAGE = "STORAGE"           # Row could not be written

    # Configuration errors (never retryable)
    CONFIG = "CONFIG"             # Missing config, invalid settings

    # Pipeline errors
    EVALUATION = "EVALUATION"     # A rule check raised
    DELIVERY = "DELIVERY"         # Delivery channel rejected a message
    LIFECYCLE = "LIFECYCLE"       # Illegal alert state change

    # Internal errors
    INTERNAL = "INTERNAL"         # Bugs, unexpected state
    UNKNOWN = "UNKNOWN"           # Uncategorized errors


@dataclass
class ErrorContext:
    """
    Structured metadata context for errors.

    Typed fields cover the identifiers the alerting pipeline passes around;
    anything else goes into ``metadata``. ``to_dict()`` only emits fields
    that were set.
    """

    rule_id: str | None = None
    alert_id: str | None = None
    subject_id: str | None = None
    recipient_id: str | None = None
    channel: str | None = None

    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        out = {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if f.name != "metadata" and getattr(self, f.name) is not None
        }
        out.update(self.metadata)
        return out


class BotwatchError(Exception):
    """
    Base exception for all botwatch errors.

    Subclasses set ``default_category`` and ``default_retryable`` so callers
    rarely need to pass them explicitly.
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        retry_after: int | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.retry_after = retry_after
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> BotwatchError:
        """
        Add context to this error (fluent API).

        Usage:
            raise AlertNotFoundError("no such alert").with_context(alert_id=alert_id)
        """
        known = {f.name for f in fields(self.context)} - {"metadata"}
        for key, value in kwargs.items():
            if key in known:
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Flat dict suitable for a structlog event or an API error body."""
        payload: dict[str, Any] = {
            "error_type": type(self).__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        if self.retry_after is not None:
            payload["retry_after"] = self.retry_after
        if ctx := self.context.to_dict():
            payload["context"] = ctx
        if self.cause is not None:
            payload["cause"] = str(self.cause)
        return payload

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.category.value}: {self.message}>"


# =============================================================================
# TRANSIENT ERRORS (Usually Retryable)
# =============================================================================


class TransientError(BotwatchError):
    """Temporary error that may succeed on retry."""

    default_category = ErrorCategory.NETWORK
    default_retryable = True


class TimeoutError(TransientError):
    """An operation exceeded its time budget."""

    default_category = ErrorCategory.NETWORK


class DeliveryError(TransientError):
    """
    The delivery channel rejected or failed to accept a message.

    Retryable in principle, but the pipeline never retries itself: the
    channel owns its retry budget.
    """

    default_category = ErrorCategory.DELIVERY


# =============================================================================
# CONFIGURATION ERRORS (Never Retryable)
# =============================================================================


class ConfigError(BotwatchError):
    """Configuration error."""

    default_category = ErrorCategory.CONFIG
    default_retryable = False


class MissingConfigError(ConfigError):
    """Required configuration is missing."""

    def __init__(self, key: str, message: str | None = None):
        super().__init__(message or f"Missing required config: {key}")
        self.context.metadata["config_key"] = key


class InvalidConfigError(ConfigError):
    """Configuration value is invalid."""

    def __init__(self, key: str, value: Any, message: str | None = None):
        super().__init__(message or f"Invalid config value for {key}: {value!r}")
        self.context.metadata["config_key"] = key
        self.context.metadata["config_value"] = str(value)


# =============================================================================
# STORAGE ERRORS
# =============================================================================


class StorageError(BotwatchError):
    """The persistent store could not complete an operation."""

    default_category = ErrorCategory.STORAGE
    default_retryable = False


class AlertPersistenceError(StorageError):
    """The alert event row could not be created; fatal for that candidate."""


# =============================================================================
# PIPELINE ERRORS
# =============================================================================


class RuleEvaluationError(BotwatchError):
    """A rule evaluator raised or timed out. Retried on the next tick."""

    default_category = ErrorCategory.EVALUATION
    default_retryable = True


class AlertLifecycleError(BotwatchError):
    """Base for acknowledge/close failures."""

    default_category = ErrorCategory.LIFECYCLE
    default_retryable = False


class AlertNotFoundError(AlertLifecycleError):
    """The alert id does not exist."""

    def __init__(self, alert_id: str):
        super().__init__(f"Alert not found: {alert_id}")
        self.context.alert_id = alert_id


class InvalidTransitionError(AlertLifecycleError):
    """The requested status change is not allowed from the current status."""

    def __init__(self, alert_id: str, current: str, target: str):
        super().__init__(f"Cannot move alert {alert_id} from {current} to {target}")
        self.context.alert_id = alert_id
        self.context.metadata["current_status"] = current
        self.context.metadata["target_status"] = target


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================


def is_retryable(error: Exception) -> bool:
    """Whether the failed operation may succeed if attempted again later."""
    if isinstance(error, BotwatchError):
        return error.retryable
    return isinstance(error, (builtins.TimeoutError, ConnectionError, OperationalError))


def categorize_error(error: Exception) -> ErrorCategory:
    """Category for any exception, including ones raised by libraries."""
    if isinstance(error, BotwatchError):
        return error.category
    if isinstance(error, (builtins.TimeoutError, ConnectionError)):
        return ErrorCategory.NETWORK
    if isinstance(error, IntegrityError):
        return ErrorCategory.STORAGE
    if isinstance(error, SQLAlchemyError):
        return ErrorCategory.DATABASE
    if isinstance(error, ValidationError):
        return ErrorCategory.CONFIG
    return ErrorCategory.UNKNOWN


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "BotwatchError",
    "TransientError",
    "TimeoutError",
    "DeliveryError",
    "ConfigError",
    "MissingConfigError",
    "InvalidConfigError",
    "StorageError",
    "AlertPersistenceError",
    "RuleEvaluationError",
    "AlertLifecycleError",
    "AlertNotFoundError",
    "InvalidTransitionError",
    "is_retryable",
    "categorize_error",
]
