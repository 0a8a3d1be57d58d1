"""
Structured error types for the herald dispatch engine.

Every failure the engine can surface falls in one of four classes, and the
class decides what happens next:

- **Storage failures** are fatal and synchronous.  ``enqueue`` and the claim
  functions roll back and raise :class:`StorageError` to the caller.
- **Handler/dispatch failures** are any exception raised by a hook chain or
  a scheduled handler.  They are caught at the dispatch boundary and drive
  the retry/backoff state machine.
- **Webhook failures** (:class:`WebhookDeliveryError`) are isolated to the
  delivery row and never escalate to the primary queue item.
- **Configuration failures** (:class:`HandlerNotFoundError`, a malformed
  envelope found at dispatch time) count as a normal failed attempt.

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────────┐
        │                       HeraldError                                │
        │  (category, retryable, context, cause)                           │
        ├─────────────────────────────────────────────────────────────────┤
        │  TransientError      ValidationError      ConfigError           │
        │  (retryable=True)    (VALIDATION)         (CONFIG)              │
        │       │                   │                    │                 │
        │  WebhookDeliveryError EventValidationError HandlerNotFoundError │
        │                                                                  │
        │  StorageError        OrchestrationError                          │
        │  (STORAGE)           (ORCHESTRATION)                             │
        │                           │                                      │
        │                      ScheduleError                               │
        └─────────────────────────────────────────────────────────────────┘

Examples:
    >>> error = StorageError("insert failed", cause=sqlite3.OperationalError("locked"))
    >>> error.category
    <ErrorCategory.STORAGE: 'STORAGE'>
    >>> error.to_dict()["cause"]
    'locked'

Tags:
    error-handling, exception-hierarchy, retry-logic, herald-core

Doc-Types:
    - API Reference
    - Error Handling Guide
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Standard error categories for classification and log routing."""

    NETWORK = "NETWORK"
    STORAGE = "STORAGE"
    VALIDATION = "VALIDATION"
    CONFIG = "CONFIG"
    DISPATCH = "DISPATCH"
    ORCHESTRATION = "ORCHESTRATION"
    INTERNAL = "INTERNAL"
    UNKNOWN = "UNKNOWN"


@dataclass
class ErrorContext:
    """Structured metadata attached to an error for logging.

    Attributes:
        item_id: Queue item being processed
        schedule_id: Schedule entry being executed
        subscription_id: Webhook subscription being delivered to
        event_name: Domain event name
        url: URL that was being accessed
        http_status: HTTP status code if applicable
        metadata: Additional key-value pairs
    """

    item_id: str | None = None
    schedule_id: str | None = None
    subscription_id: str | None = None
    event_name: str | None = None
    url: str | None = None
    http_status: int | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["item_id", "schedule_id", "subscription_id", "event_name", "url", "http_status"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class HeraldError(Exception):
    """
    Base exception for all herald errors.

    Subclasses set ``default_category`` and ``default_retryable`` so callers
    rarely pass them explicitly.  ``cause`` is chained onto ``__cause__`` so
    tracebacks keep the original driver or transport exception.
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> HeraldError:
        """
        Add context to this error (fluent API).

        Usage:
            raise StorageError("enqueue failed").with_context(event_name="content_published")
        """
        for key, value in kwargs.items():
            if hasattr(self.context, key):
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# TRANSIENT ERRORS
# =============================================================================


class TransientError(HeraldError):
    """Temporary error that may succeed on a later attempt."""

    default_category = ErrorCategory.NETWORK
    default_retryable = True


class WebhookDeliveryError(TransientError):
    """Outbound webhook POST failed (transport error or non-2xx status)."""

    def __init__(self, message: str, *, status_code: int | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.status_code = status_code
        if status_code is not None:
            self.context.http_status = status_code


class HttpPingError(TransientError):
    """Scheduled HTTP ping got a transport error or a non-2xx status."""

    def __init__(self, message: str, *, status_code: int | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.status_code = status_code
        if status_code is not None:
            self.context.http_status = status_code


# =============================================================================
# STORAGE ERRORS
# =============================================================================


class StorageError(HeraldError):
    """Durable store rejected a read or write.

    Raised synchronously from enqueue/claim; the failed statement has been
    rolled back and no partial state is left behind.
    """

    default_category = ErrorCategory.STORAGE
    default_retryable = False


# =============================================================================
# VALIDATION ERRORS
# =============================================================================


class ValidationError(HeraldError):
    """
    Data validation error.

    Never retryable - data must be fixed.
    """

    default_category = ErrorCategory.VALIDATION
    default_retryable = False

    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        value: Any = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.field = field
        self.value = value

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.field:
            result["field"] = self.field
        if self.value is not None:
            result["value"] = repr(self.value)
        return result


class EventValidationError(ValidationError):
    """Domain event envelope is malformed or its name is not recognised."""

    pass


# =============================================================================
# CONFIGURATION ERRORS
# =============================================================================


class ConfigError(HeraldError):
    """Configuration error (never retryable on its own)."""

    default_category = ErrorCategory.CONFIG
    default_retryable = False


class HandlerNotFoundError(ConfigError):
    """No handler registered for an action key."""

    def __init__(self, action_key: str, available: list[str] | None = None):
        self.action_key = action_key
        self.available = available or []
        listing = ", ".join(self.available) if self.available else "none"
        super().__init__(f"No handler registered for {action_key!r}. Available: {listing}")


# =============================================================================
# ORCHESTRATION ERRORS
# =============================================================================


class OrchestrationError(HeraldError):
    """Scheduler or dispatcher error."""

    default_category = ErrorCategory.ORCHESTRATION
    default_retryable = False


class ScheduleError(OrchestrationError):
    """Schedule configuration or execution error."""

    pass


class ScheduleNotFoundError(ScheduleError):
    """Schedule entry does not exist."""

    def __init__(self, schedule_id: str):
        self.schedule_id = schedule_id
        super().__init__(f"Schedule not found: {schedule_id}")


# =============================================================================
# HELPERS
# =============================================================================


def is_retryable(error: Exception) -> bool:
    """Check if an error is retryable."""
    if isinstance(error, HeraldError):
        return error.retryable
    return isinstance(error, (ConnectionError, TimeoutError))


def categorize_error(error: Exception) -> ErrorCategory:
    """Get the category of an error."""
    if isinstance(error, HeraldError):
        return error.category
    if isinstance(error, (ConnectionError, TimeoutError)):
        return ErrorCategory.NETWORK
    if isinstance(error, ValueError):
        return ErrorCategory.VALIDATION
    return ErrorCategory.UNKNOWN


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "HeraldError",
    "TransientError",
    "WebhookDeliveryError",
    "HttpPingError",
    "StorageError",
    "ValidationError",
    "EventValidationError",
    "ConfigError",
    "HandlerNotFoundError",
    "OrchestrationError",
    "ScheduleError",
    "ScheduleNotFoundError",
    "is_retryable",
    "categorize_error",
]
