"""
Herald core primitives.

Storage plumbing (connection protocol, dialects, schema), the domain event
envelope, and the ambient stack (errors, logging, settings, timestamps)
shared by the queue, scheduler, dispatcher and webhook packages.
"""

from herald.core.errors import (
    ConfigError,
    ErrorCategory,
    EventValidationError,
    HandlerNotFoundError,
    HeraldError,
    HttpPingError,
    OrchestrationError,
    ScheduleError,
    ScheduleNotFoundError,
    StorageError,
    TransientError,
    ValidationError,
    WebhookDeliveryError,
    is_retryable,
)
from herald.core.events import DomainEvent, matches_pattern, normalize_event

__all__ = [
    "ConfigError",
    "DomainEvent",
    "ErrorCategory",
    "EventValidationError",
    "HandlerNotFoundError",
    "HeraldError",
    "HttpPingError",
    "OrchestrationError",
    "ScheduleError",
    "ScheduleNotFoundError",
    "StorageError",
    "TransientError",
    "ValidationError",
    "WebhookDeliveryError",
    "is_retryable",
    "matches_pattern",
    "normalize_event",
]
