"""Execution layer: retry policies, handler registry, dispatcher and worker loop.

The dispatcher and worker modules are imported directly
(``herald.execution.dispatcher``, ``herald.execution.worker``) since they
depend on the queue, scheduling and webhook packages.
"""

from herald.execution.registry import HandlerRegistry, get_default_registry, scheduled_handler
from herald.execution.retry import (
    QueueBackoffPolicy,
    RetryDecision,
    ScheduleBackoffPolicy,
    WebhookBackoffPolicy,
    truncate_error,
)

__all__ = [
    "HandlerRegistry",
    "QueueBackoffPolicy",
    "RetryDecision",
    "ScheduleBackoffPolicy",
    "WebhookBackoffPolicy",
    "get_default_registry",
    "scheduled_handler",
    "truncate_error",
]
