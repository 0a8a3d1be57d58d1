"""Retry/backoff policies for queue items, schedule entries and webhooks.

Every failure path in the engine asks one question: given how many times
this unit has failed, when may it run again, or is it dead?  The answer is
a pure function of the counter, so the policies here hold no state and
never touch storage.  The store and repositories persist the decision.

Example:
    >>> from herald.execution.retry import QueueBackoffPolicy
    >>>
    >>> policy = QueueBackoffPolicy()
    >>> for attempts in range(1, 9):
    ...     print(attempts, policy.next_delay(attempts), policy.should_retry(attempts))
    1 2 True
    ...
    8 256 False

Three policies, deliberately asymmetric:

    QueueBackoffPolicy     min(300, 2**attempts)s, dead at attempts >= 8
    ScheduleBackoffPolicy  base * 2**retry_count s, dead once retry_count+1 > max_retries
    WebhookBackoffPolicy   min(600, 30 * 2**(attempt-1))s, dead at attempt >= max_attempts
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta

# Bound for the schedule exponent so base * 2**n cannot overflow a timedelta.
MAX_SCHEDULE_DELAY_SECONDS = 24 * 60 * 60


@dataclass(frozen=True)
class RetryDecision:
    """Outcome of one failure.

    Attributes:
        dead_letter: True when retries are exhausted
        retry_at: Next eligible time (None when dead-lettered)
        delay_seconds: Backoff applied (0 when dead-lettered)
    """

    dead_letter: bool
    retry_at: datetime | None = None
    delay_seconds: int = 0


class RetryStrategy(ABC):
    """Abstract base for retry strategies keyed on a failure counter."""

    @abstractmethod
    def next_delay(self, count: int) -> int:
        """Seconds to wait before the next attempt."""
        ...

    @abstractmethod
    def should_retry(self, count: int) -> bool:
        """Whether another attempt is allowed after this failure."""
        ...

    def decide(self, count: int, now: datetime) -> RetryDecision:
        """Combine the threshold and the delay into one decision."""
        if not self.should_retry(count):
            return RetryDecision(dead_letter=True)
        delay = self.next_delay(count)
        return RetryDecision(dead_letter=False, retry_at=now + timedelta(seconds=delay), delay_seconds=delay)


@dataclass(frozen=True)
class QueueBackoffPolicy(RetryStrategy):
    """Fixed policy for domain event queue items.

    ``attempts`` is the counter after the claim that just failed (the claim
    increments it), so the first failure sees ``attempts=1``.
    """

    max_attempts: int = 8
    max_delay: int = 300

    def next_delay(self, count: int) -> int:
        return min(self.max_delay, 2 ** min(count, 32))

    def should_retry(self, count: int) -> bool:
        return count < self.max_attempts


@dataclass(frozen=True)
class ScheduleBackoffPolicy(RetryStrategy):
    """Per-entry policy for schedule entries.

    ``count`` is the entry's ``retry_count`` *before* this failure.  The
    failure increments it; the entry dead-letters once the incremented value
    exceeds ``max_retries``.  ``max_retries=0`` therefore dead-letters on the
    first failure and ``max_retries=2`` on the third.
    """

    max_retries: int = 3
    backoff_base_seconds: int = 30

    def next_delay(self, count: int) -> int:
        base = max(1, self.backoff_base_seconds)
        if count >= 32:
            return MAX_SCHEDULE_DELAY_SECONDS
        return min(MAX_SCHEDULE_DELAY_SECONDS, base * 2**count)

    def should_retry(self, count: int) -> bool:
        return count + 1 <= self.max_retries


@dataclass(frozen=True)
class WebhookBackoffPolicy(RetryStrategy):
    """Policy for outbound webhook deliveries; ``count`` is the 1-based attempt."""

    max_attempts: int = 4
    base_delay: int = 30
    max_delay: int = 600

    def next_delay(self, count: int) -> int:
        exponent = min(max(count - 1, 0), 32)
        return min(self.max_delay, self.base_delay * 2**exponent)

    def should_retry(self, count: int) -> bool:
        return count < self.max_attempts


def truncate_error(message: object, limit: int = 2000) -> str:
    """Bound persisted error text.

    Accepts an exception or any object; exceptions with an empty message
    fall back to the exception type name.
    """
    if isinstance(message, BaseException):
        text = str(message) or type(message).__name__
    else:
        text = str(message)
    if len(text) <= limit:
        return text
    return text[:limit]


__all__ = [
    "RetryDecision",
    "RetryStrategy",
    "QueueBackoffPolicy",
    "ScheduleBackoffPolicy",
    "WebhookBackoffPolicy",
    "truncate_error",
]
