"""Scheduler service - run due schedule entries with retry and dead-letter.

Manifesto:
    An entry moves through three states and nothing else:

    - **active:** enabled, not dead-lettered, runs every ``run_every_minutes``
    - **backoff-retry:** the last run failed and retries remain;
      ``next_run_at`` is pushed by ``backoff_base_seconds * 2**retry_count``
    - **dead_letter:** retries exhausted; terminal until an administrative
      :meth:`ScheduleRepository.reset_dead_letter`

    Every run, scheduled or manual, leaves exactly one audit row.

Architecture:
    ::

        run_due(limit)
          │  repository.claim_due(now, limit, lease)   ─ atomic lease
          ▼
        execute_entry(entry, SCHEDULED)
          │  registry.get(action_key)                  ─ unknown → failure
          │  invoke_handler(handler, ScheduledRun)
          ▼
          ok    → record_success      (retry_count=0, next = now + cadence)
          raise → ScheduleBackoffPolicy.decide(retry_count)
                  ├─ retry → record_failure     (retry_count+1, next = retry_at)
                  └─ dead  → record_dead_letter (dead_lettered=1)

        run_now(id) → execute_entry(entry, MANUAL)   ─ no lease, no cadence check

Tags:
    herald, scheduler, retry, dead-letter, audit

Doc-Types:
    api-reference, architecture-diagram
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime

from herald.core.errors import ScheduleError, ScheduleNotFoundError
from herald.core.logging import get_logger
from herald.core.timestamps import utc_now
from herald.execution.dispatcher import invoke_handler
from herald.execution.registry import HandlerRegistry, get_default_registry
from herald.execution.retry import ScheduleBackoffPolicy, truncate_error
from herald.scheduling.models import (
    RunOutcome,
    ScheduledRun,
    ScheduleEntry,
    ScheduleRunResult,
    ScheduleRunSummary,
    ScheduleTrigger,
)
from herald.scheduling.repository import ScheduleRepository

logger = get_logger(__name__)


class SchedulerService:
    """Execute schedule entries through the handler registry.

    Args:
        repository: Entry storage and audit log
        registry: Handler lookup by ``action_key`` (default: global registry)
        enabled: Global switch; when False :meth:`run_due` does nothing
        lease_seconds: How long a claimed entry stays invisible to other workers
        clock: Injectable UTC clock
        error_max_length: Truncation bound for recorded errors
    """

    def __init__(
        self,
        repository: ScheduleRepository,
        registry: HandlerRegistry | None = None,
        *,
        enabled: bool = True,
        lease_seconds: int = 300,
        clock: Callable[[], datetime] = utc_now,
        error_max_length: int = 2000,
    ) -> None:
        self.repository = repository
        self.registry = registry or get_default_registry()
        self.enabled = enabled
        self.lease_seconds = lease_seconds
        self.clock = clock
        self.error_max_length = error_max_length

    async def run_due(self, limit: int = 25) -> ScheduleRunSummary:
        """Lease and run every due entry (up to ``limit``)."""
        if not self.enabled:
            return ScheduleRunSummary(message="schedules disabled")

        summary = ScheduleRunSummary()
        entries = self.repository.claim_due(self.clock(), limit, self.lease_seconds)
        for entry in entries:
            summary.record(await self.execute_entry(entry, ScheduleTrigger.SCHEDULED))

        if summary.ran:
            logger.info("schedule.run_due_completed", **summary.to_dict())
        return summary

    async def run_now(self, schedule_id: str) -> ScheduleRunResult:
        """Run one entry immediately, outside its cadence.

        Raises:
            ScheduleNotFoundError: No such entry
            ScheduleError: The entry is dead-lettered and must be reset first
        """
        entry = self.repository.get(schedule_id)
        if entry is None:
            raise ScheduleNotFoundError(schedule_id)
        if entry.dead_lettered:
            raise ScheduleError(
                f"Schedule {schedule_id} is dead-lettered; reset it before running"
            ).with_context(schedule_id=schedule_id)
        return await self.execute_entry(entry, ScheduleTrigger.MANUAL)

    async def execute_entry(self, entry: ScheduleEntry, trigger: ScheduleTrigger) -> ScheduleRunResult:
        """Run the entry's handler and record the outcome.  Never raises for handler errors."""
        started_at = self.clock()
        try:
            handler = self.registry.get(entry.action_key)
            await invoke_handler(handler, ScheduledRun(entry=entry, trigger=trigger, started_at=started_at))
        except Exception as e:
            return self._record_error(entry, trigger, e)

        updated = self.repository.record_success(entry, trigger, self.clock())
        logger.info("schedule.succeeded", schedule_id=entry.id, action_key=entry.action_key, trigger=trigger.value)
        return ScheduleRunResult(
            schedule_id=entry.id,
            trigger=trigger.value,
            outcome=RunOutcome.SUCCESS.value,
            retry_count=0,
            next_run_at=updated.next_run_at,
        )

    def _record_error(self, entry: ScheduleEntry, trigger: ScheduleTrigger, error: Exception) -> ScheduleRunResult:
        now = self.clock()
        message = truncate_error(error, self.error_max_length)
        policy = ScheduleBackoffPolicy(
            max_retries=entry.max_retries,
            backoff_base_seconds=entry.backoff_base_seconds,
        )
        decision = policy.decide(entry.retry_count, now)
        retry_count = entry.retry_count + 1

        if decision.dead_letter:
            updated = self.repository.record_dead_letter(entry, trigger, message, retry_count, now)
            logger.error(
                "schedule.dead_lettered",
                schedule_id=entry.id,
                action_key=entry.action_key,
                retry_count=retry_count,
                error=message,
            )
            outcome = RunOutcome.DEAD_LETTER
        else:
            updated = self.repository.record_failure(entry, trigger, message, retry_count, decision.retry_at, now)
            logger.warning(
                "schedule.failed",
                schedule_id=entry.id,
                action_key=entry.action_key,
                retry_count=retry_count,
                delay_seconds=decision.delay_seconds,
                error=message,
            )
            outcome = RunOutcome.ERROR

        return ScheduleRunResult(
            schedule_id=entry.id,
            trigger=trigger.value,
            outcome=outcome.value,
            error=message,
            retry_count=retry_count,
            next_run_at=updated.next_run_at,
        )


__all__ = ["SchedulerService"]
