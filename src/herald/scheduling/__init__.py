"""Recurring schedule entries with per-entry retry, dead-letter and audit."""

from herald.scheduling.builtin import register_builtin_handlers
from herald.scheduling.models import (
    OwnerType,
    RunAudit,
    RunOutcome,
    ScheduleCreate,
    ScheduledRun,
    ScheduleEntry,
    ScheduleRunResult,
    ScheduleRunSummary,
    ScheduleTrigger,
    ScheduleUpdate,
)
from herald.scheduling.repository import ScheduleRepository
from herald.scheduling.service import SchedulerService

__all__ = [
    "OwnerType",
    "RunAudit",
    "RunOutcome",
    "ScheduleCreate",
    "ScheduleEntry",
    "ScheduleRepository",
    "ScheduleRunResult",
    "ScheduleRunSummary",
    "ScheduleTrigger",
    "ScheduleUpdate",
    "ScheduledRun",
    "SchedulerService",
    "register_builtin_handlers",
]
