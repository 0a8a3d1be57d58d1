"""Scheduler table models (``core_schedule_entries``, ``core_schedule_run_audit``).

Manifesto:
    Schedule entries, their run audit trail and the per-run context handed
    to handlers need typed representations so the repository, the service
    and the CLI agree on shape.

Tags:
    herald, models, scheduling, dataclasses, schema-mapping

Doc-Types:
    api-reference, data-model
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

MIN_RUN_EVERY_MINUTES = 1
MAX_RUN_EVERY_MINUTES = 24 * 60


class OwnerType(str, Enum):
    CORE = "core"
    PLUGIN = "plugin"
    THEME = "theme"


class ScheduleTrigger(str, Enum):
    SCHEDULED = "scheduled"
    MANUAL = "manual"


class RunOutcome(str, Enum):
    SUCCESS = "success"
    ERROR = "error"
    DEAD_LETTER = "dead_letter"


def clamp_run_every_minutes(value: Any, fallback: int = 60) -> int:
    """Coerce an interval to 1..1440 minutes."""
    try:
        minutes = int(value)
    except (TypeError, ValueError):
        minutes = fallback
    return max(MIN_RUN_EVERY_MINUTES, min(MAX_RUN_EVERY_MINUTES, minutes))


# ---------------------------------------------------------------------------
# core_schedule_entries
# ---------------------------------------------------------------------------


@dataclass
class ScheduleEntry:
    """Schedule entry row (``core_schedule_entries``).

    ``dead_lettered`` is terminal: the engine never clears it, only
    :meth:`ScheduleRepository.reset_dead_letter` does.
    """

    id: str = ""
    owner_type: str = OwnerType.CORE.value
    owner_id: str = ""
    site_id: str | None = None  # None = global
    name: str = ""
    action_key: str = ""
    payload: dict[str, Any] = field(default_factory=dict)
    enabled: bool = True
    run_every_minutes: int = 60
    max_retries: int = 3
    backoff_base_seconds: int = 30
    retry_count: int = 0
    dead_lettered: bool = False
    dead_lettered_at: str | None = None
    next_run_at: str = ""
    last_run_at: str | None = None
    last_status: str | None = None  # success, error, dead_letter
    last_error: str | None = None
    created_at: str = ""
    updated_at: str = ""


@dataclass
class ScheduleCreate:
    """DTO for creating a schedule entry."""

    owner_type: str
    owner_id: str
    name: str
    action_key: str
    site_id: str | None = None
    payload: dict[str, Any] | None = None
    enabled: bool = True
    run_every_minutes: int = 60
    max_retries: int = 3
    backoff_base_seconds: int = 30
    next_run_at: datetime | None = None  # default: now


@dataclass
class ScheduleUpdate:
    """DTO for updating a schedule entry.  ``None`` leaves a field unchanged."""

    name: str | None = None
    action_key: str | None = None
    payload: dict[str, Any] | None = None
    enabled: bool | None = None
    run_every_minutes: int | None = None
    max_retries: int | None = None
    backoff_base_seconds: int | None = None
    next_run_at: datetime | None = None


# ---------------------------------------------------------------------------
# core_schedule_run_audit
# ---------------------------------------------------------------------------


@dataclass
class RunAudit:
    """Append-only run record."""

    id: str = ""
    schedule_id: str = ""
    trigger: str = ScheduleTrigger.SCHEDULED.value
    outcome: str = RunOutcome.SUCCESS.value
    error: str | None = None
    created_at: str = ""


# ---------------------------------------------------------------------------
# Execution context and results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ScheduledRun:
    """Context passed to a scheduled handler."""

    entry: ScheduleEntry
    trigger: ScheduleTrigger
    started_at: datetime

    @property
    def payload(self) -> dict[str, Any]:
        return self.entry.payload

    @property
    def site_id(self) -> str | None:
        return self.entry.site_id

    @property
    def action_key(self) -> str:
        return self.entry.action_key


@dataclass
class ScheduleRunResult:
    """Outcome of executing one entry."""

    schedule_id: str
    trigger: str
    outcome: str
    error: str | None = None
    retry_count: int = 0
    next_run_at: str | None = None

    @property
    def ok(self) -> bool:
        return self.outcome == RunOutcome.SUCCESS.value

    def to_dict(self) -> dict[str, Any]:
        return {
            "schedule_id": self.schedule_id,
            "trigger": self.trigger,
            "outcome": self.outcome,
            "ok": self.ok,
            "error": self.error,
            "retry_count": self.retry_count,
            "next_run_at": self.next_run_at,
        }


@dataclass
class ScheduleRunSummary:
    """Result of one ``run_due`` pass."""

    ran: int = 0
    succeeded: int = 0
    errors: int = 0
    dead_lettered: int = 0
    message: str = "ok"
    results: list[ScheduleRunResult] = field(default_factory=list)

    def record(self, result: ScheduleRunResult) -> None:
        self.ran += 1
        self.results.append(result)
        if result.outcome == RunOutcome.SUCCESS.value:
            self.succeeded += 1
        elif result.outcome == RunOutcome.DEAD_LETTER.value:
            self.dead_lettered += 1
        else:
            self.errors += 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "ran": self.ran,
            "succeeded": self.succeeded,
            "errors": self.errors,
            "dead_lettered": self.dead_lettered,
            "message": self.message,
        }
