"""Schedule repository - CRUD, leased due-claims and run recording.

Manifesto:
    Schedule persistence and retry bookkeeping are pure data operations
    that belong in a repository, not in the service layer.  Separating
    them enables testing with in-memory connections and keeps the service
    focused on orchestration.

    Concurrent workers never run the same entry twice in one cadence:
    :meth:`ScheduleRepository.claim_due` leases due entries by pushing
    ``next_run_at`` forward in the same statement that selects them.  The
    outcome recorders overwrite the lease with the real next run time.  A
    worker that dies mid-run leaves the lease in place; it expires and the
    entry becomes due again.

Tags:
    herald, scheduling, repository, CRUD, lease, dead-letter, audit

Doc-Types:
    api-reference, architecture-diagram


┌──────────────────────────────────────────────────────────────────────────────┐
│  SCHEDULE REPOSITORY                                                          │
│                                                                               │
│   CRUD Operations:                                                            │
│   ├── create(data) → ScheduleEntry                                            │
│   ├── get(id) → ScheduleEntry | None                                          │
│   ├── list_entries(owner_type, owner_id, include_disabled)                    │
│   ├── update(id, updates) → ScheduleEntry | None                              │
│   ├── delete(id) → bool                                                       │
│   ├── set_enabled(id, enabled) → bool                                         │
│   └── reset_dead_letter(id) → bool         (administrative only)              │
│                                                                               │
│   Scheduling Operations:                                                      │
│   ├── claim_due(now, limit, lease_seconds) → list[ScheduleEntry]              │
│   ├── record_success(entry, trigger, now)         → audit: success            │
│   ├── record_failure(entry, trigger, ...)         → audit: error              │
│   └── record_dead_letter(entry, trigger, ...)     → audit: dead_letter        │
│                                                                               │
│   Audit:                                                                      │
│   └── list_audit(schedule_id, limit) → list[RunAudit]                         │
│                                                                               │
│   Due selection: enabled AND NOT dead_lettered AND next_run_at <= now,        │
│                  oldest next_run_at first                                     │
└──────────────────────────────────────────────────────────────────────────────┘
"""

from __future__ import annotations

import json
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any

from herald.core.dialect import Dialect, SQLiteDialect
from herald.core.errors import ValidationError
from herald.core.logging import get_logger
from herald.core.protocols import Connection
from herald.core.timestamps import generate_ulid, to_iso8601, utc_now
from herald.scheduling.models import (
    OwnerType,
    RunAudit,
    RunOutcome,
    ScheduleCreate,
    ScheduleEntry,
    ScheduleTrigger,
    ScheduleUpdate,
    clamp_run_every_minutes,
)

logger = get_logger(__name__)

_ENTRY_COLUMNS = [
    "id",
    "owner_type",
    "owner_id",
    "site_id",
    "name",
    "action_key",
    "payload",
    "enabled",
    "run_every_minutes",
    "max_retries",
    "backoff_base_seconds",
    "retry_count",
    "dead_lettered",
    "dead_lettered_at",
    "next_run_at",
    "last_run_at",
    "last_status",
    "last_error",
    "created_at",
    "updated_at",
]
_AUDIT_COLUMNS = ["id", "schedule_id", "trigger_type", "outcome", "error", "created_at"]
_SELECT = ", ".join(_ENTRY_COLUMNS)


class ScheduleRepository:
    """Repository for schedule entries and their run audit.

    Example:
        >>> repo = ScheduleRepository(conn)
        >>> entry = repo.create(ScheduleCreate(
        ...     owner_type="core",
        ...     owner_id="core",
        ...     name="uptime",
        ...     action_key="core.http_ping",
        ...     payload={"url": "https://example.com/health"},
        ...     run_every_minutes=5,
        ... ))
        >>> leased = repo.claim_due(utc_now(), limit=25, lease_seconds=300)
    """

    def __init__(
        self,
        conn: Connection,
        dialect: Dialect | None = None,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.conn = conn
        self.dialect: Dialect = dialect or SQLiteDialect()
        self.clock = clock

    def _ph(self, count: int) -> str:
        return self.dialect.placeholders(count)

    @property
    def _p(self) -> str:
        return self.dialect.placeholder(0)

    # === CRUD Operations ===

    def create(self, data: ScheduleCreate) -> ScheduleEntry:
        """Create a schedule entry, due at ``data.next_run_at`` (default now).

        Raises:
            ValidationError: Unknown owner type, or blank name/action key.
        """
        owner_type = (data.owner_type or "").strip().lower()
        if owner_type not in {o.value for o in OwnerType}:
            raise ValidationError(f"Unknown owner type: {data.owner_type!r}", field="owner_type", value=data.owner_type)
        name = (data.name or "").strip()
        action_key = (data.action_key or "").strip()
        if not name:
            raise ValidationError("Schedule name is required", field="name")
        if not action_key:
            raise ValidationError("Schedule action key is required", field="action_key")

        schedule_id = generate_ulid()
        now_dt = self.clock()
        now = to_iso8601(now_dt)

        self.conn.execute(
            f"""
            INSERT INTO core_schedule_entries (
                id, owner_type, owner_id, site_id, name, action_key, payload,
                enabled, run_every_minutes, max_retries, backoff_base_seconds,
                retry_count, dead_lettered, next_run_at, created_at, updated_at
            ) VALUES ({self._ph(16)})
            """,
            (
                schedule_id,
                owner_type,
                (data.owner_id or "").strip(),
                (data.site_id or "").strip() or None,
                name,
                action_key,
                json.dumps(data.payload or {}),
                1 if data.enabled else 0,
                clamp_run_every_minutes(data.run_every_minutes),
                max(0, int(data.max_retries)),
                max(1, int(data.backoff_base_seconds)),
                0,
                0,
                to_iso8601(data.next_run_at or now_dt),
                now,
                now,
            ),
        )
        self.conn.commit()

        logger.info("schedule.created", schedule_id=schedule_id, name=name, action_key=action_key)
        return self.get(schedule_id)  # type: ignore[return-value]

    def get(self, schedule_id: str) -> ScheduleEntry | None:
        cursor = self.conn.execute(
            f"SELECT {_SELECT} FROM core_schedule_entries WHERE id = {self._p}",
            (schedule_id,),
        )
        row = cursor.fetchone()
        return self._row_to_entry(row) if row else None

    def list_entries(
        self,
        owner_type: str | None = None,
        owner_id: str | None = None,
        include_disabled: bool = True,
    ) -> list[ScheduleEntry]:
        conditions: list[str] = []
        params: list[Any] = []
        if not include_disabled:
            conditions.append("enabled = 1")
        if owner_type:
            conditions.append(f"owner_type = {self._p}")
            params.append(owner_type)
        if owner_id:
            conditions.append(f"owner_id = {self._p}")
            params.append(owner_id)
        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""

        cursor = self.conn.execute(
            f"SELECT {_SELECT} FROM core_schedule_entries {where} ORDER BY next_run_at, created_at",
            tuple(params),
        )
        return [self._row_to_entry(row) for row in cursor.fetchall()]

    def update(self, schedule_id: str, updates: ScheduleUpdate) -> ScheduleEntry | None:
        """Apply non-None fields of ``updates``.  Returns None if not found."""
        existing = self.get(schedule_id)
        if existing is None:
            return None

        sets: dict[str, Any] = {}
        if updates.name is not None:
            if not updates.name.strip():
                raise ValidationError("Schedule name is required", field="name")
            sets["name"] = updates.name.strip()
        if updates.action_key is not None:
            if not updates.action_key.strip():
                raise ValidationError("Schedule action key is required", field="action_key")
            sets["action_key"] = updates.action_key.strip()
        if updates.payload is not None:
            sets["payload"] = json.dumps(updates.payload)
        if updates.enabled is not None:
            sets["enabled"] = 1 if updates.enabled else 0
        if updates.run_every_minutes is not None:
            sets["run_every_minutes"] = clamp_run_every_minutes(updates.run_every_minutes, existing.run_every_minutes)
        if updates.max_retries is not None:
            sets["max_retries"] = max(0, int(updates.max_retries))
        if updates.backoff_base_seconds is not None:
            sets["backoff_base_seconds"] = max(1, int(updates.backoff_base_seconds))
        if updates.next_run_at is not None:
            sets["next_run_at"] = to_iso8601(updates.next_run_at)

        if not sets:
            return existing

        sets["updated_at"] = to_iso8601(self.clock())
        assignments = ", ".join(f"{column} = {self._p}" for column in sets)
        self.conn.execute(
            f"UPDATE core_schedule_entries SET {assignments} WHERE id = {self._p}",
            (*sets.values(), schedule_id),
        )
        self.conn.commit()
        return self.get(schedule_id)

    def delete(self, schedule_id: str) -> bool:
        """Delete an entry.  Its audit rows are kept."""
        cursor = self.conn.execute(
            f"DELETE FROM core_schedule_entries WHERE id = {self._p}",
            (schedule_id,),
        )
        self.conn.commit()
        return cursor.rowcount > 0

    def set_enabled(self, schedule_id: str, enabled: bool) -> bool:
        p = self._p
        cursor = self.conn.execute(
            f"UPDATE core_schedule_entries SET enabled = {p}, updated_at = {p} WHERE id = {p}",
            (1 if enabled else 0, to_iso8601(self.clock()), schedule_id),
        )
        self.conn.commit()
        return cursor.rowcount > 0

    def reset_dead_letter(self, schedule_id: str) -> bool:
        """Administrative revive: clear the dead-letter flag and retry count, due now."""
        now = to_iso8601(self.clock())
        p = self._p
        cursor = self.conn.execute(
            f"""
            UPDATE core_schedule_entries
            SET dead_lettered = 0, dead_lettered_at = NULL, retry_count = 0,
                next_run_at = {p}, updated_at = {p}
            WHERE id = {p} AND dead_lettered = 1
            """,
            (now, now, schedule_id),
        )
        self.conn.commit()
        reset = cursor.rowcount > 0
        if reset:
            logger.info("schedule.dead_letter_reset", schedule_id=schedule_id)
        return reset

    # === Scheduling Operations ===

    def claim_due(self, now: datetime, limit: int = 25, lease_seconds: int = 300) -> list[ScheduleEntry]:
        """Atomically lease due entries, oldest ``next_run_at`` first.

        Returned entries carry the lease expiry as ``next_run_at``.  Only
        the returned rows were leased by this call.  RETURNING yields the
        leased values, so the due order is read before the lease is taken.
        """
        limit = max(1, min(200, int(limit)))
        now_iso = to_iso8601(now)
        lease_until = to_iso8601(now + timedelta(seconds=lease_seconds))
        p = self._p

        due_order = {
            row[0]: position
            for position, row in enumerate(
                self.conn.execute(
                    f"""
                    SELECT id FROM core_schedule_entries
                    WHERE enabled = 1 AND dead_lettered = 0 AND next_run_at <= {p}
                    ORDER BY next_run_at, id
                    LIMIT {p}
                    """,
                    (now_iso, limit),
                ).fetchall()
            )
        }

        cursor = self.conn.execute(
            f"""
            UPDATE core_schedule_entries
            SET next_run_at = {p}, updated_at = {p}
            WHERE id IN (
                SELECT id FROM core_schedule_entries
                WHERE enabled = 1 AND dead_lettered = 0 AND next_run_at <= {p}
                ORDER BY next_run_at, id
                LIMIT {p}
                {self.dialect.claim_lock()}
            )
            AND enabled = 1 AND dead_lettered = 0 AND next_run_at <= {p}
            RETURNING {_SELECT}
            """,
            (lease_until, now_iso, now_iso, limit, now_iso),
        )
        rows = cursor.fetchall()
        self.conn.commit()
        entries = [self._row_to_entry(row) for row in rows]
        # rows that became due after the ordering read sort last
        return sorted(entries, key=lambda e: (due_order.get(e.id, len(due_order)), e.id))

    def record_success(self, entry: ScheduleEntry, trigger: ScheduleTrigger, now: datetime) -> ScheduleEntry:
        """Reset retries, advance to the next cadence, append a success audit."""
        now_iso = to_iso8601(now)
        next_run = to_iso8601(now + timedelta(minutes=entry.run_every_minutes))
        p = self._p
        self.conn.execute(
            f"""
            UPDATE core_schedule_entries
            SET retry_count = 0, last_status = 'success', last_error = NULL,
                last_run_at = {p}, next_run_at = {p}, updated_at = {p}
            WHERE id = {p}
            """,
            (now_iso, next_run, now_iso, entry.id),
        )
        self._append_audit(entry.id, trigger, RunOutcome.SUCCESS, None, now_iso)
        self.conn.commit()
        return self.get(entry.id) or entry

    def record_failure(
        self,
        entry: ScheduleEntry,
        trigger: ScheduleTrigger,
        error: str,
        retry_count: int,
        retry_at: datetime,
        now: datetime,
    ) -> ScheduleEntry:
        """Store the incremented retry count and push ``next_run_at`` to the backoff time."""
        now_iso = to_iso8601(now)
        p = self._p
        self.conn.execute(
            f"""
            UPDATE core_schedule_entries
            SET retry_count = {p}, last_status = 'error', last_error = {p},
                last_run_at = {p}, next_run_at = {p}, updated_at = {p}
            WHERE id = {p}
            """,
            (retry_count, error, now_iso, to_iso8601(retry_at), now_iso, entry.id),
        )
        self._append_audit(entry.id, trigger, RunOutcome.ERROR, error, now_iso)
        self.conn.commit()
        return self.get(entry.id) or entry

    def record_dead_letter(
        self,
        entry: ScheduleEntry,
        trigger: ScheduleTrigger,
        error: str,
        retry_count: int,
        now: datetime,
    ) -> ScheduleEntry:
        """Terminal failure: flag the entry dead-lettered and audit it."""
        now_iso = to_iso8601(now)
        p = self._p
        self.conn.execute(
            f"""
            UPDATE core_schedule_entries
            SET dead_lettered = 1, dead_lettered_at = {p}, retry_count = {p},
                last_status = 'dead_letter', last_error = {p},
                last_run_at = {p}, updated_at = {p}
            WHERE id = {p}
            """,
            (now_iso, retry_count, error, now_iso, now_iso, entry.id),
        )
        self._append_audit(entry.id, trigger, RunOutcome.DEAD_LETTER, error, now_iso)
        self.conn.commit()
        return self.get(entry.id) or entry

    # === Audit ===

    def list_audit(self, schedule_id: str | None = None, limit: int = 50) -> list[RunAudit]:
        p = self._p
        if schedule_id:
            cursor = self.conn.execute(
                f"""
                SELECT {', '.join(_AUDIT_COLUMNS)} FROM core_schedule_run_audit
                WHERE schedule_id = {p}
                ORDER BY created_at DESC, id DESC
                LIMIT {p}
                """,
                (schedule_id, limit),
            )
        else:
            cursor = self.conn.execute(
                f"""
                SELECT {', '.join(_AUDIT_COLUMNS)} FROM core_schedule_run_audit
                ORDER BY created_at DESC, id DESC
                LIMIT {p}
                """,
                (limit,),
            )
        return [self._row_to_audit(row) for row in cursor.fetchall()]

    # === Private Helpers ===

    def _append_audit(
        self,
        schedule_id: str,
        trigger: ScheduleTrigger,
        outcome: RunOutcome,
        error: str | None,
        created_at: str,
    ) -> None:
        self.conn.execute(
            f"""
            INSERT INTO core_schedule_run_audit (id, schedule_id, trigger_type, outcome, error, created_at)
            VALUES ({self._ph(6)})
            """,
            (generate_ulid(), schedule_id, ScheduleTrigger(trigger).value, outcome.value, error, created_at),
        )

    def _row_to_audit(self, row: tuple) -> RunAudit:
        data = dict(zip(_AUDIT_COLUMNS, row, strict=False))
        data["trigger"] = data.pop("trigger_type")
        return RunAudit(**data)

    def _row_to_entry(self, row: tuple) -> ScheduleEntry:
        data = dict(zip(_ENTRY_COLUMNS, row, strict=False))
        data["payload"] = json.loads(data["payload"]) if data["payload"] else {}
        data["enabled"] = bool(data["enabled"])
        data["dead_lettered"] = bool(data["dead_lettered"])
        return ScheduleEntry(**data)


__all__ = ["ScheduleRepository"]
