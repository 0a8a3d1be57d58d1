"""Durable event queue with an atomic claim primitive.

Manifesto:
    The whole engine's concurrency correctness rests on one statement.
    Any number of uncoordinated workers may call :meth:`EventQueueStore.claim_batch`
    at once; each receives a disjoint set of items because the claim is a
    single conditional ``UPDATE ... RETURNING`` that selects eligible rows,
    marks them ``processing`` and hands back exactly the rows it marked.
    No in-process flag, lock or leader is involved.

Tags:
    herald, queue, claim, at-least-once, dead-letter, reaper

Doc-Types:
    api-reference, architecture-diagram


┌──────────────────────────────────────────────────────────────────────────────┐
│  EVENT QUEUE STORE                                                            │
│                                                                               │
│   Producer Operations:                                                        │
│   └── enqueue(event) → QueueItem            (validates, raises StorageError)  │
│                                                                               │
│   Claim Engine:                                                               │
│   └── claim_batch(limit) → list[QueueItem]  (atomic, disjoint across workers) │
│                                                                               │
│   Outcome Recording:                                                          │
│   ├── mark_processed(id) → bool             (idempotent)                      │
│   └── mark_failed(id, attempts, error) → RetryDecision                        │
│                                                                               │
│   Administration / Recovery:                                                  │
│   ├── get(id), count_by_status(), list_dead_letters(limit)                    │
│   ├── requeue_dead_letter(id) → bool                                          │
│   └── reap_stale(visibility_timeout_seconds) → ReapResult                     │
│                                                                               │
│   queued ──claim──▶ processing ──▶ processed                                  │
│     ▲                   │                                                     │
│     └──── backoff ──────┤                                                     │
│                         └──▶ dead_letter (attempts >= 8)                      │
└──────────────────────────────────────────────────────────────────────────────┘
"""

from __future__ import annotations

import json
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any

from herald.core.dialect import Dialect, SQLiteDialect
from herald.core.errors import StorageError
from herald.core.events import DomainEvent, normalize_event
from herald.core.logging import get_logger
from herald.core.protocols import Connection
from herald.core.timestamps import generate_ulid, to_iso8601, utc_now
from herald.execution.retry import QueueBackoffPolicy, RetryDecision, truncate_error
from herald.queue.models import QueueItem, QueueStatus, ReapResult

logger = get_logger(__name__)

MIN_CLAIM_LIMIT = 1
MAX_CLAIM_LIMIT = 200

_COLUMNS = [
    "id",
    "event_name",
    "site_id",
    "event",
    "status",
    "attempts",
    "available_at",
    "claimed_at",
    "processed_at",
    "last_error",
    "created_at",
    "updated_at",
]
_SELECT = ", ".join(_COLUMNS)


class EventQueueStore:
    """Durable domain event queue.

    Example:
        >>> store = EventQueueStore(conn)
        >>> store.enqueue({"name": "content_published", "payload": {"postId": "p1"}})
        >>> for item in store.claim_batch(25):
        ...     store.mark_processed(item.id)
    """

    def __init__(
        self,
        conn: Connection,
        dialect: Dialect | None = None,
        *,
        policy: QueueBackoffPolicy | None = None,
        clock: Callable[[], datetime] = utc_now,
        error_max_length: int = 2000,
    ) -> None:
        self.conn = conn
        self.dialect: Dialect = dialect or SQLiteDialect()
        self.policy = policy or QueueBackoffPolicy()
        self.clock = clock
        self.error_max_length = error_max_length

    def _ph(self, count: int) -> str:
        return self.dialect.placeholders(count)

    @property
    def _p(self) -> str:
        return self.dialect.placeholder(0)

    # === Producer ===

    def enqueue(self, event: DomainEvent | dict[str, Any]) -> QueueItem:
        """Validate and persist one event as a queued item.

        Raises:
            EventValidationError: The envelope is malformed (nothing written).
            StorageError: The insert failed (rolled back).
        """
        normalized = normalize_event(event)
        item_id = normalized.id or generate_ulid()
        normalized = normalized.with_id(item_id)
        now = to_iso8601(self.clock())

        item = QueueItem(
            id=item_id,
            event_name=normalized.name,
            site_id=normalized.site_id,
            event=normalized.to_envelope(),
            status=QueueStatus.QUEUED.value,
            attempts=0,
            available_at=now,
            created_at=now,
            updated_at=now,
        )

        try:
            self.conn.execute(
                f"""
                INSERT INTO core_event_queue (
                    id, event_name, site_id, event, status, attempts,
                    available_at, created_at, updated_at
                ) VALUES ({self._ph(9)})
                """,
                (
                    item.id,
                    item.event_name,
                    item.site_id,
                    json.dumps(item.event),
                    item.status,
                    item.attempts,
                    item.available_at,
                    item.created_at,
                    item.updated_at,
                ),
            )
            self.conn.commit()
        except Exception as e:
            self.conn.rollback()
            raise StorageError(f"Failed to enqueue event: {e}", cause=e).with_context(
                item_id=item_id, event_name=normalized.name
            ) from e

        logger.debug("queue.enqueued", item_id=item.id, event_name=item.event_name)
        return item

    # === Claim Engine ===

    def claim_batch(self, limit: int = 25) -> list[QueueItem]:
        """Atomically claim up to ``limit`` eligible items, oldest first.

        Eligible means ``status='queued' AND available_at <= now``.  Claimed
        rows move to ``processing`` with ``attempts`` incremented and
        ``claimed_at`` stamped.  Two concurrent callers never receive the
        same row.

        Raises:
            StorageError: The claim statement failed (rolled back).
        """
        limit = max(MIN_CLAIM_LIMIT, min(MAX_CLAIM_LIMIT, int(limit)))
        now = to_iso8601(self.clock())
        p = self._p

        try:
            cursor = self.conn.execute(
                f"""
                UPDATE core_event_queue
                SET status = 'processing',
                    attempts = attempts + 1,
                    claimed_at = {p},
                    updated_at = {p}
                WHERE id IN (
                    SELECT id FROM core_event_queue
                    WHERE status = 'queued' AND available_at <= {p}
                    ORDER BY created_at, id
                    LIMIT {p}
                    {self.dialect.claim_lock()}
                )
                AND status = 'queued'
                RETURNING {_SELECT}
                """,
                (now, now, now, limit),
            )
            rows = cursor.fetchall()
            self.conn.commit()
        except Exception as e:
            self.conn.rollback()
            raise StorageError(f"Failed to claim queue batch: {e}", cause=e) from e

        items = sorted((self._row_to_item(row) for row in rows), key=lambda i: (i.created_at, i.id))
        if items:
            logger.info("queue.claimed", count=len(items), limit=limit)
        return items

    # === Outcome Recording ===

    def mark_processed(self, item_id: str) -> bool:
        """Move a claimed item to ``processed``.

        Returns False without error when the item is not currently
        ``processing`` (already processed, reaped, or unknown).
        """
        now = to_iso8601(self.clock())
        p = self._p
        cursor = self.conn.execute(
            f"""
            UPDATE core_event_queue
            SET status = 'processed', processed_at = {p}, updated_at = {p}
            WHERE id = {p} AND status = 'processing'
            """,
            (now, now, item_id),
        )
        self.conn.commit()

        if cursor.rowcount == 1:
            logger.debug("queue.processed", item_id=item_id)
            return True

        logger.debug("queue.mark_processed_noop", item_id=item_id)
        return False

    def mark_failed(self, item_id: str, attempts: int, error: object) -> RetryDecision:
        """Record a failed attempt and either requeue with backoff or dead-letter."""
        now_dt = self.clock()
        now = to_iso8601(now_dt)
        message = truncate_error(error, self.error_max_length)
        decision = self.policy.decide(attempts, now_dt)
        p = self._p

        if decision.dead_letter:
            cursor = self.conn.execute(
                f"""
                UPDATE core_event_queue
                SET status = 'dead_letter', last_error = {p}, updated_at = {p}
                WHERE id = {p} AND status = 'processing'
                """,
                (message, now, item_id),
            )
        else:
            cursor = self.conn.execute(
                f"""
                UPDATE core_event_queue
                SET status = 'queued', available_at = {p}, claimed_at = NULL,
                    last_error = {p}, updated_at = {p}
                WHERE id = {p} AND status = 'processing'
                """,
                (to_iso8601(decision.retry_at), message, now, item_id),
            )
        self.conn.commit()

        if cursor.rowcount != 1:
            logger.warning("queue.mark_failed_skipped", item_id=item_id, attempts=attempts)
        elif decision.dead_letter:
            logger.error("queue.dead_lettered", item_id=item_id, attempts=attempts, error=message)
        else:
            logger.warning(
                "queue.retry_scheduled",
                item_id=item_id,
                attempts=attempts,
                delay_seconds=decision.delay_seconds,
                error=message,
            )
        return decision

    # === Administration ===

    def get(self, item_id: str) -> QueueItem | None:
        cursor = self.conn.execute(
            f"SELECT {_SELECT} FROM core_event_queue WHERE id = {self._p}",
            (item_id,),
        )
        row = cursor.fetchone()
        return self._row_to_item(row) if row else None

    def count_by_status(self) -> dict[str, int]:
        """Item counts for every status (zero-filled)."""
        counts = {status.value: 0 for status in QueueStatus}
        cursor = self.conn.execute("SELECT status, COUNT(*) FROM core_event_queue GROUP BY status")
        for status, count in cursor.fetchall():
            counts[status] = count
        return counts

    def list_dead_letters(self, limit: int = 50) -> list[QueueItem]:
        cursor = self.conn.execute(
            f"""
            SELECT {_SELECT} FROM core_event_queue
            WHERE status = 'dead_letter'
            ORDER BY updated_at DESC
            LIMIT {self._p}
            """,
            (limit,),
        )
        return [self._row_to_item(row) for row in cursor.fetchall()]

    def requeue_dead_letter(self, item_id: str) -> bool:
        """Administrative revive: dead_letter -> queued with attempts reset."""
        now = to_iso8601(self.clock())
        p = self._p
        cursor = self.conn.execute(
            f"""
            UPDATE core_event_queue
            SET status = 'queued', attempts = 0, available_at = {p},
                claimed_at = NULL, updated_at = {p}
            WHERE id = {p} AND status = 'dead_letter'
            """,
            (now, now, item_id),
        )
        self.conn.commit()
        revived = cursor.rowcount == 1
        if revived:
            logger.info("queue.dead_letter_requeued", item_id=item_id)
        return revived

    # === Recovery ===

    def reap_stale(self, visibility_timeout_seconds: int) -> ReapResult:
        """Return claims older than the visibility timeout to the queue.

        Items whose attempts are already exhausted go to ``dead_letter``
        instead.  The interrupted execution is not resumed; the item is
        simply eligible to be claimed again.
        """
        now_dt = self.clock()
        now = to_iso8601(now_dt)
        cutoff = to_iso8601(now_dt - timedelta(seconds=visibility_timeout_seconds))
        reason = f"claim expired after {visibility_timeout_seconds}s"
        p = self._p

        dead = self.conn.execute(
            f"""
            UPDATE core_event_queue
            SET status = 'dead_letter', last_error = COALESCE(last_error, {p}), updated_at = {p}
            WHERE status = 'processing' AND claimed_at <= {p} AND attempts >= {p}
            """,
            (reason, now, cutoff, self.policy.max_attempts),
        ).rowcount
        requeued = self.conn.execute(
            f"""
            UPDATE core_event_queue
            SET status = 'queued', available_at = {p}, claimed_at = NULL,
                last_error = {p}, updated_at = {p}
            WHERE status = 'processing' AND claimed_at <= {p}
            """,
            (now, reason, now, cutoff),
        ).rowcount
        self.conn.commit()

        result = ReapResult(requeued=requeued, dead_lettered=dead)
        if result.total:
            logger.warning("queue.stale_claims_reaped", requeued=requeued, dead_lettered=dead)
        return result

    # === Private Helpers ===

    def _row_to_item(self, row: tuple) -> QueueItem:
        data = dict(zip(_COLUMNS, row, strict=False))
        data["event"] = json.loads(data["event"]) if data["event"] else {}
        return QueueItem(**data)


__all__ = ["EventQueueStore", "MAX_CLAIM_LIMIT"]
