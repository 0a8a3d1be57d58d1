"""
Core tables for the herald dispatch engine.

Defines table names and DDL statements for the five tables every worker
shares: the event queue, schedule entries, the schedule run audit log,
webhook subscriptions and webhook deliveries.

Manifesto:
    The database is the only coordination point between workers, so the
    schema carries the invariants:

    - **core_event_queue:** ``status`` + ``available_at`` + ``created_at``
      drive the claim; ``claimed_at`` drives the stale-claim reaper
    - **core_schedule_entries:** ``next_run_at`` is both the cadence and the
      lease; ``dead_lettered`` is terminal until an administrative reset
    - **core_schedule_run_audit:** append-only, one row per run
    - **core_webhook_deliveries:** append-only, one row per attempt

Architecture:
    ::

        Table Registry (CORE_TABLES):
        ┌────────────────────────────────────────────────────────────┐
        │ event_queue          → core_event_queue                    │
        │ schedule_entries     → core_schedule_entries               │
        │ schedule_run_audit   → core_schedule_run_audit             │
        │ webhook_subscriptions→ core_webhook_subscriptions          │
        │ webhook_deliveries   → core_webhook_deliveries             │
        └────────────────────────────────────────────────────────────┘

        Timestamps are ISO-8601 UTC text with microseconds, so
        ``available_at <= ?`` compares chronologically.

Examples:
    >>> from herald.core.schema import create_core_tables
    >>> create_core_tables(conn)

Tags:
    schema, ddl, tables, herald-core, database

Doc-Types:
    - API Reference
    - Schema Documentation
"""

from herald.core.protocols import Connection

# =============================================================================
# TABLE NAMES
# =============================================================================

CORE_TABLES = {
    "event_queue": "core_event_queue",
    "schedule_entries": "core_schedule_entries",
    "schedule_run_audit": "core_schedule_run_audit",
    "webhook_subscriptions": "core_webhook_subscriptions",
    "webhook_deliveries": "core_webhook_deliveries",
}


# =============================================================================
# DDL STATEMENTS
# =============================================================================

CORE_DDL = {
    # =========================================================================
    # CORE_EVENT_QUEUE: durable domain event queue
    #
    # status: queued -> processing -> processed | queued | dead_letter
    # =========================================================================
    "event_queue": """
        CREATE TABLE IF NOT EXISTS core_event_queue (
            id TEXT PRIMARY KEY,
            event_name TEXT NOT NULL,
            site_id TEXT,
            event TEXT NOT NULL,                -- JSON envelope (version 1)
            status TEXT NOT NULL DEFAULT 'queued',
            attempts INTEGER NOT NULL DEFAULT 0,
            available_at TEXT NOT NULL,
            claimed_at TEXT,
            processed_at TEXT,
            last_error TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
    """,
    "event_queue_idx_claim": """
        CREATE INDEX IF NOT EXISTS idx_event_queue_claim
        ON core_event_queue(status, available_at, created_at)
    """,
    "event_queue_idx_claimed": """
        CREATE INDEX IF NOT EXISTS idx_event_queue_claimed
        ON core_event_queue(status, claimed_at)
    """,
    # =========================================================================
    # CORE_SCHEDULE_ENTRIES: recurring jobs with per-entry retry state
    # =========================================================================
    "schedule_entries": """
        CREATE TABLE IF NOT EXISTS core_schedule_entries (
            id TEXT PRIMARY KEY,
            owner_type TEXT NOT NULL,           -- core, plugin, theme
            owner_id TEXT NOT NULL,
            site_id TEXT,                       -- NULL = global
            name TEXT NOT NULL,
            action_key TEXT NOT NULL,
            payload TEXT NOT NULL DEFAULT '{}', -- JSON object
            enabled INTEGER NOT NULL DEFAULT 1,
            run_every_minutes INTEGER NOT NULL DEFAULT 60,
            max_retries INTEGER NOT NULL DEFAULT 3,
            backoff_base_seconds INTEGER NOT NULL DEFAULT 30,
            retry_count INTEGER NOT NULL DEFAULT 0,
            dead_lettered INTEGER NOT NULL DEFAULT 0,
            dead_lettered_at TEXT,
            next_run_at TEXT NOT NULL,
            last_run_at TEXT,
            last_status TEXT,                   -- success, error, dead_letter
            last_error TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
    """,
    "schedule_entries_idx_due": """
        CREATE INDEX IF NOT EXISTS idx_schedule_entries_due
        ON core_schedule_entries(enabled, dead_lettered, next_run_at)
    """,
    "schedule_entries_idx_owner": """
        CREATE INDEX IF NOT EXISTS idx_schedule_entries_owner
        ON core_schedule_entries(owner_type, owner_id)
    """,
    # =========================================================================
    # CORE_SCHEDULE_RUN_AUDIT: append-only run history
    # =========================================================================
    "schedule_run_audit": """
        CREATE TABLE IF NOT EXISTS core_schedule_run_audit (
            id TEXT PRIMARY KEY,
            schedule_id TEXT NOT NULL,
            trigger_type TEXT NOT NULL,         -- scheduled, manual
            outcome TEXT NOT NULL,              -- success, error, dead_letter
            error TEXT,
            created_at TEXT NOT NULL
        )
    """,
    "schedule_run_audit_idx_schedule": """
        CREATE INDEX IF NOT EXISTS idx_schedule_run_audit_schedule
        ON core_schedule_run_audit(schedule_id, created_at)
    """,
    # =========================================================================
    # CORE_WEBHOOK_SUBSCRIPTIONS
    # =========================================================================
    "webhook_subscriptions": """
        CREATE TABLE IF NOT EXISTS core_webhook_subscriptions (
            id TEXT PRIMARY KEY,
            site_id TEXT,                       -- NULL = global
            event_pattern TEXT NOT NULL,        -- *, exact, prefix.*
            url TEXT NOT NULL,
            secret TEXT,
            enabled INTEGER NOT NULL DEFAULT 1,
            max_attempts INTEGER NOT NULL DEFAULT 4,
            headers TEXT,                       -- JSON object
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
    """,
    # =========================================================================
    # CORE_WEBHOOK_DELIVERIES: append-only, one row per attempt
    # =========================================================================
    "webhook_deliveries": """
        CREATE TABLE IF NOT EXISTS core_webhook_deliveries (
            id TEXT PRIMARY KEY,
            subscription_id TEXT NOT NULL,
            event_id TEXT NOT NULL,
            event_name TEXT NOT NULL,
            site_id TEXT,
            attempt INTEGER NOT NULL,
            outcome TEXT NOT NULL,              -- delivered, failed, dead
            response_status INTEGER,
            error TEXT,
            request_body TEXT NOT NULL,
            next_attempt_at TEXT,
            redelivered INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL
        )
    """,
    "webhook_deliveries_idx_event": """
        CREATE INDEX IF NOT EXISTS idx_webhook_deliveries_event
        ON core_webhook_deliveries(event_id, subscription_id, outcome)
    """,
    "webhook_deliveries_idx_retry": """
        CREATE INDEX IF NOT EXISTS idx_webhook_deliveries_retry
        ON core_webhook_deliveries(outcome, redelivered, next_attempt_at)
    """,
}


def create_core_tables(conn: Connection) -> None:
    """
    Create all herald tables.

    Safe to call multiple times (CREATE IF NOT EXISTS).
    """
    for _name, ddl in CORE_DDL.items():
        conn.execute(ddl)
    conn.commit()


__all__ = ["CORE_TABLES", "CORE_DDL", "create_core_tables"]
