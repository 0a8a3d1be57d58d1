"""
Canonical protocol definitions for herald.

Every module that needs a database connection, a hook-chain executor or a
scheduled handler imports the contract from here instead of a concrete
driver or framework.

Manifesto:
    Protocols define contracts without inheritance:

    - **Decoupling:** Store and repositories depend on shape, not driver
    - **Testability:** ``sqlite3.connect(":memory:")`` satisfies Connection
    - **Boundaries:** The hook/extension registry is injected as a callable

Architecture:
    ::

        protocols.py
        ├── Connection       - sync DB-API protocol (sqlite3, psycopg, ...)
        ├── HookExecutor     - async (event_name, event) -> None
        └── ScheduledHandler - (ScheduledRun) -> None | Awaitable[None]

Tags:
    protocol, connection, hooks, handlers, herald-core, contracts

Doc-Types:
    - API Reference
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from herald.core.events import DomainEvent
    from herald.scheduling.models import ScheduledRun


@runtime_checkable
class Connection(Protocol):
    """
    Minimal SYNCHRONOUS connection interface for database operations.

    Domain code (store, repositories) only ever calls these methods, so the
    same code runs on ``sqlite3`` and on a PostgreSQL DB-API driver paired
    with :class:`~herald.core.dialect.PostgreSQLDialect`.

    Examples:
        >>> cursor = conn.execute("SELECT status FROM core_event_queue WHERE id = ?", (item_id,))
        >>> row = cursor.fetchone()
        >>> conn.commit()
    """

    def execute(self, sql: str, params: tuple = ()) -> Any:
        """Execute SQL statement with optional parameters. Returns a cursor."""
        ...

    def commit(self) -> None:
        """Commit current transaction."""
        ...

    def rollback(self) -> None:
        """Rollback current transaction."""
        ...


# Hook-chain consumer: runs every in-process handler for an event, raising
# on the first failure.
HookExecutor = Callable[[str, "DomainEvent"], Awaitable[None]]

# Scheduled job handler, sync or async.
ScheduledHandler = Callable[["ScheduledRun"], "Awaitable[None] | None"]


__all__ = ["Connection", "HookExecutor", "ScheduledHandler"]
