"""SQL dialect abstraction for the queue store and repositories.

Provides a ``Dialect`` protocol and the two backends herald runs on.  The
store and repositories build their SQL with dialect methods (placeholders and
the claim lock fragment) and never reference a driver directly.

Manifesto:
    The claim primitive is the whole concurrency story, and it is the one
    place where backends genuinely differ:

    - **SQLite:** a single ``UPDATE ... RETURNING`` statement is atomic with
      respect to every other writer on the database file
    - **PostgreSQL:** the selecting sub-query must add
      ``FOR UPDATE SKIP LOCKED`` so concurrent claimers skip rows another
      transaction already holds instead of double-claiming them

    Everything else is placeholders.

Architecture::

    Domain Code:
    ┌────────────────────────────────────────────────────────────────┐
    │  sql = f"... WHERE id IN (SELECT id ... LIMIT {d.placeholder(0)}│
    │          {d.claim_lock()}) RETURNING ..."                      │
    └────────────────────────────────────────────────────────────────┘
                              │
                              ▼
              ┌──────────────┐        ┌───────────────────────┐
              │ SQLite       │        │ PostgreSQL            │
              │ ?, ?, ?      │        │ %s, %s, %s            │
              │ (no lock)    │        │ FOR UPDATE SKIP LOCKED│
              └──────────────┘        └───────────────────────┘

Examples:
    >>> from herald.core.dialect import get_dialect
    >>> d = get_dialect("postgresql")
    >>> d.placeholders(2)
    '%s, %s'
    >>> d.claim_lock()
    'FOR UPDATE SKIP LOCKED'

Tags:
    dialect, sql, abstraction, portability, database, herald-core

Doc-Types:
    - API Reference
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class Dialect(Protocol):
    """SQL fragment generator for one database backend."""

    @property
    def name(self) -> str:
        """Backend name (``sqlite``, ``postgresql``)."""
        ...

    def placeholder(self, index: int) -> str:
        """Single positional placeholder."""
        ...

    def placeholders(self, count: int) -> str:
        """Comma-separated placeholders."""
        ...

    def claim_lock(self) -> str:
        """Row-lock fragment appended to the claim sub-query."""
        ...


class SQLiteDialect:
    """SQLite dialect: ``?`` placeholders, no row locking."""

    @property
    def name(self) -> str:
        return "sqlite"

    def placeholder(self, index: int) -> str:  # noqa: ARG002
        return "?"

    def placeholders(self, count: int) -> str:
        return ", ".join("?" for _ in range(count))

    def claim_lock(self) -> str:
        return ""


class PostgreSQLDialect:
    """PostgreSQL dialect: ``%s`` placeholders (psycopg), SKIP LOCKED claims."""

    @property
    def name(self) -> str:
        return "postgresql"

    def placeholder(self, index: int) -> str:  # noqa: ARG002
        return "%s"

    def placeholders(self, count: int) -> str:
        return ", ".join("%s" for _ in range(count))

    def claim_lock(self) -> str:
        return "FOR UPDATE SKIP LOCKED"


# Pre-instantiated singletons (dialects are stateless)
_DIALECTS: dict[str, Dialect] = {
    "sqlite": SQLiteDialect(),
    "postgresql": PostgreSQLDialect(),
    "postgres": PostgreSQLDialect(),  # alias
}


def get_dialect(db_type: str) -> Dialect:
    """Get a dialect by database type name.

    Raises:
        ValueError: If ``db_type`` is not recognised.
    """
    key = db_type.lower()
    if key not in _DIALECTS:
        raise ValueError(f"Unknown dialect '{db_type}'. Supported: {sorted(set(_DIALECTS) - {'postgres'})}")
    return _DIALECTS[key]


__all__ = ["Dialect", "SQLiteDialect", "PostgreSQLDialect", "get_dialect"]
