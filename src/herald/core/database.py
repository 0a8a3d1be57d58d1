"""SQLite connection factory.

Each worker (thread or process) opens its own connection to the shared
database file.  WAL mode lets readers proceed while a claimer writes, and
the busy timeout makes a competing writer wait for the lock instead of
failing immediately.
"""

from __future__ import annotations

import sqlite3
from pathlib import Path

from herald.core.errors import StorageError
from herald.core.schema import create_core_tables


def connect(path: str | Path, *, timeout: float = 30.0, initialize: bool = True) -> sqlite3.Connection:
    """Open a connection to the herald database.

    Args:
        path: Database file, or ``":memory:"``
        timeout: Seconds to wait on a locked database before raising
        initialize: Create the core tables if they do not exist

    Raises:
        StorageError: If the database cannot be opened.
    """
    path = str(path)
    if path != ":memory:":
        Path(path).parent.mkdir(parents=True, exist_ok=True)

    try:
        conn = sqlite3.connect(path, timeout=timeout, check_same_thread=False)
        if path != ":memory:":
            conn.execute("PRAGMA journal_mode=WAL")
        conn.execute(f"PRAGMA busy_timeout = {int(timeout * 1000)}")
        if initialize:
            create_core_tables(conn)
    except sqlite3.Error as e:
        raise StorageError(f"Failed to open database {path}: {e}", cause=e) from e

    return conn


__all__ = ["connect"]
