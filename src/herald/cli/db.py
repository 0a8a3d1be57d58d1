"""
CLI: ``herald db`` - database operations.
"""

from __future__ import annotations

import typer

from herald.cli.utils import console, open_connection
from herald.core.schema import CORE_TABLES

app = typer.Typer(no_args_is_help=True)


@app.command("init")
def init(
    database: str | None = typer.Option(None, "--database", "-d", help="SQLite database path"),
) -> None:
    """Create the herald tables (safe to run repeatedly)."""
    settings, conn = open_connection(database)
    conn.close()
    console.print(f"[green]Initialised[/green] {settings.database_path}")
    for table in CORE_TABLES.values():
        console.print(f"  [cyan]{table}[/cyan]")
