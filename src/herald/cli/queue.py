"""
CLI: ``herald queue`` - queue statistics and dead-letter administration.
"""

from __future__ import annotations

import typer

from herald.cli.utils import console, fail, open_connection, output
from herald.queue.store import EventQueueStore

app = typer.Typer(no_args_is_help=True)

_ITEM_COLUMNS = ["id", "event_name", "site_id", "status", "attempts", "last_error", "updated_at"]


@app.command("stats")
def stats(
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Show item counts per status."""
    _, conn = open_connection(database)
    counts = EventQueueStore(conn).count_by_status()
    output(counts, as_json=json_out, title="Queue")


@app.command("dead-letters")
def dead_letters(
    limit: int = typer.Option(50, "--limit", "-n"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """List dead-lettered queue items, most recent first."""
    _, conn = open_connection(database)
    items = EventQueueStore(conn).list_dead_letters(limit)
    output(items, as_json=json_out, title="Dead Letters", columns=_ITEM_COLUMNS)


@app.command("requeue")
def requeue(
    item_id: str = typer.Argument(..., help="Queue item ID"),
    database: str | None = typer.Option(None, "--database", "-d"),
) -> None:
    """Return a dead-lettered item to the queue with attempts reset."""
    _, conn = open_connection(database)
    if not EventQueueStore(conn).requeue_dead_letter(item_id):
        fail(f"{item_id} is not a dead-lettered queue item")
    console.print(f"[green]Requeued[/green] {item_id}")
