"""
CLI: ``herald worker`` - run the background worker loop.
"""

from __future__ import annotations

import asyncio

import typer

from herald.cli.utils import console, open_connection, output

app = typer.Typer(no_args_is_help=True)


def _build_worker(database: str | None, poll_interval: float | None, batch_size: int | None, worker_id: str | None):
    from herald.core.logging import configure_logging
    from herald.execution.worker import WorkerLoop
    from herald.scheduling.builtin import register_builtin_handlers

    settings, conn = open_connection(database)
    configure_logging(level=settings.log_level, json_format=settings.log_json)

    updates = {}
    if poll_interval is not None:
        updates["poll_interval_seconds"] = poll_interval
    if batch_size is not None:
        updates["queue_batch_size"] = batch_size
    if updates:
        settings = settings.model_copy(update=updates)

    registry = register_builtin_handlers()
    return WorkerLoop.from_settings(settings, conn, registry=registry, worker_id=worker_id), conn


@app.command("start")
def start(
    database: str | None = typer.Option(None, "--database", "-d", help="SQLite database path"),
    poll_interval: float | None = typer.Option(None, "--poll-interval", help="Seconds between idle cycles"),
    batch_size: int | None = typer.Option(None, "--batch-size", help="Items claimed per cycle"),
    worker_id: str | None = typer.Option(None, "--id", help="Custom worker identifier"),
) -> None:
    """Run worker cycles until SIGINT/SIGTERM.

    Each cycle reaps stale claims, drains one queue batch, runs due
    schedules and redelivers due webhooks.

    Example::

        herald worker start --poll-interval 2 --batch-size 50
    """
    worker, conn = _build_worker(database, poll_interval, batch_size, worker_id)
    console.print(
        f"[bold green]Starting herald worker[/bold green] {worker.worker_id} "
        f"(poll={worker.poll_interval}s, batch={worker.batch_size})"
    )

    try:
        stats = asyncio.run(worker.run_forever())
    except KeyboardInterrupt:
        console.print("\n[yellow]Worker stopped by user[/yellow]")
        return
    finally:
        conn.close()

    output(stats, title="Worker stopped")


@app.command("once")
def once(
    database: str | None = typer.Option(None, "--database", "-d", help="SQLite database path"),
    batch_size: int | None = typer.Option(None, "--batch-size", help="Items claimed per cycle"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Run a single worker cycle and print what it did."""
    worker, conn = _build_worker(database, None, batch_size, None)
    try:
        cycle = asyncio.run(worker.run_once())
    finally:
        conn.close()

    output(cycle, as_json=json_out, title="Worker cycle")
    if cycle.errors:
        raise typer.Exit(code=1)
