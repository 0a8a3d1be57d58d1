"""
Root Typer application for the herald CLI.
"""

from __future__ import annotations

import typer
from typer import Typer

app = Typer(
    name="herald",
    help="herald - durable event queue, scheduler and webhook dispatch.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        from herald import __version__

        typer.echo(f"herald-core {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """herald CLI - run workers and administer queues, schedules and webhooks."""


# ── Sub-command registration ─────────────────────────────────────────────

from herald.cli.db import app as db_app  # noqa: E402
from herald.cli.queue import app as queue_app  # noqa: E402
from herald.cli.schedule import app as schedule_app  # noqa: E402
from herald.cli.webhook import app as webhook_app  # noqa: E402
from herald.cli.worker import app as worker_app  # noqa: E402

app.add_typer(db_app, name="db", help="Database operations.")
app.add_typer(queue_app, name="queue", help="Event queue administration.")
app.add_typer(schedule_app, name="schedule", help="Schedule management.")
app.add_typer(webhook_app, name="webhook", help="Webhook subscriptions and deliveries.")
app.add_typer(worker_app, name="worker", help="Background worker.")


if __name__ == "__main__":
    app()
