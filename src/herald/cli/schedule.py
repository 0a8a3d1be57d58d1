"""
CLI: ``herald schedule`` - schedule entry management.
"""

from __future__ import annotations

import asyncio
import json

import typer

from herald.cli.utils import console, fail, open_connection, output
from herald.core.errors import HeraldError
from herald.scheduling.models import ScheduleCreate
from herald.scheduling.repository import ScheduleRepository

app = typer.Typer(no_args_is_help=True)

_ENTRY_COLUMNS = [
    "id",
    "owner_type",
    "owner_id",
    "name",
    "action_key",
    "enabled",
    "run_every_minutes",
    "retry_count",
    "dead_lettered",
    "next_run_at",
    "last_status",
]


@app.command("list")
def list_schedules(
    owner_type: str | None = typer.Option(None, "--owner-type"),
    owner_id: str | None = typer.Option(None, "--owner-id"),
    enabled_only: bool = typer.Option(False, "--enabled-only"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """List schedule entries, next due first."""
    _, conn = open_connection(database)
    entries = ScheduleRepository(conn).list_entries(owner_type, owner_id, include_disabled=not enabled_only)
    output(entries, as_json=json_out, title="Schedules", columns=_ENTRY_COLUMNS)


@app.command("create")
def create(
    name: str = typer.Argument(..., help="Human-readable name"),
    action_key: str = typer.Argument(..., help="Registered handler key, e.g. core.http_ping"),
    owner_type: str = typer.Option("core", "--owner-type", help="core, plugin or theme"),
    owner_id: str = typer.Option("core", "--owner-id"),
    site_id: str | None = typer.Option(None, "--site"),
    every: int = typer.Option(60, "--every", help="Minutes between runs (1..1440)"),
    max_retries: int = typer.Option(3, "--max-retries"),
    backoff: int = typer.Option(30, "--backoff", help="Backoff base in seconds"),
    payload: str | None = typer.Option(None, "--payload", help="JSON object passed to the handler"),
    disabled: bool = typer.Option(False, "--disabled"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Create a schedule entry, due immediately."""
    data = None
    if payload:
        try:
            data = json.loads(payload)
        except json.JSONDecodeError as exc:
            fail(f"--payload is not valid JSON: {exc}")
        if not isinstance(data, dict):
            fail("--payload must be a JSON object")

    _, conn = open_connection(database)
    request = ScheduleCreate(
        owner_type=owner_type,
        owner_id=owner_id,
        name=name,
        action_key=action_key,
        site_id=site_id,
        payload=data,
        enabled=not disabled,
        run_every_minutes=every,
        max_retries=max_retries,
        backoff_base_seconds=backoff,
    )
    try:
        entry = ScheduleRepository(conn).create(request)
    except HeraldError as exc:
        fail(str(exc))
    output(entry, as_json=json_out, title="Schedule created")


def _set_enabled(schedule_id: str, enabled: bool, database: str | None) -> None:
    _, conn = open_connection(database)
    if not ScheduleRepository(conn).set_enabled(schedule_id, enabled):
        fail(f"Schedule not found: {schedule_id}")
    state = "enabled" if enabled else "disabled"
    console.print(f"[green]Schedule {state}[/green] {schedule_id}")


@app.command("enable")
def enable(
    schedule_id: str = typer.Argument(...),
    database: str | None = typer.Option(None, "--database", "-d"),
) -> None:
    """Enable a schedule entry."""
    _set_enabled(schedule_id, True, database)


@app.command("disable")
def disable(
    schedule_id: str = typer.Argument(...),
    database: str | None = typer.Option(None, "--database", "-d"),
) -> None:
    """Disable a schedule entry."""
    _set_enabled(schedule_id, False, database)


@app.command("run-now")
def run_now(
    schedule_id: str = typer.Argument(...),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Run a schedule entry immediately (manual trigger)."""
    from herald.scheduling.builtin import register_builtin_handlers
    from herald.scheduling.service import SchedulerService

    settings, conn = open_connection(database)
    service = SchedulerService(
        ScheduleRepository(conn),
        register_builtin_handlers(),
        error_max_length=settings.error_max_length,
    )
    try:
        result = asyncio.run(service.run_now(schedule_id))
    except HeraldError as exc:
        fail(str(exc))

    output(result, as_json=json_out, title="Run")
    if not result.ok:
        raise typer.Exit(code=1)


@app.command("reset")
def reset(
    schedule_id: str = typer.Argument(...),
    database: str | None = typer.Option(None, "--database", "-d"),
) -> None:
    """Clear a dead-lettered entry so it runs again."""
    _, conn = open_connection(database)
    if not ScheduleRepository(conn).reset_dead_letter(schedule_id):
        fail(f"{schedule_id} is not a dead-lettered schedule")
    console.print(f"[green]Reset[/green] {schedule_id}")


@app.command("audit")
def audit(
    schedule_id: str | None = typer.Argument(None),
    limit: int = typer.Option(50, "--limit", "-n"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Show run history, newest first."""
    _, conn = open_connection(database)
    rows = ScheduleRepository(conn).list_audit(schedule_id, limit)
    output(rows, as_json=json_out, title="Run audit")
