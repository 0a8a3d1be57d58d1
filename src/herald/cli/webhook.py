"""
CLI: ``herald webhook`` - subscriptions and the delivery log.
"""

from __future__ import annotations

import typer

from herald.cli.utils import fail, open_connection, output
from herald.core.errors import HeraldError
from herald.webhooks.repository import WebhookRepository

app = typer.Typer(no_args_is_help=True)

_SUBSCRIPTION_COLUMNS = ["id", "site_id", "event_pattern", "url", "enabled", "max_attempts", "updated_at"]
_DELIVERY_COLUMNS = [
    "id",
    "subscription_id",
    "event_id",
    "event_name",
    "attempt",
    "outcome",
    "response_status",
    "error",
    "next_attempt_at",
    "created_at",
]


def _parse_headers(values: list[str]) -> dict[str, str]:
    headers: dict[str, str] = {}
    for value in values:
        name, sep, content = value.partition(":")
        if not sep or not name.strip():
            fail(f"Invalid header {value!r}; expected 'Name: value'")
        headers[name.strip()] = content.strip()
    return headers


@app.command("subscribe")
def subscribe(
    url: str = typer.Argument(..., help="Endpoint receiving POSTed events"),
    pattern: str = typer.Option("*", "--pattern", "-p", help="*, exact name, or prefix.*"),
    site_id: str | None = typer.Option(None, "--site"),
    secret: str | None = typer.Option(None, "--secret", help="HMAC signing secret"),
    max_attempts: int = typer.Option(4, "--max-attempts"),
    header: list[str] = typer.Option([], "--header", "-H", help="Extra header, 'Name: value'"),
    disabled: bool = typer.Option(False, "--disabled"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Create or update a webhook subscription."""
    headers = _parse_headers(header)
    _, conn = open_connection(database)
    try:
        subscription = WebhookRepository(conn).upsert_subscription(
            url,
            pattern,
            site_id=site_id,
            secret=secret,
            enabled=not disabled,
            max_attempts=max_attempts,
            headers=headers,
        )
    except HeraldError as exc:
        fail(str(exc))

    output(subscription, as_json=json_out, title="Subscription")


@app.command("list")
def list_subscriptions(
    site_id: str | None = typer.Option(None, "--site"),
    enabled_only: bool = typer.Option(False, "--enabled-only"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """List webhook subscriptions."""
    _, conn = open_connection(database)
    subscriptions = WebhookRepository(conn).list_subscriptions(site_id, enabled_only)
    output(subscriptions, as_json=json_out, title="Subscriptions", columns=_SUBSCRIPTION_COLUMNS)


@app.command("deliveries")
def deliveries(
    event_id: str | None = typer.Option(None, "--event"),
    subscription_id: str | None = typer.Option(None, "--subscription"),
    limit: int = typer.Option(50, "--limit", "-n"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Show the delivery log, newest first."""
    _, conn = open_connection(database)
    rows = WebhookRepository(conn).list_deliveries(event_id, subscription_id, limit)
    output(rows, as_json=json_out, title="Deliveries", columns=_DELIVERY_COLUMNS)
