"""Tests for the herald CLI."""

import pytest
from typer.testing import CliRunner

from herald.cli.app import app
from herald.core.database import connect
from herald.queue.store import EventQueueStore
from herald.scheduling.repository import ScheduleRepository
from herald.webhooks.repository import WebhookRepository

runner = CliRunner()


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "herald.db")


def _invoke(*args):
    return runner.invoke(app, list(args))


class TestRoot:
    def test_version(self):
        result = _invoke("--version")
        assert result.exit_code == 0
        assert "herald-core" in result.output

    def test_db_init(self, db_path):
        result = _invoke("db", "init", "--database", db_path)
        assert result.exit_code == 0
        assert "core_event_queue" in result.output


class TestQueueCommands:
    def test_stats(self, db_path):
        conn = connect(db_path)
        EventQueueStore(conn).enqueue({"name": "page_view"})
        conn.close()

        result = _invoke("queue", "stats", "--database", db_path, "--json")

        assert result.exit_code == 0
        assert '"queued": 1' in result.output

    def test_requeue_dead_letter(self, db_path):
        conn = connect(db_path)
        store = EventQueueStore(conn)
        item = store.enqueue({"name": "page_view"})
        store.claim_batch(1)
        store.mark_failed(item.id, 8, "gave up")

        listed = _invoke("queue", "dead-letters", "--database", db_path)
        assert item.id[:8] in listed.output

        assert _invoke("queue", "requeue", item.id, "--database", db_path).exit_code == 0
        assert store.get(item.id).status == "queued"
        conn.close()

        again = _invoke("queue", "requeue", item.id, "--database", db_path)
        assert again.exit_code == 1


class TestScheduleCommands:
    def test_create_disable_and_run_now(self, db_path):
        created = _invoke(
            "schedule", "create", "nightly", "plugin.unknown",
            "--owner-type", "plugin", "--owner-id", "shop",
            "--every", "30", "--payload", '{"a": 1}',
            "--database", db_path,
        )
        assert created.exit_code == 0

        conn = connect(db_path)
        repo = ScheduleRepository(conn)
        entry = repo.list_entries()[0]
        assert entry.payload == {"a": 1}
        assert entry.run_every_minutes == 30

        assert _invoke("schedule", "disable", entry.id, "--database", db_path).exit_code == 0
        assert repo.get(entry.id).enabled is False

        run = _invoke("schedule", "run-now", entry.id, "--database", db_path)
        assert run.exit_code == 1
        audit = repo.list_audit(entry.id)
        assert [(a.trigger, a.outcome) for a in audit] == [("manual", "error")]
        conn.close()

        history = _invoke("schedule", "audit", entry.id, "--database", db_path, "--json")
        assert '"manual"' in history.output

    def test_invalid_payload(self, db_path):
        result = _invoke("schedule", "create", "x", "core.http_ping", "--payload", "[1]", "--database", db_path)
        assert result.exit_code == 1

    def test_reset_requires_dead_letter(self, db_path):
        _invoke("schedule", "create", "x", "core.http_ping", "--database", db_path)
        conn = connect(db_path)
        entry = ScheduleRepository(conn).list_entries()[0]
        conn.close()

        assert _invoke("schedule", "reset", entry.id, "--database", db_path).exit_code == 1

    def test_run_now_missing(self, db_path):
        assert _invoke("schedule", "run-now", "missing", "--database", db_path).exit_code == 1


class TestWebhookCommands:
    def test_subscribe_and_list(self, db_path):
        result = _invoke(
            "webhook", "subscribe", "https://a.example/hook",
            "--pattern", "communication.*", "--secret", "s3cret",
            "-H", "X-Team: web", "--database", db_path,
        )
        assert result.exit_code == 0
        assert "s3cret" not in result.output

        conn = connect(db_path)
        sub = WebhookRepository(conn).list_subscriptions()[0]
        conn.close()
        assert sub.headers == {"X-Team": "web"}
        assert sub.secret == "s3cret"

        listed = _invoke("webhook", "list", "--database", db_path, "--json")
        assert listed.exit_code == 0
        assert '"***"' in listed.output

    def test_bad_header(self, db_path):
        result = _invoke("webhook", "subscribe", "https://a.example", "-H", "nocolon", "--database", db_path)
        assert result.exit_code == 1

    def test_deliveries_empty(self, db_path):
        result = _invoke("webhook", "deliveries", "--database", db_path)
        assert result.exit_code == 0
        assert "No items" in result.output


class TestWorkerCommands:
    def test_once(self, db_path, monkeypatch):
        monkeypatch.setattr("herald.core.logging.configure_logging", lambda **kwargs: None)
        conn = connect(db_path)
        store = EventQueueStore(conn)
        item = store.enqueue({"name": "page_view"})

        result = _invoke("worker", "once", "--database", db_path, "--json")

        assert result.exit_code == 0
        assert store.get(item.id).status == "processed"
        conn.close()
