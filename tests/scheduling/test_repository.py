"""Tests for ScheduleRepository."""

from datetime import timedelta

import pytest

from herald.core.errors import ValidationError
from herald.core.timestamps import to_iso8601
from herald.scheduling.models import ScheduleCreate, ScheduleTrigger, ScheduleUpdate
from herald.scheduling.repository import ScheduleRepository


@pytest.fixture
def repo(conn, clock):
    return ScheduleRepository(conn, clock=clock)


def _create(**overrides):
    values = dict(owner_type="plugin", owner_id="digest", name="daily digest", action_key="plugin.digest.send")
    values.update(overrides)
    return ScheduleCreate(**values)


class TestCreate:
    def test_create_defaults(self, repo, clock):
        entry = repo.create(_create(payload={"list": "weekly"}, site_id="s1"))

        assert entry.id
        assert entry.owner_type == "plugin"
        assert entry.payload == {"list": "weekly"}
        assert entry.site_id == "s1"
        assert entry.enabled is True
        assert entry.run_every_minutes == 60
        assert entry.retry_count == 0
        assert entry.dead_lettered is False
        assert entry.next_run_at == to_iso8601(clock())

    def test_interval_is_clamped(self, repo):
        assert repo.create(_create(run_every_minutes=0)).run_every_minutes == 1
        assert repo.create(_create(run_every_minutes=10_000)).run_every_minutes == 1440

    def test_unknown_owner_type_rejected(self, repo):
        with pytest.raises(ValidationError):
            repo.create(_create(owner_type="widget"))

    def test_blank_action_key_rejected(self, repo):
        with pytest.raises(ValidationError):
            repo.create(_create(action_key="  "))


class TestAdministration:
    def test_list_filters(self, repo):
        repo.create(_create())
        repo.create(_create(owner_type="core", owner_id="core", name="ping", action_key="core.http_ping"))
        disabled = repo.create(_create(name="off", enabled=False))

        assert len(repo.list_entries()) == 3
        assert len(repo.list_entries(owner_type="core")) == 1
        assert disabled.id not in {e.id for e in repo.list_entries(include_disabled=False)}

    def test_update(self, repo):
        entry = repo.create(_create())
        updated = repo.update(entry.id, ScheduleUpdate(name="renamed", run_every_minutes=15, payload={"a": 1}))

        assert updated.name == "renamed"
        assert updated.run_every_minutes == 15
        assert updated.payload == {"a": 1}
        assert updated.action_key == entry.action_key

    def test_update_missing_returns_none(self, repo):
        assert repo.update("missing", ScheduleUpdate(name="x")) is None

    def test_delete_and_set_enabled(self, repo):
        entry = repo.create(_create())
        assert repo.set_enabled(entry.id, False) is True
        assert repo.get(entry.id).enabled is False
        assert repo.delete(entry.id) is True
        assert repo.get(entry.id) is None
        assert repo.set_enabled(entry.id, True) is False


class TestClaimDue:
    def test_only_due_enabled_live_entries(self, repo, clock):
        due = repo.create(_create(name="due"))
        repo.create(_create(name="later", next_run_at=clock() + timedelta(minutes=5)))
        repo.create(_create(name="off", enabled=False))
        dead = repo.create(_create(name="dead"))
        repo.record_dead_letter(dead, ScheduleTrigger.SCHEDULED, "boom", 1, clock())

        claimed = repo.claim_due(clock())

        assert [e.id for e in claimed] == [due.id]

    def test_claim_leases_the_entry(self, repo, clock):
        entry = repo.create(_create())

        claimed = repo.claim_due(clock(), lease_seconds=300)
        assert claimed[0].next_run_at == to_iso8601(clock() + timedelta(seconds=300))
        assert repo.claim_due(clock()) == []

        clock.advance(seconds=300)
        assert [e.id for e in repo.claim_due(clock())] == [entry.id]

    def test_oldest_first_and_limit(self, repo, clock):
        first = repo.create(_create(name="a", next_run_at=clock() - timedelta(minutes=10)))
        second = repo.create(_create(name="b", next_run_at=clock() - timedelta(minutes=5)))
        repo.create(_create(name="c"))

        assert [e.id for e in repo.claim_due(clock(), limit=2)] == [first.id, second.id]

    def test_claim_order_follows_due_time_not_creation(self, repo, clock):
        recent = repo.create(_create(name="a", next_run_at=clock() - timedelta(minutes=5)))
        clock.advance(seconds=1)
        overdue = repo.create(_create(name="b", next_run_at=clock() - timedelta(minutes=30)))

        assert [e.id for e in repo.claim_due(clock())] == [overdue.id, recent.id]


class TestRecording:
    def test_success_resets_and_advances(self, repo, clock):
        entry = repo.create(_create(run_every_minutes=30))
        repo.record_failure(entry, ScheduleTrigger.SCHEDULED, "x", 1, clock(), clock())

        updated = repo.record_success(repo.get(entry.id), ScheduleTrigger.SCHEDULED, clock())

        assert updated.retry_count == 0
        assert updated.last_status == "success"
        assert updated.last_error is None
        assert updated.next_run_at == to_iso8601(clock() + timedelta(minutes=30))

    def test_failure_pushes_next_run(self, repo, clock):
        entry = repo.create(_create())
        retry_at = clock() + timedelta(seconds=30)

        updated = repo.record_failure(entry, ScheduleTrigger.MANUAL, "boom", 1, retry_at, clock())

        assert updated.retry_count == 1
        assert updated.last_status == "error"
        assert updated.enabled is True
        assert updated.next_run_at == to_iso8601(retry_at)

    def test_dead_letter_and_reset(self, repo, clock):
        entry = repo.create(_create())
        updated = repo.record_dead_letter(entry, ScheduleTrigger.SCHEDULED, "boom", 1, clock())

        assert updated.dead_lettered is True
        assert updated.dead_lettered_at is not None
        assert updated.last_status == "dead_letter"

        clock.advance(minutes=5)
        assert repo.reset_dead_letter(entry.id) is True
        assert repo.reset_dead_letter(entry.id) is False
        revived = repo.get(entry.id)
        assert revived.dead_lettered is False
        assert revived.retry_count == 0
        assert revived.next_run_at == to_iso8601(clock())

    def test_every_record_appends_audit(self, repo, clock):
        entry = repo.create(_create())
        repo.record_failure(entry, ScheduleTrigger.SCHEDULED, "one", 1, clock(), clock())
        clock.advance(seconds=1)
        repo.record_success(entry, ScheduleTrigger.MANUAL, clock())

        audit = repo.list_audit(entry.id)

        assert [(a.trigger, a.outcome) for a in audit] == [("manual", "success"), ("scheduled", "error")]
        assert audit[1].error == "one"
        assert repo.list_audit("other") == []
