"""Tests for WorkerLoop."""

import asyncio

import httpx
import pytest
from structlog.testing import capture_logs

from herald.core.errors import StorageError
from herald.core.settings import HeraldSettings
from herald.execution.dispatcher import EventDispatcher
from herald.execution.worker import WorkerLoop
from herald.queue.models import QueueStatus
from herald.queue.store import EventQueueStore
from herald.scheduling.models import ScheduleCreate
from herald.scheduling.repository import ScheduleRepository
from herald.scheduling.service import SchedulerService
from herald.webhooks.fanout import WebhookFanout
from herald.webhooks.models import WebhookDelivery
from herald.webhooks.repository import WebhookRepository


async def _hooks(event_name, event):
    return None


@pytest.fixture
def components(conn, clock, registry):
    store = EventQueueStore(conn, clock=clock)
    webhooks = WebhookRepository(conn, clock=clock)
    client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(200)))
    fanout = WebhookFanout(webhooks, client=client, clock=clock)
    schedules = ScheduleRepository(conn, clock=clock)
    scheduler = SchedulerService(schedules, registry, clock=clock)
    dispatcher = EventDispatcher(store, _hooks, fanout)
    return store, webhooks, schedules, scheduler, dispatcher


class TestRunOnce:
    @pytest.mark.asyncio
    async def test_cycle_runs_every_phase(self, components, registry, clock):
        store, webhooks, schedules, scheduler, dispatcher = components
        runs = []
        registry.register("core.noop", lambda run: runs.append(run.entry.id))

        stale = store.enqueue({"name": "page_view"})
        store.claim_batch(1)
        clock.advance(seconds=901)
        fresh = store.enqueue({"name": "page_view"})
        entry = schedules.create(ScheduleCreate("core", "core", "noop", "core.noop"))

        worker = WorkerLoop(dispatcher, scheduler, worker_id="w-test")
        cycle = await worker.run_once()

        assert cycle.reaped.requeued == 1
        assert cycle.batch.processed == 2
        assert cycle.schedules.succeeded == 1
        assert runs == [entry.id]
        assert store.get(stale.id).status == QueueStatus.PROCESSED.value
        assert store.get(fresh.id).status == QueueStatus.PROCESSED.value
        assert cycle.errors == []
        assert worker.stats.cycles == 1
        assert worker.stats.processed == 2

    @pytest.mark.asyncio
    async def test_idle_cycle(self, components):
        *_, scheduler, dispatcher = components
        cycle = await WorkerLoop(dispatcher, scheduler).run_once()
        assert cycle.idle is True

    @pytest.mark.asyncio
    async def test_redelivers_due_webhooks(self, components, clock):
        store, webhooks, _, scheduler, dispatcher = components
        sub = webhooks.upsert_subscription("https://a.example/hook")
        webhooks.record_delivery(
            WebhookDelivery(
                subscription_id=sub.id,
                event_id="E1",
                event_name="page_view",
                attempt=1,
                outcome="failed",
                request_body="{}",
                next_attempt_at="2026-01-05T12:00:30.000000+00:00",
            )
        )
        clock.advance(seconds=31)

        cycle = await WorkerLoop(dispatcher, scheduler).run_once()

        assert cycle.redeliveries.delivered == 1
        assert [d.attempt for d in webhooks.list_deliveries(event_id="E1")] == [2, 1]

    @pytest.mark.asyncio
    async def test_failing_phase_does_not_stop_others(self, components):
        store, *_, scheduler, dispatcher = components
        item = store.enqueue({"name": "page_view"})

        def broken_reaper(timeout):
            raise RuntimeError("reaper down")

        store.reap_stale = broken_reaper
        cycle = await WorkerLoop(dispatcher, scheduler).run_once()

        assert cycle.errors == ["reap: reaper down"]
        assert cycle.batch.processed == 1
        assert store.get(item.id).status == QueueStatus.PROCESSED.value

    @pytest.mark.asyncio
    async def test_phase_failure_logs_error_category(self, components):
        store, *_, scheduler, dispatcher = components

        def broken_reaper(timeout):
            raise StorageError("database is locked")

        store.reap_stale = broken_reaper
        with capture_logs() as logs:
            await WorkerLoop(dispatcher, scheduler, worker_id="w-test").run_once()

        failures = [entry for entry in logs if entry["event"] == "worker.phase_failed"]
        assert len(failures) == 1
        assert failures[0]["phase"] == "reap"
        assert failures[0]["category"] == "STORAGE"
        assert failures[0]["worker_id"] == "w-test"


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_stop_ends_run_forever(self, components):
        *_, scheduler, dispatcher = components
        worker = WorkerLoop(dispatcher, scheduler, poll_interval=0.01)

        async def stop_soon():
            await asyncio.sleep(0.05)
            worker.stop()

        stopper = asyncio.create_task(stop_soon())
        stats = await asyncio.wait_for(worker.run_forever(install_signal_handlers=False), timeout=5)
        await stopper

        assert stats.cycles >= 1

    @pytest.mark.asyncio
    async def test_stop_before_start(self, components):
        *_, scheduler, dispatcher = components
        worker = WorkerLoop(dispatcher, scheduler)
        worker.stop()

        stats = await asyncio.wait_for(worker.run_forever(install_signal_handlers=False), timeout=5)
        assert stats.cycles == 0


class TestFromSettings:
    def test_wires_components(self, conn, tmp_path):
        settings = HeraldSettings(
            database_path=tmp_path / "h.db",
            queue_batch_size=10,
            scheduler_enabled=False,
            poll_interval_seconds=0.5,
        )
        worker = WorkerLoop.from_settings(settings, conn, worker_id="w1")

        assert worker.worker_id == "w1"
        assert worker.batch_size == 10
        assert worker.poll_interval == 0.5
        assert worker.scheduler.enabled is False
        assert worker.fanout is worker.dispatcher.fanout
