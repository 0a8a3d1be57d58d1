"""Background worker loop - one stateless maintenance cycle, repeated.

Each cycle does four things, in order:

1. reap ``processing`` queue items whose claim is older than the
   visibility timeout (requeue, or dead-letter when attempts are spent);
2. drain one queue batch through the dispatcher;
3. run due schedule entries;
4. redeliver failed webhooks whose backoff has elapsed.

Every phase claims its work atomically in the database, so any number of
workers may run side by side against the same file.

Usage (programmatic)::

    from herald.core.settings import get_settings
    from herald.execution.worker import WorkerLoop

    worker = WorkerLoop.from_settings(get_settings(), execute=run_hooks)
    asyncio.run(worker.run_forever())   # until SIGINT/SIGTERM

Usage (CLI)::

    herald worker start --poll-interval 2
"""

from __future__ import annotations

import asyncio
import os
import signal
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from herald.core.errors import categorize_error
from herald.core.logging import LogContext, get_logger
from herald.core.protocols import Connection, HookExecutor
from herald.core.settings import HeraldSettings
from herald.core.timestamps import utc_now
from herald.execution.dispatcher import BatchResult, EventDispatcher
from herald.queue.models import ReapResult
from herald.queue.store import EventQueueStore
from herald.scheduling.models import ScheduleRunSummary
from herald.scheduling.repository import ScheduleRepository
from herald.scheduling.service import SchedulerService
from herald.webhooks.fanout import WebhookFanout
from herald.webhooks.models import FanoutResult
from herald.webhooks.repository import WebhookRepository

logger = get_logger(__name__)


async def _no_hooks(event_name: str, event: Any) -> None:
    """Hook chain used when the host registers no in-process hooks."""
    return None


@dataclass
class CycleResult:
    """What one :meth:`WorkerLoop.run_once` cycle did."""

    reaped: ReapResult = field(default_factory=ReapResult)
    batch: BatchResult = field(default_factory=BatchResult)
    schedules: ScheduleRunSummary | None = None
    redeliveries: FanoutResult | None = None
    errors: list[str] = field(default_factory=list)

    @property
    def idle(self) -> bool:
        return (
            not self.reaped.total
            and not self.batch.claimed
            and not (self.schedules and self.schedules.ran)
            and not (self.redeliveries and self.redeliveries.attempted)
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "reaped": {"requeued": self.reaped.requeued, "dead_lettered": self.reaped.dead_lettered},
            "queue": self.batch.to_dict(),
            "schedules": self.schedules.to_dict() if self.schedules else None,
            "webhooks": self.redeliveries.to_dict() if self.redeliveries else None,
            "errors": list(self.errors),
        }


@dataclass
class WorkerStats:
    """Aggregate statistics for a worker."""

    cycles: int = 0
    processed: int = 0
    retried: int = 0
    dead_lettered: int = 0
    reaped: int = 0
    schedules_run: int = 0
    webhooks_redelivered: int = 0
    errors: int = 0
    last_cycle_at: datetime | None = None

    def record(self, cycle: CycleResult, at: datetime) -> None:
        self.cycles += 1
        self.processed += cycle.batch.processed
        self.retried += cycle.batch.retried
        self.dead_lettered += cycle.batch.dead_lettered + cycle.reaped.dead_lettered
        self.reaped += cycle.reaped.total
        self.schedules_run += cycle.schedules.ran if cycle.schedules else 0
        self.webhooks_redelivered += cycle.redeliveries.attempted if cycle.redeliveries else 0
        self.errors += len(cycle.errors)
        self.last_cycle_at = at

    def to_dict(self) -> dict[str, Any]:
        return {
            "cycles": self.cycles,
            "processed": self.processed,
            "retried": self.retried,
            "dead_lettered": self.dead_lettered,
            "reaped": self.reaped,
            "schedules_run": self.schedules_run,
            "webhooks_redelivered": self.webhooks_redelivered,
            "errors": self.errors,
            "last_cycle_at": self.last_cycle_at.isoformat() if self.last_cycle_at else None,
        }


class WorkerLoop:
    """Runs maintenance cycles until stopped.

    Args:
        dispatcher: Queue drain (owns the store and the fanout)
        scheduler: Optional scheduler; skipped when ``None``
        fanout: Optional fanout used for webhook redelivery
        poll_interval: Seconds to sleep after an idle cycle
        batch_size: Items / schedules / redeliveries claimed per cycle
        visibility_timeout_seconds: Age after which a claim is reaped
        worker_id: Custom identifier; auto-generated if ``None``
    """

    def __init__(
        self,
        dispatcher: EventDispatcher,
        scheduler: SchedulerService | None = None,
        fanout: WebhookFanout | None = None,
        *,
        poll_interval: float = 2.0,
        batch_size: int = 25,
        visibility_timeout_seconds: int = 900,
        worker_id: str | None = None,
    ) -> None:
        self.dispatcher = dispatcher
        self.scheduler = scheduler
        self.fanout = fanout if fanout is not None else dispatcher.fanout
        self.poll_interval = poll_interval
        self.batch_size = batch_size
        self.visibility_timeout_seconds = visibility_timeout_seconds
        self.worker_id = worker_id or f"worker-{uuid.uuid4().hex[:8]}"
        self.stats = WorkerStats()
        self._shutdown: asyncio.Event | None = None
        self._stop_requested = False

    @classmethod
    def from_settings(
        cls,
        settings: HeraldSettings,
        conn: Connection,
        *,
        execute: HookExecutor | None = None,
        registry: Any | None = None,
        worker_id: str | None = None,
    ) -> WorkerLoop:
        """Wire store, repositories, fanout, dispatcher and scheduler from settings."""
        store = EventQueueStore(conn, error_max_length=settings.error_max_length)
        fanout = WebhookFanout(
            WebhookRepository(conn),
            timeout=settings.webhook_timeout_seconds,
            error_max_length=settings.error_max_length,
        )
        dispatcher = EventDispatcher(
            store,
            execute or _no_hooks,
            fanout,
            batch_size=settings.queue_batch_size,
            autodrain=settings.queue_autodrain,
            error_max_length=settings.error_max_length,
        )
        scheduler = SchedulerService(
            ScheduleRepository(conn),
            registry,
            enabled=settings.scheduler_enabled,
            lease_seconds=settings.schedule_lease_seconds,
            error_max_length=settings.error_max_length,
        )
        return cls(
            dispatcher,
            scheduler,
            fanout,
            poll_interval=settings.poll_interval_seconds,
            batch_size=settings.queue_batch_size,
            visibility_timeout_seconds=settings.visibility_timeout_seconds,
            worker_id=worker_id,
        )

    # ------------------------------------------------------------------ #
    # Cycle
    # ------------------------------------------------------------------ #

    async def run_once(self) -> CycleResult:
        """Run one reap / drain / schedule / redeliver cycle.

        A failing phase is logged and recorded in ``errors``; the remaining
        phases still run.
        """
        cycle = CycleResult()
        async with LogContext(worker_id=self.worker_id):
            try:
                cycle.reaped = self.dispatcher.store.reap_stale(self.visibility_timeout_seconds)
            except Exception as e:
                self._phase_failed(cycle, "reap", e)

            try:
                cycle.batch = await self.dispatcher.process_batch(self.batch_size)
            except Exception as e:
                self._phase_failed(cycle, "dispatch", e)

            if self.scheduler is not None:
                try:
                    cycle.schedules = await self.scheduler.run_due(self.batch_size)
                except Exception as e:
                    self._phase_failed(cycle, "schedules", e)

            if self.fanout is not None:
                try:
                    cycle.redeliveries = await self.fanout.redeliver_due(self.batch_size)
                except Exception as e:
                    self._phase_failed(cycle, "webhooks", e)

            self.stats.record(cycle, utc_now())
            if not cycle.idle:
                logger.info("worker.cycle_completed", **cycle.to_dict())
        return cycle

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    async def run_forever(self, install_signal_handlers: bool = True) -> WorkerStats:
        """Repeat :meth:`run_once` until :meth:`stop` or SIGINT / SIGTERM.

        Busy cycles run back to back; an idle cycle sleeps ``poll_interval``.
        """
        self._shutdown = asyncio.Event()
        if self._stop_requested:
            self._shutdown.set()
        if install_signal_handlers:
            self._install_signal_handlers()

        logger.info(
            "worker.started",
            worker_id=self.worker_id,
            pid=os.getpid(),
            poll_interval=self.poll_interval,
            batch_size=self.batch_size,
        )

        while not self._shutdown.is_set():
            cycle = await self.run_once()
            if cycle.idle or cycle.errors:
                try:
                    await asyncio.wait_for(self._shutdown.wait(), timeout=self.poll_interval)
                except asyncio.TimeoutError:
                    pass

        logger.info("worker.stopped", worker_id=self.worker_id, **self.stats.to_dict())
        return self.stats

    def stop(self) -> None:
        """Request graceful shutdown after the current cycle."""
        logger.info("worker.stopping", worker_id=self.worker_id)
        self._stop_requested = True
        if self._shutdown is not None:
            self._shutdown.set()

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self._handle_signal, sig)
            except (NotImplementedError, RuntimeError, ValueError):
                pass  # Not in main thread or unsupported platform

    def _handle_signal(self, signum: int) -> None:
        logger.info("worker.signal_received", worker_id=self.worker_id, signal=signum)
        self.stop()

    def _phase_failed(self, cycle: CycleResult, phase: str, error: Exception) -> None:
        cycle.errors.append(f"{phase}: {error}")
        logger.error(
            "worker.phase_failed",
            worker_id=self.worker_id,
            phase=phase,
            category=categorize_error(error).value,
            error=str(error),
        )


__all__ = ["CycleResult", "WorkerLoop", "WorkerStats"]
