"""Event dispatcher - drain the queue through the hook chain and webhook fanout.

Manifesto:
    Dispatch is stateless.  A drain pass claims a batch, runs every claimed
    item and resolves it; nothing in memory says "a drain is in progress",
    so any number of workers (or overlapping passes in one process) can run
    it at once and the atomic claim keeps them from sharing items.

    - **Hooks decide:** the item's fate is the hook chain's outcome only
    - **Fanout observes:** webhook failures are logged and recorded on their
      own delivery rows, never on the queue item
    - **At-least-once:** an item whose worker dies mid-dispatch is reclaimed
      by the reaper and runs again

Architecture:
    ::

        process_batch(limit)
          │  store.claim_batch(limit)          ─ atomic, disjoint
          ▼
        for item in claimed (claim order):
          dispatch(item)
            │  normalize_event(item.event)     ─ invalid → mark_failed
            ▼
            asyncio.gather(
                execute(event.name, event),    ─ hook chain
                fanout.fanout(event),          ─ never raises
            )
            │
            ├─ hooks ok     → store.mark_processed(id)
            └─ hooks raised → store.mark_failed(id, attempts, error)

Tags:
    herald, dispatcher, queue, hooks, webhooks, asyncio

Doc-Types:
    api-reference, architecture-diagram
"""

from __future__ import annotations

import asyncio
import inspect
from dataclasses import dataclass, field
from typing import Any

from herald.core.errors import EventValidationError
from herald.core.events import DomainEvent, normalize_event
from herald.core.logging import get_logger
from herald.core.protocols import HookExecutor
from herald.core.timestamps import generate_ulid
from herald.execution.retry import RetryDecision, truncate_error
from herald.queue.models import QueueItem
from herald.queue.store import EventQueueStore
from herald.webhooks.fanout import WebhookFanout
from herald.webhooks.models import FanoutResult

logger = get_logger(__name__)


async def invoke_handler(handler: Any, *args: Any) -> Any:
    """Call a sync or async handler and await the result when needed."""
    result = handler(*args)
    if inspect.isawaitable(result):
        result = await result
    return result


@dataclass
class DispatchOutcome:
    """Result of dispatching one queue item."""

    item_id: str
    processed: bool
    error: str | None = None
    decision: RetryDecision | None = None
    fanout: FanoutResult | None = None

    @property
    def dead_lettered(self) -> bool:
        return self.decision is not None and self.decision.dead_letter


@dataclass
class BatchResult:
    """Result of one ``process_batch`` pass."""

    claimed: int = 0
    processed: int = 0
    retried: int = 0
    dead_lettered: int = 0
    outcomes: list[DispatchOutcome] = field(default_factory=list)

    def record(self, outcome: DispatchOutcome) -> None:
        self.outcomes.append(outcome)
        if outcome.processed:
            self.processed += 1
        elif outcome.dead_lettered:
            self.dead_lettered += 1
        else:
            self.retried += 1

    def to_dict(self) -> dict[str, int]:
        return {
            "claimed": self.claimed,
            "processed": self.processed,
            "retried": self.retried,
            "dead_lettered": self.dead_lettered,
        }


class EventDispatcher:
    """Run queued domain events through the hook chain and webhook fanout.

    Args:
        store: The durable queue
        execute: Async hook-chain function ``(event_name, event)``; raising
            fails the item
        fanout: Optional webhook fanout run alongside the hooks
        batch_size: Default claim size for :meth:`process_batch`
        autodrain: Default for :meth:`emit`; drain one batch after enqueueing
        error_max_length: Truncation bound for stored errors
    """

    def __init__(
        self,
        store: EventQueueStore,
        execute: HookExecutor,
        fanout: WebhookFanout | None = None,
        *,
        batch_size: int = 25,
        autodrain: bool = False,
        error_max_length: int = 2000,
    ) -> None:
        self.store = store
        self.execute = execute
        self.fanout = fanout
        self.batch_size = batch_size
        self.autodrain = autodrain
        self.error_max_length = error_max_length

    # === Producer ===

    async def emit(self, event: DomainEvent | dict[str, Any], autodrain: bool | None = None) -> QueueItem:
        """Enqueue an event, optionally draining one batch afterwards.

        Enqueue errors propagate to the producer.  Errors from the optional
        drain are logged; the event is already durable at that point.
        """
        item = self.store.enqueue(event)
        drain = self.autodrain if autodrain is None else autodrain
        if drain:
            try:
                await self.process_batch()
            except Exception as e:
                logger.error("dispatch.autodrain_failed", item_id=item.id, error=str(e))
        return item

    # === Drain ===

    async def process_batch(self, limit: int | None = None) -> BatchResult:
        """Claim one batch and dispatch each item in claim order."""
        items = self.store.claim_batch(limit or self.batch_size)
        result = BatchResult(claimed=len(items))
        for item in items:
            result.record(await self.dispatch(item))

        if result.claimed:
            logger.info("dispatch.batch_completed", **result.to_dict())
        return result

    async def dispatch(self, item: QueueItem) -> DispatchOutcome:
        """Dispatch one claimed item and resolve it in the store."""
        try:
            event = normalize_event(item.event).with_id(item.id)
        except EventValidationError as e:
            return self._fail(item, e)

        hook_error, fanout_result = await asyncio.gather(
            self._run_hooks(event),
            self._run_fanout(event),
        )

        if hook_error is not None:
            outcome = self._fail(item, hook_error)
            outcome.fanout = fanout_result
            return outcome

        self.store.mark_processed(item.id)
        logger.debug("dispatch.processed", item_id=item.id, event_name=item.event_name)
        return DispatchOutcome(item_id=item.id, processed=True, fanout=fanout_result)

    async def dispatch_immediate(self, event: DomainEvent | dict[str, Any]) -> FanoutResult | None:
        """Run hooks and fanout for an event without touching the queue.

        Hook exceptions propagate to the caller.
        """
        normalized = normalize_event(event)
        if not normalized.id:
            normalized = normalized.with_id(generate_ulid())

        hook_error, fanout_result = await asyncio.gather(
            self._run_hooks(normalized),
            self._run_fanout(normalized),
        )
        if hook_error is not None:
            raise hook_error
        return fanout_result

    # === Private Helpers ===

    async def _run_hooks(self, event: DomainEvent) -> BaseException | None:
        try:
            await invoke_handler(self.execute, event.name, event)
        except Exception as e:
            return e
        return None

    async def _run_fanout(self, event: DomainEvent) -> FanoutResult | None:
        if self.fanout is None:
            return None
        return await self.fanout.fanout(event)

    def _fail(self, item: QueueItem, error: BaseException) -> DispatchOutcome:
        message = truncate_error(error, self.error_max_length)
        decision = self.store.mark_failed(item.id, item.attempts, message)
        return DispatchOutcome(item_id=item.id, processed=False, error=message, decision=decision)


__all__ = ["BatchResult", "DispatchOutcome", "EventDispatcher", "invoke_handler"]
