"""Durable domain event queue and its atomic claim engine."""

from herald.queue.models import QueueItem, QueueStatus, ReapResult
from herald.queue.store import EventQueueStore

__all__ = ["EventQueueStore", "QueueItem", "QueueStatus", "ReapResult"]
