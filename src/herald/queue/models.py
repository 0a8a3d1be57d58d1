"""Event queue table models (``core_event_queue``).

Tags:
    herald, models, queue, dataclasses, schema-mapping

Doc-Types:
    api-reference, data-model
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class QueueStatus(str, Enum):
    """Queue item lifecycle.

    queued -> processing -> processed | queued (retry) | dead_letter
    """

    QUEUED = "queued"
    PROCESSING = "processing"
    PROCESSED = "processed"
    DEAD_LETTER = "dead_letter"

    @property
    def is_terminal(self) -> bool:
        return self in (QueueStatus.PROCESSED, QueueStatus.DEAD_LETTER)


@dataclass
class QueueItem:
    """Queue row.  ``event`` is the stored camelCase envelope."""

    id: str = ""
    event_name: str = ""
    site_id: str | None = None
    event: dict[str, Any] = field(default_factory=dict)
    status: str = QueueStatus.QUEUED.value
    attempts: int = 0
    available_at: str = ""
    claimed_at: str | None = None
    processed_at: str | None = None
    last_error: str | None = None
    created_at: str = ""
    updated_at: str = ""


@dataclass
class ReapResult:
    """Stale claims returned to the queue by one reaper pass."""

    requeued: int = 0
    dead_lettered: int = 0

    @property
    def total(self) -> int:
        return self.requeued + self.dead_lettered
