"""Webhook table models (``core_webhook_subscriptions``, ``core_webhook_deliveries``).

Tags:
    herald, models, webhooks, dataclasses, schema-mapping

Doc-Types:
    api-reference, data-model
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any


class DeliveryOutcome(str, Enum):
    """Result of one outbound attempt."""

    DELIVERED = "delivered"
    FAILED = "failed"  # will be redelivered at next_attempt_at
    DEAD = "dead"  # attempts exhausted


# ---------------------------------------------------------------------------
# core_webhook_subscriptions
# ---------------------------------------------------------------------------


@dataclass
class WebhookSubscription:
    """Subscription row.  ``site_id=None`` receives events from every site."""

    id: str = ""
    site_id: str | None = None
    event_pattern: str = "*"
    url: str = ""
    secret: str | None = None
    enabled: bool = True
    max_attempts: int = 4
    headers: dict[str, str] = field(default_factory=dict)
    created_at: str = ""
    updated_at: str = ""

    def to_dict(self, include_secret: bool = False) -> dict[str, Any]:
        """Plain dict; the secret is masked unless ``include_secret``."""
        data = asdict(self)
        if not include_secret:
            data["secret"] = "***" if self.secret else None
        return data


# ---------------------------------------------------------------------------
# core_webhook_deliveries
# ---------------------------------------------------------------------------


@dataclass
class WebhookDelivery:
    """One outbound attempt (append-only)."""

    id: str = ""
    subscription_id: str = ""
    event_id: str = ""
    event_name: str = ""
    site_id: str | None = None
    attempt: int = 1
    outcome: str = DeliveryOutcome.FAILED.value
    response_status: int | None = None
    error: str | None = None
    request_body: str = ""
    next_attempt_at: str | None = None
    redelivered: bool = False
    created_at: str = ""


@dataclass
class FanoutResult:
    """Summary of one fanout or redelivery pass."""

    attempted: int = 0
    delivered: int = 0
    failed: int = 0
    dead: int = 0
    skipped: int = 0
    deliveries: list[WebhookDelivery] = field(default_factory=list)

    def record(self, delivery: WebhookDelivery) -> None:
        self.attempted += 1
        self.deliveries.append(delivery)
        if delivery.outcome == DeliveryOutcome.DELIVERED.value:
            self.delivered += 1
        elif delivery.outcome == DeliveryOutcome.DEAD.value:
            self.dead += 1
        else:
            self.failed += 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "attempted": self.attempted,
            "delivered": self.delivered,
            "failed": self.failed,
            "dead": self.dead,
            "skipped": self.skipped,
        }
