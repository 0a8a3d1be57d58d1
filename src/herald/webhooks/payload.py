"""Outbound webhook body.

Subscribers receive a snake_case projection of the domain event envelope,
serialised once per event so every subscriber (and every redelivery) signs
and receives identical bytes.
"""

from __future__ import annotations

import json
from typing import Any

from herald.core.events import DomainEvent


def to_webhook_payload(event: DomainEvent) -> dict[str, Any]:
    return {
        "event_id": (event.id or "").strip(),
        "timestamp": event.timestamp,
        "site_id": event.site_id,
        "event_name": event.name,
        "version": event.version,
        "domain": event.domain,
        "path": event.path,
        "actor_type": event.actor_type,
        "actor_id": event.actor_id,
        "payload": event.payload or {},
        "meta": event.meta or {},
    }


def render_body(payload: dict[str, Any]) -> str:
    """Canonical JSON: sorted keys, compact separators."""
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)


__all__ = ["to_webhook_payload", "render_body"]
