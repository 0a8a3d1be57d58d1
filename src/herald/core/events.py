"""
Domain event envelope, name registry and pattern matching.

A domain event is the unit of work on the durable queue.  Producers hand
the engine a versioned envelope; the queue stores it verbatim as JSON and
the dispatcher hands it back to the hook chain and to webhook subscribers.

Manifesto:
    Validation happens at the door.  A malformed event rejected at enqueue
    time is a bug report to the producer; the same event discovered at
    dispatch time is a poisoned queue item burning retry attempts.

    - **Versioned:** ``version`` must be 1
    - **Named:** core names are fixed, extensions use the ``plugin.`` namespace
    - **Lenient where harmless:** unknown ``actorType`` becomes ``anonymous``
    - **Strict where it matters:** ``payload``/``meta`` must be objects

Architecture:
    ::

        producer dict (camelCase envelope)
             │ normalize_event()
             ▼
        DomainEvent (frozen dataclass)
             │ to_envelope()
             ▼
        core_event_queue.event (JSON)

Examples:
    >>> event = normalize_event({"name": "content_published", "payload": {"postId": "p1"}})
    >>> event.actor_type
    'anonymous'
    >>> matches_pattern("communication.sent", "communication.*")
    True

Tags:
    events, envelope, validation, wildcard, herald-core

Doc-Types:
    - API Reference
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any

from herald.core.errors import EventValidationError
from herald.core.timestamps import to_iso8601, utc_now

EVENT_VERSION = 1

ACTOR_TYPES = frozenset({"anonymous", "user", "admin", "system"})

EXTENSION_PREFIX = "plugin."

CORE_EVENT_NAMES = (
    "page_view",
    "content_published",
    "content_deleted",
    "custom_event",
    "site.created",
    "user.invited",
    "communication.queued",
    "communication.sent",
    "communication.failed",
    "communication.dead",
    "rbac.role.changed",
)

_registered_event_names: set[str] = set(CORE_EVENT_NAMES)


# ── Name Registry ────────────────────────────────────────────────────────


def is_valid_event_name(name: str) -> bool:
    """Core names and anything in the ``plugin.`` namespace are accepted."""
    if not name:
        return False
    return name in _registered_event_names or name.startswith(EXTENSION_PREFIX)


def register_event_name(name: str) -> bool:
    """Pre-register an extension event name.

    Returns False (and registers nothing) for names outside the
    ``plugin.`` namespace; core names are fixed.
    """
    name = name.strip() if isinstance(name, str) else ""
    if not name:
        return False
    if not name.startswith(EXTENSION_PREFIX) and name not in _registered_event_names:
        return False
    _registered_event_names.add(name)
    return True


def list_event_names() -> list[str]:
    """All known event names, sorted."""
    return sorted(_registered_event_names)


def matches_pattern(event_name: str, pattern: str) -> bool:
    """Check if an event name matches a subscription pattern.

    Examples:
        - ``communication.*`` matches ``communication.sent``
        - ``*`` matches everything
        - ``content_published`` matches exactly ``content_published``
    """
    pattern = pattern.strip()
    if pattern == "*":
        return True
    if pattern.endswith(".*"):
        prefix = pattern[:-2]
        return event_name.startswith(prefix + ".")
    return event_name == pattern


# ── Envelope ─────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class DomainEvent:
    """Validated domain event envelope.

    Attributes:
        name: Core event name or ``plugin.*`` name
        payload: Event-specific data (JSON object)
        timestamp: When the event occurred (ISO-8601 UTC)
        id: Queue item id, assigned at enqueue when missing
        site_id: Tenant scope; webhook subscriptions match on it
        actor_type: anonymous, user, admin or system
        meta: Optional producer metadata (JSON object)
    """

    name: str
    payload: dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(default_factory=lambda: to_iso8601(utc_now()))
    version: int = EVENT_VERSION
    id: str | None = None
    site_id: str | None = None
    domain: str | None = None
    path: str | None = None
    actor_type: str = "anonymous"
    actor_id: str | None = None
    meta: dict[str, Any] | None = None

    def with_id(self, event_id: str) -> DomainEvent:
        return replace(self, id=event_id)

    def matches(self, pattern: str) -> bool:
        return matches_pattern(self.name, pattern)

    def to_envelope(self) -> dict[str, Any]:
        """Serialise to the camelCase wire/storage envelope."""
        envelope: dict[str, Any] = {
            "version": self.version,
            "name": self.name,
            "timestamp": self.timestamp,
            "actorType": self.actor_type,
            "payload": self.payload,
        }
        optional = {
            "id": self.id,
            "siteId": self.site_id,
            "domain": self.domain,
            "path": self.path,
            "actorId": self.actor_id,
            "meta": self.meta,
        }
        envelope.update({key: value for key, value in optional.items() if value is not None})
        return envelope


def _as_string(value: Any) -> str | None:
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return None


def normalize_event(data: DomainEvent | dict[str, Any]) -> DomainEvent:
    """Validate and normalise a producer envelope.

    Accepts an existing :class:`DomainEvent` (re-validated) or a camelCase
    envelope dict.

    Raises:
        EventValidationError: Wrong version, unknown name, or a non-object
            ``payload``/``meta``.
    """
    if isinstance(data, DomainEvent):
        data = data.to_envelope()
    if not isinstance(data, dict):
        raise EventValidationError("Event envelope must be an object", value=data)

    version = data.get("version", EVENT_VERSION)
    if version != EVENT_VERSION:
        raise EventValidationError(f"Unsupported event version: {version!r}", field="version", value=version)

    name = _as_string(data.get("name")) or ""
    if not is_valid_event_name(name):
        raise EventValidationError(f"Unknown event name: {name!r}", field="name", value=data.get("name"))

    payload = data.get("payload")
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise EventValidationError("Event payload must be an object", field="payload", value=payload)

    meta = data.get("meta")
    if meta is not None and not isinstance(meta, dict):
        raise EventValidationError("Event meta must be an object", field="meta", value=meta)

    actor_type = (_as_string(data.get("actorType")) or "").lower()
    if actor_type not in ACTOR_TYPES:
        actor_type = "anonymous"

    return DomainEvent(
        name=name,
        payload=payload,
        timestamp=_as_string(data.get("timestamp")) or to_iso8601(utc_now()),
        id=_as_string(data.get("id")),
        site_id=_as_string(data.get("siteId")),
        domain=_as_string(data.get("domain")),
        path=_as_string(data.get("path")),
        actor_type=actor_type,
        actor_id=_as_string(data.get("actorId")),
        meta=meta or None,
    )


__all__ = [
    "CORE_EVENT_NAMES",
    "DomainEvent",
    "normalize_event",
    "is_valid_event_name",
    "register_event_name",
    "list_event_names",
    "matches_pattern",
]
