"""Webhook repository - subscriptions and the append-only delivery log.

Manifesto:
    Fanout reads subscriptions and appends delivery rows; administrators
    upsert and delete subscriptions.  Redelivery is the only contended
    operation, so it is claimed the same way queue items are: one
    conditional UPDATE that flips ``redelivered`` and returns exactly the
    rows it flipped.

Tags:
    herald, webhooks, repository, CRUD, delivery-log

Doc-Types:
    api-reference


┌──────────────────────────────────────────────────────────────────────────────┐
│  WEBHOOK REPOSITORY                                                           │
│                                                                               │
│   Subscriptions:                                                              │
│   ├── upsert_subscription(url, event_pattern, ...) → WebhookSubscription      │
│   ├── get_subscription(id) / delete_subscription(id)                          │
│   ├── list_subscriptions(site_id, enabled_only)                               │
│   └── matching_subscriptions(event_name, site_id)  (pattern + scope)          │
│                                                                               │
│   Deliveries (append-only):                                                   │
│   ├── record_delivery(delivery)                                               │
│   ├── notified_subscription_ids(event_id)                                     │
│   ├── claim_redeliveries(now, limit)   (atomic, disjoint across workers)      │
│   └── list_deliveries(event_id, subscription_id, limit)                       │
└──────────────────────────────────────────────────────────────────────────────┘
"""

from __future__ import annotations

import json
from collections.abc import Callable
from datetime import datetime
from typing import Any

from herald.core.dialect import Dialect, SQLiteDialect
from herald.core.errors import ValidationError
from herald.core.events import matches_pattern
from herald.core.logging import get_logger
from herald.core.protocols import Connection
from herald.core.timestamps import generate_ulid, to_iso8601, utc_now
from herald.webhooks.models import WebhookDelivery, WebhookSubscription

logger = get_logger(__name__)

_SUBSCRIPTION_COLUMNS = [
    "id",
    "site_id",
    "event_pattern",
    "url",
    "secret",
    "enabled",
    "max_attempts",
    "headers",
    "created_at",
    "updated_at",
]
_DELIVERY_COLUMNS = [
    "id",
    "subscription_id",
    "event_id",
    "event_name",
    "site_id",
    "attempt",
    "outcome",
    "response_status",
    "error",
    "request_body",
    "next_attempt_at",
    "redelivered",
    "created_at",
]


class WebhookRepository:
    """Data access for webhook subscriptions and deliveries."""

    def __init__(
        self,
        conn: Connection,
        dialect: Dialect | None = None,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.conn = conn
        self.dialect: Dialect = dialect or SQLiteDialect()
        self.clock = clock

    def _ph(self, count: int) -> str:
        return self.dialect.placeholders(count)

    @property
    def _p(self) -> str:
        return self.dialect.placeholder(0)

    # === Subscriptions ===

    def upsert_subscription(
        self,
        url: str,
        event_pattern: str = "*",
        *,
        site_id: str | None = None,
        secret: str | None = None,
        enabled: bool = True,
        max_attempts: int = 4,
        headers: dict[str, str] | None = None,
    ) -> WebhookSubscription:
        """Create a subscription, or update the one with the same (site, pattern, url)."""
        url = (url or "").strip()
        event_pattern = (event_pattern or "").strip()
        site_id = (site_id or "").strip() or None
        if not url:
            raise ValidationError("Webhook subscription url is required", field="url")
        if not event_pattern:
            raise ValidationError("Webhook subscription event_pattern is required", field="event_pattern")

        now = to_iso8601(self.clock())
        secret = (secret or "").strip() or None
        max_attempts = max(1, int(max_attempts))
        headers_json = json.dumps(headers or {})
        p = self._p

        cursor = self.conn.execute(
            f"""
            SELECT id FROM core_webhook_subscriptions
            WHERE event_pattern = {p} AND url = {p}
              AND (site_id = {p} OR (site_id IS NULL AND {p} IS NULL))
            """,
            (event_pattern, url, site_id, site_id),
        )
        row = cursor.fetchone()

        if row:
            subscription_id = row[0]
            self.conn.execute(
                f"""
                UPDATE core_webhook_subscriptions
                SET secret = {p}, enabled = {p}, max_attempts = {p}, headers = {p}, updated_at = {p}
                WHERE id = {p}
                """,
                (secret, 1 if enabled else 0, max_attempts, headers_json, now, subscription_id),
            )
        else:
            subscription_id = generate_ulid()
            self.conn.execute(
                f"""
                INSERT INTO core_webhook_subscriptions (
                    id, site_id, event_pattern, url, secret, enabled,
                    max_attempts, headers, created_at, updated_at
                ) VALUES ({self._ph(10)})
                """,
                (
                    subscription_id,
                    site_id,
                    event_pattern,
                    url,
                    secret,
                    1 if enabled else 0,
                    max_attempts,
                    headers_json,
                    now,
                    now,
                ),
            )
        self.conn.commit()

        logger.info("webhook.subscription_saved", subscription_id=subscription_id, event_pattern=event_pattern)
        return self.get_subscription(subscription_id)  # type: ignore[return-value]

    def get_subscription(self, subscription_id: str) -> WebhookSubscription | None:
        cursor = self.conn.execute(
            f"SELECT {', '.join(_SUBSCRIPTION_COLUMNS)} FROM core_webhook_subscriptions WHERE id = {self._p}",
            (subscription_id,),
        )
        row = cursor.fetchone()
        return self._row_to_subscription(row) if row else None

    def delete_subscription(self, subscription_id: str) -> bool:
        cursor = self.conn.execute(
            f"DELETE FROM core_webhook_subscriptions WHERE id = {self._p}",
            (subscription_id,),
        )
        self.conn.commit()
        return cursor.rowcount > 0

    def list_subscriptions(self, site_id: str | None = None, enabled_only: bool = False) -> list[WebhookSubscription]:
        """List subscriptions, optionally limited to one site's own rows."""
        conditions: list[str] = []
        params: list[Any] = []
        if site_id is not None:
            conditions.append(f"site_id = {self._p}")
            params.append(site_id)
        if enabled_only:
            conditions.append("enabled = 1")
        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""

        cursor = self.conn.execute(
            f"""
            SELECT {', '.join(_SUBSCRIPTION_COLUMNS)} FROM core_webhook_subscriptions
            {where}
            ORDER BY event_pattern, url
            """,
            tuple(params),
        )
        return [self._row_to_subscription(row) for row in cursor.fetchall()]

    def matching_subscriptions(self, event_name: str, site_id: str | None) -> list[WebhookSubscription]:
        """Enabled subscriptions in scope (same site or global) whose pattern matches."""
        if site_id:
            cursor = self.conn.execute(
                f"""
                SELECT {', '.join(_SUBSCRIPTION_COLUMNS)} FROM core_webhook_subscriptions
                WHERE enabled = 1 AND (site_id = {self._p} OR site_id IS NULL)
                ORDER BY created_at, id
                """,
                (site_id,),
            )
        else:
            cursor = self.conn.execute(
                f"""
                SELECT {', '.join(_SUBSCRIPTION_COLUMNS)} FROM core_webhook_subscriptions
                WHERE enabled = 1 AND site_id IS NULL
                ORDER BY created_at, id
                """
            )
        subscriptions = [self._row_to_subscription(row) for row in cursor.fetchall()]
        return [s for s in subscriptions if matches_pattern(event_name, s.event_pattern)]

    # === Deliveries ===

    def record_delivery(self, delivery: WebhookDelivery) -> WebhookDelivery:
        """Append one attempt row."""
        if not delivery.id:
            delivery.id = generate_ulid()
        if not delivery.created_at:
            delivery.created_at = to_iso8601(self.clock())

        self.conn.execute(
            f"""
            INSERT INTO core_webhook_deliveries ({', '.join(_DELIVERY_COLUMNS)})
            VALUES ({self._ph(len(_DELIVERY_COLUMNS))})
            """,
            (
                delivery.id,
                delivery.subscription_id,
                delivery.event_id,
                delivery.event_name,
                delivery.site_id,
                delivery.attempt,
                delivery.outcome,
                delivery.response_status,
                delivery.error,
                delivery.request_body,
                delivery.next_attempt_at,
                1 if delivery.redelivered else 0,
                delivery.created_at,
            ),
        )
        self.conn.commit()
        return delivery

    def notified_subscription_ids(self, event_id: str) -> set[str]:
        """Subscriptions holding any delivery row for ``event_id``, whatever its outcome."""
        cursor = self.conn.execute(
            f"""
            SELECT DISTINCT subscription_id FROM core_webhook_deliveries
            WHERE event_id = {self._p}
            """,
            (event_id,),
        )
        return {row[0] for row in cursor.fetchall()}

    def claim_redeliveries(self, now: datetime, limit: int = 25) -> list[WebhookDelivery]:
        """Atomically claim failed attempts whose retry time has come.

        The claimed rows are flagged ``redelivered`` so no other worker
        picks them up; the caller appends the next attempt as a new row.
        """
        limit = max(1, min(200, int(limit)))
        p = self._p
        cursor = self.conn.execute(
            f"""
            UPDATE core_webhook_deliveries
            SET redelivered = 1
            WHERE id IN (
                SELECT id FROM core_webhook_deliveries
                WHERE outcome = 'failed' AND redelivered = 0 AND next_attempt_at <= {p}
                ORDER BY next_attempt_at, id
                LIMIT {p}
                {self.dialect.claim_lock()}
            )
            AND redelivered = 0
            RETURNING {', '.join(_DELIVERY_COLUMNS)}
            """,
            (to_iso8601(now), limit),
        )
        rows = cursor.fetchall()
        self.conn.commit()
        return sorted((self._row_to_delivery(row) for row in rows), key=lambda d: (d.next_attempt_at or "", d.id))

    def list_deliveries(
        self,
        event_id: str | None = None,
        subscription_id: str | None = None,
        limit: int = 50,
    ) -> list[WebhookDelivery]:
        conditions: list[str] = []
        params: list[Any] = []
        if event_id:
            conditions.append(f"event_id = {self._p}")
            params.append(event_id)
        if subscription_id:
            conditions.append(f"subscription_id = {self._p}")
            params.append(subscription_id)
        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        params.append(limit)

        cursor = self.conn.execute(
            f"""
            SELECT {', '.join(_DELIVERY_COLUMNS)} FROM core_webhook_deliveries
            {where}
            ORDER BY created_at DESC, id DESC
            LIMIT {self._p}
            """,
            tuple(params),
        )
        return [self._row_to_delivery(row) for row in cursor.fetchall()]

    # === Private Helpers ===

    def _row_to_subscription(self, row: tuple) -> WebhookSubscription:
        data = dict(zip(_SUBSCRIPTION_COLUMNS, row, strict=False))
        data["enabled"] = bool(data["enabled"])
        data["headers"] = json.loads(data["headers"]) if data["headers"] else {}
        return WebhookSubscription(**data)

    def _row_to_delivery(self, row: tuple) -> WebhookDelivery:
        data = dict(zip(_DELIVERY_COLUMNS, row, strict=False))
        data["redelivered"] = bool(data["redelivered"])
        return WebhookDelivery(**data)


__all__ = ["WebhookRepository"]
