"""Webhook fanout - deliver one domain event to every matching subscriber.

Manifesto:
    Fanout is a best-effort side channel.  One subscriber timing out, one
    returning 500, even one delivery row failing to persist: none of it may
    delay the other subscribers or change the primary queue item's outcome.
    :meth:`WebhookFanout.fanout` therefore never raises.

    - **Concurrent:** every matching subscription is attempted at once
    - **Isolated:** each attempt catches its own failures
    - **Audited:** exactly one ``core_webhook_deliveries`` row per attempt
    - **One chain per subscriber:** a subscription already holding any
      delivery row for this event is skipped when the event is retried;
      its retries belong to :meth:`WebhookFanout.redeliver_due`, which
      carries the attempt number up to ``max_attempts``

Architecture:
    ::

        fanout(event)
          │  matching_subscriptions(name, site)  ─ pattern + scope
          │  minus notified_subscription_ids(event_id)
          ▼
        asyncio.gather(_attempt(sub) for sub in subscriptions)
          │   sign_payload(body, secret) → X-Herald-* headers
          │   POST via httpx.AsyncClient
          ▼
        2xx → delivered
        else → failed (next_attempt_at = now + min(600, 30·2^(n-1)))
             → dead   (attempt >= max_attempts)

        redeliver_due(limit)
          claim_redeliveries(now) → re-send stored body → next attempt row

Tags:
    herald, webhooks, fanout, httpx, hmac, isolation

Doc-Types:
    api-reference, architecture-diagram
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import datetime
from typing import Any

import httpx

from herald.core.errors import WebhookDeliveryError
from herald.core.events import DomainEvent
from herald.core.logging import get_logger
from herald.core.timestamps import to_iso8601, utc_now
from herald.execution.retry import WebhookBackoffPolicy, truncate_error
from herald.webhooks.models import DeliveryOutcome, FanoutResult, WebhookDelivery, WebhookSubscription
from herald.webhooks.payload import render_body, to_webhook_payload
from herald.webhooks.repository import WebhookRepository
from herald.webhooks.signing import (
    HEADER_EVENT_ID,
    HEADER_EVENT_NAME,
    HEADER_PAYLOAD_SHA256,
    HEADER_SIGNATURE,
    HEADER_SITE_ID,
    HEADER_TIMESTAMP,
    sign_payload,
)

logger = get_logger(__name__)


class WebhookFanout:
    """Deliver events to external webhook subscribers.

    Args:
        repository: Subscription source and delivery log
        client: Shared ``httpx.AsyncClient``; when omitted a client is
            opened per pass with ``timeout``
        timeout: Per-request timeout in seconds
        clock: Injectable UTC clock
        error_max_length: Truncation bound for recorded errors
    """

    def __init__(
        self,
        repository: WebhookRepository,
        *,
        client: httpx.AsyncClient | None = None,
        timeout: float = 10.0,
        clock: Callable[[], datetime] = utc_now,
        error_max_length: int = 2000,
    ) -> None:
        self.repository = repository
        self.client = client
        self.timeout = timeout
        self.clock = clock
        self.error_max_length = error_max_length

    # === Public API ===

    async def fanout(self, event: DomainEvent) -> FanoutResult:
        """One attempt per matching subscription not yet notified of this event.  Never raises."""
        result = FanoutResult()
        try:
            if not event.id:
                logger.warning("webhook.fanout_skipped", event_name=event.name, reason="event has no id")
                return result

            subscriptions = self.repository.matching_subscriptions(event.name, event.site_id)
            if not subscriptions:
                return result

            already_notified = self.repository.notified_subscription_ids(event.id)
            pending = [s for s in subscriptions if s.id not in already_notified]
            result.skipped = len(subscriptions) - len(pending)
            if not pending:
                return result

            body = render_body(to_webhook_payload(event))
            jobs = [
                (sub, dict(event_id=event.id, event_name=event.name, site_id=event.site_id, body=body, attempt=1))
                for sub in pending
            ]
            await self._run_attempts(jobs, result)
        except Exception as e:
            logger.error("webhook.fanout_error", event_id=event.id, event_name=event.name, error=str(e))

        if result.attempted:
            logger.info("webhook.fanout_completed", event_id=event.id, **result.to_dict())
        return result

    async def redeliver_due(self, limit: int = 25) -> FanoutResult:
        """Re-send failed deliveries whose ``next_attempt_at`` has passed."""
        result = FanoutResult()
        claimed = self.repository.claim_redeliveries(self.clock(), limit)
        if not claimed:
            return result

        jobs: list[tuple[WebhookSubscription, dict[str, Any]]] = []
        for previous in claimed:
            subscription = self.repository.get_subscription(previous.subscription_id)
            if subscription is None or not subscription.enabled:
                self._record_abandoned(previous, result)
                continue
            jobs.append(
                (
                    subscription,
                    dict(
                        event_id=previous.event_id,
                        event_name=previous.event_name,
                        site_id=previous.site_id,
                        body=previous.request_body,
                        attempt=previous.attempt + 1,
                    ),
                )
            )

        await self._run_attempts(jobs, result)
        logger.info("webhook.redelivery_completed", claimed=len(claimed), **result.to_dict())
        return result

    # === Private Helpers ===

    async def _run_attempts(self, jobs: list[tuple[WebhookSubscription, dict[str, Any]]], result: FanoutResult) -> None:
        if not jobs:
            return
        if self.client is not None:
            outcomes = await self._gather(self.client, jobs)
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                outcomes = await self._gather(client, jobs)

        for (subscription, job), outcome in zip(jobs, outcomes, strict=True):
            if isinstance(outcome, BaseException):
                logger.error(
                    "webhook.attempt_error",
                    subscription_id=subscription.id,
                    event_id=job["event_id"],
                    error=str(outcome),
                )
                continue
            result.record(outcome)

    async def _gather(
        self, client: httpx.AsyncClient, jobs: list[tuple[WebhookSubscription, dict[str, Any]]]
    ) -> list[WebhookDelivery | BaseException]:
        return await asyncio.gather(
            *(self._attempt(client, subscription, **job) for subscription, job in jobs),
            return_exceptions=True,
        )

    async def _attempt(
        self,
        client: httpx.AsyncClient,
        subscription: WebhookSubscription,
        *,
        event_id: str,
        event_name: str,
        site_id: str | None,
        body: str,
        attempt: int,
    ) -> WebhookDelivery:
        delivery = WebhookDelivery(
            subscription_id=subscription.id,
            event_id=event_id,
            event_name=event_name,
            site_id=site_id,
            attempt=attempt,
            request_body=body,
        )

        try:
            delivery.response_status = await self._post(client, subscription, delivery)
            delivery.outcome = DeliveryOutcome.DELIVERED.value
        except WebhookDeliveryError as e:
            delivery.response_status = e.status_code
            delivery.error = truncate_error(e, self.error_max_length)
            policy = WebhookBackoffPolicy(max_attempts=subscription.max_attempts)
            decision = policy.decide(attempt, self.clock())
            if decision.dead_letter:
                delivery.outcome = DeliveryOutcome.DEAD.value
            else:
                delivery.outcome = DeliveryOutcome.FAILED.value
                delivery.next_attempt_at = to_iso8601(decision.retry_at)

        delivery.created_at = to_iso8601(self.clock())
        self.repository.record_delivery(delivery)

        log = logger.info if delivery.outcome == DeliveryOutcome.DELIVERED.value else logger.warning
        log(
            f"webhook.delivery_{delivery.outcome}",
            subscription_id=subscription.id,
            event_id=event_id,
            attempt=attempt,
            status=delivery.response_status,
            error=delivery.error,
        )
        return delivery

    async def _post(self, client: httpx.AsyncClient, subscription: WebhookSubscription, delivery: WebhookDelivery) -> int:
        """POST the signed body; returns the status or raises WebhookDeliveryError."""
        signed = sign_payload(delivery.request_body, subscription.secret, to_iso8601(self.clock()))
        headers = {
            "Content-Type": "application/json",
            HEADER_EVENT_ID: delivery.event_id,
            HEADER_EVENT_NAME: delivery.event_name,
            HEADER_SITE_ID: delivery.site_id or "",
            HEADER_TIMESTAMP: signed.timestamp,
            HEADER_SIGNATURE: signed.signature,
            HEADER_PAYLOAD_SHA256: signed.payload_hash,
            **subscription.headers,
        }

        try:
            response = await client.post(
                subscription.url,
                content=delivery.request_body.encode("utf-8"),
                headers=headers,
                timeout=self.timeout,
            )
        except httpx.HTTPError as e:
            raise WebhookDeliveryError(
                f"{type(e).__name__}: {e}".rstrip(": "),
                cause=e,
            ).with_context(url=subscription.url, subscription_id=subscription.id) from e

        if not response.is_success:
            raise WebhookDeliveryError(
                f"HTTP {response.status_code}: {response.text[:200]}".rstrip(": "),
                status_code=response.status_code,
            ).with_context(url=subscription.url, subscription_id=subscription.id)

        return response.status_code

    def _record_abandoned(self, previous: WebhookDelivery, result: FanoutResult) -> None:
        delivery = WebhookDelivery(
            subscription_id=previous.subscription_id,
            event_id=previous.event_id,
            event_name=previous.event_name,
            site_id=previous.site_id,
            attempt=previous.attempt + 1,
            outcome=DeliveryOutcome.DEAD.value,
            error="subscription removed or disabled",
            request_body=previous.request_body,
        )
        self.repository.record_delivery(delivery)
        result.record(delivery)
        logger.warning("webhook.redelivery_abandoned", subscription_id=previous.subscription_id, event_id=previous.event_id)


__all__ = ["WebhookFanout"]
