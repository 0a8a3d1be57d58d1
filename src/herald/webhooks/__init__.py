"""Webhook fanout: subscriptions, signed delivery, and the delivery log."""

from herald.webhooks.fanout import WebhookFanout
from herald.webhooks.models import DeliveryOutcome, FanoutResult, WebhookDelivery, WebhookSubscription
from herald.webhooks.payload import to_webhook_payload
from herald.webhooks.repository import WebhookRepository
from herald.webhooks.signing import sign_payload, verify_signature

__all__ = [
    "DeliveryOutcome",
    "FanoutResult",
    "WebhookDelivery",
    "WebhookFanout",
    "WebhookRepository",
    "WebhookSubscription",
    "sign_payload",
    "to_webhook_payload",
    "verify_signature",
]
