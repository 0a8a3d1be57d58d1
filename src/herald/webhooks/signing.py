"""HMAC signing for outbound webhooks and verification for receivers.

Contract::

    payload_hash = sha256_hex(body)
    signature    = hmac_sha256_hex(secret, timestamp + "." + payload_hash)

A subscription without a secret is still delivered, with the literal
signature ``"unsigned"``.  Receivers recompute the signature from the raw
body and the ``X-Herald-Timestamp`` header and compare in constant time.
"""

from __future__ import annotations

import hashlib
import hmac
from dataclasses import dataclass

from herald.core.timestamps import to_iso8601, utc_now

UNSIGNED = "unsigned"

HEADER_EVENT_ID = "X-Herald-Event-Id"
HEADER_EVENT_NAME = "X-Herald-Event-Name"
HEADER_SITE_ID = "X-Herald-Site-Id"
HEADER_TIMESTAMP = "X-Herald-Timestamp"
HEADER_SIGNATURE = "X-Herald-Signature"
HEADER_PAYLOAD_SHA256 = "X-Herald-Payload-SHA256"


@dataclass(frozen=True)
class Signature:
    signature: str
    payload_hash: str
    timestamp: str

    @property
    def signed(self) -> bool:
        return self.signature != UNSIGNED


def sha256_hex(body: str | bytes) -> str:
    if isinstance(body, str):
        body = body.encode("utf-8")
    return hashlib.sha256(body).hexdigest()


def hmac_sha256_hex(secret: str, message: str) -> str:
    return hmac.new(secret.encode("utf-8"), message.encode("utf-8"), hashlib.sha256).hexdigest()


def sign_payload(body: str | bytes, secret: str | None, timestamp: str | None = None) -> Signature:
    """Sign a canonical request body.

    Args:
        body: Exact bytes (or text) that will be sent
        secret: Subscription secret; blank or None yields ``"unsigned"``
        timestamp: Signing time, defaults to now (ISO-8601 UTC)
    """
    timestamp = timestamp or to_iso8601(utc_now())
    payload_hash = sha256_hex(body)
    secret = (secret or "").strip()
    if not secret:
        return Signature(signature=UNSIGNED, payload_hash=payload_hash, timestamp=timestamp)
    return Signature(
        signature=hmac_sha256_hex(secret, f"{timestamp}.{payload_hash}"),
        payload_hash=payload_hash,
        timestamp=timestamp,
    )


def verify_signature(body: str | bytes, secret: str | None, timestamp: str, signature: str) -> bool:
    """Check a received signature in constant time.

    Returns False when any input is missing; an unsigned delivery never
    verifies against a configured secret.
    """
    secret = (secret or "").strip()
    if not secret or not timestamp or not signature:
        return False
    expected = hmac_sha256_hex(secret, f"{timestamp}.{sha256_hex(body)}")
    return hmac.compare_digest(expected, signature.strip())


__all__ = [
    "HEADER_EVENT_ID",
    "HEADER_EVENT_NAME",
    "HEADER_PAYLOAD_SHA256",
    "HEADER_SIGNATURE",
    "HEADER_SITE_ID",
    "HEADER_TIMESTAMP",
    "Signature",
    "UNSIGNED",
    "sha256_hex",
    "sign_payload",
    "verify_signature",
]
