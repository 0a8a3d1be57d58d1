"""
ULID generation and UTC timestamp utilities (stdlib-only).

Every row the engine writes carries a time-sortable id and one or more
UTC timestamps.  Timestamps are persisted as ISO-8601 text, and eligibility
queries (``available_at <= ?``, ``next_run_at <= ?``) compare them as
strings, so every timestamp must be rendered with the same shape.

Manifesto:
    - **generate_ulid():** Time-sortable unique IDs (26-char, base32)
    - **utc_now():** Timezone-aware UTC datetime
    - **to_iso8601() / from_iso8601():** Fixed-width round-trip, so lexical
      order equals chronological order in SQL comparisons

Tags:
    timestamps, ulid, utc, datetime, herald-core, stdlib-only

Doc-Types:
    - API Reference
"""

from __future__ import annotations

import random
import threading
import time
from datetime import UTC, datetime


def utc_now() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(UTC)


def generate_ulid() -> str:
    """
    Generate a ULID-like identifier.

    Format: 26 characters, base32 encoded, time-sortable.  Monotonic within
    a process: ids generated in the same millisecond increment the random
    component, so insertion order equals id order.
    """
    global _last_ms, _last_random

    with _ulid_lock:
        # Time component: milliseconds since epoch (48 bits -> 10 chars)
        timestamp_ms = int(time.time() * 1000)
        if timestamp_ms <= _last_ms:
            timestamp_ms = _last_ms
            _last_random = (_last_random + 1) & _RANDOM_MASK
        else:
            # Random component (80 bits -> 16 chars), top bit clear to leave room
            _last_random = random.getrandbits(79)
        _last_ms = timestamp_ms

        return _encode_base32(timestamp_ms, 10) + _encode_base32(_last_random, 16)


def to_iso8601(dt: datetime | None) -> str | None:
    """Convert datetime to a fixed-width UTC ISO 8601 string.

    Naive datetimes are assumed to already be UTC.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC).isoformat(timespec="microseconds")


def from_iso8601(s: str | None) -> datetime | None:
    """Parse ISO 8601 string to an aware UTC datetime."""
    if not s:
        return None
    dt = datetime.fromisoformat(s)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt


# ULID base32 alphabet (Crockford's)
_ENCODING = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"
_ENCODING_LEN = len(_ENCODING)
_RANDOM_MASK = (1 << 80) - 1

_ulid_lock = threading.Lock()
_last_ms = 0
_last_random = 0


def _encode_base32(value: int, length: int) -> str:
    """Encode integer to base32 string of fixed length."""
    result = []
    for _ in range(length):
        result.append(_ENCODING[value % _ENCODING_LEN])
        value //= _ENCODING_LEN
    return "".join(reversed(result))


__all__ = ["utc_now", "generate_ulid", "to_iso8601", "from_iso8601"]
