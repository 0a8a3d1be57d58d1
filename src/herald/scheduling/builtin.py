"""Built-in core scheduled handlers."""

from __future__ import annotations

import httpx

from herald.core.errors import HttpPingError, ValidationError
from herald.core.logging import get_logger
from herald.execution.registry import HandlerRegistry, get_default_registry
from herald.scheduling.models import ScheduledRun

logger = get_logger(__name__)

HTTP_PING = "core.http_ping"
_PING_METHODS = ("GET", "HEAD")


async def http_ping(run: ScheduledRun) -> None:
    """GET or HEAD ``payload["url"]``; a transport error or non-2xx response fails the run.

    Payload keys: ``url`` (required), ``method`` (GET or HEAD, default GET),
    ``timeout`` (seconds, default 10).
    """
    url = run.payload.get("url")
    if not isinstance(url, str) or not url.strip():
        raise ValidationError("core.http_ping requires a 'url' in the payload", field="url", value=url)

    method = str(run.payload.get("method") or "GET").upper()
    if method not in _PING_METHODS:
        raise ValidationError(f"Unsupported ping method: {method}", field="method", value=method)

    timeout = float(run.payload.get("timeout") or 10.0)
    try:
        async with httpx.AsyncClient(timeout=timeout) as client:
            response = await client.request(method, url)
    except httpx.HTTPError as e:
        raise HttpPingError(f"{type(e).__name__}: {e}".rstrip(": "), cause=e).with_context(
            url=url, schedule_id=run.entry.id
        ) from e

    if not response.is_success:
        raise HttpPingError(
            f"HTTP {response.status_code} from {url}",
            status_code=response.status_code,
        ).with_context(url=url, schedule_id=run.entry.id)

    logger.debug("schedule.http_ping_ok", schedule_id=run.entry.id, url=url, status=response.status_code)


def register_builtin_handlers(registry: HandlerRegistry | None = None) -> HandlerRegistry:
    """Register the core handlers on ``registry`` (default: the global registry)."""
    target = registry or get_default_registry()
    target.register(HTTP_PING, http_ping, description="GET/HEAD a URL; non-2xx fails the run")
    return target


__all__ = ["HTTP_PING", "http_ping", "register_builtin_handlers"]
