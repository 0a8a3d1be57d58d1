"""Handler Registry - injectable action key → scheduled handler lookup.

Manifesto:
Schedule entries name their work by string (``core.http_ping``,
``plugin.sitemap.rebuild``).  The registry is populated at startup and
resolves those keys at execution time.  An unknown key is an explicit
:class:`~herald.core.errors.HandlerNotFoundError`, which the scheduler
counts as a failed run, never a silent skip.

ARCHITECTURE
────────────
::

    HandlerRegistry
      ├── .register(action_key, handler)  ─ store handler
      ├── .get(action_key)                ─ lookup, raises HandlerNotFoundError
      ├── .has(action_key)                ─ existence check
      └── .list_handlers()                ─ all registered keys

    @scheduled_handler("core.http_ping")  ─ decorator (global registry)
    get_default_registry()                ─ module-level singleton
    reset_default_registry()              ─ clear for testing

Tags:
    herald, execution, registry, handler-registry, lookup

Doc-Types:
    api-reference
"""

from collections.abc import Callable
from typing import Any

from herald.core.errors import HandlerNotFoundError
from herald.core.protocols import ScheduledHandler


class HandlerRegistry:
    """Injectable handler registry.

    Example:
        >>> registry = HandlerRegistry()
        >>>
        >>> @scheduled_handler("plugin.digest.send", registry=registry)
        ... async def send_digest(run):
        ...     ...
        >>>
        >>> handler = registry.get("plugin.digest.send")
    """

    def __init__(self):
        self._handlers: dict[str, ScheduledHandler] = {}
        self._metadata: dict[str, dict[str, Any]] = {}

    def register(
        self,
        action_key: str,
        handler: ScheduledHandler,
        description: str | None = None,
    ) -> None:
        """Register (or replace) the handler for ``action_key``."""
        action_key = action_key.strip()
        if not action_key:
            raise ValueError("action_key must be a non-empty string")
        self._handlers[action_key] = handler
        self._metadata[action_key] = {"action_key": action_key, "description": description}

    def get(self, action_key: str) -> ScheduledHandler:
        """Get a handler.

        Raises:
            HandlerNotFoundError: If no handler is registered for the key
        """
        if action_key not in self._handlers:
            raise HandlerNotFoundError(action_key, available=self.list_handlers())
        return self._handlers[action_key]

    def has(self, action_key: str) -> bool:
        return action_key in self._handlers

    def list_handlers(self) -> list[str]:
        return sorted(self._handlers)

    def list_with_metadata(self) -> list[dict[str, Any]]:
        return [self._metadata[key].copy() for key in self.list_handlers()]

    def unregister(self, action_key: str) -> bool:
        if action_key in self._handlers:
            del self._handlers[action_key]
            del self._metadata[action_key]
            return True
        return False

    def clear(self) -> None:
        """Clear all handlers (for testing)."""
        self._handlers.clear()
        self._metadata.clear()


# === GLOBAL DEFAULT REGISTRY ===

_default_registry: HandlerRegistry | None = None


def get_default_registry() -> HandlerRegistry:
    """Get the global default registry, creating it on first access."""
    global _default_registry
    if _default_registry is None:
        _default_registry = HandlerRegistry()
    return _default_registry


def reset_default_registry() -> None:
    """Reset the global registry (for testing)."""
    global _default_registry
    _default_registry = None


# === DECORATOR API ===


def scheduled_handler(
    action_key: str,
    registry: HandlerRegistry | None = None,
    description: str | None = None,
):
    """Decorator to register a scheduled handler.

    Example:
        >>> @scheduled_handler("plugin.cache.warm")
        ... def warm_cache(run):
        ...     ...
    """

    def decorator(func: Callable) -> Callable:
        target = registry or get_default_registry()
        target.register(action_key, func, description=description or func.__doc__)
        return func

    return decorator


__all__ = [
    "HandlerRegistry",
    "get_default_registry",
    "reset_default_registry",
    "scheduled_handler",
]
