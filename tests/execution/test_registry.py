"""Tests for HandlerRegistry."""

import pytest

from herald.core.errors import HandlerNotFoundError
from herald.execution.registry import HandlerRegistry, get_default_registry, scheduled_handler


class TestHandlerRegistry:
    def test_register_and_get(self, registry):
        def handler(run):
            return None

        registry.register("plugin.cache.warm", handler, description="Warm the cache")

        assert registry.get("plugin.cache.warm") is handler
        assert registry.has("plugin.cache.warm")
        assert registry.list_with_metadata() == [
            {"action_key": "plugin.cache.warm", "description": "Warm the cache"}
        ]

    def test_unknown_key_raises(self, registry):
        registry.register("b", lambda run: None)
        registry.register("a", lambda run: None)

        with pytest.raises(HandlerNotFoundError) as exc_info:
            registry.get("missing")
        assert exc_info.value.available == ["a", "b"]

    def test_blank_key_rejected(self, registry):
        with pytest.raises(ValueError):
            registry.register("  ", lambda run: None)

    def test_unregister_and_clear(self, registry):
        registry.register("a", lambda run: None)
        assert registry.unregister("a") is True
        assert registry.unregister("a") is False

        registry.register("b", lambda run: None)
        registry.clear()
        assert registry.list_handlers() == []


class TestDecorator:
    def test_registers_on_explicit_registry(self, registry):
        @scheduled_handler("plugin.digest.send", registry=registry)
        async def send_digest(run):
            """Send the digest."""

        assert registry.get("plugin.digest.send") is send_digest
        assert registry.list_with_metadata()[0]["description"] == "Send the digest."

    def test_registers_on_default_registry(self):
        @scheduled_handler("core.noop")
        def noop(run):
            return None

        assert get_default_registry().get("core.noop") is noop
