"""Tests for the domain event envelope and name registry."""

import pytest

from herald.core.errors import EventValidationError
from herald.core.events import (
    CORE_EVENT_NAMES,
    DomainEvent,
    is_valid_event_name,
    list_event_names,
    matches_pattern,
    normalize_event,
    register_event_name,
)


class TestEventNames:
    def test_core_names_are_valid(self):
        for name in CORE_EVENT_NAMES:
            assert is_valid_event_name(name)

    def test_plugin_namespace_is_open(self):
        assert is_valid_event_name("plugin.shop.order_paid")

    def test_unknown_names_rejected(self):
        assert not is_valid_event_name("order_paid")
        assert not is_valid_event_name("")

    def test_register_plugin_name(self):
        assert register_event_name("plugin.newsletter.sent") is True
        assert "plugin.newsletter.sent" in list_event_names()

    def test_register_outside_namespace_refused(self):
        assert register_event_name("order_paid") is False
        assert "order_paid" not in list_event_names()

    def test_list_is_sorted(self):
        names = list_event_names()
        assert names == sorted(names)


class TestMatchesPattern:
    @pytest.mark.parametrize(
        "name,pattern,expected",
        [
            ("content_published", "*", True),
            ("content_published", "content_published", True),
            ("content_deleted", "content_published", False),
            ("communication.sent", "communication.*", True),
            ("communication", "communication.*", False),
            ("communicationsent", "communication.*", False),
        ],
    )
    def test_patterns(self, name, pattern, expected):
        assert matches_pattern(name, pattern) is expected


class TestNormalizeEvent:
    def test_minimal_envelope(self):
        event = normalize_event({"name": "page_view"})

        assert event.name == "page_view"
        assert event.payload == {}
        assert event.version == 1
        assert event.actor_type == "anonymous"
        assert event.timestamp

    def test_camel_case_fields(self):
        event = normalize_event(
            {
                "name": "content_published",
                "payload": {"postId": "p1"},
                "siteId": "site-1",
                "actorType": "Admin",
                "actorId": "u1",
                "meta": {"source": "editor"},
            }
        )

        assert event.site_id == "site-1"
        assert event.actor_type == "admin"
        assert event.actor_id == "u1"
        assert event.meta == {"source": "editor"}

    def test_unknown_actor_type_becomes_anonymous(self):
        event = normalize_event({"name": "page_view", "actorType": "robot"})
        assert event.actor_type == "anonymous"

    def test_wrong_version_rejected(self):
        with pytest.raises(EventValidationError) as exc_info:
            normalize_event({"name": "page_view", "version": 2})
        assert exc_info.value.field == "version"

    def test_unknown_name_rejected(self):
        with pytest.raises(EventValidationError):
            normalize_event({"name": "order_paid"})

    def test_non_object_payload_rejected(self):
        with pytest.raises(EventValidationError):
            normalize_event({"name": "page_view", "payload": [1, 2]})

    def test_non_object_meta_rejected(self):
        with pytest.raises(EventValidationError):
            normalize_event({"name": "page_view", "meta": "x"})

    def test_accepts_domain_event(self):
        original = DomainEvent(name="custom_event", payload={"a": 1}, site_id="s1")
        event = normalize_event(original)
        assert event.name == "custom_event"
        assert event.payload == {"a": 1}
        assert event.site_id == "s1"


class TestDomainEvent:
    def test_envelope_omits_none(self):
        envelope = DomainEvent(name="page_view", timestamp="2026-01-05T12:00:00.000000+00:00").to_envelope()

        assert envelope == {
            "version": 1,
            "name": "page_view",
            "timestamp": "2026-01-05T12:00:00.000000+00:00",
            "actorType": "anonymous",
            "payload": {},
        }

    def test_envelope_survives_normalize(self):
        event = DomainEvent(name="site.created", payload={"k": "v"}, id="E1", site_id="s1", path="/x")
        assert normalize_event(event.to_envelope()) == event

    def test_with_id_is_a_copy(self):
        event = DomainEvent(name="page_view")
        stamped = event.with_id("E1")
        assert stamped.id == "E1"
        assert event.id is None

    def test_matches(self):
        assert DomainEvent(name="communication.failed").matches("communication.*")
