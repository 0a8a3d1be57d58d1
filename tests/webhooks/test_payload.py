"""Tests for the outbound webhook body."""

import json

from herald.core.events import DomainEvent
from herald.webhooks.payload import render_body, to_webhook_payload


class TestWebhookPayload:
    def test_snake_case_projection(self):
        event = DomainEvent(
            name="content_published",
            payload={"postId": "p1"},
            timestamp="2026-01-05T12:00:00.000000+00:00",
            id="E1",
            site_id="s1",
            actor_type="user",
            actor_id="u1",
        )

        assert to_webhook_payload(event) == {
            "event_id": "E1",
            "timestamp": "2026-01-05T12:00:00.000000+00:00",
            "site_id": "s1",
            "event_name": "content_published",
            "version": 1,
            "domain": None,
            "path": None,
            "actor_type": "user",
            "actor_id": "u1",
            "payload": {"postId": "p1"},
            "meta": {},
        }

    def test_body_is_canonical(self):
        body = render_body({"b": 1, "a": {"d": 2, "c": 3}})
        assert body == '{"a":{"c":3,"d":2},"b":1}'
        assert json.loads(body) == {"a": {"c": 3, "d": 2}, "b": 1}
