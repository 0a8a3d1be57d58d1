"""Tests for WebhookFanout: signed concurrent delivery, isolation, redelivery."""

import json

import httpx
import pytest

from herald.core.events import DomainEvent
from herald.webhooks.fanout import WebhookFanout
from herald.webhooks.repository import WebhookRepository
from herald.webhooks.signing import UNSIGNED, verify_signature


class Endpoint:
    """MockTransport handler with per-host status codes and a request log."""

    def __init__(self, statuses: dict[str, int] | None = None, default: int = 200):
        self.statuses = statuses or {}
        self.default = default
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        status = self.statuses.get(request.url.host, self.default)
        if status == 0:
            raise httpx.ConnectError("connection refused", request=request)
        return httpx.Response(status, text="nope" if status >= 400 else "ok")


@pytest.fixture
def repo(conn, clock):
    return WebhookRepository(conn, clock=clock)


def _fanout(repo, clock, endpoint):
    client = httpx.AsyncClient(transport=httpx.MockTransport(endpoint))
    return WebhookFanout(repo, client=client, clock=clock), client


def _event(**overrides):
    values = dict(name="content_published", payload={"postId": "p1"}, id="E1", site_id="s1")
    values.update(overrides)
    return DomainEvent(**values)


class TestFanout:
    @pytest.mark.asyncio
    async def test_one_failing_subscriber_does_not_affect_another(self, repo, clock):
        a = repo.upsert_subscription("https://a.example/hook", site_id="s1")
        b = repo.upsert_subscription("https://b.example/hook", site_id="s1")
        fanout, client = _fanout(repo, clock, Endpoint({"a.example": 500}))

        result = await fanout.fanout(_event())
        await client.aclose()

        assert result.to_dict() == {"attempted": 2, "delivered": 1, "failed": 1, "dead": 0, "skipped": 0}
        rows = {d.subscription_id: d for d in repo.list_deliveries(event_id="E1")}
        assert rows[a.id].outcome == "failed"
        assert rows[a.id].response_status == 500
        assert rows[a.id].next_attempt_at is not None
        assert rows[b.id].outcome == "delivered"
        assert rows[b.id].response_status == 200

    @pytest.mark.asyncio
    async def test_signed_headers_and_body(self, repo, clock):
        repo.upsert_subscription("https://a.example/hook", secret="s3cret", headers={"X-Team": "web"})
        endpoint = Endpoint()
        fanout, client = _fanout(repo, clock, endpoint)

        await fanout.fanout(_event(site_id=None))
        await client.aclose()

        request = endpoint.requests[0]
        body = request.content.decode()
        assert json.loads(body)["event_id"] == "E1"
        assert request.headers["X-Herald-Event-Id"] == "E1"
        assert request.headers["X-Herald-Event-Name"] == "content_published"
        assert request.headers["X-Team"] == "web"
        assert request.headers["Content-Type"] == "application/json"
        assert verify_signature(
            body,
            "s3cret",
            request.headers["X-Herald-Timestamp"],
            request.headers["X-Herald-Signature"],
        )

    @pytest.mark.asyncio
    async def test_no_secret_sends_unsigned(self, repo, clock):
        repo.upsert_subscription("https://a.example/hook")
        endpoint = Endpoint()
        fanout, client = _fanout(repo, clock, endpoint)

        await fanout.fanout(_event(site_id=None))
        await client.aclose()

        assert endpoint.requests[0].headers["X-Herald-Signature"] == UNSIGNED

    @pytest.mark.asyncio
    async def test_retried_event_skips_every_notified_subscription(self, repo, clock):
        repo.upsert_subscription("https://a.example/hook")
        repo.upsert_subscription("https://b.example/hook")
        endpoint = Endpoint({"a.example": 503})
        fanout, client = _fanout(repo, clock, endpoint)

        await fanout.fanout(_event(site_id=None))
        retry = await fanout.fanout(_event(site_id=None))
        await client.aclose()

        assert retry.skipped == 2
        assert retry.attempted == 0
        hosts = [r.url.host for r in endpoint.requests]
        assert hosts.count("a.example") == 1
        assert hosts.count("b.example") == 1

    @pytest.mark.asyncio
    async def test_transport_error_is_recorded(self, repo, clock):
        repo.upsert_subscription("https://down.example/hook")
        fanout, client = _fanout(repo, clock, Endpoint({"down.example": 0}))

        result = await fanout.fanout(_event(site_id=None))
        await client.aclose()

        assert result.failed == 1
        delivery = repo.list_deliveries(event_id="E1")[0]
        assert delivery.response_status is None
        assert "ConnectError" in delivery.error

    @pytest.mark.asyncio
    async def test_single_attempt_subscription_goes_dead(self, repo, clock):
        repo.upsert_subscription("https://a.example/hook", max_attempts=1)
        fanout, client = _fanout(repo, clock, Endpoint(default=500))

        result = await fanout.fanout(_event(site_id=None))
        await client.aclose()

        assert result.dead == 1
        assert repo.list_deliveries()[0].next_attempt_at is None

    @pytest.mark.asyncio
    async def test_no_matching_subscriptions(self, repo, clock):
        repo.upsert_subscription("https://a.example/hook", "communication.*")
        endpoint = Endpoint()
        fanout, client = _fanout(repo, clock, endpoint)

        result = await fanout.fanout(_event(site_id=None))
        await client.aclose()

        assert result.attempted == 0
        assert endpoint.requests == []

    @pytest.mark.asyncio
    async def test_event_without_id_is_skipped(self, repo, clock):
        repo.upsert_subscription("https://a.example/hook")
        fanout, client = _fanout(repo, clock, Endpoint())

        result = await fanout.fanout(_event(id=None, site_id=None))
        await client.aclose()

        assert result.attempted == 0

    @pytest.mark.asyncio
    async def test_never_raises_when_storage_fails(self, repo, clock):
        repo.upsert_subscription("https://a.example/hook")
        fanout, client = _fanout(repo, clock, Endpoint())

        def broken(*args, **kwargs):
            raise RuntimeError("db gone")

        repo.matching_subscriptions = broken
        result = await fanout.fanout(_event(site_id=None))
        await client.aclose()

        assert result.attempted == 0


class TestRedelivery:
    @pytest.mark.asyncio
    async def test_backoff_then_dead(self, repo, clock):
        repo.upsert_subscription("https://a.example/hook", max_attempts=3)
        fanout, client = _fanout(repo, clock, Endpoint(default=500))

        await fanout.fanout(_event(site_id=None))
        assert (await fanout.redeliver_due()).attempted == 0

        clock.advance(seconds=30)
        second = await fanout.redeliver_due()
        assert second.failed == 1

        clock.advance(seconds=59)
        assert (await fanout.redeliver_due()).attempted == 0
        clock.advance(seconds=1)
        third = await fanout.redeliver_due()
        await client.aclose()

        assert third.dead == 1
        attempts = sorted((d.attempt, d.outcome) for d in repo.list_deliveries(event_id="E1"))
        assert attempts == [(1, "failed"), (2, "failed"), (3, "dead")]

    @pytest.mark.asyncio
    async def test_redelivery_succeeds_with_same_body(self, repo, clock):
        repo.upsert_subscription("https://a.example/hook")
        endpoint = Endpoint({"a.example": 500})
        fanout, client = _fanout(repo, clock, endpoint)

        await fanout.fanout(_event(site_id=None))
        endpoint.statuses.clear()
        clock.advance(seconds=30)
        result = await fanout.redeliver_due()
        await client.aclose()

        assert result.delivered == 1
        assert endpoint.requests[0].content == endpoint.requests[1].content

    @pytest.mark.asyncio
    async def test_removed_subscription_is_abandoned(self, repo, clock):
        sub = repo.upsert_subscription("https://a.example/hook")
        endpoint = Endpoint(default=500)
        fanout, client = _fanout(repo, clock, endpoint)

        await fanout.fanout(_event(site_id=None))
        repo.delete_subscription(sub.id)
        clock.advance(seconds=30)
        result = await fanout.redeliver_due()
        await client.aclose()

        assert result.dead == 1
        assert len(endpoint.requests) == 1
