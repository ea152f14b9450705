"""ZauthClient batching and REST helpers against a mocked HTTP transport."""

import asyncio
import json

import httpx
import pytest

import zauthx402.client as client_module
from zauthx402.client import ZauthClient, retry_delay
from zauthx402.config import BatchingConfig, ZauthConfig
from zauthx402.errors import ConfigError
from zauthx402.models.events import RequestEvent
from zauthx402.models.refund import ExecutedRefund, PendingRefund, RejectionReason
from zauthx402.transport.http import HttpClient


class Recorder:
    def __init__(self, responses=None):
        self.requests = []
        self.responses = list(responses or [])

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.responses:
            response = self.responses.pop(0)
            if isinstance(response, Exception):
                raise response
            return response
        return httpx.Response(200, json={"success": True, "accepted": 1})

    def bodies(self):
        return [json.loads(r.content) for r in self.requests]


def make_client(recorder, **config) -> ZauthClient:
    config.setdefault("api_key", "test-key")
    cfg = ZauthConfig(api_endpoint="https://zauth.test", environment="test", **config)
    http = HttpClient(
        api_key=cfg.api_key, base_url=cfg.api_endpoint, environment=cfg.environment,
        transport=httpx.MockTransport(recorder),
    )
    return ZauthClient(cfg, http=http)


def request_event(client, url="https://api.test/x") -> RequestEvent:
    return RequestEvent(**client.create_event_base("request"), url=url, base_url=url, method="GET")


@pytest.fixture(autouse=True)
def no_retry_sleep(monkeypatch):
    monkeypatch.setattr(client_module, "RETRY_BASE_DELAY_S", 0.0)


def test_requires_api_key(monkeypatch):
    monkeypatch.delenv("ZAUTH_API_KEY", raising=False)
    with pytest.raises(ConfigError):
        ZauthClient(ZauthConfig(api_key=""))


def test_retry_delay_is_capped(monkeypatch):
    monkeypatch.setattr(client_module, "RETRY_BASE_DELAY_S", 1.0)
    assert [retry_delay(n) for n in range(6)] == [1, 2, 4, 8, 10, 10]


def test_event_base_fields():
    client = make_client(Recorder())
    base = client.create_event_base("request")
    assert base["type"] == "request"
    assert base["api_key"] == "test-key"
    assert base["sdk_version"] == "0.1.0"
    assert base["timestamp"].endswith("Z")
    assert base["event_id"] != client.create_event_base("request")["event_id"]


@pytest.mark.asyncio
async def test_size_triggered_flush():
    recorder = Recorder()
    client = make_client(recorder, batching=BatchingConfig(max_batch_size=2, max_batch_wait_ms=60_000))

    client.queue_event(request_event(client))
    assert recorder.requests == []
    client.queue_event(request_event(client))
    await asyncio.sleep(0.01)

    assert len(recorder.requests) == 1
    request = recorder.requests[0]
    assert request.url.path == "/api/sdk/events"
    assert request.headers["X-API-Key"] == "test-key"
    assert request.headers["X-SDK-Version"] == "0.1.0"
    assert request.headers["X-Environment"] == "test"

    batch = recorder.bodies()[0]
    assert batch["batchId"].startswith("batch-")
    assert [e["type"] for e in batch["events"]] == ["request", "request"]
    assert batch["events"][0]["baseUrl"] == "https://api.test/x"
    assert client.queue_size == 0
    await client.shutdown()


@pytest.mark.asyncio
async def test_timer_triggered_flush():
    recorder = Recorder()
    client = make_client(recorder, batching=BatchingConfig(max_batch_size=10, max_batch_wait_ms=10))
    client.queue_event(request_event(client))
    await asyncio.sleep(0.05)
    assert len(recorder.requests) == 1
    await client.shutdown()


@pytest.mark.asyncio
async def test_failed_batch_is_retried_then_requeued():
    failures = [httpx.Response(500, text="down") for _ in range(4)]
    recorder = Recorder(responses=failures)
    client = make_client(recorder, batching=BatchingConfig(max_batch_size=10, max_retries=3))
    client.queue_event(request_event(client))

    await client.flush()

    assert len(recorder.requests) == 4
    assert client.queue_size == 1

    await client.flush()
    assert client.queue_size == 0
    await client.shutdown()


@pytest.mark.asyncio
async def test_failed_batch_dropped_without_retry():
    recorder = Recorder(responses=[httpx.Response(500)])
    client = make_client(recorder, batching=BatchingConfig(retry=False))
    client.queue_event(request_event(client))
    await client.flush()
    assert len(recorder.requests) == 1
    assert client.queue_size == 0
    await client.shutdown()


@pytest.mark.asyncio
async def test_shutdown_flushes_queue():
    recorder = Recorder()
    client = make_client(recorder)
    client.queue_event(request_event(client))
    await client.shutdown()
    assert len(recorder.requests) == 1


@pytest.mark.asyncio
async def test_send_event_bypasses_queue():
    recorder = Recorder(responses=[httpx.Response(200, json={"success": True, "batchId": "b", "accepted": 1})])
    client = make_client(recorder)
    result = await client.send_event(request_event(client))
    assert result.success
    assert result.accepted == 1
    await client.shutdown()


class TestRest:
    @pytest.mark.asyncio
    async def test_check_endpoint(self):
        recorder = Recorder(responses=[httpx.Response(200, json={
            "verified": True, "working": True, "meaningful": False, "checkedAt": "2026-10-18T00:00:00Z",
        })])
        client = make_client(recorder)
        status = await client.check_endpoint("https://api.test/x")
        assert status.verified and status.working and not status.meaningful
        assert status.last_checked == "2026-10-18T00:00:00Z"
        assert recorder.bodies()[0] == {"url": "https://api.test/x"}
        await client.shutdown()

    @pytest.mark.asyncio
    async def test_check_endpoint_degrades(self):
        client = make_client(Recorder(responses=[httpx.Response(503)]))
        status = await client.check_endpoint("https://api.test/x")
        assert not status.verified and not status.working
        await client.shutdown()

    @pytest.mark.asyncio
    async def test_pending_refunds(self):
        recorder = Recorder(responses=[httpx.Response(200, json={
            "refunds": [{
                "id": "r1", "url": "https://api.test/x", "method": "GET", "network": "base",
                "amountCents": 1, "amountUsd": 0.01, "recipientAddress": "0xR", "reason": "empty_response",
            }],
            "total": 1,
            "stats": {"todayRefundedCents": 5, "monthRefundedCents": 50},
        })])
        client = make_client(recorder)
        pending = await client.get_pending_refunds(limit=5)
        assert pending.total == 1
        assert pending.refunds[0].recipient_address == "0xR"
        assert pending.stats.month_refunded_cents == 50
        assert recorder.bodies()[0] == {"limit": 5}
        await client.shutdown()

    @pytest.mark.asyncio
    async def test_pending_refunds_degrades_on_network_error(self):
        client = make_client(Recorder(responses=[httpx.ConnectError("refused")]))
        pending = await client.get_pending_refunds()
        assert pending.refunds == []
        assert pending.total == 0
        await client.shutdown()

    @pytest.mark.asyncio
    async def test_confirm_and_reject(self):
        recorder = Recorder(responses=[
            httpx.Response(200, json={"success": True, "status": "CONFIRMED"}),
            httpx.Response(200, json={"success": True, "status": "REJECTED"}),
        ])
        client = make_client(recorder)
        confirmed = await client.confirm_refund("r1", "0xtx", "base", "10000", gas_cost_cents=1)
        rejected = await client.reject_refund("r2", RejectionReason.MANUAL_REVIEW, note="later")
        assert confirmed.success and confirmed.refund_id == "r1"
        assert rejected.status == "REJECTED"
        assert recorder.requests[0].url.path == "/api/sdk/refunds/confirm"
        assert recorder.bodies()[0]["amountRaw"] == "10000"
        assert recorder.bodies()[1] == {"refundId": "r2", "reason": "MANUAL_REVIEW", "note": "later"}
        await client.shutdown()

    @pytest.mark.asyncio
    async def test_stats_and_config(self):
        recorder = Recorder(responses=[
            httpx.Response(200, json={"totalRefunds": 3, "totalAmountCents": 30, "byReason": {"timeout": 3}}),
            httpx.Response(200, json={"success": True}),
        ])
        client = make_client(recorder)
        stats = await client.get_refund_stats(days=7)
        assert stats.total_refunds == 3
        assert stats.by_reason == {"timeout": 3}
        assert recorder.requests[0].url.params["days"] == "7"

        result = await client.update_refund_config(enabled=True, dailyCapCents=500)
        assert result == {"success": True}
        assert recorder.requests[1].method == "PUT"
        await client.shutdown()

    @pytest.mark.asyncio
    async def test_request_refund(self):
        recorder = Recorder(responses=[httpx.Response(200, json={"approved": True, "refundId": "r9"})])
        client = make_client(recorder)
        result = await client.request_refund("https://api.test/x", "req1", "pay1", "empty_response")
        assert result.approved and result.refund_id == "r9"
        assert recorder.bodies()[0]["requestEventId"] == "req1"
        await client.shutdown()


@pytest.mark.asyncio
async def test_start_refunds_disabled_returns_none():
    client = make_client(Recorder())
    assert await client.start_refunds() is None
    await client.shutdown()


@pytest.mark.asyncio
async def test_executed_refund_is_queued_as_refund_event():
    recorder = Recorder()
    client = make_client(recorder)
    refund = PendingRefund.model_validate({
        "id": "r1", "url": "https://api.test/x", "network": "base", "amountCents": 5, "amountUsd": 0.05,
        "recipientAddress": "0xPayer", "reason": "empty_response",
        "sdkRequestEventId": "req-1", "sdkPaymentEventId": "pay-1",
    })
    executed = ExecutedRefund(
        refund_id="r1", request_id="req-1", url=refund.url, amount_usd=0.05, amount_raw="50000",
        tx_hash="0xrefund", network="base", recipient="0xPayer", reason=refund.reason,
        executed_at="2026-10-18T12:00:00+00:00",
    )

    client.record_refund(refund, executed)
    await client.flush()

    event = recorder.bodies()[0]["events"][0]
    assert event["type"] == "refund"
    assert event["requestEventId"] == "req-1"
    assert event["paymentEventId"] == "pay-1"
    assert event["refundTransactionHash"] == "0xrefund"
    assert event["amountRefundedUsdc"] == "0.050000"
    assert event["reason"] == "empty_response"
    await client.shutdown()


@pytest.mark.asyncio
async def test_start_refunds_wires_refund_recorder():
    client = make_client(Recorder(), refund={"enabled": True, "private_key": None, "solana_private_key": None})
    assert await client.start_refunds() is None
    assert client.refunds._recorder == client.record_refund
    await client.shutdown()
