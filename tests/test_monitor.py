"""ResponseMonitor: route filtering, event capture and refund decisions."""

import base64
import json

import pytest

from zauthx402.client import ZauthClient
from zauthx402.config import EndpointRefundConfig, MonitorConfig, RefundConfig, TelemetryConfig, ZauthConfig
from zauthx402.models.events import PaymentEvent, RefundReason, RequestEvent, ResponseEvent
from zauthx402.models.payment import PaymentInfo
from zauthx402.monitor import ResponseMonitor


class CapturingClient(ZauthClient):
    def __init__(self, config):
        super().__init__(config)
        self.events = []

    def queue_event(self, event):
        self.events.append(event)


def make_monitor(**config) -> ResponseMonitor:
    config.setdefault("api_key", "k")
    config.setdefault("refund", RefundConfig(private_key=None, solana_private_key=None))
    return ResponseMonitor(CapturingClient(ZauthConfig(**config)))


def b64json(obj) -> str:
    return base64.b64encode(json.dumps(obj).encode()).decode()


class TestShouldMonitor:
    def test_health_checks_skipped(self):
        monitor = make_monitor()
        for path in ("/health", "/healthz", "/ready", "/_health"):
            assert not monitor.should_monitor(path)
        assert monitor.should_monitor("/api/data")

    def test_health_checks_kept_when_disabled(self):
        monitor = make_monitor(monitor=MonitorConfig(skip_health_checks=False))
        assert monitor.should_monitor("/health")

    def test_include_and_exclude(self):
        monitor = make_monitor(monitor=MonitorConfig(include_routes=["^/api/"], exclude_routes=["/internal"]))
        assert monitor.should_monitor("/api/data")
        assert not monitor.should_monitor("/api/internal/x")
        assert not monitor.should_monitor("/other")

    def test_sampling_zero_skips(self):
        monitor = make_monitor(telemetry=TelemetryConfig(sample_rate=0))
        assert monitor.begin("https://x.io/api/data") is None


def test_request_event_is_redacted():
    monitor = make_monitor(telemetry=TelemetryConfig(redact_fields=["password"]))
    handle = monitor.begin(
        "https://x.io/api/data?city=paris",
        method="post",
        headers={"Authorization": "Bearer s3cret", "User-Agent": "agent/1", "X-PAYMENT": "abc"},
        body={"user": "a", "password": "p"},
        source_ip="10.0.0.1",
    )
    event = monitor.client.events[0]
    assert isinstance(event, RequestEvent)
    assert handle.path == "/api/data"
    assert event.method == "POST"
    assert event.base_url == "https://x.io/api/data"
    assert event.query_params == {"city": "paris"}
    assert event.headers["Authorization"] == "[REDACTED]"
    assert event.headers["X-PAYMENT"] == "[REDACTED]"
    assert event.payment_header == "abc"
    assert event.user_agent == "agent/1"
    assert event.body == {"user": "a", "password": "[REDACTED]"}


def test_good_response_with_payment_header():
    monitor = make_monitor()
    header = b64json({"payload": {"authorization": {"from": "0xPayer", "value": "10000", "network": "base"}}})
    handle = monitor.begin("https://x.io/api/data", headers={"X-PAYMENT": header})

    result = monitor.complete(handle, 200, json.dumps({"data": [1, 2]}))

    events = monitor.client.events
    assert [type(e) for e in events] == [RequestEvent, PaymentEvent, ResponseEvent]
    payment = result.payment_event
    assert payment.payer == "0xPayer"
    assert payment.amount_paid_usdc == "0.010000"
    assert payment.request_event_id == handle.request_event.event_id

    response = result.response_event
    assert response.success and response.meaningful
    assert response.payment_response["payer"] == "0xPayer"
    assert result.refund_reason is None


def test_facilitator_response_takes_priority():
    monitor = make_monitor(monitor=MonitorConfig(default_payment_amount_usdc="0.05"))
    handle = monitor.begin("https://x.io/api/data")
    facilitator = b64json({"success": True, "payer": "SoLPayer", "transaction": "sig", "network": "solana"})
    result = monitor.complete(handle, 200, {"data": 1}, response_headers={"X-PAYMENT-RESPONSE": facilitator})
    assert result.payment_event.payer == "SoLPayer"
    assert result.payment_event.transaction_hash == "sig"
    assert result.payment_event.network == "solana"
    assert result.payment_event.amount_paid_usdc == "0.05"


def test_request_payment_info_gets_payer_from_header():
    monitor = make_monitor()
    header = b64json({"payer": "0xFromHeader"})
    handle = monitor.begin("https://x.io/api/data", headers={"X-PAYMENT": header})
    info = PaymentInfo(transaction_hash="0xtx", network="base")
    result = monitor.complete(handle, 200, {"data": 1}, request_payment_info=info)
    assert result.payment_event.payer == "0xFromHeader"
    assert result.payment_event.transaction_hash == "0xtx"


def test_no_payment_no_payment_event():
    monitor = make_monitor()
    handle = monitor.begin("https://x.io/api/data")
    result = monitor.complete(handle, 200, {"data": 1})
    assert result.payment_event is None
    assert result.response_event.payment_response is None


def test_bad_response_refund_decision_and_expected_response():
    refund = RefundConfig(
        enabled=True, private_key=None, solana_private_key=None,
        endpoints={"/api/weather/*": EndpointRefundConfig(expected_response="Forecast JSON")},
    )
    monitor = make_monitor(refund=refund)
    handle = monitor.begin("https://x.io/api/weather/today")
    result = monitor.complete(handle, 502, {"error": "upstream"})

    response = result.response_event
    assert not response.success
    assert not response.meaningful
    assert response.expected_response == "Forecast JSON"
    assert response.error_message
    assert result.refund_reason == RefundReason.SERVER_ERROR


def test_meaningful_threshold():
    monitor = make_monitor(validation={"required_fields": ["id"]})
    handle = monitor.begin("https://x.io/api/data")
    result = monitor.complete(handle, 200, {"data": 1})
    # 0.8 is valid and meaningful; threshold is 0.7
    assert result.response_event.meaningful
    assert result.validation.meaningfulness_score == pytest.approx(0.8)


@pytest.mark.parametrize("body", [b"", b" "])
def test_empty_bytes_body_is_refunded(body):
    monitor = make_monitor(refund=RefundConfig(enabled=True, private_key=None, solana_private_key=None))
    handle = monitor.begin("https://x.io/api/data")
    result = monitor.complete(handle, 200, body)
    assert not result.validation.valid
    assert not result.response_event.meaningful
    assert result.refund_reason == RefundReason.EMPTY_RESPONSE


def test_json_bytes_body_is_parsed():
    monitor = make_monitor()
    handle = monitor.begin("https://x.io/api/data")
    result = monitor.complete(handle, 200, b'{"data": [1, 2]}')
    assert result.validation.valid
    assert result.response_event.body == {"data": [1, 2]}


def test_timed_out_request_is_refunded():
    monitor = make_monitor(refund=RefundConfig(enabled=True, private_key=None, solana_private_key=None))
    handle = monitor.begin("https://x.io/api/data")
    result = monitor.complete(handle, 200, {"data": 1}, timed_out=True)
    assert result.refund_reason == RefundReason.TIMEOUT


def test_payment_network_defaults_to_refund_network():
    monitor = make_monitor(refund=RefundConfig(private_key=None, solana_private_key=None, network="base-sepolia"))
    handle = monitor.begin("https://x.io/api/data", headers={"X-PAYMENT": b64json({"payer": "0xPayer"})})
    result = monitor.complete(handle, 200, {"data": 1})
    assert result.payment_event.network == "base-sepolia"
