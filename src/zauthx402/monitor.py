"""
ResponseMonitor — observe x402 request/response pairs from any web framework.

Call begin() when a request arrives and complete() with the response the
handler produced. The monitor queues request, payment and response events on
the client and reports the local refund decision; it never alters the
response itself.
"""

import base64
import json
import logging
import re
import time
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional
from urllib.parse import urlsplit

from zauthx402.client import ZauthClient
from zauthx402.models.events import PaymentEvent, RefundReason, RequestEvent, ResponseEvent, ValidationResult
from zauthx402.models.payment import PaymentInfo
from zauthx402.payment_header import base_units_to_usdc, decode_payment_header, extract_payment_from_headers
from zauthx402.policy import evaluate_refund, match_endpoint_config
from zauthx402.utils import (
    get_base_url,
    get_byte_size,
    parse_query_params,
    process_body,
    redact_headers,
    should_sample,
)
from zauthx402.validator import validate_response

logger = logging.getLogger("zauthx402.monitor")

HEALTH_CHECK_PATHS = frozenset({"/health", "/healthz", "/ready", "/_health"})
MEANINGFUL_THRESHOLD = 0.7


@dataclass
class MonitoredRequest:
    request_event: RequestEvent
    url: str
    path: str
    started_at: float = field(default_factory=time.monotonic)


@dataclass
class MonitorResult:
    response_event: ResponseEvent
    validation: ValidationResult
    payment_event: Optional[PaymentEvent] = None
    refund_reason: Optional[RefundReason] = None


def _decode_facilitator_response(header: Optional[str]) -> Optional[dict[str, Any]]:
    if not header:
        return None
    try:
        decoded = json.loads(base64.b64decode(header).decode("utf-8"))
    except (ValueError, RecursionError):
        return None
    return decoded if isinstance(decoded, dict) else None


class ResponseMonitor:
    def __init__(self, client: ZauthClient):
        self.client = client
        self.config = client.config
        monitor = self.config.monitor
        self._include = [re.compile(p) for p in monitor.include_routes]
        self._exclude = [re.compile(p) for p in monitor.exclude_routes]

    def should_monitor(self, path: str) -> bool:
        if self.config.monitor.skip_health_checks and path in HEALTH_CHECK_PATHS:
            return False
        if any(p.search(path) for p in self._exclude):
            return False
        if self._include:
            return any(p.search(path) for p in self._include)
        return True

    def begin(
        self,
        url: str,
        method: str = "GET",
        headers: Optional[Mapping[str, Any]] = None,
        body: Any = None,
        source_ip: Optional[str] = None,
    ) -> Optional[MonitoredRequest]:
        """Record an incoming request. None when the route is excluded or not sampled."""
        path = urlsplit(url).path or "/"
        if not self.should_monitor(path):
            return None
        telemetry = self.config.telemetry
        if not should_sample(telemetry.sample_rate):
            return None

        headers = headers or {}
        payment_header, _ = extract_payment_from_headers(headers)
        if payment_header:
            logger.debug("Incoming payment header for %s: %.100s", url, payment_header)

        user_agent = next((str(v) for k, v in headers.items() if k.lower() == "user-agent"), None)
        event = RequestEvent(
            **self.client.create_event_base("request"),
            url=url,
            base_url=get_base_url(url),
            method=method.upper(),
            headers=redact_headers(headers, telemetry.redact_headers),
            query_params=parse_query_params(url),
            body=process_body(body, telemetry) if telemetry.include_request_body else None,
            request_size=get_byte_size(body),
            source_ip=source_ip,
            user_agent=user_agent,
            payment_header=payment_header,
        )
        self.client.queue_event(event)
        return MonitoredRequest(request_event=event, url=url, path=path)

    def _resolve_payment(
        self,
        request: MonitoredRequest,
        response_headers: Mapping[str, Any],
        request_payment_info: Optional[PaymentInfo],
    ) -> Optional[PaymentInfo]:
        _, header_info = extract_payment_from_headers(response_headers)
        payment = request_payment_info or header_info

        payment_header = request.request_event.payment_header
        decoded = decode_payment_header(payment_header)
        default_amount = self.config.monitor.default_payment_amount_usdc

        facilitator = None
        for key, value in response_headers.items():
            if key.lower() in ("payment-response", "x-payment-response") and isinstance(value, str):
                facilitator = _decode_facilitator_response(value)
                break

        if facilitator and facilitator.get("payer"):
            payment = PaymentInfo(
                transaction_hash=facilitator.get("transaction"),
                amount_paid_usdc=default_amount,
                network=facilitator.get("network") or self.config.refund.network,
                asset="USDC",
                payer=facilitator["payer"],
            )
        elif payment is None and decoded is not None and decoded.payer:
            amount_usdc = default_amount
            if decoded.amount:
                try:
                    amount_usdc = base_units_to_usdc(decoded.amount)
                except ValueError:
                    pass
            payment = PaymentInfo(
                amount_paid=decoded.amount,
                amount_paid_usdc=amount_usdc,
                network=decoded.network or self.config.refund.network,
                asset="USDC",
                payer=decoded.payer,
            )

        if payment is not None and not payment.payer and decoded is not None and decoded.payer:
            payment = payment.model_copy(update={"payer": decoded.payer})
        return payment

    def complete(
        self,
        request: MonitoredRequest,
        status_code: int,
        body: Any = None,
        response_headers: Optional[Mapping[str, Any]] = None,
        request_payment_info: Optional[PaymentInfo] = None,
        timed_out: bool = False,
    ) -> MonitorResult:
        """Record the response. Pass timed_out when the handler gave up waiting upstream."""
        response_headers = response_headers or {}
        telemetry = self.config.telemetry
        response_time_ms = int((time.monotonic() - request.started_at) * 1000)

        if isinstance(body, (bytes, bytearray)):
            body = bytes(body).decode("utf-8", errors="replace")
        if isinstance(body, str):
            try:
                body = json.loads(body)
            except (ValueError, RecursionError):
                pass

        validation = validate_response(body, status_code, self.config.validation)
        payment = self._resolve_payment(request, response_headers, request_payment_info)
        request_id = request.request_event.event_id

        payment_event = None
        if payment is not None and (payment.transaction_hash or payment.payer):
            payment_event = PaymentEvent(
                **self.client.create_event_base("payment"),
                request_event_id=request_id,
                url=request.url,
                network=payment.network or self.config.refund.network,
                transaction_hash=payment.transaction_hash or "",
                amount_paid=payment.amount_paid or "0",
                amount_paid_usdc=payment.amount_paid_usdc or "0",
                pay_to=payment.pay_to or "",
                asset=payment.asset or "USDC",
                payer=payment.payer or "",
            )
            self.client.queue_event(payment_event)

        endpoint = match_endpoint_config(self.config.refund.endpoints, request.url, request.path)
        response_event = ResponseEvent(
            **self.client.create_event_base("response"),
            request_event_id=request_id,
            url=request.url,
            status_code=status_code,
            headers=redact_headers(response_headers, telemetry.redact_headers),
            body=process_body(body, telemetry) if telemetry.include_response_body else None,
            response_size=get_byte_size(body),
            response_time_ms=response_time_ms,
            success=validation.valid,
            meaningful=validation.meaningfulness_score >= MEANINGFUL_THRESHOLD,
            validation_result=validation,
            payment_response=payment.model_dump(by_alias=True) if payment else None,
            error_message=validation.reason,
            expected_response=endpoint.expected_response if endpoint else None,
        )
        self.client.queue_event(response_event)

        refund_reason = evaluate_refund(
            body, status_code, validation, self.config.refund, request.url, request.path,
            timed_out=timed_out,
        )
        if refund_reason is not None:
            logger.info("Response from %s qualifies for refund: %s", request.url, refund_reason.value)

        return MonitorResult(
            response_event=response_event,
            validation=validation,
            payment_event=payment_event,
            refund_reason=refund_reason,
        )
