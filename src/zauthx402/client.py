"""
ZauthClient — telemetry batching and the zauth REST API.

Events are queued and sent in batches of `max_batch_size`, or after
`max_batch_wait_ms`, whichever comes first. REST helpers never raise on
transport failure; they return the same empty defaults the service would.
"""

import asyncio
import logging
import secrets
import time
from datetime import datetime, timezone
from typing import Any, Optional

import httpx

from zauthx402.channel import RefundChannel
from zauthx402.config import ZauthConfig
from zauthx402.errors import ApiError, ConfigError
from zauthx402.models.events import EventBase, EventBatch, EventSubmitResponse, RefundEvent
from zauthx402.models.refund import (
    EndpointStatus,
    ExecutedRefund,
    PendingRefund,
    PendingRefundsResponse,
    RefundRequestResult,
    RefundStats,
    RefundStatusResponse,
    RejectionReason,
)
from zauthx402.payment_header import base_units_to_usdc
from zauthx402.transport.http import SDK_VERSION, HttpClient

logger = logging.getLogger("zauthx402.client")

RETRY_BASE_DELAY_S = 1.0
RETRY_MAX_DELAY_S = 10.0

_SAFE_ERRORS = (httpx.HTTPError, ApiError, ValueError)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def generate_event_id() -> str:
    return f"{int(time.time() * 1000)}-{secrets.token_hex(5)}"


def generate_batch_id() -> str:
    return f"batch-{int(time.time() * 1000)}-{secrets.token_hex(4)}"


def retry_delay(retry_count: int) -> float:
    return min(RETRY_BASE_DELAY_S * (2 ** retry_count), RETRY_MAX_DELAY_S)


class ZauthClient:
    """Async zauthx402 client (primary)."""

    def __init__(self, config: Optional[ZauthConfig] = None, http: Optional[HttpClient] = None, **kwargs: Any):
        self.config = config or ZauthConfig(**kwargs)
        if not self.config.api_key:
            raise ConfigError("api_key is required (or set ZAUTH_API_KEY)", code="missing_api_key")
        if self.config.debug:
            logging.getLogger("zauthx402").setLevel(logging.DEBUG)

        self.http = http or HttpClient(
            api_key=self.config.api_key,
            base_url=self.config.api_endpoint,
            environment=self.config.environment,
        )
        self.refunds: Optional[RefundChannel] = None
        self._queue: list[EventBase] = []
        self._flush_timer: Optional[asyncio.TimerHandle] = None
        self._flush_tasks: set[asyncio.Task] = set()
        self._flushing = False
        logger.debug("Client initialized: mode=%s environment=%s", self.config.mode, self.config.environment)

    @property
    def queue_size(self) -> int:
        return len(self._queue)

    def create_event_base(self, event_type: str) -> dict[str, Any]:
        """Common event fields, ready to splat into an event model."""
        return {
            "event_id": generate_event_id(),
            "timestamp": _now_iso(),
            "type": event_type,
            "api_key": self.config.api_key,
            "sdk_version": SDK_VERSION,
        }

    # --- Batching ---

    def queue_event(self, event: EventBase) -> None:
        self._queue.append(event)
        logger.debug("Event queued: type=%s id=%s queue=%d", event.type, event.event_id, len(self._queue))

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop yet; the queue drains on the next flush()
            return

        if len(self._queue) >= self.config.batching.max_batch_size:
            self._schedule_flush()
            return
        if self._flush_timer is None:
            self._flush_timer = loop.call_later(
                self.config.batching.max_batch_wait_ms / 1000, self._schedule_flush,
            )

    def _schedule_flush(self) -> None:
        task = asyncio.get_running_loop().create_task(self.flush())
        self._flush_tasks.add(task)
        task.add_done_callback(self._flush_tasks.discard)

    def _cancel_timer(self) -> None:
        if self._flush_timer is not None:
            self._flush_timer.cancel()
            self._flush_timer = None

    async def flush(self) -> None:
        self._cancel_timer()
        if not self._queue or self._flushing:
            return

        self._flushing = True
        events, self._queue = self._queue, []
        try:
            await self.submit_batch(events)
        except _SAFE_ERRORS as e:
            if self.config.batching.retry:
                logger.debug("Batch failed, re-queuing %d events: %s", len(events), e)
                self._queue[:0] = events
            else:
                logger.warning("Dropping %d events after failed submit: %s", len(events), e)
        finally:
            self._flushing = False

    async def submit_batch(self, events: list[EventBase], retry_count: int = 0) -> EventSubmitResponse:
        batch = EventBatch(events=events, batch_id=generate_batch_id(), sent_at=_now_iso())
        logger.debug("Submitting batch %s with %d events", batch.batch_id, len(events))

        try:
            data = await self.http.post(
                "/api/sdk/events", batch.model_dump(mode="json", by_alias=True, exclude_none=True),
            )
        except _SAFE_ERRORS as e:
            batching = self.config.batching
            if batching.retry and retry_count < batching.max_retries:
                delay = retry_delay(retry_count)
                logger.debug("Batch %s failed (%s), retry %d in %.1fs", batch.batch_id, e, retry_count + 1, delay)
                await asyncio.sleep(delay)
                return await self.submit_batch(events, retry_count + 1)
            raise

        result = EventSubmitResponse.model_validate(data or {})
        logger.debug("Batch %s submitted: accepted=%d", batch.batch_id, result.accepted)
        return result

    async def send_event(self, event: EventBase) -> EventSubmitResponse:
        """Send one event immediately, bypassing the queue."""
        return await self.submit_batch([event])

    def record_refund(self, refund: PendingRefund, executed: ExecutedRefund) -> RefundEvent:
        """Queue the refund event for a payout the channel has made."""
        event = RefundEvent(
            **self.create_event_base("refund"),
            request_event_id=refund.sdk_request_event_id or "",
            payment_event_id=refund.sdk_payment_event_id or "",
            url=refund.url,
            refund_transaction_hash=executed.tx_hash,
            amount_refunded=executed.amount_raw,
            amount_refunded_usdc=base_units_to_usdc(executed.amount_raw),
            refund_to=executed.recipient,
            reason=executed.reason,
        )
        self.queue_event(event)
        return event

    # --- REST ---

    async def check_endpoint(self, url: str) -> EndpointStatus:
        try:
            data = await self.http.post("/api/verification/check", {"url": url})
        except _SAFE_ERRORS as e:
            logger.debug("Endpoint check failed for %s: %s", url, e)
            return EndpointStatus()
        return EndpointStatus.model_validate(data or {})

    async def request_refund(
        self,
        url: str,
        request_event_id: str,
        payment_event_id: str,
        reason: str,
        details: Optional[str] = None,
    ) -> RefundRequestResult:
        body = {
            "url": url,
            "requestEventId": request_event_id,
            "paymentEventId": payment_event_id,
            "reason": reason,
        }
        if details:
            body["details"] = details
        try:
            data = await self.http.post("/api/sdk/refund/request", body)
        except _SAFE_ERRORS as e:
            logger.debug("Refund request failed: %s", e)
            return RefundRequestResult(message="Failed to request refund")
        return RefundRequestResult.model_validate(data or {})

    async def get_pending_refunds(self, limit: int = 10) -> PendingRefundsResponse:
        try:
            data = await self.http.post("/api/sdk/refunds/pending", {"limit": limit})
        except _SAFE_ERRORS as e:
            logger.debug("Failed to get pending refunds: %s", e)
            return PendingRefundsResponse()
        result = PendingRefundsResponse.model_validate(data or {})
        logger.debug("Got %d pending refunds (total %d)", len(result.refunds), result.total)
        return result

    async def confirm_refund(
        self,
        refund_id: str,
        tx_hash: str,
        network: str,
        amount_raw: str,
        gas_cost_cents: Optional[int] = None,
    ) -> RefundStatusResponse:
        body: dict[str, Any] = {
            "refundId": refund_id,
            "txHash": tx_hash,
            "network": network,
            "amountRaw": amount_raw,
            "token": "USDC",
        }
        if gas_cost_cents is not None:
            body["gasCostCents"] = gas_cost_cents
        try:
            data = await self.http.post("/api/sdk/refunds/confirm", body)
        except _SAFE_ERRORS as e:
            logger.debug("Error confirming refund %s: %s", refund_id, e)
            return RefundStatusResponse(refund_id=refund_id, message=str(e))
        return RefundStatusResponse.model_validate({"refundId": refund_id, **(data or {})})

    async def reject_refund(
        self,
        refund_id: str,
        reason: RejectionReason,
        note: Optional[str] = None,
    ) -> RefundStatusResponse:
        body = {"refundId": refund_id, "reason": reason.value}
        if note:
            body["note"] = note
        try:
            data = await self.http.post("/api/sdk/refunds/reject", body)
        except _SAFE_ERRORS as e:
            logger.debug("Error rejecting refund %s: %s", refund_id, e)
            return RefundStatusResponse(refund_id=refund_id, message=str(e))
        return RefundStatusResponse.model_validate({"refundId": refund_id, **(data or {})})

    async def update_refund_config(self, **settings: Any) -> dict[str, Any]:
        """PUT the provider's server-side refund settings (camelCase keys)."""
        try:
            data = await self.http.put("/api/sdk/refunds/config", settings)
        except _SAFE_ERRORS as e:
            logger.debug("Error updating refund config: %s", e)
            return {"success": False, "message": str(e)}
        return data or {"success": False}

    async def get_refund_stats(self, days: int = 30) -> RefundStats:
        try:
            data = await self.http.get("/api/sdk/refunds/stats", params={"days": days})
        except _SAFE_ERRORS as e:
            logger.debug("Error getting refund stats: %s", e)
            return RefundStats()
        return RefundStats.model_validate(data or {})

    # --- Lifecycle ---

    async def start_refunds(self, **kwargs: Any) -> Optional[RefundChannel]:
        """Open the refund channel when refunds are enabled and a signer is configured."""
        if self.refunds is None:
            kwargs.setdefault("recorder", self.record_refund)
            self.refunds = RefundChannel.from_config(self.config, **kwargs)
        if not await self.refunds.start():
            return None
        return self.refunds

    async def shutdown(self) -> None:
        logger.debug("Shutting down client")
        if self.refunds is not None:
            await self.refunds.stop()
            await self.refunds.router.close()
        self._cancel_timer()
        if self._flush_tasks:
            await asyncio.gather(*self._flush_tasks, return_exceptions=True)
        await self.flush()
        await self.http.close()

    async def __aenter__(self) -> "ZauthClient":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.shutdown()
