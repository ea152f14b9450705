"""
Refund channel — reconnecting WebSocket client that receives refund
instructions from the zauth service and pays them out on-chain.

Connection: wss://{apiEndpoint}/ws/refunds?apiKey={key}

Per refund_required message:
  1. refund_executing is sent straight away
  2. ids already processed by this channel get their outcome resent
  3. endpoint enablement, per-request maximum, daily and monthly caps
  4. ChainRouter transfer
  5. refund_confirmed on success; refund_rejected only for non-retryable failures

Retryable failures are left for the server to resend. Transport failures
never produce rejections.
"""

import asyncio
import inspect
import json
import logging
import math
from collections import OrderedDict
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Optional
from urllib.parse import quote

from pydantic import ValidationError

from zauthx402.chain.executor import ChainRouter
from zauthx402.config import RefundConfig, ZauthConfig
from zauthx402.errors import ConnectionError
from zauthx402.models import channel as messages
from zauthx402.models.channel import ServerMessage
from zauthx402.models.refund import (
    ExecutedRefund,
    PendingRefund,
    RefundFailure,
    RejectionReason,
    TransferResult,
)
from zauthx402.networks import USDC_DECIMALS
from zauthx402.policy import SpendCaps, check_caps, match_endpoint_config
from zauthx402.transport.websocket import Transport, TransportConnection, WebSocketTransport

logger = logging.getLogger("zauthx402.channel")

BASE_RECONNECT_DELAY_S = 1.0
FAST_RECONNECT_ATTEMPTS = 5
PERSISTENT_RECONNECT_DELAY_S = 60.0
HEARTBEAT_INTERVAL_S = 30.0
MAX_PROCESSED_IDS = 10_000


class ChannelState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    EXECUTING = "executing"
    SHUTTING_DOWN = "shutting_down"


def reconnect_delay(attempt: int) -> float:
    """1, 2, 4, 8, 16 seconds for the first five attempts, then every 60 seconds."""
    if attempt < FAST_RECONNECT_ATTEMPTS:
        return BASE_RECONNECT_DELAY_S * (2 ** attempt)
    return PERSISTENT_RECONNECT_DELAY_S


def usd_to_base_units(amount_usd: float) -> int:
    return math.floor(round(amount_usd * USDC_DECIMALS, 6))


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RefundChannel:
    def __init__(
        self,
        api_key: str,
        websocket_endpoint: str,
        refund_config: RefundConfig,
        router: ChainRouter,
        transport: Optional[Transport] = None,
        clock: Optional[Callable[[], datetime]] = None,
        heartbeat_interval_s: float = HEARTBEAT_INTERVAL_S,
        recorder: Optional[Callable[[PendingRefund, ExecutedRefund], Any]] = None,
    ):
        self._api_key = api_key
        self._ws_endpoint = websocket_endpoint.rstrip("/")
        self._config = refund_config
        self._router = router
        self._transport = transport or WebSocketTransport()
        self._clock = clock or _utcnow
        self._heartbeat_interval_s = heartbeat_interval_s
        self._recorder = recorder

        self.state = ChannelState.DISCONNECTED
        self.caps = SpendCaps()
        self.provider_id: Optional[str] = None
        # refund id -> final outbound message, resent when the server repeats the refund
        self._processed: "OrderedDict[str, dict[str, Any]]" = OrderedDict()
        self._lock = asyncio.Lock()
        self._conn: Optional[TransportConnection] = None
        self._stop = asyncio.Event()
        self._run_task: Optional[asyncio.Task] = None
        self._heartbeat_task: Optional[asyncio.Task] = None
        self._refund_tasks: set[asyncio.Task] = set()

    @classmethod
    def from_config(cls, config: ZauthConfig, **kwargs: Any) -> "RefundChannel":
        router = kwargs.pop("router", None) or ChainRouter.from_config(config.refund)
        return cls(
            api_key=config.api_key,
            websocket_endpoint=config.websocket_endpoint,
            refund_config=config.refund,
            router=router,
            **kwargs,
        )

    @property
    def url(self) -> str:
        return f"{self._ws_endpoint}/ws/refunds?apiKey={quote(self._api_key, safe='')}"

    @property
    def router(self) -> ChainRouter:
        return self._router

    @property
    def connected(self) -> bool:
        return self._conn is not None

    def is_processed(self, refund_id: str) -> bool:
        return refund_id in self._processed

    def _mark_processed(self, refund_id: str, outcome: dict[str, Any]) -> None:
        self._processed[refund_id] = outcome
        self._processed.move_to_end(refund_id)
        while len(self._processed) > MAX_PROCESSED_IDS:
            self._processed.popitem(last=False)

    # --- Lifecycle ---

    async def start(self) -> bool:
        """Start the connect/reconnect loop. False when refunds cannot run."""
        if not self._config.enabled:
            logger.info("Refunds disabled; refund channel not started")
            return False
        if not self._router.available:
            logger.warning("Refunds enabled but no signing key configured; refund channel not started")
            return False
        if self._run_task is not None and not self._run_task.done():
            return True
        self._stop.clear()
        self._run_task = asyncio.create_task(self._run())
        return True

    async def stop(self) -> None:
        if self.state == ChannelState.SHUTTING_DOWN:
            return
        self.state = ChannelState.SHUTTING_DOWN
        self._stop.set()
        self._cancel_heartbeat()

        # In-flight refunds finish so their confirmation can still go out
        if self._refund_tasks:
            await asyncio.gather(*self._refund_tasks, return_exceptions=True)

        conn, self._conn = self._conn, None
        if conn is not None:
            try:
                await conn.close(1000, "Shutdown")
            except Exception as e:
                logger.debug("Error closing refund channel: %s", e)

        if self._run_task is not None:
            if not self._run_task.done():
                self._run_task.cancel()
            await asyncio.gather(self._run_task, return_exceptions=True)
            self._run_task = None
        self.state = ChannelState.DISCONNECTED
        logger.info("Refund channel stopped")

    async def _run(self) -> None:
        attempt = 0
        persistent_logged = False
        while not self._stop.is_set():
            self.state = ChannelState.CONNECTING
            try:
                conn = await self._transport.connect(self.url)
            except ConnectionError as e:
                logger.debug("Refund channel connect failed: %s", e)
            else:
                attempt = 0
                persistent_logged = False
                await self._serve(conn)

            if self._stop.is_set():
                break
            self.state = ChannelState.DISCONNECTED

            delay = reconnect_delay(attempt)
            if attempt >= FAST_RECONNECT_ATTEMPTS and not persistent_logged:
                logger.info(
                    "Refund channel unavailable after %d attempts, retrying every %ds",
                    FAST_RECONNECT_ATTEMPTS, int(PERSISTENT_RECONNECT_DELAY_S),
                )
                persistent_logged = True
            attempt += 1
            await self._pause(delay)

    async def _pause(self, delay: float) -> None:
        """Sleep until the next attempt, waking early on stop()."""
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=delay)
        except asyncio.TimeoutError:
            pass

    async def _serve(self, conn: TransportConnection) -> None:
        self._conn = conn
        self.state = ChannelState.CONNECTED
        logger.info("Refund channel connected")
        self._heartbeat_task = asyncio.create_task(self._heartbeat())
        try:
            while not self._stop.is_set():
                text = await conn.receive()
                if text is None:
                    break
                await self.handle_message(text)
        finally:
            self._cancel_heartbeat()
            if self._conn is conn:
                self._conn = None
            if not self._stop.is_set():
                logger.info("Refund channel disconnected")

    async def _heartbeat(self) -> None:
        while True:
            await asyncio.sleep(self._heartbeat_interval_s)
            await self._send(messages.ping())

    def _cancel_heartbeat(self) -> None:
        task, self._heartbeat_task = self._heartbeat_task, None
        if task is not None and not task.done():
            task.cancel()

    async def _send(self, message: dict[str, Any]) -> bool:
        conn = self._conn
        if conn is None:
            logger.warning("Refund channel not connected, dropping %s", message.get("type"))
            return False
        try:
            await conn.send(json.dumps(message))
            return True
        except ConnectionError as e:
            logger.warning("Failed to send %s: %s", message.get("type"), e)
            return False

    # --- Inbound ---

    async def handle_message(self, text: str) -> None:
        try:
            message = json.loads(text)
        except (ValueError, RecursionError):
            logger.warning("Malformed refund channel message: %.200s", text)
            return
        if not isinstance(message, dict):
            logger.warning("Unexpected refund channel message: %.200s", text)
            return

        kind = message.get("type")
        if kind == ServerMessage.CONNECTED:
            self.provider_id = message.get("providerId") or message.get("registrationId")
            logger.info("Refund channel registered: %s", self.provider_id)
        elif kind == ServerMessage.REFUND_REQUIRED:
            try:
                refund = PendingRefund.model_validate(message.get("refund"))
            except ValidationError as e:
                logger.warning("Invalid refund_required payload: %s", e)
                return
            task = asyncio.create_task(self._process(refund))
            self._refund_tasks.add(task)
            task.add_done_callback(self._refund_tasks.discard)
        elif kind in (ServerMessage.CONFIRMATION_ACK, ServerMessage.REJECTION_ACK, ServerMessage.EXECUTING_ACK):
            logger.debug("%s for refund %s", kind, message.get("refundId"))
        elif kind == ServerMessage.PONG:
            pass
        else:
            logger.debug("Unknown refund channel message type: %s", kind)

    async def _process(self, refund: PendingRefund) -> None:
        try:
            await self.handle_refund(refund)
        except Exception as e:
            logger.exception("Unexpected error handling refund %s", refund.id)
            await self._notify(self._config.on_refund_error, RefundFailure(
                refund_id=refund.id, url=refund.url, amount_usd=refund.amount_usd,
                error=str(e), retryable=True,
            ))

    async def handle_refund(self, refund: PendingRefund) -> Optional[TransferResult]:
        """Run one refund instruction. Returns the transfer result, or None if no transfer was attempted."""
        await self._send(messages.refund_executing(refund.id))

        async with self._lock:
            outcome = self._processed.get(refund.id)
            if outcome is not None:
                logger.debug("Refund %s already processed, resending %s", refund.id, outcome["type"])
                await self._send(outcome)
                return None

            endpoint = match_endpoint_config(self._config.endpoints, refund.url)
            decision = check_caps(refund.amount_cents, endpoint, self.caps, self._config, now=self._clock())
            if not decision.allowed:
                logger.info("Refund %s rejected: %s", refund.id, decision.note)
                outcome = messages.refund_rejected(refund.id, decision.reason, decision.note)
                self._mark_processed(refund.id, outcome)
                await self._send(outcome)
                return None

            amount_raw = usd_to_base_units(refund.amount_usd)
            previous = self.state
            self.state = ChannelState.EXECUTING
            logger.info(
                "Executing refund %s: %s USDC base units to %s on %s",
                refund.id, amount_raw, refund.recipient_address, refund.network,
            )
            try:
                result = await self._router.transfer(
                    refund.network, refund.recipient_address, amount_raw, family=refund.network_family,
                )
            finally:
                if self.state == ChannelState.EXECUTING:
                    self.state = previous

            if result.success:
                outcome = messages.refund_confirmed(
                    refund.id,
                    tx_hash=result.tx_hash or "",
                    network=refund.network,
                    amount_raw=result.amount_raw or str(amount_raw),
                    gas_cost_cents=result.gas_cost_cents,
                )
                self._mark_processed(refund.id, outcome)
                self.caps.record(refund.amount_cents)
                await self._send(outcome)
            elif not result.retryable:
                outcome = messages.refund_rejected(
                    refund.id, RejectionReason.OTHER, result.error or "Refund failed",
                )
                self._mark_processed(refund.id, outcome)
                await self._send(outcome)
            else:
                logger.warning("Refund %s failed, awaiting retry: %s", refund.id, result.error)

        if result.success:
            executed = ExecutedRefund(
                refund_id=refund.id,
                request_id=refund.sdk_request_event_id or "",
                url=refund.url,
                amount_usd=refund.amount_usd,
                amount_raw=result.amount_raw or str(amount_raw),
                tx_hash=result.tx_hash or "",
                network=refund.network,
                recipient=refund.recipient_address,
                reason=refund.reason,
                executed_at=self._clock().isoformat(),
            )
            if self._recorder is not None:
                try:
                    self._recorder(refund, executed)
                except Exception:
                    logger.exception("Failed to record refund %s", refund.id)
            await self._notify(self._config.on_refund, executed)
        else:
            await self._notify(self._config.on_refund_error, RefundFailure(
                refund_id=refund.id,
                url=refund.url,
                amount_usd=refund.amount_usd,
                error=result.error or "Refund failed",
                retryable=result.retryable,
            ))
        return result

    @staticmethod
    async def _notify(callback: Optional[Callable[[Any], Any]], payload: Any) -> None:
        if callback is None:
            return
        try:
            outcome = callback(payload)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception:
            logger.exception("Refund callback failed")
