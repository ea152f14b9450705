"""
Refund channel message kinds — JSON objects with a `type` discriminator.
"""

from typing import Any, Optional

from zauthx402.models.refund import RejectionReason


class ServerMessage:
    """Server -> SDK"""
    CONNECTED = "connected"
    REFUND_REQUIRED = "refund_required"
    CONFIRMATION_ACK = "confirmation_ack"
    REJECTION_ACK = "rejection_ack"
    EXECUTING_ACK = "executing_ack"
    PONG = "pong"


class ClientMessage:
    """SDK -> server"""
    PING = "ping"
    REFUND_EXECUTING = "refund_executing"
    REFUND_CONFIRMED = "refund_confirmed"
    REFUND_REJECTED = "refund_rejected"


def ping() -> dict[str, Any]:
    return {"type": ClientMessage.PING}


def refund_executing(refund_id: str) -> dict[str, Any]:
    return {"type": ClientMessage.REFUND_EXECUTING, "refundId": refund_id}


def refund_confirmed(
    refund_id: str,
    tx_hash: str,
    network: str,
    amount_raw: str,
    gas_cost_cents: Optional[int] = None,
    token: str = "USDC",
) -> dict[str, Any]:
    return {
        "type": ClientMessage.REFUND_CONFIRMED,
        "refundId": refund_id,
        "txHash": tx_hash,
        "network": network,
        "amountRaw": amount_raw,
        "token": token,
        "gasCostCents": gas_cost_cents,
    }


def refund_rejected(refund_id: str, reason: RejectionReason, note: str) -> dict[str, Any]:
    return {
        "type": ClientMessage.REFUND_REJECTED,
        "refundId": refund_id,
        "reason": reason.value,
        "note": note,
    }
