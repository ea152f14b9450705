"""
x402 payment models — decoded X-PAYMENT headers and 402 requirements.
"""

from typing import Any, Optional

from pydantic import BaseModel

from zauthx402.models.events import WIRE_CONFIG


class DecodedPayment(BaseModel):
    """Best-effort payer/amount/network recovered from an X-PAYMENT header."""
    payer: Optional[str] = None
    amount: Optional[str] = None
    network: Optional[str] = None


class PaymentInfo(BaseModel):
    """Normalised payment details from headers, request state or a facilitator."""
    model_config = WIRE_CONFIG

    transaction_hash: Optional[str] = None
    amount_paid: Optional[str] = None
    amount_paid_usdc: Optional[str] = None
    network: Optional[str] = None
    pay_to: Optional[str] = None
    asset: Optional[str] = None
    payer: Optional[str] = None


class X402PaymentRequirement(BaseModel):
    model_config = WIRE_CONFIG

    scheme: str
    network: str
    pay_to: str
    asset: str = ""
    amount: Optional[str] = None
    max_amount_required: Optional[str] = None
    resource: Optional[str] = None
    description: Optional[str] = None
    extra: Optional[dict[str, Any]] = None


class X402Response(BaseModel):
    """402 body, normalised to a version and a list of requirements."""
    model_config = WIRE_CONFIG

    x402_version: int
    requirements: list[X402PaymentRequirement] = []
    resource: Optional[str] = None


class X402PaymentResponse(BaseModel):
    """Decoded X-PAYMENT-RESPONSE header."""
    model_config = {**WIRE_CONFIG, "extra": "allow"}

    success: bool = False
    transaction: Optional[str] = None
    tx_signature: Optional[str] = None
    signature: Optional[str] = None
    amount: Optional[str] = None
    paid_amount: Optional[str] = None
    network: Optional[str] = None
    payer: Optional[str] = None
    error: Optional[str] = None
