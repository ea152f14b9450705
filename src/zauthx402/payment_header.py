"""
x402 payment header decoding.

X-PAYMENT carries base64 JSON:
  x402 V2 EVM:    {"x402Version":2,"payload":{"authorization":{"from":"0x..","value":".."}}}
  x402 V2 Solana: {"x402Version":2,"payload":{"transaction":"<base64 tx>"}}
  x402 V1:        varies

Decoding is best effort: nothing here raises on malformed input.
"""

import base64
import binascii
import json
import logging
from typing import Any, Mapping, Optional

from zauthx402.models.payment import (
    DecodedPayment,
    PaymentInfo,
    X402PaymentRequirement,
    X402PaymentResponse,
    X402Response,
)
from zauthx402.networks import SOLANA_MAINNET, USDC_DECIMALS
from zauthx402.solana_wire import extract_solana_payer

logger = logging.getLogger("zauthx402.payment_header")

PAYMENT_HEADERS = ("X-PAYMENT", "Payment-Signature")
PAYMENT_RESPONSE_HEADERS = ("X-PAYMENT-RESPONSE", "Payment-Response")


def _dig(obj: Any, *path: str) -> Any:
    for key in path:
        if not isinstance(obj, Mapping):
            return None
        obj = obj.get(key)
    return obj


def _first(obj: Any, *paths: tuple[str, ...]) -> Any:
    for path in paths:
        value = _dig(obj, *path)
        if value:
            return value
    return None


def _decode_text(header: str) -> str:
    try:
        return base64.b64decode(header, validate=True).decode("utf-8")
    except (binascii.Error, ValueError):
        return header


def decode_payment_header(header: Optional[str]) -> Optional[DecodedPayment]:
    if not header:
        return None

    try:
        parsed = json.loads(_decode_text(header))
    except (ValueError, RecursionError):
        logger.debug("Payment header is neither base64 JSON nor JSON")
        return None
    if not isinstance(parsed, Mapping):
        return None

    payer = _first(
        parsed,
        ("payload", "authorization", "from"),
        ("payer",),
        ("from",),
        ("payload", "from"),
        ("x", "signature", "address"),
    )

    transaction = _dig(parsed, "payload", "transaction")
    if not payer and isinstance(transaction, str):
        payer = extract_solana_payer(transaction)

    amount = _first(
        parsed,
        ("payload", "authorization", "value"),
        ("amount",),
        ("payload", "amount"),
    )

    network = _first(
        parsed,
        ("payload", "authorization", "network"),
        ("network",),
        ("payload", "network"),
    )
    if not network and transaction and payer:
        network = SOLANA_MAINNET

    return DecodedPayment(
        payer=str(payer) if payer else None,
        amount=str(amount) if amount is not None else None,
        network=str(network) if network else None,
    )


def decode_payment_response(header: Optional[str]) -> Optional[X402PaymentResponse]:
    """Decode a base64 JSON X-PAYMENT-RESPONSE header."""
    if not header:
        return None
    try:
        data = json.loads(base64.b64decode(header).decode("utf-8"))
        return X402PaymentResponse.model_validate(data)
    except Exception:
        return None


def _get_header(headers: Mapping[str, Any], name: str) -> Optional[str]:
    lowered = name.lower()
    for key, value in headers.items():
        if key.lower() == lowered and value:
            return value[0] if isinstance(value, (list, tuple)) else str(value)
    return None


def payment_info_from_mapping(data: Mapping[str, Any]) -> PaymentInfo:
    return PaymentInfo(
        transaction_hash=data.get("transactionHash") or data.get("txHash") or data.get("hash"),
        amount_paid=data.get("amountPaid") or data.get("amount"),
        amount_paid_usdc=data.get("amountPaidUsdc") or data.get("amountUsdc"),
        network=data.get("network") or data.get("chain"),
        pay_to=data.get("payTo") or data.get("recipient") or data.get("to"),
        asset=data.get("asset") or data.get("token"),
        payer=data.get("payer") or data.get("from") or data.get("sender"),
    )


def extract_payment_from_headers(
    headers: Mapping[str, Any],
) -> tuple[Optional[str], Optional[PaymentInfo]]:
    """(raw payment header, JSON payment-response info) from request/response headers."""
    payment_header = None
    for name in PAYMENT_HEADERS:
        payment_header = _get_header(headers, name)
        if payment_header:
            break

    info = None
    for name in PAYMENT_RESPONSE_HEADERS:
        raw = _get_header(headers, name)
        if not raw:
            continue
        try:
            parsed = json.loads(raw)
        except (ValueError, RecursionError):
            # Not JSON, might be a reference or a signature
            break
        if isinstance(parsed, Mapping):
            info = payment_info_from_mapping(parsed)
        break

    return payment_header, info


def base_units_to_usdc(base_units: Any) -> str:
    return f"{int(base_units) / USDC_DECIMALS:.6f}"


def parse_x402_response(body: Any) -> Optional[X402Response]:
    """Normalise a 402 body (V1 `accepts`, V2 `paymentRequirements`, or a bare requirement)."""
    if not isinstance(body, Mapping):
        return None

    try:
        version = body.get("x402Version")
        if version == 2 and isinstance(body.get("paymentRequirements"), list):
            return X402Response(
                x402_version=2,
                requirements=[X402PaymentRequirement.model_validate(r) for r in body["paymentRequirements"]],
            )
        if isinstance(body.get("accepts"), list):
            return X402Response(
                x402_version=1,
                requirements=[X402PaymentRequirement.model_validate(r) for r in body["accepts"]],
                resource=body.get("resource"),
            )
        if all(isinstance(body.get(k), str) for k in ("scheme", "network", "payTo")):
            return X402Response(x402_version=1, requirements=[X402PaymentRequirement.model_validate(body)])
    except ValueError:
        return None
    return None


def get_payment_requirements(body: Any) -> list[X402PaymentRequirement]:
    parsed = parse_x402_response(body)
    return parsed.requirements if parsed else []


def get_price_usdc(requirement: X402PaymentRequirement) -> Optional[str]:
    amount = requirement.amount or requirement.max_amount_required
    if not amount:
        return None
    try:
        return base_units_to_usdc(amount)
    except ValueError:
        return None


def detect_x402_version(body: Any) -> Optional[int]:
    if not isinstance(body, Mapping):
        return None
    if body.get("x402Version") in (1, 2):
        return body["x402Version"]
    if body.get("paymentRequirements"):
        return 2
    if body.get("accepts") or (body.get("scheme") and body.get("network") and body.get("payTo")):
        return 1
    return None
