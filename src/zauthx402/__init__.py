"""
zauthx402 — x402 response monitoring and automatic refunds for Python.

Decodes x402 payment headers, scores paid responses, and pays refunds
on EVM and Solana when the zauth service asks for them.
"""

from zauthx402.channel import ChannelState, RefundChannel
from zauthx402.client import ZauthClient
from zauthx402.config import (
    EndpointRefundConfig,
    RefundConfig,
    RefundTriggers,
    ValidationConfig,
    ZauthConfig,
)
from zauthx402.errors import ApiError, ConfigError, ConnectionError, ExecutionError, ZauthError
from zauthx402.models.events import RefundReason, ValidationCheck, ValidationResult
from zauthx402.models.payment import DecodedPayment
from zauthx402.models.refund import PendingRefund, RejectionReason, TransferResult
from zauthx402.monitor import ResponseMonitor
from zauthx402.payment_header import decode_payment_header
from zauthx402.policy import check_caps, decide_refund_reason
from zauthx402.validator import validate_response

__version__ = "0.1.0"
__all__ = [
    "ZauthClient",
    "ResponseMonitor",
    "RefundChannel",
    "ChannelState",
    "ZauthConfig",
    "RefundConfig",
    "RefundTriggers",
    "EndpointRefundConfig",
    "ValidationConfig",
    "ZauthError",
    "ConfigError",
    "ConnectionError",
    "ApiError",
    "ExecutionError",
    "RefundReason",
    "RejectionReason",
    "ValidationCheck",
    "ValidationResult",
    "DecodedPayment",
    "PendingRefund",
    "TransferResult",
    "decode_payment_header",
    "validate_response",
    "decide_refund_reason",
    "check_caps",
]
