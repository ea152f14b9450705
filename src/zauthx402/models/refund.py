"""
Refund models — instructions pushed by the zauth service and their outcomes.
"""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, PrivateAttr

from zauthx402.models.events import WIRE_CONFIG, AnyRefundReason, RefundReason
from zauthx402.networks import NetworkFamily, classify_network


class PendingRefund(BaseModel):
    """refund_required payload.refund"""
    model_config = WIRE_CONFIG

    id: str
    url: str
    method: str = "GET"
    network: str
    amount_cents: int
    amount_usd: float
    recipient_address: str
    reason: AnyRefundReason = RefundReason.INVALID_RESPONSE
    status_code: Optional[int] = None
    meaningfulness_score: Optional[float] = None
    payment_tx_hash: Optional[str] = None
    sdk_request_event_id: Optional[str] = None
    sdk_response_event_id: Optional[str] = None
    sdk_payment_event_id: Optional[str] = None
    requested_at: Optional[str] = None
    expires_at: Optional[str] = None

    _family: NetworkFamily = PrivateAttr(default=NetworkFamily.UNSUPPORTED)

    def model_post_init(self, __context: Any) -> None:
        self._family = classify_network(self.network)

    @property
    def network_family(self) -> NetworkFamily:
        return self._family


class RejectionReason(str, Enum):
    EXCEEDED_CAP = "EXCEEDED_CAP"
    INVALID_RECIPIENT = "INVALID_RECIPIENT"
    MANUAL_REVIEW = "MANUAL_REVIEW"
    OTHER = "OTHER"


class TransferResult(BaseModel):
    success: bool
    tx_hash: Optional[str] = None
    amount_raw: Optional[str] = None
    gas_cost_cents: Optional[int] = None
    error: Optional[str] = None
    retryable: bool = True

    @classmethod
    def failed(cls, error: str, retryable: bool = True) -> "TransferResult":
        return cls(success=False, error=error, retryable=retryable)


class ExecutedRefund(BaseModel):
    """Passed to the on_refund callback."""
    refund_id: str
    request_id: str = ""
    url: str
    amount_usd: float
    amount_raw: str
    tx_hash: str
    network: str
    recipient: str
    reason: AnyRefundReason
    executed_at: str


class RefundFailure(BaseModel):
    """Passed to the on_refund_error callback."""
    refund_id: str
    url: str
    amount_usd: float
    error: str
    retryable: bool = True


class PendingRefundsStats(BaseModel):
    model_config = WIRE_CONFIG

    today_refunded_cents: int = 0
    month_refunded_cents: int = 0
    daily_cap_cents: Optional[int] = None
    monthly_cap_cents: Optional[int] = None
    remaining_daily_cents: Optional[int] = None
    remaining_monthly_cents: Optional[int] = None


class PendingRefundsResponse(BaseModel):
    model_config = WIRE_CONFIG

    refunds: list[PendingRefund] = []
    total: int = 0
    stats: PendingRefundsStats = PendingRefundsStats()


class RefundStats(BaseModel):
    model_config = WIRE_CONFIG

    total_refunds: int = 0
    total_amount_cents: int = 0
    by_reason: dict[str, int] = {}
    by_endpoint: dict[str, dict[str, int]] = {}
    daily_totals: list[dict[str, Any]] = []


class RefundRequestResult(BaseModel):
    model_config = WIRE_CONFIG

    approved: bool = False
    refund_id: Optional[str] = None
    message: Optional[str] = None


class RefundStatusResponse(BaseModel):
    """Reply to confirm/reject over REST."""
    model_config = WIRE_CONFIG

    success: bool = False
    refund_id: str = ""
    status: str = "ERROR"
    message: Optional[str] = None


class EndpointStatus(BaseModel):
    model_config = WIRE_CONFIG

    verified: bool = False
    working: bool = False
    meaningful: bool = False
    last_checked: Optional[str] = Field(default=None, alias="checkedAt")
    uptime: Optional[float] = None
