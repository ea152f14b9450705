"""
Validation results and telemetry events.

Events go over the wire in camelCase; Python code uses snake_case names.
"""

from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, Field, SerializeAsAny
from pydantic.alias_generators import to_camel

WIRE_CONFIG = {"alias_generator": to_camel, "populate_by_name": True}


class ValidationCheck(BaseModel):
    model_config = {**WIRE_CONFIG, "frozen": True}

    name: str
    passed: bool
    message: Optional[str] = None


class ValidationResult(BaseModel):
    model_config = {**WIRE_CONFIG, "frozen": True}

    valid: bool
    checks: tuple[ValidationCheck, ...] = ()
    meaningfulness_score: float = Field(ge=0.0, le=1.0)
    reason: Optional[str] = None

    def check(self, name: str) -> Optional[ValidationCheck]:
        for c in self.checks:
            if c.name == name:
                return c
        return None


class RefundReason(str, Enum):
    EMPTY_RESPONSE = "empty_response"
    INVALID_RESPONSE = "invalid_response"
    SCHEMA_VALIDATION_FAILED = "schema_validation_failed"
    TIMEOUT = "timeout"
    SERVER_ERROR = "server_error"
    CUSTOM = "custom"


# Reasons this SDK does not know yet stay plain strings
AnyRefundReason = Annotated[Union[RefundReason, str], Field(union_mode="left_to_right")]


class EventBase(BaseModel):
    model_config = WIRE_CONFIG

    event_id: str
    timestamp: str
    type: str
    api_key: str
    sdk_version: str


class RequestEvent(EventBase):
    type: Literal["request"] = "request"
    url: str
    base_url: str
    method: str
    headers: dict[str, str] = {}
    query_params: dict[str, str] = {}
    body: Any = None
    request_size: int = 0
    source_ip: Optional[str] = None
    user_agent: Optional[str] = None
    payment_header: Optional[str] = None


class ResponseEvent(EventBase):
    type: Literal["response"] = "response"
    request_event_id: str
    url: str
    status_code: int
    headers: dict[str, str] = {}
    body: Any = None
    response_size: int = 0
    response_time_ms: int = 0
    success: bool
    meaningful: bool
    validation_result: Optional[ValidationResult] = None
    payment_response: Optional[dict[str, Any]] = None
    error_message: Optional[str] = None
    expected_response: Optional[str] = None


class PaymentEvent(EventBase):
    type: Literal["payment"] = "payment"
    request_event_id: str
    url: str
    network: str
    transaction_hash: str = ""
    amount_paid: str = "0"
    amount_paid_usdc: str = "0"
    pay_to: str = ""
    asset: str = "USDC"
    payer: str = ""
    scheme: str = "exact"


class RefundEvent(EventBase):
    type: Literal["refund"] = "refund"
    request_event_id: str
    payment_event_id: str
    url: str
    refund_transaction_hash: str
    amount_refunded: str
    amount_refunded_usdc: str
    refund_to: str
    reason: AnyRefundReason
    details: Optional[str] = None


class ErrorEvent(EventBase):
    type: Literal["error"] = "error"
    request_event_id: Optional[str] = None
    url: str
    error_code: str
    error_message: str
    stack_trace: Optional[str] = None
    is_provider_failure: bool = False


class EventBatch(BaseModel):
    model_config = WIRE_CONFIG

    events: list[SerializeAsAny[EventBase]]
    batch_id: str
    sent_at: str


class SubmitError(BaseModel):
    model_config = WIRE_CONFIG

    event_id: str = ""
    error: str = ""


class EventSubmitResponse(BaseModel):
    model_config = WIRE_CONFIG

    success: bool = False
    batch_id: str = ""
    accepted: int = 0
    rejected: int = 0
    errors: list[SubmitError] = []
