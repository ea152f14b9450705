"""
SDK configuration with defaults applied.

Secrets and endpoints fall back to environment variables:
  ZAUTH_API_KEY, ZAUTH_API_ENDPOINT, ZAUTH_ENVIRONMENT,
  ZAUTH_REFUND_PRIVATE_KEY, ZAUTH_SOLANA_PRIVATE_KEY,
  ZAUTH_EVM_RPC_URL, SOLANA_RPC_URL
"""

import os
from typing import Any, Awaitable, Callable, Optional, Union

from pydantic import BaseModel, Field

from zauthx402.models.events import ValidationResult
from zauthx402.models.refund import ExecutedRefund, RefundFailure

DEFAULT_API_ENDPOINT = "https://back.zauthx402.com"

CustomValidator = Callable[[Any, int], ValidationResult]
RefundCallback = Callable[[ExecutedRefund], Union[None, Awaitable[None]]]
RefundErrorCallback = Callable[[RefundFailure], Union[None, Awaitable[None]]]


def _env(name: str, default: Optional[str] = None) -> Callable[[], Optional[str]]:
    return lambda: os.environ.get(name, default)


class BatchingConfig(BaseModel):
    max_batch_size: int = 10
    max_batch_wait_ms: int = 5000
    retry: bool = True
    max_retries: int = 3


class ValidationConfig(BaseModel):
    response_schema: Optional[dict[str, Any]] = None
    custom_validator: Optional[CustomValidator] = None
    min_response_size: int = 2
    required_fields: list[str] = []
    error_fields: list[str] = ["error", "errors"]
    reject_empty_collections: bool = False


class RefundTriggers(BaseModel):
    server_error: bool = True
    timeout: bool = True
    empty_response: bool = True
    schema_validation: bool = False
    min_meaningfulness: Optional[float] = 0.3


class TriggerOverrides(BaseModel):
    """Per-endpoint trigger overrides; None keeps the global value."""
    server_error: Optional[bool] = None
    timeout: Optional[bool] = None
    empty_response: Optional[bool] = None
    schema_validation: Optional[bool] = None
    min_meaningfulness: Optional[float] = None


class EndpointRefundConfig(BaseModel):
    enabled: Optional[bool] = None
    max_refund_usd: Optional[float] = None
    triggers: Optional[TriggerOverrides] = None
    # (body, status_code, validation_result) -> refund?
    should_refund: Optional[Callable[[Any, int, ValidationResult], bool]] = None
    # Plain text description of the expected response, forwarded with response events
    expected_response: Optional[str] = None


class RefundConfig(BaseModel):
    enabled: bool = False
    private_key: Optional[str] = Field(default_factory=_env("ZAUTH_REFUND_PRIVATE_KEY"))
    solana_private_key: Optional[str] = Field(default_factory=_env("ZAUTH_SOLANA_PRIVATE_KEY"))
    evm_rpc_url: Optional[str] = Field(default_factory=_env("ZAUTH_EVM_RPC_URL"))
    # None picks the public endpoint of the refund's cluster
    solana_rpc_url: Optional[str] = Field(default_factory=_env("SOLANA_RPC_URL"))
    network: str = "base"
    triggers: RefundTriggers = RefundTriggers()
    max_refund_usd: float = 1.00
    daily_cap_usd: Optional[float] = None
    monthly_cap_usd: Optional[float] = None
    # Pattern -> override. Declaration order decides which pattern wins.
    endpoints: dict[str, EndpointRefundConfig] = {}
    execution_timeout_s: float = 120.0
    on_refund: Optional[RefundCallback] = None
    on_refund_error: Optional[RefundErrorCallback] = None

    @property
    def has_signer(self) -> bool:
        return bool(self.private_key or self.solana_private_key)


class TelemetryConfig(BaseModel):
    include_request_body: bool = True
    include_response_body: bool = True
    max_body_size: int = 10000
    redact_headers: list[str] = ["authorization", "cookie", "x-api-key", "x-payment"]
    # Dot paths, e.g. "user.password"
    redact_fields: list[str] = []
    sample_rate: float = 1.0


class MonitorConfig(BaseModel):
    include_routes: list[str] = []
    exclude_routes: list[str] = []
    skip_health_checks: bool = True
    default_payment_amount_usdc: Optional[str] = None


class ZauthConfig(BaseModel):
    api_key: str = Field(default_factory=_env("ZAUTH_API_KEY", ""))
    api_endpoint: str = Field(default_factory=_env("ZAUTH_API_ENDPOINT", DEFAULT_API_ENDPOINT))
    mode: str = "provider"
    debug: bool = False
    environment: str = Field(default_factory=_env("ZAUTH_ENVIRONMENT", "development"))
    batching: BatchingConfig = BatchingConfig()
    validation: ValidationConfig = ValidationConfig()
    refund: RefundConfig = Field(default_factory=RefundConfig)
    telemetry: TelemetryConfig = TelemetryConfig()
    monitor: MonitorConfig = MonitorConfig()

    @property
    def websocket_endpoint(self) -> str:
        return self.api_endpoint.replace("https://", "wss://", 1).replace("http://", "ws://", 1)
