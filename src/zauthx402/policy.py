"""
Refund policy — which bad responses deserve a refund, and whether local spend
caps allow paying one out.

The zauth service keeps the authoritative cap accounting; the counters here
only let the SDK refuse early without a round trip.
"""

import logging
import math
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any, Mapping, Optional

from zauthx402.config import EndpointRefundConfig, RefundConfig, RefundTriggers
from zauthx402.models.events import RefundReason, ValidationResult
from zauthx402.models.refund import RejectionReason

logger = logging.getLogger("zauthx402.policy")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def usd_to_cents(usd: float) -> int:
    return math.floor(round(usd * 100, 6))


def decide_refund_reason(
    result: ValidationResult,
    status_code: int,
    triggers: RefundTriggers,
    timed_out: bool = False,
) -> Optional[RefundReason]:
    """First matching trigger: timeout, server error, empty, schema, meaningfulness."""
    if triggers.timeout and timed_out:
        return RefundReason.TIMEOUT

    if triggers.server_error and status_code >= 500:
        return RefundReason.SERVER_ERROR

    if triggers.empty_response:
        not_empty = result.check("not_empty")
        if not_empty is not None and not not_empty.passed:
            return RefundReason.EMPTY_RESPONSE

    if triggers.schema_validation and not result.valid:
        return RefundReason.SCHEMA_VALIDATION_FAILED

    if triggers.min_meaningfulness is not None and result.meaningfulness_score < triggers.min_meaningfulness:
        return RefundReason.INVALID_RESPONSE

    return None


@lru_cache(maxsize=256)
def pattern_to_regex(pattern: str) -> "re.Pattern[str]":
    """`*` matches anything; every other character is literal. Use with fullmatch."""
    return re.compile(".*".join(re.escape(part) for part in pattern.split("*")))


def match_endpoint_config(
    endpoints: Mapping[str, EndpointRefundConfig],
    url: str,
    path: Optional[str] = None,
) -> Optional[EndpointRefundConfig]:
    for pattern, endpoint in endpoints.items():
        regex = pattern_to_regex(pattern)
        if regex.fullmatch(url) or (path is not None and regex.fullmatch(path)):
            return endpoint
    return None


def resolve_triggers(
    triggers: RefundTriggers,
    endpoint: Optional[EndpointRefundConfig],
) -> RefundTriggers:
    if endpoint is None or endpoint.triggers is None:
        return triggers
    return triggers.model_copy(update=endpoint.triggers.model_dump(exclude_none=True))


@dataclass
class CapDecision:
    allowed: bool
    reason: Optional[RejectionReason] = None
    note: Optional[str] = None

    @classmethod
    def allow(cls) -> "CapDecision":
        return cls(allowed=True)

    @classmethod
    def deny(cls, reason: RejectionReason, note: str) -> "CapDecision":
        return cls(allowed=False, reason=reason, note=note)


@dataclass
class SpendCaps:
    """Process-local refund totals, reset lazily when the UTC day or month changes."""
    today_refunded_cents: int = 0
    month_refunded_cents: int = 0
    cap_date: str = field(default_factory=lambda: _utcnow().strftime("%Y-%m-%d"))
    cap_month: str = field(default_factory=lambda: _utcnow().strftime("%Y-%m"))

    def roll(self, now: Optional[datetime] = None) -> None:
        now = now or _utcnow()
        today = now.strftime("%Y-%m-%d")
        month = now.strftime("%Y-%m")
        if today != self.cap_date:
            self.today_refunded_cents = 0
            self.cap_date = today
        if month != self.cap_month:
            self.month_refunded_cents = 0
            self.cap_month = month

    def record(self, amount_cents: int) -> None:
        self.today_refunded_cents += amount_cents
        self.month_refunded_cents += amount_cents


def check_caps(
    amount_cents: int,
    endpoint: Optional[EndpointRefundConfig],
    caps: SpendCaps,
    config: RefundConfig,
    now: Optional[datetime] = None,
) -> CapDecision:
    """Endpoint disabled, then per-request maximum, then daily and monthly caps."""
    if endpoint is not None and endpoint.enabled is False:
        return CapDecision.deny(RejectionReason.OTHER, "Refunds disabled for this endpoint")

    max_usd = endpoint.max_refund_usd if endpoint and endpoint.max_refund_usd is not None else config.max_refund_usd
    if amount_cents > usd_to_cents(max_usd):
        return CapDecision.deny(
            RejectionReason.EXCEEDED_CAP,
            f"Amount {amount_cents / 100:.2f} exceeds max {max_usd:.2f}",
        )

    caps.roll(now)

    if config.daily_cap_usd:
        if caps.today_refunded_cents + amount_cents > usd_to_cents(config.daily_cap_usd):
            return CapDecision.deny(RejectionReason.EXCEEDED_CAP, "Daily refund cap exceeded")

    if config.monthly_cap_usd:
        if caps.month_refunded_cents + amount_cents > usd_to_cents(config.monthly_cap_usd):
            return CapDecision.deny(RejectionReason.EXCEEDED_CAP, "Monthly refund cap exceeded")

    return CapDecision.allow()


def evaluate_refund(
    body: Any,
    status_code: int,
    result: ValidationResult,
    config: RefundConfig,
    url: str,
    path: Optional[str] = None,
    timed_out: bool = False,
) -> Optional[RefundReason]:
    """Local refund decision for one captured response, honouring endpoint overrides."""
    if not config.enabled:
        return None

    endpoint = match_endpoint_config(config.endpoints, url, path)
    if endpoint is not None and endpoint.enabled is False:
        return None

    if endpoint is not None and endpoint.should_refund is not None:
        try:
            if endpoint.should_refund(body, status_code, result):
                return RefundReason.CUSTOM
        except Exception as e:
            logger.warning("Endpoint should_refund matcher failed for %s: %s", url, e)

    return decide_refund_reason(
        result, status_code, resolve_triggers(config.triggers, endpoint), timed_out=timed_out,
    )
