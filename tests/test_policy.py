"""Refund policy: trigger priority, endpoint matching and spend caps."""

from datetime import datetime, timezone

import pytest

from zauthx402.config import EndpointRefundConfig, RefundConfig, RefundTriggers, TriggerOverrides
from zauthx402.models.events import RefundReason, ValidationCheck, ValidationResult
from zauthx402.models.refund import RejectionReason
from zauthx402.policy import (
    SpendCaps,
    check_caps,
    decide_refund_reason,
    evaluate_refund,
    match_endpoint_config,
    resolve_triggers,
    usd_to_cents,
)
from zauthx402.validator import validate_response

NOW = datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)


def make_config(**kwargs) -> RefundConfig:
    kwargs.setdefault("private_key", None)
    kwargs.setdefault("solana_private_key", None)
    return RefundConfig(**kwargs)


def fresh_caps(today=0, month=0) -> SpendCaps:
    return SpendCaps(
        today_refunded_cents=today,
        month_refunded_cents=month,
        cap_date="2026-10-18",
        cap_month="2026-10",
    )


class TestDecideRefundReason:
    def test_server_error_first(self):
        result = validate_response("", 503)
        assert decide_refund_reason(result, 503, RefundTriggers()) == RefundReason.SERVER_ERROR

    def test_empty_response(self):
        result = validate_response({}, 200)
        assert decide_refund_reason(result, 200, RefundTriggers()) == RefundReason.EMPTY_RESPONSE

    def test_schema_validation_only_when_enabled(self):
        result = validate_response({"error": "bad"}, 404)
        assert not result.valid
        triggers = RefundTriggers(schema_validation=True, min_meaningfulness=None)
        assert decide_refund_reason(result, 404, triggers) == RefundReason.SCHEMA_VALIDATION_FAILED
        assert decide_refund_reason(result, 404, RefundTriggers(min_meaningfulness=None)) is None

    def test_low_meaningfulness(self):
        result = ValidationResult(
            valid=False,
            checks=(ValidationCheck(name="not_empty", passed=True),),
            meaningfulness_score=0.2,
        )
        assert decide_refund_reason(result, 200, RefundTriggers()) == RefundReason.INVALID_RESPONSE

    def test_good_response_is_not_refunded(self):
        result = validate_response({"data": 1}, 200)
        assert decide_refund_reason(result, 200, RefundTriggers()) is None

    def test_disabled_triggers(self):
        result = validate_response("", 500)
        triggers = RefundTriggers(server_error=False, empty_response=False, min_meaningfulness=None)
        assert decide_refund_reason(result, 500, triggers) is None

    def test_timeout_comes_first(self):
        result = validate_response({"data": 1}, 200)
        assert decide_refund_reason(result, 200, RefundTriggers(), timed_out=True) == RefundReason.TIMEOUT
        assert decide_refund_reason(result, 200, RefundTriggers(timeout=False), timed_out=True) is None
        assert decide_refund_reason(result, 200, RefundTriggers()) is None


class TestEndpointMatching:
    def test_wildcard_matches_url_or_path(self):
        endpoints = {"/api/weather/*": EndpointRefundConfig(max_refund_usd=0.1)}
        assert match_endpoint_config(endpoints, "https://x.io/api/weather/today", "/api/weather/today")
        assert match_endpoint_config(endpoints, "/api/weather/today") is not None
        assert match_endpoint_config(endpoints, "https://x.io/api/weather/today") is None

    def test_pattern_is_anchored(self):
        endpoints = {"/api/data": EndpointRefundConfig()}
        assert match_endpoint_config(endpoints, "/api/data") is not None
        assert match_endpoint_config(endpoints, "/api/data/extra") is None
        assert match_endpoint_config(endpoints, "/api/data\n") is None

    def test_other_characters_are_literal(self):
        endpoints = {"/v1/data.json": EndpointRefundConfig()}
        assert match_endpoint_config(endpoints, "/v1/data.json") is not None
        assert match_endpoint_config(endpoints, "/v1/dataXjson") is None

    def test_first_declared_pattern_wins(self):
        first = EndpointRefundConfig(max_refund_usd=0.5)
        second = EndpointRefundConfig(max_refund_usd=2.0)
        endpoints = {"*/premium/*": first, "*": second}
        assert match_endpoint_config(endpoints, "https://x.io/premium/a") is first
        assert match_endpoint_config(endpoints, "https://x.io/basic") is second

    def test_resolve_triggers_merges_overrides(self):
        endpoint = EndpointRefundConfig(triggers=TriggerOverrides(server_error=False, min_meaningfulness=0.6))
        merged = resolve_triggers(RefundTriggers(), endpoint)
        assert merged.server_error is False
        assert merged.empty_response is True
        assert merged.min_meaningfulness == 0.6
        assert resolve_triggers(RefundTriggers(), None) == RefundTriggers()


class TestCaps:
    def test_usd_to_cents_floors(self):
        assert usd_to_cents(0.29) == 29
        assert usd_to_cents(1.999) == 199
        assert usd_to_cents(50) == 5000

    def test_daily_cap_boundary(self):
        config = make_config(daily_cap_usd=50.0)
        caps = fresh_caps(today=4950)

        denied = check_caps(100, None, caps, config, now=NOW)
        assert not denied.allowed
        assert denied.reason == RejectionReason.EXCEEDED_CAP

        allowed = check_caps(50, None, caps, config, now=NOW)
        assert allowed.allowed
        caps.record(50)
        assert caps.today_refunded_cents == 5000

    def test_per_request_maximum(self):
        decision = check_caps(150, None, fresh_caps(), make_config(), now=NOW)
        assert not decision.allowed
        assert decision.reason == RejectionReason.EXCEEDED_CAP
        assert "exceeds max 1.00" in decision.note

    def test_endpoint_maximum_overrides_global(self):
        endpoint = EndpointRefundConfig(max_refund_usd=0.1)
        assert not check_caps(20, endpoint, fresh_caps(), make_config(), now=NOW).allowed
        assert check_caps(10, endpoint, fresh_caps(), make_config(), now=NOW).allowed

    def test_disabled_endpoint(self):
        decision = check_caps(1, EndpointRefundConfig(enabled=False), fresh_caps(), make_config(), now=NOW)
        assert not decision.allowed
        assert decision.reason == RejectionReason.OTHER

    def test_monthly_cap(self):
        config = make_config(monthly_cap_usd=10.0)
        decision = check_caps(60, None, fresh_caps(month=950), config, now=NOW)
        assert not decision.allowed
        assert decision.note == "Monthly refund cap exceeded"

    def test_daily_counter_resets_on_new_date(self):
        config = make_config(daily_cap_usd=50.0)
        caps = SpendCaps(today_refunded_cents=4950, month_refunded_cents=4950,
                         cap_date="2026-10-17", cap_month="2026-10")
        assert check_caps(100, None, caps, config, now=NOW).allowed
        assert caps.today_refunded_cents == 0
        assert caps.cap_date == "2026-10-18"
        assert caps.month_refunded_cents == 4950

    def test_monthly_counter_resets_on_new_month(self):
        caps = SpendCaps(today_refunded_cents=10, month_refunded_cents=900,
                         cap_date="2026-09-30", cap_month="2026-09")
        caps.roll(datetime(2026, 10, 1, tzinfo=timezone.utc))
        assert caps.today_refunded_cents == 0
        assert caps.month_refunded_cents == 0
        assert caps.cap_month == "2026-10"


class TestEvaluate:
    def test_disabled_refunds(self):
        result = validate_response("", 500)
        assert evaluate_refund("", 500, result, make_config(enabled=False), "/x") is None

    def test_endpoint_disabled(self):
        config = make_config(enabled=True, endpoints={"/free/*": EndpointRefundConfig(enabled=False)})
        result = validate_response("", 500)
        assert evaluate_refund("", 500, result, config, "https://x.io/free/a", "/free/a") is None

    def test_should_refund_hook(self):
        endpoint = EndpointRefundConfig(should_refund=lambda body, status, result: body.get("stale") is True)
        config = make_config(enabled=True, endpoints={"*": endpoint})
        body = {"stale": True, "data": 1}
        result = validate_response(body, 200)
        assert evaluate_refund(body, 200, result, config, "/quote") == RefundReason.CUSTOM

    def test_falls_back_to_triggers(self):
        config = make_config(enabled=True)
        result = validate_response({"error": "x"}, 502)
        assert evaluate_refund({"error": "x"}, 502, result, config, "/quote") == RefundReason.SERVER_ERROR

    def test_endpoint_can_turn_off_timeout(self):
        endpoint = EndpointRefundConfig(triggers=TriggerOverrides(timeout=False))
        config = make_config(enabled=True, endpoints={"/slow/*": endpoint})
        result = validate_response({"data": 1}, 200)
        assert evaluate_refund({"data": 1}, 200, result, config, "/slow/a", timed_out=True) is None
        assert evaluate_refund({"data": 1}, 200, result, config, "/fast", timed_out=True) == RefundReason.TIMEOUT


@pytest.mark.parametrize("amount,expected", [(4950, True), (5000, True), (5001, False)])
def test_daily_cap_inclusive(amount, expected):
    config = make_config(daily_cap_usd=50.0, max_refund_usd=100.0)
    assert check_caps(amount, None, fresh_caps(), config, now=NOW).allowed is expected
