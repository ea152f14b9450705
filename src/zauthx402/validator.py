"""
Response validator — decides whether a paid response was "meaningful".

Checks run in a fixed order and each failed check lowers the score:

    status_code             0.3
    not_empty               0.4
    no_error_fields         0.3
    required_fields         0.2   (only when required_fields is configured)
    non_empty_collections   0.1   (only when reject_empty_collections is on)
    custom validator        0.3   (only when configured)

The result is valid only if the score is at least 0.5, the status is 2xx and
the body is not empty.
"""

import logging
from collections.abc import Mapping, Sequence
from typing import Any, Iterable, Optional

from zauthx402.config import CustomValidator, ValidationConfig
from zauthx402.models.events import ValidationCheck, ValidationResult

logger = logging.getLogger("zauthx402.validator")

VALID_THRESHOLD = 0.5

PENALTY_STATUS = 0.3
PENALTY_EMPTY = 0.4
PENALTY_ERROR_FIELDS = 0.3
PENALTY_REQUIRED_FIELDS = 0.2
PENALTY_EMPTY_COLLECTIONS = 0.1
PENALTY_CUSTOM = 0.3


def _is_collection(value: Any) -> bool:
    return isinstance(value, (Mapping, list, tuple))


def is_empty_response(body: Any, min_size: int = 2) -> bool:
    if body is None or body == "":
        return True
    if isinstance(body, (bytes, bytearray)):
        body = body.decode("utf-8", errors="replace")
    if isinstance(body, str):
        return len(body.strip()) < min_size
    if isinstance(body, Mapping):
        return len(body) == 0
    if isinstance(body, (list, tuple)):
        return len(body) == 0
    return False


def has_error_indicators(body: Any, error_fields: Iterable[str] = ("error", "errors")) -> bool:
    if not body or not isinstance(body, Mapping):
        return False

    for name in error_fields:
        value = body.get(name)
        if value is None:
            continue
        if value is True:
            return True
        if isinstance(value, str) and value:
            return True
        if _is_collection(value) and len(value) > 0:
            return True

    return body.get("ok") is False or body.get("success") is False


def has_empty_collections(body: Any) -> bool:
    """True if the body itself, or any top-level value, is an empty list/object."""
    if isinstance(body, (list, tuple)):
        return len(body) == 0
    if not isinstance(body, Mapping):
        return False
    if len(body) == 0:
        return True
    return any(_is_collection(value) and len(value) == 0 for value in body.values())


def missing_required_fields(body: Any, required: Sequence[str]) -> list[str]:
    if not isinstance(body, Mapping):
        return list(required)
    return [name for name in required if body.get(name) is None]


def validate_response(
    body: Any,
    status_code: int,
    config: Optional[ValidationConfig] = None,
) -> ValidationResult:
    config = config or ValidationConfig()
    checks: list[ValidationCheck] = []
    score = 1.0

    is_success = 200 <= status_code < 300
    checks.append(ValidationCheck(
        name="status_code",
        passed=is_success,
        message="Success status code" if is_success else f"Non-success status: {status_code}",
    ))
    if not is_success:
        score -= PENALTY_STATUS

    is_empty = is_empty_response(body, config.min_response_size)
    checks.append(ValidationCheck(
        name="not_empty",
        passed=not is_empty,
        message="Response is empty or too small" if is_empty else "Response has content",
    ))
    if is_empty:
        score -= PENALTY_EMPTY

    has_errors = has_error_indicators(body, config.error_fields)
    checks.append(ValidationCheck(
        name="no_error_fields",
        passed=not has_errors,
        message="Response contains error indicators" if has_errors else "No error indicators found",
    ))
    if has_errors:
        score -= PENALTY_ERROR_FIELDS

    if config.required_fields:
        missing = missing_required_fields(body, config.required_fields)
        checks.append(ValidationCheck(
            name="required_fields",
            passed=not missing,
            message=f"Missing fields: {', '.join(missing)}" if missing else "All required fields present",
        ))
        if missing:
            score -= PENALTY_REQUIRED_FIELDS

    if config.reject_empty_collections and _is_collection(body):
        empty_collection = has_empty_collections(body)
        checks.append(ValidationCheck(
            name="non_empty_collections",
            passed=not empty_collection,
            message=(
                "Response contains empty arrays or objects" if empty_collection
                else "Collections have content"
            ),
        ))
        if empty_collection:
            score -= PENALTY_EMPTY_COLLECTIONS

    custom = config.custom_validator
    if custom is None and config.response_schema:
        custom = create_schema_validator(config.response_schema)
    if custom is not None:
        try:
            custom_result = custom(body, status_code)
            checks.extend(custom_result.checks)
            if not custom_result.valid:
                score -= PENALTY_CUSTOM
        except Exception as e:
            logger.debug("Custom validator raised: %s", e)
            checks.append(ValidationCheck(
                name="custom_validator",
                passed=False,
                message=f"Custom validator error: {e}",
            ))

    score = round(max(0.0, min(1.0, score)), 6)
    valid = score >= VALID_THRESHOLD and is_success and not is_empty

    reason = None
    if not valid:
        reason = "; ".join(c.message or c.name for c in checks if not c.passed)

    return ValidationResult(valid=valid, checks=tuple(checks), meaningfulness_score=score, reason=reason)


def _json_type(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, (list, tuple)):
        return "array"
    return "object"


def validate_schema(body: Any, schema: Mapping[str, Any]) -> ValidationResult:
    """Minimal schema check: top-level `type` and `required` property names."""
    expected = schema.get("type")
    actual = _json_type(body)

    if expected and expected != actual and not (expected == "integer" and isinstance(body, int)):
        return ValidationResult(
            valid=False,
            checks=(ValidationCheck(name="type", passed=False, message=f"Expected {expected}, got {actual}"),),
            meaningfulness_score=0.0,
            reason=f"Type mismatch: expected {expected}",
        )

    checks = [ValidationCheck(name="type", passed=True, message=f"Type is {actual}")]

    required = schema.get("required")
    if isinstance(required, list) and isinstance(body, Mapping):
        missing = [prop for prop in required if prop not in body]
        if missing:
            checks.append(ValidationCheck(
                name="required_properties",
                passed=False,
                message=f"Missing required: {', '.join(missing)}",
            ))
            return ValidationResult(
                valid=False,
                checks=tuple(checks),
                meaningfulness_score=0.3,
                reason=f"Missing required properties: {', '.join(missing)}",
            )
        checks.append(ValidationCheck(
            name="required_properties", passed=True, message="All required properties present",
        ))

    return ValidationResult(valid=True, checks=tuple(checks), meaningfulness_score=1.0)


def create_schema_validator(schema: Mapping[str, Any]) -> CustomValidator:
    def validator(body: Any, _status_code: int) -> ValidationResult:
        return validate_schema(body, schema)
    return validator
