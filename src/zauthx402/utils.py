"""
Telemetry helpers — URL parsing, redaction, body truncation, sampling.
"""

import json
import random
from typing import Any, Iterable, Mapping, Optional
from urllib.parse import parse_qsl, urlsplit

from zauthx402.config import TelemetryConfig

REDACTED = "[REDACTED]"


def get_base_url(url: str) -> str:
    """URL without query string or fragment."""
    parts = urlsplit(url)
    if not parts.scheme or not parts.netloc:
        return url
    return f"{parts.scheme}://{parts.netloc}{parts.path}"


def parse_query_params(url: str) -> dict[str, str]:
    return dict(parse_qsl(urlsplit(url).query, keep_blank_values=True))


def redact_headers(headers: Mapping[str, Any], redact: Iterable[str]) -> dict[str, str]:
    redact_set = {h.lower() for h in redact}
    result: dict[str, str] = {}
    for key, value in headers.items():
        if value is None:
            continue
        if isinstance(value, (list, tuple)):
            value = ", ".join(str(v) for v in value)
        result[key] = REDACTED if key.lower() in redact_set else str(value)
    return result


def redact_fields(obj: Any, fields: Iterable[str]) -> Any:
    """Redact keys by name or dot path ("user.password") anywhere in a JSON value."""
    field_set = set(fields)
    if not field_set or not isinstance(obj, (dict, list)):
        return obj

    def walk(current: Any, path: str) -> Any:
        if isinstance(current, list):
            return [walk(item, f"{path}[{i}]") for i, item in enumerate(current)]
        if not isinstance(current, dict):
            return current
        result = {}
        for key, value in current.items():
            full_path = f"{path}.{key}" if path else key
            if key in field_set or full_path in field_set:
                result[key] = REDACTED
            elif isinstance(value, (dict, list)):
                result[key] = walk(value, full_path)
            else:
                result[key] = value
        return result

    return walk(obj, "")


def _to_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, (bytes, bytearray)):
        return value.decode("utf-8", errors="replace")
    return json.dumps(value, default=str)


def truncate_body(body: Any, max_size: int) -> Any:
    if body is None:
        return body
    text = _to_text(body)
    if len(text) <= max_size:
        return body
    if isinstance(body, str):
        return text[:max_size] + "...[TRUNCATED]"
    return {"_truncated": True, "_originalSize": len(text), "_preview": text[:200]}


def process_body(body: Any, config: TelemetryConfig) -> Any:
    if body is None:
        return body
    processed = body
    if config.redact_fields:
        processed = redact_fields(processed, config.redact_fields)
    if config.max_body_size:
        processed = truncate_body(processed, config.max_body_size)
    return processed


def get_byte_size(value: Any) -> int:
    if value is None:
        return 0
    if isinstance(value, (bytes, bytearray)):
        return len(value)
    return len(_to_text(value).encode("utf-8"))


def should_sample(sample_rate: float) -> bool:
    if sample_rate >= 1:
        return True
    if sample_rate <= 0:
        return False
    return random.random() < sample_rate


def safe_json_parse(text: Optional[str]) -> Any:
    if text is None:
        return None
    try:
        return json.loads(text)
    except (ValueError, RecursionError):
        return None
