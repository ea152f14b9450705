"""
zauthx402 error types.

Decode failures and validation outcomes are never raised; these cover
configuration, transport and on-chain execution problems.
"""

from typing import Any, Optional


class ZauthError(Exception):
    def __init__(self, code: str, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.code = code
        self.details = details


class ConfigError(ZauthError):
    def __init__(self, message: str, code: str = "config_error", details: Optional[dict[str, Any]] = None):
        super().__init__(code, message, details)


class ConnectionError(ZauthError):
    def __init__(self, message: str):
        super().__init__("connection_error", message)


class ApiError(ZauthError):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__("http_error", message, {"status_code": status_code} if status_code else None)
        self.status_code = status_code


class ExecutionError(ZauthError):
    """On-chain transfer failure. Retryable unless the configuration itself is broken."""

    def __init__(self, message: str, retryable: bool = True, details: Optional[dict[str, Any]] = None):
        super().__init__("execution_error", message, details)
        self.retryable = retryable


class UnsupportedNetworkError(ExecutionError):
    def __init__(self, network: str):
        super().__init__(f"Unsupported network: {network}", retryable=False, details={"network": network})
        self.network = network
