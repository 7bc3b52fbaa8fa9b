"""
Error types and classification for Task Orchestra.

Only configuration errors and limit errors escape an orchestration. Per-call
provider errors are raised inside adapters and converted into failure
responses at the adapter boundary, keeping their :class:`ErrorType`.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorType(str, Enum):
    """Classification of provider invocation errors.

    Used to decide retry behavior and to mark adapter health.
    Non-retryable errors (BILLING, AUTH, CLI_NOT_FOUND) should fail fast.
    """

    NONE = "none"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"
    CLI_NOT_FOUND = "cli_not_found"
    BILLING = "billing"  # Credits exhausted, payment required
    RATE_LIMIT = "rate_limit"  # Too many requests (429)
    AUTH = "auth"  # API key invalid or missing
    MODEL_UNAVAILABLE = "model_unavailable"
    NETWORK = "network"
    UNKNOWN = "unknown"


# Permanent failures
NON_RETRYABLE_ERRORS = frozenset(
    {
        ErrorType.BILLING,
        ErrorType.AUTH,
        ErrorType.CLI_NOT_FOUND,
    }
)

_BILLING_PATTERNS = (
    "insufficient_quota",
    "billing",
    "credit",
    "payment",
    "exceeded your current quota",
    "plan does not include",
)

_RATE_LIMIT_PATTERNS = (
    "rate_limit",
    "rate limit",
    "too many requests",
    "429",
    "throttl",
)

_AUTH_PATTERNS = (
    "invalid_api_key",
    "invalid api key",
    "unauthorized",
    "authentication",
    "api key not found",
    "401",
)

_MODEL_UNAVAILABLE_PATTERNS = (
    "model not found",
    "model_not_found",
    "does not exist",
    "overloaded",
    "capacity",
)

_NETWORK_PATTERNS = (
    "connection",
    "network",
    "dns",
    "socket",
    "econnrefused",
    "econnreset",
)

_TIMEOUT_PATTERNS = (
    "timed out",
    "timeout",
)


def classify_error(error_text: str, return_code: int = -1) -> ErrorType:
    """Classify an error based on error text and return code.

    Args:
        error_text: Error message or stderr output
        return_code: Process return code (0 = success)

    Returns:
        ErrorType classification for the error
    """
    if not error_text and return_code == 0:
        return ErrorType.NONE

    error_lower = error_text.lower() if error_text else ""

    # Billing first: retrying wastes money
    for pattern in _BILLING_PATTERNS:
        if pattern in error_lower:
            return ErrorType.BILLING

    for pattern in _RATE_LIMIT_PATTERNS:
        if pattern in error_lower:
            return ErrorType.RATE_LIMIT

    for pattern in _AUTH_PATTERNS:
        if pattern in error_lower:
            return ErrorType.AUTH

    for pattern in _MODEL_UNAVAILABLE_PATTERNS:
        if pattern in error_lower:
            return ErrorType.MODEL_UNAVAILABLE

    for pattern in _TIMEOUT_PATTERNS:
        if pattern in error_lower:
            return ErrorType.TIMEOUT

    for pattern in _NETWORK_PATTERNS:
        if pattern in error_lower:
            return ErrorType.NETWORK

    return ErrorType.UNKNOWN


class OrchestrationError(Exception):
    """Base class for all Task Orchestra errors."""


class UnknownProviderError(OrchestrationError, KeyError):
    """No adapter factory is registered under the requested name."""

    def __init__(self, name: str, available: list[str] | None = None) -> None:
        self.name = name
        self.available = list(available or [])
        super().__init__(
            f"Provider '{name}' is not registered. Available: [{', '.join(self.available)}]"
        )

    def __str__(self) -> str:
        # KeyError would repr() the message
        return str(self.args[0])


class UnsupportedStrategyError(OrchestrationError):
    """The assessment asked for an approach the engine does not implement."""

    def __init__(self, approach: str) -> None:
        self.approach = approach
        super().__init__(f"Unsupported strategy: {approach!r}")


class ProviderUnavailableError(OrchestrationError):
    """A strategy needs a specific provider that has no live adapter."""

    def __init__(self, provider: str) -> None:
        self.provider = provider
        super().__init__(f"Provider '{provider}' is not available in the registry.")


class LimitExceededError(OrchestrationError):
    """A usage limit blocks dispatch before any provider is called."""

    def __init__(self, limit: str, limit_value: Any, actual: Any) -> None:
        self.limit = limit
        self.limit_value = limit_value
        self.actual = actual
        super().__init__(f"Usage limit '{limit}' exceeded: {actual} > {limit_value}")


class ProviderCallError(OrchestrationError):
    """A single provider invocation failed.

    Raised inside adapter implementations only. The adapter base class turns it
    into a ``status=failure`` response that keeps :attr:`error_type` in the
    result metadata.
    """

    def __init__(self, message: str, error_type: ErrorType | None = None) -> None:
        self.error_type = error_type or classify_error(message)
        super().__init__(message)


__all__ = [
    "ErrorType",
    "LimitExceededError",
    "NON_RETRYABLE_ERRORS",
    "OrchestrationError",
    "ProviderCallError",
    "ProviderUnavailableError",
    "UnknownProviderError",
    "UnsupportedStrategyError",
    "classify_error",
]
