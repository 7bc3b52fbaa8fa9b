"""
Usage limits for Task Orchestra.

Limits are checked before dispatch: a request that would exceed one is refused
with :class:`~task_orchestra.errors.LimitExceededError` before any provider is
called. Tracking actual spend over time belongs to an external metering
service, which can plug in through the :class:`LimitChecker` protocol.

Environment Variables (all optional):
    ORCHESTRA_MODEL
    ORCHESTRA_MAX_STEPS_PER_TASK
    ORCHESTRA_MAX_CONCURRENT_REQUESTS
    ORCHESTRA_MAX_PROMPT_TOKENS
    ORCHESTRA_MAX_RESPONSE_TOKENS
    ORCHESTRA_MAX_TOTAL_TOKENS_PER_REQUEST
    ORCHESTRA_DAILY_SPENDING_CAP_USD
    ORCHESTRA_DAILY_REQUEST_LIMIT
    ORCHESTRA_DAILY_TOKEN_LIMIT
    ORCHESTRA_REQUESTS_PER_MINUTE
    ORCHESTRA_TOKENS_PER_MINUTE
    ORCHESTRA_COST_PER_INPUT_TOKEN
    ORCHESTRA_COST_PER_OUTPUT_TOKEN
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping, Sequence
from typing import Protocol

from pydantic import BaseModel, ConfigDict, Field

from task_orchestra.errors import LimitExceededError
from task_orchestra.protocol.types import TaskRequest

logger = logging.getLogger(__name__)

ENV_PREFIX = "ORCHESTRA_"


class UsageLimits(BaseModel):
    """Static usage limits."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    model: str = Field(default="gpt-4o-mini")
    max_steps_per_task: int = Field(default=50, ge=1)
    max_concurrent_requests: int = Field(default=3, ge=1)
    max_prompt_tokens: int = Field(default=4000, ge=1)
    max_response_tokens: int = Field(default=2000, ge=1)
    max_total_tokens_per_request: int = Field(default=6000, ge=1)
    daily_spending_cap_usd: float = Field(default=5.00, ge=0.0)
    daily_request_limit: int = Field(default=1000, ge=1)
    daily_token_limit: int = Field(default=500_000, ge=1)
    requests_per_minute: int = Field(default=60, ge=1)
    tokens_per_minute: int = Field(default=40_000, ge=1)
    cost_per_input_token: float = Field(default=0.000003, ge=0.0)
    cost_per_output_token: float = Field(default=0.000012, ge=0.0)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> UsageLimits:
        """Build limits from ``ORCHESTRA_*`` variables, defaults elsewhere."""

        env = os.environ if environ is None else environ
        values: dict[str, str] = {}
        for field_name in cls.model_fields:
            raw = env.get(f"{ENV_PREFIX}{field_name.upper()}")
            if raw is not None and raw.strip():
                values[field_name] = raw.strip()
        # pydantic coerces the strings in lax mode
        return cls.model_validate(values)


def validate_usage_limits(limits: UsageLimits) -> list[str]:
    """Return warnings for limits that look like configuration mistakes."""

    warnings: list[str] = []
    if limits.daily_spending_cap_usd > 50:
        warnings.append(
            f"Daily spending cap is very high: ${limits.daily_spending_cap_usd:.2f}"
        )
    if limits.daily_spending_cap_usd < 0.10:
        warnings.append(
            f"Daily spending cap is very low: ${limits.daily_spending_cap_usd:.2f}"
        )
    if limits.max_concurrent_requests > 10:
        warnings.append(
            f"High concurrent request limit may hit rate limits: {limits.max_concurrent_requests}"
        )
    if limits.max_prompt_tokens > 10_000:
        warnings.append(f"High prompt token limit increases cost: {limits.max_prompt_tokens}")
    if limits.max_prompt_tokens < 100:
        warnings.append(f"Prompt token limit is very low: {limits.max_prompt_tokens}")
    if limits.max_response_tokens > 4000:
        warnings.append(
            f"High response token limit increases cost: {limits.max_response_tokens}"
        )
    return warnings


def estimate_tokens(text: str) -> int:
    """Estimate token count (4 chars ≈ 1 token)."""
    return len(text) // 4


class LimitChecker(Protocol):
    """Gate consulted before any provider call of an orchestration."""

    def check(self, request: TaskRequest, providers: Sequence[str]) -> None:
        """Raise LimitExceededError if dispatching *request* to *providers* is not allowed."""


class StaticLimitChecker:
    """Checks a request against fixed :class:`UsageLimits`."""

    def __init__(self, limits: UsageLimits | None = None) -> None:
        self.limits = limits or UsageLimits()
        for warning in validate_usage_limits(self.limits):
            logger.warning("Usage limits: %s", warning)

    def check(self, request: TaskRequest, providers: Sequence[str]) -> None:
        limits = self.limits

        if len(providers) > limits.max_concurrent_requests:
            raise LimitExceededError(
                "max_concurrent_requests", limits.max_concurrent_requests, len(providers)
            )

        prompt_tokens = estimate_tokens(request.prompt)
        if prompt_tokens > limits.max_prompt_tokens:
            raise LimitExceededError("max_prompt_tokens", limits.max_prompt_tokens, prompt_tokens)

        constraints = request.constraints
        if constraints is None:
            return

        if constraints.max_tokens is not None:
            if constraints.max_tokens > limits.max_response_tokens:
                raise LimitExceededError(
                    "max_response_tokens", limits.max_response_tokens, constraints.max_tokens
                )
            total = prompt_tokens + constraints.max_tokens
            if total > limits.max_total_tokens_per_request:
                raise LimitExceededError(
                    "max_total_tokens_per_request", limits.max_total_tokens_per_request, total
                )

        if constraints.cost_ceiling is not None:
            if constraints.cost_ceiling > limits.daily_spending_cap_usd:
                raise LimitExceededError(
                    "daily_spending_cap_usd",
                    limits.daily_spending_cap_usd,
                    constraints.cost_ceiling,
                )


__all__ = [
    "LimitChecker",
    "StaticLimitChecker",
    "UsageLimits",
    "estimate_tokens",
    "validate_usage_limits",
]
