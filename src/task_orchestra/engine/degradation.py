"""
Graceful degradation for Task Orchestra.

Decides what to do after a provider returns a failure response: retry it with
backoff, or keep the failure and carry on with what the other providers
returned. Failure responses already carry a classified
``error_type``, so the policy never has to look at exceptions.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from task_orchestra.errors import NON_RETRYABLE_ERRORS, ErrorType
from task_orchestra.protocol.types import TaskResponse
from task_orchestra.providers.base import response_error_type

logger = logging.getLogger(__name__)

RETRYABLE_ERRORS = frozenset({ErrorType.RATE_LIMIT, ErrorType.NETWORK})


class DegradationAction(str, Enum):
    """Actions to take when a provider fails."""

    CONTINUE = "continue"  # Keep the failure response, proceed
    RETRY = "retry"  # Retry with exponential backoff
    SKIP = "skip"  # Permanent failure, not worth retrying


@dataclass
class FailureEvent:
    """Record of a provider failure."""

    provider: str
    request_id: str
    error_type: ErrorType
    error_message: str
    action_taken: DegradationAction
    retry_count: int = 0
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> dict[str, Any]:
        return {
            "provider": self.provider,
            "request_id": self.request_id,
            "error_type": self.error_type.value,
            "error_message": self.error_message[:200],
            "action_taken": self.action_taken.value,
            "retry_count": self.retry_count,
            "timestamp": self.timestamp,
        }


@dataclass
class DegradationDecision:
    """Decision made by the degradation policy."""

    action: DegradationAction
    reason: str
    retry_delay_ms: int = 0


@dataclass
class DegradationReport:
    """Summary of degradation events during an orchestration."""

    failures: list[FailureEvent] = field(default_factory=list)
    total_retries: int = 0
    providers_skipped: list[str] = field(default_factory=list)

    def add_failure(self, event: FailureEvent) -> None:
        """Record a failure event."""
        self.failures.append(event)
        if event.action_taken == DegradationAction.RETRY:
            self.total_retries += 1
        elif event.action_taken == DegradationAction.SKIP:
            if event.provider not in self.providers_skipped:
                self.providers_skipped.append(event.provider)

    def to_summary(self) -> str:
        """Generate human-readable summary."""
        if not self.failures:
            return "No degradation events"

        lines = [f"Degradation: {len(self.failures)} failure(s)"]
        if self.providers_skipped:
            lines.append(f"  Skipped: {', '.join(self.providers_skipped)}")
        if self.total_retries:
            lines.append(f"  Retries: {self.total_retries}")
        return "\n".join(lines)

    def to_dict(self) -> dict[str, Any]:
        return {
            "failures": [f.to_dict() for f in self.failures],
            "total_retries": self.total_retries,
            "providers_skipped": self.providers_skipped,
        }


class DegradationPolicy:
    """Policy engine for handling provider failure responses.

    One policy instance tracks one orchestration run.
    """

    BASE_RETRY_DELAY_MS = 1000
    MAX_RETRY_DELAY_MS = 10000

    def __init__(
        self,
        max_retries: int = 0,
        base_delay_ms: int = BASE_RETRY_DELAY_MS,
        max_delay_ms: int = MAX_RETRY_DELAY_MS,
    ) -> None:
        """Initialize the degradation policy.

        Args:
            max_retries: Maximum retries per provider call
            base_delay_ms: First backoff delay; doubles on every retry
            max_delay_ms: Upper bound for the backoff delay
        """
        self._max_retries = max_retries
        self._base_delay_ms = base_delay_ms
        self._max_delay_ms = max_delay_ms
        self._report = DegradationReport()

    def get_report(self) -> DegradationReport:
        return self._report

    def decide(self, provider: str, response: TaskResponse, attempt: int) -> DegradationDecision:
        """Decide how to handle a failure response.

        Args:
            provider: Name of the failed provider
            response: The failure response
            attempt: Retries already made for this call

        Returns:
            DegradationDecision with action and details
        """
        error_type = response_error_type(response)
        decision = self._determine_action(provider, error_type, attempt)

        self._report.add_failure(
            FailureEvent(
                provider=provider,
                request_id=response.id,
                error_type=error_type,
                error_message=response.result.reasoning or "",
                action_taken=decision.action,
                retry_count=attempt,
            )
        )
        logger.warning(
            "Provider %s failed task %s: %s (action=%s)",
            provider,
            response.id,
            error_type.value,
            decision.action.value,
        )
        return decision

    def _determine_action(
        self, provider: str, error_type: ErrorType, attempt: int
    ) -> DegradationDecision:
        if error_type in NON_RETRYABLE_ERRORS:
            return DegradationDecision(
                action=DegradationAction.SKIP,
                reason=f"Non-retryable error ({error_type.value}) from {provider}",
            )

        if error_type in RETRYABLE_ERRORS and attempt < self._max_retries:
            delay = min(self._base_delay_ms * (2**attempt), self._max_delay_ms)
            return DegradationDecision(
                action=DegradationAction.RETRY,
                reason=f"Retryable error ({error_type.value}), attempt {attempt + 1}",
                retry_delay_ms=delay,
            )

        return DegradationDecision(
            action=DegradationAction.CONTINUE,
            reason=f"Keeping failure from {provider} ({error_type.value})",
        )


__all__ = [
    "DegradationAction",
    "DegradationDecision",
    "DegradationPolicy",
    "DegradationReport",
    "FailureEvent",
    "RETRYABLE_ERRORS",
]
