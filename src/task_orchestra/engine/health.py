"""
Adapter health checks for Task Orchestra.

Implements preflight health checking of adapters before dispatch. Uses each
adapter's own ``check_health()`` and the shared error classification.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from task_orchestra.errors import NON_RETRYABLE_ERRORS, ErrorType, classify_error
from task_orchestra.protocol.types import HealthStatus
from task_orchestra.providers.base import ProviderAdapter

logger = logging.getLogger(__name__)


@dataclass
class HealthEntry:
    """Health status for a single provider."""

    provider: str
    status: HealthStatus
    message: str = ""
    latency_ms: float | None = None
    error_type: ErrorType | None = None
    checked_at: float = field(default_factory=time.monotonic)

    def is_usable(self) -> bool:
        """Check if provider is usable for dispatch."""
        return self.status in (HealthStatus.HEALTHY, HealthStatus.DEGRADED)


@dataclass
class HealthReport:
    """Aggregated health report for all providers."""

    providers: list[HealthEntry]
    all_healthy: bool
    usable_count: int
    total_count: int
    checked_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    check_duration_ms: int = 0

    def get_usable_providers(self) -> list[str]:
        return [p.provider for p in self.providers if p.is_usable()]

    def get_unavailable_providers(self) -> list[str]:
        return [p.provider for p in self.providers if p.status == HealthStatus.UNAVAILABLE]

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "all_healthy": self.all_healthy,
            "usable_count": self.usable_count,
            "total_count": self.total_count,
            "checked_at": self.checked_at,
            "check_duration_ms": self.check_duration_ms,
            "providers": [
                {
                    "provider": p.provider,
                    "status": p.status.value,
                    "message": p.message,
                    "latency_ms": p.latency_ms,
                    "error_type": p.error_type.value if p.error_type else None,
                }
                for p in self.providers
            ],
        }


class HealthChecker:
    """Performs preflight health checks on adapters."""

    # Shorter than a task timeout
    DEFAULT_TIMEOUT = 10.0
    DEFAULT_CACHE_TTL = 60.0

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT,
        cache_ttl: float = DEFAULT_CACHE_TTL,
    ) -> None:
        """Initialize the health checker.

        Args:
            timeout: Timeout for individual health checks in seconds
            cache_ttl: Seconds a result is reused before probing again
        """
        self._timeout = timeout
        self._cache_ttl = cache_ttl
        self._cache: dict[str, HealthEntry] = {}

    async def check_adapter(self, name: str, adapter: ProviderAdapter) -> HealthEntry:
        """Check health of a single adapter.

        A probe that outlives the timeout is reported as degraded; the adapter's
        own health record is left to the adapter.
        """
        cached = self._cache.get(name)
        if cached and time.monotonic() - cached.checked_at < self._cache_ttl:
            return cached

        start = time.monotonic()
        try:
            health = await asyncio.wait_for(adapter.check_health(), timeout=self._timeout)
            latency_ms = health.response_time_ms or (time.monotonic() - start) * 1000
            message = "; ".join(health.issues) or "Healthy"
            error_type = (
                None if health.status == HealthStatus.HEALTHY else classify_error(message)
            )
            status = health.status
            if error_type in NON_RETRYABLE_ERRORS:
                status = HealthStatus.UNAVAILABLE
            entry = HealthEntry(
                provider=name,
                status=status,
                message=message,
                latency_ms=latency_ms,
                error_type=error_type,
            )
        except asyncio.TimeoutError:
            entry = HealthEntry(
                provider=name,
                status=HealthStatus.DEGRADED,
                message=f"Health check timed out after {self._timeout}s",
                latency_ms=(time.monotonic() - start) * 1000,
                error_type=ErrorType.TIMEOUT,
            )

        self._cache[name] = entry
        return entry

    async def check_all(self, adapters: dict[str, ProviderAdapter]) -> HealthReport:
        """Check health of all adapters concurrently.

        Args:
            adapters: Dict of provider_name -> adapter

        Returns:
            HealthReport with aggregated status
        """
        start = time.monotonic()

        results = await asyncio.gather(
            *(self.check_adapter(name, adapter) for name, adapter in adapters.items()),
            return_exceptions=True,
        )

        entries: list[HealthEntry] = []
        for name, result in zip(adapters.keys(), results, strict=True):
            if isinstance(result, BaseException):
                logger.debug("Health check for %s raised: %s", name, result)
                entries.append(
                    HealthEntry(
                        provider=name,
                        status=HealthStatus.UNAVAILABLE,
                        message=f"Check failed: {result}",
                        error_type=classify_error(str(result)),
                    )
                )
            else:
                entries.append(result)

        usable = [entry for entry in entries if entry.is_usable()]
        return HealthReport(
            providers=entries,
            all_healthy=all(entry.status == HealthStatus.HEALTHY for entry in entries),
            usable_count=len(usable),
            total_count=len(entries),
            check_duration_ms=int((time.monotonic() - start) * 1000),
        )

    def clear_cache(self) -> None:
        """Clear the health check cache."""
        self._cache.clear()


async def preflight_check(
    adapters: dict[str, ProviderAdapter],
    timeout: float = HealthChecker.DEFAULT_TIMEOUT,
    skip_on_failure: bool = True,
    checker: HealthChecker | None = None,
) -> tuple[dict[str, ProviderAdapter], HealthReport]:
    """Perform preflight health checks and return usable adapters.

    Args:
        adapters: Dict of provider_name -> adapter
        timeout: Timeout per check
        skip_on_failure: If True, exclude unusable adapters from the result
        checker: Checker to reuse, so its result cache carries across calls

    Returns:
        Tuple of (usable_adapters, health_report)
    """
    checker = checker or HealthChecker(timeout=timeout)
    report = await checker.check_all(adapters)

    if not skip_on_failure:
        return dict(adapters), report

    usable_names = set(report.get_usable_providers())
    return {name: a for name, a in adapters.items() if name in usable_names}, report


__all__ = [
    "HealthChecker",
    "HealthEntry",
    "HealthReport",
    "preflight_check",
]
