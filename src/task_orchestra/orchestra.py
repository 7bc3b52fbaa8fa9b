"""
Orchestra - Main facade class for Task Orchestra.

Provides a simple interface for running tasks across multiple providers.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Iterable, Sequence
from pathlib import Path
from typing import Any

from task_orchestra.config.limits import LimitChecker, StaticLimitChecker, UsageLimits
from task_orchestra.engine.health import HealthReport
from task_orchestra.engine.orchestrator import Orchestrator, OrchestratorConfig
from task_orchestra.errors import UnknownProviderError
from task_orchestra.protocol.types import (
    Approach,
    OrchestraConfig,
    OrchestrationResult,
    ProviderRecommendation,
    QualityLevel,
    SpeedPriority,
    StrategyAssessment,
    TaskConstraints,
    TaskRequest,
    TaskRequirements,
    TaskType,
)
from task_orchestra.providers import register_builtin_factories
from task_orchestra.providers.registry import AdapterRegistry
from task_orchestra.storage.memory import MemoryStore, SQLiteMemoryStore

logger = logging.getLogger(__name__)

VALIDATION_STRATEGY = "validation"


def build_request(
    description: str,
    task_type: TaskType | str = TaskType.ANALYSIS,
    *,
    quality: QualityLevel | str = QualityLevel.PRODUCTION,
    speed: SpeedPriority | str = SpeedPriority.BALANCED,
    strategy: str | None = None,
    context: str | None = None,
    timeout_ms: int = 300_000,
    model: str | None = None,
    cost_ceiling: float | None = None,
    memory_namespace: str | None = None,
    session_id: str | None = None,
    store_result: bool = True,
    task_id: str | None = None,
) -> TaskRequest:
    """Build a :class:`TaskRequest` with requirement defaults filled in.

    Validation-oriented runs get low creativity; enterprise quality gets higher
    accuracy and a larger token allowance.
    """

    quality = QualityLevel(quality)
    enterprise = quality == QualityLevel.ENTERPRISE
    fields: dict[str, Any] = {}
    if task_id:
        fields["id"] = task_id

    return TaskRequest(
        type=TaskType(task_type),
        description=description,
        context=context,
        requirements=TaskRequirements(
            quality=quality,
            speed=SpeedPriority(speed),
            creativity=0.3 if strategy == VALIDATION_STRATEGY else 0.6,
            accuracy=0.95 if enterprise else 0.85,
        ),
        constraints=TaskConstraints(
            max_tokens=8192 if enterprise else 4096,
            timeout_ms=timeout_ms,
            cost_ceiling=cost_ceiling,
            model=model,
        ),
        metadata={
            "memoryNamespace": memory_namespace or "default",
            "sessionId": session_id or f"session_{int(time.time() * 1000)}",
            "storeResult": store_result,
        },
        **fields,
    )


def default_assessment(providers: Sequence[str]) -> StrategyAssessment:
    """Plan used when the caller brings no assessment: one provider or all in parallel."""

    approach = Approach.SINGLE_PROVIDER if len(providers) <= 1 else Approach.PARALLEL
    return StrategyAssessment(
        approach=approach.value,
        recommendations=[ProviderRecommendation(provider=name) for name in providers],
    )


class Orchestra:
    """Multi-provider task orchestration.

    Owns an adapter registry, creates adapters for the configured providers on
    first use and routes tasks through the orchestration engine.

    Example:
        ```python
        async with Orchestra(OrchestraConfig(providers=["claude", "codex"])) as orchestra:
            result = await orchestra.run("Review this diff for race conditions")
            print(result.consensus.decision.content)
        ```
    """

    def __init__(
        self,
        config: OrchestraConfig | None = None,
        registry: AdapterRegistry | None = None,
        memory_store: MemoryStore | None = None,
        limit_checker: LimitChecker | None = None,
    ) -> None:
        """Initialize the Orchestra.

        Args:
            config: Facade configuration. Defaults to OrchestraConfig().
            registry: Registry to use. A private registry with the built-in
                factories is created when omitted.
            memory_store: Store for results of tasks that ask for it.
            limit_checker: Pre-dispatch usage limit gate. When omitted and
                ``config.enforce_limits`` is set, limits come from ``ORCHESTRA_*``
                environment variables.
        """
        self.config = config or OrchestraConfig()
        self._owns_registry = registry is None
        if registry is None:
            registry = AdapterRegistry(discover=True)
            register_builtin_factories(registry)
        self._registry = registry

        if memory_store is None and self.config.enable_memory:
            memory_store = SQLiteMemoryStore(
                Path(self.config.memory_db_path) if self.config.memory_db_path else None
            )
        if limit_checker is None and self.config.enforce_limits:
            limit_checker = StaticLimitChecker(UsageLimits.from_env())

        default_provider = self.config.default_provider or (
            self.config.providers[0] if self.config.providers else "claude"
        )
        self._orchestrator = Orchestrator(
            registry=self._registry,
            config=OrchestratorConfig(
                default_provider=default_provider,
                default_timeout_ms=self.config.timeout_ms,
                consensus_mode=self.config.consensus_mode,
                fault_tolerance=self.config.fault_tolerance,
                auto_validate=self.config.auto_validate,
                coordinator_provider=self.config.coordinator_provider,
                max_retries=self.config.max_retries,
                enable_health_check=self.config.enable_health_check,
                memory_namespace=self.config.memory_namespace,
            ),
            memory_store=memory_store,
            limit_checker=limit_checker,
        )
        self.provider_errors: dict[str, str] = {}
        self._started = False

    @property
    def providers(self) -> list[str]:
        """Get the list of configured providers."""
        return list(self.config.providers)

    @property
    def orchestrator(self) -> Orchestrator:
        return self._orchestrator

    @property
    def registry(self) -> AdapterRegistry:
        return self._registry

    async def start(self) -> None:
        """Create adapters for every configured provider that has none yet."""

        if self._started:
            return
        await self._ensure_adapters(self.config.providers)
        self._started = True

    async def _ensure_adapters(self, names: Iterable[str]) -> None:
        for name in names:
            if self._registry.get_adapter(name) is not None or name in self.provider_errors:
                continue
            settings = {
                "timeout_ms": self.config.timeout_ms,
                **self.config.provider_settings.get(name.strip().lower(), {}),
            }
            try:
                adapter = await self._registry.create_adapter(name, settings)
            except UnknownProviderError as exc:
                logger.warning("Skipping provider %s: %s", name, exc)
                self.provider_errors[name] = str(exc)
                continue
            if not adapter.is_ready():
                self.provider_errors[name] = "; ".join(adapter.health.issues) or "not ready"

    def _named_providers(self, assessment: StrategyAssessment) -> list[str]:
        """Providers an assessment can dispatch to, beyond the configured ones."""

        names = [rec.provider for rec in assessment.recommendations]
        names += [phase.provider for phase in assessment.phases]
        if not assessment.recommendations:
            names.append(self._orchestrator.config.default_provider)
        if assessment.approach.strip().lower() == Approach.HIERARCHICAL.value:
            names += [assessment.coordinator, self.config.coordinator_provider]
        elif assessment.coordinator:
            names.append(assessment.coordinator)
        return [name for name in dict.fromkeys(names) if name]

    async def run(
        self,
        task: TaskRequest | str,
        assessment: StrategyAssessment | None = None,
        **request_options: Any,
    ) -> OrchestrationResult:
        """Run a task.

        Args:
            task: A prepared request, or a description passed to :func:`build_request`
                together with *request_options*.
            assessment: Dispatch plan. Defaults to the configured providers,
                single-provider for one and parallel for several.

        Returns:
            OrchestrationResult with every provider response.
        """
        await self.start()
        if isinstance(task, str):
            request_options.setdefault("timeout_ms", self.config.timeout_ms)
            request_options.setdefault("memory_namespace", self.config.memory_namespace)
            task = build_request(task, **request_options)
        assessment = assessment or default_assessment(self.providers)
        await self._ensure_adapters(self._named_providers(assessment))
        return await self._orchestrator.run(task, assessment)

    async def doctor(self) -> HealthReport:
        """Check provider availability."""
        await self.start()
        return await self._orchestrator.doctor()

    def stop(self) -> None:
        """Cancel in-flight calls of running tasks."""
        self._orchestrator.stop()

    async def close(self) -> None:
        """Shut down adapters created by this facade."""

        if self._owns_registry:
            await self._registry.shutdown()
        self._started = False

    async def __aenter__(self) -> Orchestra:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()


__all__ = ["Orchestra", "build_request", "default_assessment"]
