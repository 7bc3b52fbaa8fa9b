"""Task orchestration engine for multi-provider workflows.

This module implements a provider-agnostic, async-first orchestrator that turns
one :class:`~task_orchestra.protocol.types.TaskRequest` plus a
:class:`~task_orchestra.protocol.types.StrategyAssessment` into an
:class:`~task_orchestra.protocol.types.OrchestrationResult`:

1) Resolve the approach and plan which adapters take part
2) Check usage limits for the plan
3) Dispatch under the chosen strategy (single, parallel, sequential,
   hierarchical), every call bounded by a timeout and the session stop signal
4) Reconcile parallel answers with the consensus manager, optionally validate
   them, and hand request/response pairs to the memory store

The orchestrator never talks to a provider directly: all provider interaction
goes through :class:`task_orchestra.providers.base.ProviderAdapter`, which
always answers with a response. Only configuration and limit errors escape
:meth:`Orchestrator.run`.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from task_orchestra.config.limits import LimitChecker
from task_orchestra.engine.consensus import ConsensusManager, cross_provider_validation
from task_orchestra.engine.degradation import DegradationAction, DegradationPolicy
from task_orchestra.engine.health import HealthChecker, HealthReport, preflight_check
from task_orchestra.engine.policy import parallel_fanout
from task_orchestra.errors import ErrorType, ProviderUnavailableError, UnsupportedStrategyError
from task_orchestra.protocol.types import (
    Approach,
    ConsensusMode,
    ConsensusResult,
    ExecutionPhase,
    OrchestrationMetadata,
    OrchestrationResult,
    PerformanceSummary,
    StrategyAssessment,
    TaskRequest,
    TaskResponse,
    TaskStatus,
)
from task_orchestra.providers.base import ProviderAdapter, failure_response
from task_orchestra.providers.registry import AdapterRegistry, get_registry
from task_orchestra.storage.memory import MemoryStore

logger = logging.getLogger(__name__)

HIERARCHICAL_COORDINATED = "coordinated"
HIERARCHICAL_DEGRADED = "degraded-parallel"

_APPROACH_ALIASES = {"multi-provider": Approach.PARALLEL.value}

Exchange = tuple[TaskRequest, TaskResponse]


class OrchestratorConfig(BaseModel):
    """Configuration for the orchestration engine."""

    model_config = ConfigDict(extra="allow")

    default_provider: str = Field(
        default="claude", description="Used when an assessment has no recommendations."
    )
    default_timeout_ms: int = Field(
        default=300_000, ge=1, description="Per-call timeout when a task sets none."
    )
    session_timeout_ms: int | None = Field(
        default=None, ge=1, description="Upper bound for a whole orchestration run."
    )
    consensus_mode: ConsensusMode = Field(default=ConsensusMode.MAJORITY)
    fault_tolerance: float = Field(default=0.33, ge=0.0, lt=1.0)
    auto_validate: bool = Field(
        default=False, description="Run cross-provider validation over multiple results."
    )
    coordinator_provider: str | None = Field(
        default=None, description="Coordinator for hierarchical dispatch."
    )
    max_retries: int = Field(default=0, ge=0, le=5, description="Retries per provider call.")
    retry_base_delay_ms: int = Field(default=DegradationPolicy.BASE_RETRY_DELAY_MS, ge=0)
    enable_health_check: bool = Field(
        default=False, description="Enable preflight health checks before dispatch."
    )
    health_check_timeout: float = Field(default=HealthChecker.DEFAULT_TIMEOUT, gt=0)
    memory_namespace: str = Field(default="tasks", min_length=1)


def resolve_approach(approach: str | Approach) -> Approach:
    """Map a raw assessment approach onto a supported strategy.

    Raises:
        UnsupportedStrategyError: The approach is not one the engine implements.
    """

    raw = approach.value if isinstance(approach, Approach) else str(approach)
    value = raw.strip().lower()
    value = _APPROACH_ALIASES.get(value, value)
    try:
        return Approach(value)
    except ValueError:
        raise UnsupportedStrategyError(raw) from None


def _key(name: str) -> str:
    return name.strip().lower()


@dataclass
class _Plan:
    """Which adapters an orchestration will call, decided before dispatch."""

    approach: Approach
    workers: list[tuple[str, ProviderAdapter]] = field(default_factory=list)
    phases: list[tuple[ExecutionPhase, ProviderAdapter | None]] = field(default_factory=list)
    coordinator: tuple[str, ProviderAdapter] | None = None
    hierarchical_mode: str | None = None
    skipped: list[str] = field(default_factory=list)

    def fanouts(self) -> list[list[str]]:
        """Groups of providers that are called at the same time."""

        groups: list[list[str]] = []
        if self.coordinator is not None:
            groups.append([self.coordinator[0]])
        if self.workers:
            groups.append([name for name, _ in self.workers])
        groups.extend([phase.provider] for phase, adapter in self.phases if adapter is not None)
        return groups


@dataclass(eq=False)
class _RunContext:
    """Cancellation scope shared by every call of one run."""

    stop: asyncio.Event
    deadline: float | None
    policy: DegradationPolicy


class Orchestrator:
    """Dispatches tasks to provider adapters according to a strategy assessment."""

    # How long a cancelled adapter call may take to unwind
    CANCEL_GRACE_SECONDS = 1.0

    def __init__(
        self,
        registry: AdapterRegistry | None = None,
        config: OrchestratorConfig | None = None,
        memory_store: MemoryStore | None = None,
        limit_checker: LimitChecker | None = None,
        consensus: ConsensusManager | None = None,
    ) -> None:
        self._registry = registry if registry is not None else get_registry()
        self._config = config or OrchestratorConfig()
        self._memory_store = memory_store
        self._limit_checker = limit_checker
        self._consensus = consensus or ConsensusManager(
            fault_tolerance=self._config.fault_tolerance
        )
        self._health_checker = HealthChecker(timeout=self._config.health_check_timeout)
        self._active: set[_RunContext] = set()

    @property
    def config(self) -> OrchestratorConfig:
        return self._config

    @property
    def registry(self) -> AdapterRegistry:
        return self._registry

    async def run(
        self, request: TaskRequest, assessment: StrategyAssessment | None = None
    ) -> OrchestrationResult:
        """Execute *request* under *assessment* and return the terminal result.

        Raises:
            UnsupportedStrategyError: The assessment's approach is not supported.
            ProviderUnavailableError: Single-provider dispatch names an absent adapter.
            LimitExceededError: The limit checker refused the plan.
        """

        assessment = assessment or StrategyAssessment()
        approach = resolve_approach(assessment.approach)
        start_time = time.monotonic()

        adapters = await self._registry.snapshot()
        health_report: HealthReport | None = None
        if self._config.enable_health_check and adapters:
            adapters, health_report = await preflight_check(
                adapters, skip_on_failure=True, checker=self._health_checker
            )
            logger.info(
                "Health check: %d/%d providers usable",
                health_report.usable_count,
                health_report.total_count,
            )

        plan = self._plan(approach, request, assessment, adapters)
        if self._limit_checker is not None:
            for group in plan.fanouts():
                self._limit_checker.check(request, group)

        ctx = self._open_context()
        try:
            exchanges, consensus = await self._dispatch(plan, request, ctx)
        finally:
            self._active.discard(ctx)

        responses = [response for _, response in exchanges]
        validation = None
        if self._config.auto_validate and len(responses) > 1:
            validation = cross_provider_validation(responses)

        memory_used = await self._remember(request, exchanges)
        report = ctx.policy.get_report()

        phase_names = [phase.name for phase, _ in plan.phases] or [
            phase.name for phase in assessment.phases
        ]
        result = OrchestrationResult(
            task_id=request.id,
            success=any(r.status == TaskStatus.SUCCESS for r in responses),
            results=responses,
            strategy_used=approach.value,
            performance=self._summarize(responses, start_time),
            validation=validation,
            consensus=consensus,
            metadata=OrchestrationMetadata(
                phase_names=phase_names,
                memory_used=memory_used,
                hierarchical_mode=plan.hierarchical_mode,
                skipped_providers=plan.skipped,
                health_report=health_report.to_dict() if health_report else None,
                degradation=report.to_dict() if report.failures else None,
            ),
        )
        logger.info(
            "Task %s finished: strategy=%s success=%s results=%d",
            request.id,
            approach.value,
            result.success,
            len(responses),
        )
        return result

    def stop(self) -> None:
        """Cancel every in-flight call of every active run.

        Cancelled calls still produce failure responses, so running
        orchestrations complete with whatever they collected.
        """

        for ctx in list(self._active):
            ctx.stop.set()

    async def doctor(self) -> HealthReport:
        """Probe every live adapter in the registry."""

        adapters = await self._registry.snapshot()
        self._health_checker.clear_cache()
        return await self._health_checker.check_all(adapters)

    # ------------------------------------------------------------------
    # Planning
    # ------------------------------------------------------------------

    def _plan(
        self,
        approach: Approach,
        request: TaskRequest,
        assessment: StrategyAssessment,
        adapters: Mapping[str, ProviderAdapter],
    ) -> _Plan:
        plan = _Plan(approach=approach)

        if approach == Approach.SINGLE_PROVIDER:
            name = (
                assessment.recommendations[0].provider
                if assessment.recommendations
                else self._config.default_provider
            )
            adapter = adapters.get(_key(name))
            if adapter is None:
                raise ProviderUnavailableError(name)
            plan.workers = [(name, adapter)]

        elif approach == Approach.PARALLEL:
            plan.workers = self._select_parallel(request, assessment, adapters, plan.skipped)

        elif approach == Approach.SEQUENTIAL:
            phases = list(assessment.phases)
            if not phases:
                provider = (
                    assessment.recommendations[0].provider
                    if assessment.recommendations
                    else self._config.default_provider
                )
                phases = [ExecutionPhase(name="main", provider=provider)]
            for phase in phases:
                adapter = adapters.get(_key(phase.provider))
                if adapter is None:
                    logger.warning(
                        "Skipping phase %s: provider %s is not available", phase.name, phase.provider
                    )
                    plan.skipped.append(phase.provider)
                plan.phases.append((phase, adapter))

        else:
            coordinator = assessment.coordinator or self._config.coordinator_provider
            adapter = adapters.get(_key(coordinator)) if coordinator else None
            if coordinator and adapter is not None and adapter.is_ready():
                plan.hierarchical_mode = HIERARCHICAL_COORDINATED
                plan.coordinator = (coordinator, adapter)
                plan.workers = self._select_parallel(
                    request, assessment, adapters, plan.skipped, exclude={_key(coordinator)}
                )
            else:
                if coordinator:
                    plan.skipped.append(coordinator)
                logger.info(
                    "No usable coordinator for task %s; running %s",
                    request.id,
                    HIERARCHICAL_DEGRADED,
                )
                plan.hierarchical_mode = HIERARCHICAL_DEGRADED
                plan.workers = self._select_parallel(request, assessment, adapters, plan.skipped)

        return plan

    def _select_parallel(
        self,
        request: TaskRequest,
        assessment: StrategyAssessment,
        adapters: Mapping[str, ProviderAdapter],
        skipped: list[str],
        exclude: set[str] | None = None,
    ) -> list[tuple[str, ProviderAdapter]]:
        """Top recommended providers for a fan-out; absent ones are skipped, not replaced."""

        exclude = exclude or set()
        names: list[str] = []
        for recommendation in assessment.recommendations:
            key = _key(recommendation.provider)
            if key not in exclude and key not in {_key(n) for n in names}:
                names.append(recommendation.provider)
        if not names and _key(self._config.default_provider) not in exclude:
            names = [self._config.default_provider]

        count = parallel_fanout(
            request,
            len(names),
            fault_tolerant=self._config.consensus_mode == ConsensusMode.BYZANTINE,
            fault_tolerance=self._config.fault_tolerance,
        )

        selected: list[tuple[str, ProviderAdapter]] = []
        for name in names[:count]:
            adapter = adapters.get(_key(name))
            if adapter is None:
                logger.warning("Provider %s is not available; skipping", name)
                skipped.append(name)
            elif not adapter.is_ready() or not adapter.can_handle_task(
                request.type, request.requirements
            ):
                logger.info("Provider %s cannot take task %s; skipping", name, request.id)
                skipped.append(name)
            else:
                selected.append((name, adapter))
        return selected

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def _open_context(self) -> _RunContext:
        deadline = None
        if self._config.session_timeout_ms is not None:
            loop = asyncio.get_running_loop()
            deadline = loop.time() + self._config.session_timeout_ms / 1000.0
        ctx = _RunContext(
            stop=asyncio.Event(),
            deadline=deadline,
            policy=DegradationPolicy(
                max_retries=self._config.max_retries,
                base_delay_ms=self._config.retry_base_delay_ms,
            ),
        )
        self._active.add(ctx)
        return ctx

    async def _dispatch(
        self, plan: _Plan, request: TaskRequest, ctx: _RunContext
    ) -> tuple[list[Exchange], ConsensusResult | None]:
        if plan.approach == Approach.SEQUENTIAL:
            return await self._run_sequential(plan, request, ctx), None

        exchanges: list[Exchange] = []
        worker_request = request
        if plan.coordinator is not None:
            coordinator_exchange = await self._run_coordinator(plan.coordinator, request, ctx)
            exchanges.append(coordinator_exchange)
            worker_request = self._with_coordinator_context(request, coordinator_exchange[1])

        worker_exchanges = await self._fan_out(ctx, plan.workers, worker_request)
        exchanges.extend(worker_exchanges)

        consensus = None
        if len(worker_exchanges) >= 2:
            consensus = self._consensus.reach(
                [response for _, response in worker_exchanges], self._config.consensus_mode
            )
        return exchanges, consensus

    async def _fan_out(
        self,
        ctx: _RunContext,
        workers: Sequence[tuple[str, ProviderAdapter]],
        request: TaskRequest,
    ) -> list[Exchange]:
        """Call every worker concurrently; results come back in completion order."""

        if not workers:
            return []
        if len(workers) == 1:
            name, adapter = workers[0]
            return [(request, await self._call(ctx, name, adapter, request))]

        tasks = [
            asyncio.create_task(self._call(ctx, name, adapter, request))
            for name, adapter in workers
        ]
        exchanges: list[Exchange] = []
        try:
            for next_done in asyncio.as_completed(tasks):
                exchanges.append((request, await next_done))
        except BaseException:
            for task in tasks:
                task.cancel()
            raise
        return exchanges

    async def _run_sequential(
        self, plan: _Plan, request: TaskRequest, ctx: _RunContext
    ) -> list[Exchange]:
        exchanges: list[Exchange] = []
        context_parts = [request.context] if request.context else []

        for phase, adapter in plan.phases:
            if adapter is None:
                continue
            phase_request = request.model_copy(
                update={
                    "id": f"{request.id}_phase_{phase.name}",
                    "description": phase.description or request.description,
                    "context": "\n\n".join(context_parts) or None,
                }
            )
            response = await self._call(ctx, phase.provider, adapter, phase_request)
            exchanges.append((phase_request, response))

            if response.status == TaskStatus.SUCCESS:
                context_parts.append(f"{phase.name} Result: {response.result.content}")
            else:
                logger.warning(
                    "Phase %s of task %s failed; continuing without its output",
                    phase.name,
                    request.id,
                )
        return exchanges

    async def _run_coordinator(
        self, coordinator: tuple[str, ProviderAdapter], request: TaskRequest, ctx: _RunContext
    ) -> Exchange:
        name, adapter = coordinator
        coordinator_request = request.model_copy(update={"id": f"{request.id}_coordinator"})
        response = await self._call(ctx, name, adapter, coordinator_request)
        return coordinator_request, response

    @staticmethod
    def _with_coordinator_context(request: TaskRequest, response: TaskResponse) -> TaskRequest:
        if response.status != TaskStatus.SUCCESS or not response.result.content:
            return request
        parts = [request.context] if request.context else []
        parts.append(f"Coordinator Plan: {response.result.content}")
        return request.model_copy(update={"context": "\n\n".join(parts)})

    async def _call(
        self,
        ctx: _RunContext,
        name: str,
        adapter: ProviderAdapter,
        request: TaskRequest,
    ) -> TaskResponse:
        """One logical provider call, retried as the degradation policy allows."""

        attempt = 0
        while True:
            response = await self._call_once(ctx, adapter, request)
            if response.status != TaskStatus.FAILURE:
                return response

            decision = ctx.policy.decide(name, response, attempt)
            if decision.action != DegradationAction.RETRY or ctx.stop.is_set():
                return response

            attempt += 1
            logger.info(
                "Retrying %s for task %s in %d ms (attempt %d)",
                name,
                request.id,
                decision.retry_delay_ms,
                attempt,
            )
            # Backoff ends early on stop
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(ctx.stop.wait(), timeout=decision.retry_delay_ms / 1000.0)

    async def _call_once(
        self, ctx: _RunContext, adapter: ProviderAdapter, request: TaskRequest
    ) -> TaskResponse:
        """Race the adapter against the call timeout and the stop signal."""

        start = time.monotonic()
        timeout = self._call_timeout(ctx, request)
        if ctx.stop.is_set():
            return self._interrupted(adapter, request, start, stopped=True)
        if timeout <= 0:
            return self._interrupted(adapter, request, start, stopped=False)

        call = asyncio.create_task(adapter.execute_task(request))
        stopper = asyncio.create_task(ctx.stop.wait())
        try:
            done, _ = await asyncio.wait(
                {call, stopper}, timeout=timeout, return_when=asyncio.FIRST_COMPLETED
            )
        except asyncio.CancelledError:
            call.cancel()
            raise
        finally:
            stopper.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await stopper

        if call in done:
            return call.result()

        call.cancel()
        await asyncio.wait({call}, timeout=self.CANCEL_GRACE_SECONDS)
        if call.done() and not call.cancelled():
            # Finished while being cancelled
            return call.result()
        if not call.done():
            logger.debug(
                "Provider %s did not unwind task %s within %.1fs",
                adapter.provider_name,
                request.id,
                self.CANCEL_GRACE_SECONDS,
            )
        return self._interrupted(adapter, request, start, stopped=ctx.stop.is_set())

    def _call_timeout(self, ctx: _RunContext, request: TaskRequest) -> float:
        timeout_ms = self._config.default_timeout_ms
        if request.constraints is not None and request.constraints.timeout_ms:
            timeout_ms = request.constraints.timeout_ms
        timeout = timeout_ms / 1000.0
        if ctx.deadline is not None:
            timeout = min(timeout, ctx.deadline - asyncio.get_running_loop().time())
        return timeout

    def _interrupted(
        self, adapter: ProviderAdapter, request: TaskRequest, start: float, *, stopped: bool
    ) -> TaskResponse:
        duration_ms = (time.monotonic() - start) * 1000
        if stopped:
            message = "Call cancelled: orchestration stopped"
            error_type, error_name = ErrorType.CANCELLED, "CancelledError"
        else:
            message = f"Call timed out after {int(duration_ms)} ms"
            error_type, error_name = ErrorType.TIMEOUT, "TimeoutError"
        logger.warning("Provider %s, task %s: %s", adapter.provider_name, request.id, message)
        return failure_response(
            request,
            adapter.provider_info(),
            message,
            error_type=error_type,
            duration_ms=duration_ms,
            error_name=error_name,
        )

    # ------------------------------------------------------------------
    # Result assembly
    # ------------------------------------------------------------------

    @staticmethod
    def _summarize(responses: Sequence[TaskResponse], start_time: float) -> PerformanceSummary:
        providers = list(dict.fromkeys(r.provider.name for r in responses))
        return PerformanceSummary(
            total_duration_ms=int((time.monotonic() - start_time) * 1000),
            providers_used=providers,
            tokens_used=sum(r.performance.tokens_used for r in responses),
            total_cost=sum(r.performance.cost for r in responses),
        )

    async def _remember(self, request: TaskRequest, exchanges: Sequence[Exchange]) -> bool:
        """Hand request/response pairs to the memory store when the task asks for it."""

        metadata: dict[str, Any] = request.metadata
        if not (metadata.get("storeResult") or metadata.get("store_result")):
            return False
        if self._memory_store is None:
            logger.debug("Task %s asked to store its result but no memory store is set", request.id)
            return False

        namespace = str(
            metadata.get("memoryNamespace")
            or metadata.get("namespace")
            or self._config.memory_namespace
        )
        session_id = str(metadata.get("sessionId") or metadata.get("session_id") or request.id)

        stored = False
        for sent, response in exchanges:
            try:
                await self._memory_store.store(namespace, session_id, sent, response)
                stored = True
            except Exception as exc:
                logger.debug("Failed to store result for task %s: %s", sent.id, exc)
        return stored


__all__ = [
    "HIERARCHICAL_COORDINATED",
    "HIERARCHICAL_DEGRADED",
    "Orchestrator",
    "OrchestratorConfig",
    "resolve_approach",
]
