"""
Multi-agent provider adapter.

Presents a group of member adapters as a single provider. A task is fanned out
to the best-fitting members, the join completes once enough of them have
answered, and the answers are reconciled with the consensus manager.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import math
import time
from collections.abc import Sequence
from typing import Any, ClassVar

from task_orchestra.engine.consensus import DEFAULT_FAULT_TOLERANCE, ConsensusManager
from task_orchestra.engine.policy import fault_tolerant_pool_size, required_agent_count
from task_orchestra.errors import ErrorType, ProviderCallError
from task_orchestra.protocol.types import (
    ConsensusMode,
    TaskRequest,
    TaskRequirements,
    TaskResponse,
    TaskStatus,
    TaskType,
)
from task_orchestra.providers.base import AgentCapability, DoctorResult, ProviderAdapter

logger = logging.getLogger(__name__)

DEFAULT_RESPONSE_THRESHOLD = 0.6
SUCCESS_CONFIDENCE = 0.5


class MultiAgentAdapter(ProviderAdapter):
    """Adapter that delegates each task to several member adapters.

    Members are owned by this adapter: they are initialized in :meth:`initialize`
    and shut down with it.
    """

    name: ClassVar[str] = "multi-agent"

    def __init__(
        self,
        provider_name: str | None = None,
        members: Sequence[ProviderAdapter] = (),
        consensus_mode: ConsensusMode = ConsensusMode.MAJORITY,
        fault_tolerance: float = DEFAULT_FAULT_TOLERANCE,
        response_threshold: float = DEFAULT_RESPONSE_THRESHOLD,
    ) -> None:
        super().__init__(provider_name)
        if not 0.0 < response_threshold <= 1.0:
            raise ValueError("response_threshold must be in (0, 1].")
        self._members = list(members)
        self._consensus_mode = ConsensusMode(consensus_mode)
        self._response_threshold = response_threshold
        self._consensus = ConsensusManager(fault_tolerance=fault_tolerance)

    @property
    def members(self) -> list[ProviderAdapter]:
        return list(self._members)

    async def _setup(self, config: dict[str, Any]) -> None:
        if "consensus_mode" in config:
            self._consensus_mode = ConsensusMode(config["consensus_mode"])
        if "response_threshold" in config:
            self._response_threshold = float(config["response_threshold"])
        if "fault_tolerance" in config:
            self._consensus = ConsensusManager(fault_tolerance=float(config["fault_tolerance"]))

        if not self._members:
            raise ProviderCallError("Multi-agent adapter has no member adapters.")

        member_config = dict(config.get("member_config") or {})
        pending = [m for m in self._members if not m.initialized]
        if pending:
            await asyncio.gather(*(m.initialize(member_config) for m in pending))

        ready = [m for m in self._members if m.is_ready()]
        if not ready:
            raise ProviderCallError("No member adapter initialized successfully.")
        logger.debug(
            "Multi-agent adapter %s ready with %d/%d members",
            self.provider_name,
            len(ready),
            len(self._members),
        )

    def get_capabilities(self) -> list[AgentCapability]:
        seen: dict[str, AgentCapability] = {}
        for member in self._members:
            for capability in member.get_capabilities():
                seen.setdefault(capability.name, capability)
        return list(seen.values())

    def can_handle_task(
        self, task_type: TaskType, requirements: TaskRequirements | None = None
    ) -> bool:
        return any(
            m.is_ready() and m.can_handle_task(task_type, requirements) for m in self._members
        )

    def select_agents(self, request: TaskRequest) -> list[ProviderAdapter]:
        """Pick the members that should work on *request*, best fit first."""

        candidates = [
            m
            for m in self._members
            if m.is_ready() and m.can_handle_task(request.type, request.requirements)
        ]
        ranked = sorted(
            candidates,
            key=lambda m: m.get_optimal_agent(
                request.type, request.requirements, request.constraints
            ).confidence,
            reverse=True,
        )

        count = min(required_agent_count(request), len(ranked))
        if self._consensus_mode == ConsensusMode.BYZANTINE:
            count = min(
                fault_tolerant_pool_size(count, self._consensus.fault_tolerance), len(ranked)
            )
        return ranked[:count]

    async def _execute(self, request: TaskRequest) -> TaskResponse:
        start = time.monotonic()
        agents = self.select_agents(request)
        if not agents:
            raise ProviderCallError(
                f"No member agent can handle {request.type.value} tasks.",
                ErrorType.MODEL_UNAVAILABLE,
            )

        if len(agents) == 1:
            response = await agents[0].execute_task(request)
            return response.model_copy(update={"provider": self.provider_info()})

        responses = await self._gather_responses(agents, request)
        needed = math.ceil(len(agents) * self._response_threshold)
        if len(responses) < needed:
            raise ProviderCallError(
                f"Insufficient agent responses: {len(responses)}/{len(agents)} "
                f"(need {needed})",
                ErrorType.TIMEOUT,
            )

        consensus = self._consensus.reach(responses, self._consensus_mode)
        if not any(r.status == TaskStatus.SUCCESS for r in responses):
            status = TaskStatus.FAILURE
        elif consensus.confidence > SUCCESS_CONFIDENCE:
            status = TaskStatus.SUCCESS
        else:
            status = TaskStatus.PARTIAL

        return self.build_response(
            request,
            consensus.decision.content,
            confidence=consensus.confidence,
            status=status,
            reasoning=(
                f"{self._consensus_mode.value} consensus across {len(responses)} agents: "
                f"{consensus.decision.reasoning or 'no reasoning given'}"
            ),
            alternatives=[r.result.content for r in responses],
            metadata={
                "agents": [r.provider.name for r in responses],
                "dissenting_providers": consensus.dissenting_providers,
                "fault_count": consensus.fault_count,
                "consensus_mode": self._consensus_mode.value,
            },
            tokens_used=sum(r.performance.tokens_used for r in responses),
            cost=sum(r.performance.cost for r in responses),
            model=", ".join(dict.fromkeys(r.performance.model_used for r in responses)),
            duration_ms=self._elapsed_ms(start),
        )

    async def _gather_responses(
        self, agents: Sequence[ProviderAdapter], request: TaskRequest
    ) -> list[TaskResponse]:
        """Run *agents* concurrently until the response threshold or the timeout."""

        needed = math.ceil(len(agents) * self._response_threshold)
        timeout = self.timeout_seconds(request)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout

        pending = {asyncio.create_task(agent.execute_task(request)) for agent in agents}
        responses: list[TaskResponse] = []
        try:
            while pending and len(responses) < needed:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    break
                done, pending = await asyncio.wait(
                    pending, timeout=remaining, return_when=asyncio.FIRST_COMPLETED
                )
                for task in done:
                    responses.append(task.result())
        finally:
            for task in pending:
                task.cancel()
            for task in pending:
                with contextlib.suppress(asyncio.CancelledError):
                    await task

        if pending:
            logger.debug(
                "Multi-agent adapter %s cancelled %d outstanding agent call(s)",
                self.provider_name,
                len(pending),
            )
        return responses

    async def _probe(self) -> DoctorResult:
        start = time.monotonic()
        healths = await asyncio.gather(
            *(m.check_health() for m in self._members), return_exceptions=True
        )
        usable = 0
        details: dict[str, Any] = {}
        for member, health in zip(self._members, healths, strict=True):
            if isinstance(health, BaseException):
                details[member.provider_name] = f"error: {health}"
                continue
            details[member.provider_name] = health.status.value
            if member.is_ready():
                usable += 1
        return DoctorResult(
            ok=usable > 0,
            message=f"{usable}/{len(self._members)} member agents usable",
            latency_ms=self._elapsed_ms(start),
            details=details,
        )

    async def _teardown(self) -> None:
        results = await asyncio.gather(
            *(m.shutdown() for m in self._members), return_exceptions=True
        )
        for member, result in zip(self._members, results, strict=True):
            if isinstance(result, BaseException):
                logger.warning("Member %s failed to shut down: %s", member.provider_name, result)


__all__ = ["DEFAULT_RESPONSE_THRESHOLD", "MultiAgentAdapter"]
