"""Pytest configuration and shared fixtures for task-orchestra tests."""

from __future__ import annotations

import asyncio
from collections.abc import Iterable
from typing import Any, ClassVar

import pytest

from task_orchestra.errors import ErrorType, ProviderCallError
from task_orchestra.protocol.types import (
    ProviderInfo,
    TaskRequest,
    TaskResponse,
    TaskResult,
    TaskStatus,
    TaskType,
)
from task_orchestra.providers.base import AgentCapability, DoctorResult, ProviderAdapter
from task_orchestra.providers.registry import AdapterRegistry


class ScriptedAdapter(ProviderAdapter):
    """Adapter double with scripted behaviour.

    Records every request it receives in :attr:`requests`.
    """

    name: ClassVar[str] = "scripted"
    default_model: ClassVar[str | None] = "scripted-model"
    capabilities: ClassVar[tuple[AgentCapability, ...]] = (
        AgentCapability(
            name="scripted-coder",
            domains=[TaskType.CODE, TaskType.ANALYSIS],
            tier="primary",
            complexity="medium",
        ),
    )

    def __init__(
        self,
        provider_name: str | None = None,
        content: str = "scripted answer",
        confidence: float = 0.9,
        status: TaskStatus = TaskStatus.SUCCESS,
        delay: float = 0.0,
        fail: str | None = None,
        error_type: ErrorType | None = None,
        task_types: Iterable[TaskType] | None = None,
        probe_ok: bool = True,
        setup_error: str | None = None,
        tokens: int = 10,
        cost: float = 0.001,
    ) -> None:
        super().__init__(provider_name)
        self.content = content
        self.confidence = confidence
        self.status = status
        self.delay = delay
        self.fail = fail
        self.error_type = error_type
        self.task_types = frozenset(task_types) if task_types is not None else None
        self.probe_ok = probe_ok
        self.setup_error = setup_error
        self.tokens = tokens
        self.cost = cost
        self.requests: list[TaskRequest] = []
        self.cancelled = 0
        self.teardowns = 0

    async def _setup(self, config: dict[str, Any]) -> None:
        if self.setup_error:
            raise ProviderCallError(self.setup_error)

    async def _execute(self, request: TaskRequest) -> TaskResponse:
        self.requests.append(request)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
        except asyncio.CancelledError:
            self.cancelled += 1
            raise
        if self.fail:
            raise ProviderCallError(self.fail, self.error_type)
        return self.build_response(
            request,
            f"{self.content} ({self.provider_name})" if self.content else "",
            confidence=self.confidence,
            status=self.status,
            reasoning=f"{self.provider_name} reasoning",
            tokens_used=self.tokens,
            cost=self.cost,
        )

    async def _probe(self) -> DoctorResult:
        if self.delay:
            await asyncio.sleep(self.delay)
        return DoctorResult(ok=self.probe_ok, message=None if self.probe_ok else "probe failed")

    async def _teardown(self) -> None:
        self.teardowns += 1

    def can_handle_task(self, task_type, requirements=None) -> bool:
        if self.task_types is None:
            return True
        return task_type in self.task_types

    @property
    def call_count(self) -> int:
        return len(self.requests)


def make_factory(**kwargs: Any):
    """Factory producing a ScriptedAdapter with fixed behaviour."""

    def _factory(name: str) -> ScriptedAdapter:
        return ScriptedAdapter(name, **kwargs)

    return _factory


async def add_adapter(registry: AdapterRegistry, name: str, **kwargs: Any) -> ScriptedAdapter:
    """Register a scripted factory under *name* and create its adapter."""

    registry.register_factory(name, make_factory(**kwargs))
    adapter = await registry.create_adapter(name)
    assert isinstance(adapter, ScriptedAdapter)
    return adapter


def make_response(
    provider: str,
    status: TaskStatus = TaskStatus.SUCCESS,
    confidence: float = 0.8,
    content: str | None = None,
    request_id: str = "task_test",
) -> TaskResponse:
    """Stand-alone response for consensus tests."""

    return TaskResponse(
        id=request_id,
        status=status,
        result=TaskResult(
            content=content if content is not None else f"answer from {provider}",
            confidence=confidence,
        ),
        provider=ProviderInfo(name=provider),
    )


@pytest.fixture
def registry() -> AdapterRegistry:
    """Create a fresh registry with no factories."""
    return AdapterRegistry()


@pytest.fixture
def sample_request() -> TaskRequest:
    """Create a sample task request."""
    return TaskRequest(
        id="task_sample",
        type=TaskType.CODE,
        description="Implement a rate limiter",
    )


@pytest.fixture
def scripted_adapter() -> ScriptedAdapter:
    """Create an uninitialized scripted adapter."""
    return ScriptedAdapter("scripted")


@pytest.fixture(autouse=True)
def _reset_singletons():
    """Reset module-level singletons between tests."""
    from task_orchestra.providers.registry import reset_registry
    from task_orchestra.storage.memory import reset_store

    reset_registry()
    reset_store()
    yield
    reset_registry()
    reset_store()
