"""Tests for the multi-agent adapter."""

from __future__ import annotations

import time

import pytest
from conftest import ScriptedAdapter

from task_orchestra import Orchestra, OrchestraConfig
from task_orchestra.errors import ErrorType
from task_orchestra.protocol.types import (
    ConsensusMode,
    HealthStatus,
    QualityLevel,
    TaskConstraints,
    TaskRequest,
    TaskRequirements,
    TaskStatus,
    TaskType,
)
from task_orchestra.providers import AdapterRegistry, MultiAgentAdapter
from task_orchestra.providers.base import response_error_type


def _enterprise_request(**kwargs) -> TaskRequest:
    return TaskRequest(
        type=TaskType.CODE,
        description="Design the billing system",
        requirements=TaskRequirements(quality=QualityLevel.ENTERPRISE),
        **kwargs,
    )


async def _team(*members: ScriptedAdapter, **kwargs) -> MultiAgentAdapter:
    adapter = MultiAgentAdapter("team", members=members, **kwargs)
    assert await adapter.initialize({})
    return adapter


class TestInitialization:
    """Tests for member setup."""

    @pytest.mark.asyncio
    async def test_initializes_members(self):
        a, b = ScriptedAdapter("a"), ScriptedAdapter("b")
        await _team(a, b)
        assert a.is_ready() and b.is_ready()

    @pytest.mark.asyncio
    async def test_without_members_fails(self):
        adapter = MultiAgentAdapter("team")
        assert await adapter.initialize({}) is False

    @pytest.mark.asyncio
    async def test_needs_one_ready_member(self):
        adapter = MultiAgentAdapter(
            "team", members=[ScriptedAdapter("a", setup_error="no key")]
        )
        assert await adapter.initialize({}) is False

    @pytest.mark.asyncio
    async def test_config_overrides(self):
        adapter = await _team(ScriptedAdapter("a"))
        await adapter.initialize({"consensus_mode": "raft"})
        assert adapter._consensus_mode == ConsensusMode.RAFT

    def test_rejects_bad_threshold(self):
        with pytest.raises(ValueError):
            MultiAgentAdapter("team", members=[ScriptedAdapter("a")], response_threshold=0)


class TestAgentSelection:
    """Tests for select_agents()."""

    @pytest.mark.asyncio
    async def test_enterprise_selects_three(self):
        team = await _team(*(ScriptedAdapter(name) for name in "abcd"))
        agents = team.select_agents(_enterprise_request())
        assert [a.provider_name for a in agents] == ["a", "b", "c"]

    @pytest.mark.asyncio
    async def test_skips_members_that_cannot_handle(self):
        writer = ScriptedAdapter("writer", task_types=[TaskType.CREATIVE])
        team = await _team(writer, ScriptedAdapter("coder"))
        agents = team.select_agents(_enterprise_request())
        assert [a.provider_name for a in agents] == ["coder"]

    @pytest.mark.asyncio
    async def test_byzantine_expands_selection(self):
        team = await _team(
            *(ScriptedAdapter(name) for name in "abcdef"), consensus_mode=ConsensusMode.BYZANTINE
        )
        assert len(team.select_agents(_enterprise_request())) == 5

    @pytest.mark.asyncio
    async def test_capabilities_are_merged(self):
        team = await _team(ScriptedAdapter("a"), ScriptedAdapter("b"))
        assert [c.name for c in team.get_capabilities()] == ["scripted-coder"]
        assert team.can_handle_task(TaskType.ANALYSIS)

    @pytest.mark.asyncio
    async def test_cannot_handle_without_capable_member(self):
        team = await _team(ScriptedAdapter("writer", task_types=[TaskType.CREATIVE]))
        assert not team.can_handle_task(TaskType.CODE)


class TestExecution:
    """Tests for multi-agent execution."""

    @pytest.mark.asyncio
    async def test_consensus_response(self):
        team = await _team(
            ScriptedAdapter("a", confidence=0.7),
            ScriptedAdapter("b", confidence=0.95),
            ScriptedAdapter("c", confidence=0.8),
            response_threshold=1.0,
        )
        request = _enterprise_request()
        response = await team.execute_task(request)

        assert response.id == request.id
        assert response.status == TaskStatus.SUCCESS
        assert response.provider.name == "team"
        assert response.result.confidence == 1.0
        assert response.result.content == "scripted answer (b)"
        assert len(response.result.alternatives) == 3
        assert sorted(response.result.metadata["agents"]) == ["a", "b", "c"]
        assert response.performance.tokens_used == 30

    @pytest.mark.asyncio
    async def test_single_agent_is_reattributed(self, sample_request):
        member = ScriptedAdapter("solo")
        team = await _team(member)
        response = await team.execute_task(sample_request)
        assert response.provider.name == "team"
        assert response.result.content == "scripted answer (solo)"
        assert member.call_count == 1

    @pytest.mark.asyncio
    async def test_threshold_completes_early(self):
        """Two of three answers meet a 0.6 threshold; the straggler is cancelled."""
        slow = ScriptedAdapter("slow", delay=5)
        team = await _team(ScriptedAdapter("a"), ScriptedAdapter("b"), slow)

        start = time.monotonic()
        response = await team.execute_task(_enterprise_request())

        assert time.monotonic() - start < 1
        assert response.status == TaskStatus.SUCCESS
        assert sorted(response.result.metadata["agents"]) == ["a", "b"]
        assert slow.cancelled == 1

    @pytest.mark.asyncio
    async def test_insufficient_responses_fail(self):
        team = await _team(
            ScriptedAdapter("a"), ScriptedAdapter("b", delay=5), ScriptedAdapter("c", delay=5)
        )
        request = _enterprise_request(constraints=TaskConstraints(timeout_ms=100))
        response = await team.execute_task(request)

        assert response.status == TaskStatus.FAILURE
        assert response_error_type(response) == ErrorType.TIMEOUT
        assert "Insufficient agent responses: 1/3" in response.result.reasoning

    @pytest.mark.asyncio
    async def test_low_agreement_is_partial(self):
        team = await _team(
            ScriptedAdapter("a"),
            ScriptedAdapter("b", fail="boom", delay=0.05),
            ScriptedAdapter("c", fail="boom", delay=0.05),
            response_threshold=1.0,
        )
        response = await team.execute_task(_enterprise_request())
        assert response.status == TaskStatus.PARTIAL
        assert response.result.confidence == pytest.approx(1 / 3)
        assert sorted(response.result.metadata["dissenting_providers"]) == ["b", "c"]

    @pytest.mark.asyncio
    async def test_all_members_failing(self):
        team = await _team(
            *(ScriptedAdapter(name, fail="boom") for name in "abc"), response_threshold=1.0
        )
        response = await team.execute_task(_enterprise_request())
        assert response.status == TaskStatus.FAILURE
        assert response.result.confidence == 0.0

    @pytest.mark.asyncio
    async def test_no_capable_member(self):
        team = await _team(ScriptedAdapter("writer", task_types=[TaskType.CREATIVE]))
        request = TaskRequest(type=TaskType.CODE, description="Write code")
        response = await team.execute_task(request)
        assert response.status == TaskStatus.FAILURE
        assert response_error_type(response) == ErrorType.MODEL_UNAVAILABLE


class TestLifecycle:
    """Tests for health and shutdown."""

    @pytest.mark.asyncio
    async def test_probe_reports_members(self):
        team = await _team(ScriptedAdapter("a"), ScriptedAdapter("b", probe_ok=False))
        health = await team.check_health()
        assert health.status == HealthStatus.HEALTHY

    @pytest.mark.asyncio
    async def test_shutdown_stops_members(self):
        a, b = ScriptedAdapter("a"), ScriptedAdapter("b")
        team = await _team(a, b)
        await team.shutdown()
        assert a.teardowns == 1
        assert b.teardowns == 1


class TestRegistration:
    """Tests for running a multi-agent adapter through the facade."""

    @pytest.mark.asyncio
    async def test_registered_factory_runs_as_one_provider(self):
        members = [ScriptedAdapter("a", content="use a lock"), ScriptedAdapter("b")]

        def team_factory(name: str) -> MultiAgentAdapter:
            return MultiAgentAdapter(name, members=members)

        registry = AdapterRegistry()
        registry.register_factory("team", team_factory)
        async with Orchestra(OrchestraConfig(providers=["team"]), registry=registry) as orchestra:
            result = await orchestra.run("Review the locking", task_type="code")

        assert [r.provider.name for r in result.results] == ["team"]
        assert result.success
        assert sum(member.call_count for member in members) >= 1
