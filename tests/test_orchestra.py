"""Tests for the Orchestra facade."""

from __future__ import annotations

import pytest
from conftest import ScriptedAdapter, make_factory

from task_orchestra import Orchestra, OrchestraConfig
from task_orchestra.engine.orchestrator import HIERARCHICAL_COORDINATED
from task_orchestra.errors import LimitExceededError
from task_orchestra.orchestra import build_request, default_assessment
from task_orchestra.protocol.types import (
    Approach,
    ExecutionPhase,
    ProviderRecommendation,
    QualityLevel,
    StrategyAssessment,
    TaskType,
)
from task_orchestra.providers.registry import AdapterRegistry
from task_orchestra.storage import SQLiteMemoryStore


@pytest.fixture
def scripted_registry() -> AdapterRegistry:
    registry = AdapterRegistry()
    registry.register_factory("alpha", make_factory(content="alpha says"))
    registry.register_factory("beta", make_factory(content="beta says"))
    registry.register_factory("broken", make_factory(setup_error="no binary"))
    return registry


class TestBuildRequest:
    """Tests for build_request()."""

    def test_defaults(self):
        request = build_request("Explain the outage")
        assert request.type == TaskType.ANALYSIS
        assert request.requirements.creativity == 0.6
        assert request.requirements.accuracy == 0.85
        assert request.constraints.max_tokens == 4096
        assert request.constraints.timeout_ms == 300_000
        assert request.metadata["memoryNamespace"] == "default"
        assert request.metadata["storeResult"] is True
        assert request.metadata["sessionId"].startswith("session_")
        assert request.id.startswith("task_")

    def test_enterprise_and_validation(self):
        request = build_request(
            "Audit the auth flow",
            "code",
            quality="enterprise",
            strategy="validation",
            session_id="s1",
            task_id="task_fixed",
        )
        assert request.id == "task_fixed"
        assert request.requirements.quality == QualityLevel.ENTERPRISE
        assert request.requirements.creativity == 0.3
        assert request.requirements.accuracy == 0.95
        assert request.constraints.max_tokens == 8192
        assert request.metadata["sessionId"] == "s1"


class TestDefaultAssessment:
    """Tests for default_assessment()."""

    def test_single(self):
        assert default_assessment(["claude"]).approach == Approach.SINGLE_PROVIDER.value

    def test_parallel(self):
        assessment = default_assessment(["claude", "codex"])
        assert assessment.approach == Approach.PARALLEL.value
        assert [r.provider for r in assessment.recommendations] == ["claude", "codex"]


class TestOrchestra:
    """Tests for the Orchestra facade."""

    def test_default_config(self):
        orchestra = Orchestra()
        assert orchestra.providers == ["claude"]
        assert "codex" in orchestra.registry.list_factories()
        assert orchestra.orchestrator.config.default_provider == "claude"

    def test_config_maps_to_engine(self, scripted_registry):
        config = OrchestraConfig(
            providers=["beta", "alpha"], timeout_ms=1234, auto_validate=True, max_retries=2
        )
        engine_config = Orchestra(config, registry=scripted_registry).orchestrator.config
        assert engine_config.default_provider == "beta"
        assert engine_config.default_timeout_ms == 1234
        assert engine_config.auto_validate is True
        assert engine_config.max_retries == 2

    @pytest.mark.asyncio
    async def test_start_creates_adapters(self, scripted_registry):
        config = OrchestraConfig(providers=["alpha", "broken", "ghost"])
        orchestra = Orchestra(config, registry=scripted_registry)
        await orchestra.start()

        assert scripted_registry.list_providers() == ["alpha", "broken"]
        assert set(orchestra.provider_errors) == {"broken", "ghost"}
        assert "no binary" in orchestra.provider_errors["broken"]

    @pytest.mark.asyncio
    async def test_provider_settings_are_passed(self, scripted_registry):
        seen = {}

        class Recording(ScriptedAdapter):
            async def _setup(self, config):
                seen.update(config)

        scripted_registry.register_factory("rec", Recording)
        config = OrchestraConfig(
            providers=["rec"], timeout_ms=500, provider_settings={"rec": {"model": "m1"}}
        )
        await Orchestra(config, registry=scripted_registry).start()
        assert seen == {"timeout_ms": 500, "model": "m1"}

    @pytest.mark.asyncio
    async def test_run_description_in_parallel(self, scripted_registry):
        config = OrchestraConfig(providers=["alpha", "beta"])
        async with Orchestra(config, registry=scripted_registry) as orchestra:
            result = await orchestra.run("Review the diff", task_type="code")

        assert result.strategy_used == "parallel"
        assert result.success
        assert {r.provider.name for r in result.results} == {"alpha", "beta"}
        assert result.consensus is not None

    @pytest.mark.asyncio
    async def test_run_with_assessment(self, scripted_registry):
        config = OrchestraConfig(providers=["alpha", "beta"])
        async with Orchestra(config, registry=scripted_registry) as orchestra:
            result = await orchestra.run(
                build_request("Review the diff"),
                StrategyAssessment(approach="single-provider"),
            )
        assert [r.provider.name for r in result.results] == ["alpha"]

    @pytest.mark.asyncio
    async def test_memory_enabled(self, scripted_registry, tmp_path):
        config = OrchestraConfig(
            providers=["alpha"],
            enable_memory=True,
            memory_db_path=str(tmp_path / "memory.db"),
        )
        async with Orchestra(config, registry=scripted_registry) as orchestra:
            result = await orchestra.run(
                "Remember this", memory_namespace="proj", session_id="s1"
            )

        assert result.metadata.memory_used is True
        records = await SQLiteMemoryStore(tmp_path / "memory.db").retrieve("proj", "s1")
        assert len(records) == 1
        assert records[0].response.provider.name == "alpha"

    @pytest.mark.asyncio
    async def test_close_leaves_external_registry(self, scripted_registry):
        orchestra = Orchestra(OrchestraConfig(providers=["alpha"]), registry=scripted_registry)
        await orchestra.start()
        await orchestra.close()
        assert scripted_registry.list_providers() == ["alpha"]

    @pytest.mark.asyncio
    async def test_close_shuts_down_owned_registry(self, monkeypatch):
        def register(registry):
            registry.register_factory("alpha", make_factory())

        monkeypatch.setattr("task_orchestra.orchestra.register_builtin_factories", register)
        orchestra = Orchestra(OrchestraConfig(providers=["alpha"]))
        await orchestra.start()
        adapter = orchestra.registry.get_adapter("alpha")
        await orchestra.close()
        assert orchestra.registry.list_providers() == []
        assert adapter.teardowns == 1

    @pytest.mark.asyncio
    async def test_doctor(self, scripted_registry):
        async with Orchestra(
            OrchestraConfig(providers=["alpha", "broken"]), registry=scripted_registry
        ) as orchestra:
            report = await orchestra.doctor()
        assert report.total_count == 2
        assert report.usable_count == 1

class TestAssessmentProviders:
    """Tests for adapters created on demand for providers an assessment names."""

    @pytest.mark.asyncio
    async def test_phase_provider_is_created(self, scripted_registry):
        assessment = StrategyAssessment(
            approach="sequential",
            phases=[
                ExecutionPhase(name="plan", provider="beta"),
                ExecutionPhase(name="do", provider="alpha"),
            ],
        )
        config = OrchestraConfig(providers=["alpha"])
        async with Orchestra(config, registry=scripted_registry) as orchestra:
            result = await orchestra.run(build_request("Ship it", task_id="task_seq"), assessment)

        assert [r.id for r in result.results] == ["task_seq_phase_plan", "task_seq_phase_do"]
        assert result.metadata.skipped_providers == []

    @pytest.mark.asyncio
    async def test_assessment_coordinator_is_created(self, scripted_registry):
        scripted_registry.register_factory("boss", make_factory(content="split it"))
        assessment = StrategyAssessment(
            approach="hierarchical",
            coordinator="boss",
            recommendations=[ProviderRecommendation(provider="alpha")],
        )
        config = OrchestraConfig(providers=["alpha"])
        async with Orchestra(config, registry=scripted_registry) as orchestra:
            result = await orchestra.run("Refactor the module", assessment)

        assert result.metadata.hierarchical_mode == HIERARCHICAL_COORDINATED
        assert result.results[0].provider.name == "boss"

    @pytest.mark.asyncio
    async def test_configured_coordinator_is_created(self, scripted_registry):
        scripted_registry.register_factory("boss", make_factory(content="split it"))
        config = OrchestraConfig(providers=["alpha", "beta"], coordinator_provider="boss")
        assessment = StrategyAssessment(
            approach="hierarchical",
            recommendations=[ProviderRecommendation(provider=name) for name in ("alpha", "beta")],
        )
        async with Orchestra(config, registry=scripted_registry) as orchestra:
            result = await orchestra.run("Refactor the module", assessment)

        assert result.metadata.hierarchical_mode == HIERARCHICAL_COORDINATED
        assert "boss" in scripted_registry.list_providers()

    @pytest.mark.asyncio
    async def test_configured_coordinator_unused_outside_hierarchical(self, scripted_registry):
        scripted_registry.register_factory("boss", make_factory())
        config = OrchestraConfig(providers=["alpha"], coordinator_provider="boss")
        async with Orchestra(config, registry=scripted_registry) as orchestra:
            await orchestra.run("Summarize the log")
        assert scripted_registry.list_providers() == ["alpha"]

    @pytest.mark.asyncio
    async def test_recommended_provider_is_created(self, scripted_registry):
        config = OrchestraConfig(providers=["alpha"])
        async with Orchestra(config, registry=scripted_registry) as orchestra:
            result = await orchestra.run(
                "Review the diff",
                StrategyAssessment(
                    approach="parallel",
                    recommendations=[ProviderRecommendation(provider=n) for n in ("alpha", "beta")],
                ),
            )
        assert {r.provider.name for r in result.results} == {"alpha", "beta"}

    @pytest.mark.asyncio
    async def test_unknown_named_provider_is_recorded(self, scripted_registry):
        assessment = StrategyAssessment(
            approach="sequential",
            phases=[
                ExecutionPhase(name="plan", provider="ghost"),
                ExecutionPhase(name="do", provider="alpha"),
            ],
        )
        config = OrchestraConfig(providers=["alpha"])
        async with Orchestra(config, registry=scripted_registry) as orchestra:
            result = await orchestra.run("Ship it", assessment)
            assert "ghost" in orchestra.provider_errors

        assert result.metadata.skipped_providers == ["ghost"]


class TestUsageLimits:
    """Tests for limits enforced through the facade."""

    @pytest.mark.asyncio
    async def test_enforced_from_environment(self, scripted_registry, monkeypatch):
        monkeypatch.setenv("ORCHESTRA_MAX_PROMPT_TOKENS", "100")
        config = OrchestraConfig(providers=["alpha"], enforce_limits=True)
        async with Orchestra(config, registry=scripted_registry) as orchestra:
            with pytest.raises(LimitExceededError) as exc_info:
                await orchestra.run("x" * 4000)
            adapter = scripted_registry.get_adapter("alpha")

        assert exc_info.value.limit == "max_prompt_tokens"
        assert adapter.call_count == 0

    @pytest.mark.asyncio
    async def test_not_enforced_by_default(self, scripted_registry, monkeypatch):
        monkeypatch.setenv("ORCHESTRA_MAX_PROMPT_TOKENS", "100")
        config = OrchestraConfig(providers=["alpha"])
        async with Orchestra(config, registry=scripted_registry) as orchestra:
            result = await orchestra.run("x" * 4000)
        assert result.success
