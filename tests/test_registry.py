"""Tests for the adapter registry."""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import patch

import pytest
from conftest import ScriptedAdapter, add_adapter, make_factory

from task_orchestra.errors import UnknownProviderError
from task_orchestra.protocol.types import HealthStatus, TaskType
from task_orchestra.providers.registry import AdapterRegistry, get_registry


class TestFactories:
    """Tests for factory registration."""

    def test_register_and_list(self, registry):
        registry.register_factory("Alpha", make_factory())
        registry.register_factory("beta", make_factory())
        assert registry.list_factories() == ["alpha", "beta"]

    def test_rejects_empty_name(self, registry):
        with pytest.raises(ValueError):
            registry.register_factory("  ", make_factory())

    def test_rejects_non_callable(self, registry):
        with pytest.raises(TypeError):
            registry.register_factory("x", "not a factory")  # type: ignore[arg-type]

    @pytest.mark.asyncio
    async def test_replacing_factory_keeps_existing_adapter(self, registry):
        first = await add_adapter(registry, "alpha", content="old")
        registry.register_factory("alpha", make_factory(content="new"))
        assert registry.get_adapter("alpha") is first


class TestCreateAdapter:
    """Tests for create_adapter()."""

    @pytest.mark.asyncio
    async def test_unknown_provider(self, registry):
        registry.register_factory("known", make_factory())
        with pytest.raises(UnknownProviderError) as exc_info:
            await registry.create_adapter("missing")
        assert isinstance(exc_info.value, KeyError)
        assert exc_info.value.available == ["known"]
        assert "missing" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_creates_initialized_adapter(self, registry):
        adapter = await add_adapter(registry, "alpha")
        assert adapter.provider_name == "alpha"
        assert adapter.is_ready()
        assert registry.list_providers() == ["alpha"]

    @pytest.mark.asyncio
    async def test_failed_initialization_is_stored_unavailable(self, registry):
        adapter = await add_adapter(registry, "broken", setup_error="no binary")
        assert registry.get_adapter("broken") is adapter
        assert adapter.health.status == HealthStatus.UNAVAILABLE

    @pytest.mark.asyncio
    async def test_recreate_shuts_down_previous(self, registry):
        first = await add_adapter(registry, "alpha")
        second = await registry.create_adapter("alpha")
        assert registry.get_adapter("alpha") is second
        assert first.teardowns == 1

    @pytest.mark.asyncio
    async def test_passes_config(self, registry):
        seen = {}

        class Recording(ScriptedAdapter):
            async def _setup(self, config):
                seen.update(config)

        registry.register_factory("rec", Recording)
        await registry.create_adapter("rec", {"model": "m1"})
        assert seen == {"model": "m1"}


class TestQueries:
    """Tests for health-filtered queries."""

    @pytest.mark.asyncio
    async def test_healthy_adapters(self, registry):
        healthy = await add_adapter(registry, "good")
        await add_adapter(registry, "bad", setup_error="boom")
        assert registry.get_healthy_adapters() == [healthy]

    @pytest.mark.asyncio
    async def test_eligible_adapters(self, registry):
        await add_adapter(registry, "coder", task_types=[TaskType.CODE])
        await add_adapter(registry, "writer", task_types=[TaskType.CREATIVE])
        eligible = await registry.eligible_adapters(TaskType.CODE)
        assert list(eligible) == ["coder"]

        ordered = await registry.eligible_adapters(TaskType.CREATIVE, names=["writer", "nope"])
        assert list(ordered) == ["writer"]

    @pytest.mark.asyncio
    async def test_snapshot_is_a_copy(self, registry):
        await add_adapter(registry, "alpha")
        snapshot = await registry.snapshot()
        await registry.remove_adapter("alpha")
        assert "alpha" in snapshot
        assert registry.get_adapter("alpha") is None


class TestShutdown:
    """Tests for removal and shutdown."""

    @pytest.mark.asyncio
    async def test_remove_adapter(self, registry):
        adapter = await add_adapter(registry, "alpha")
        assert await registry.remove_adapter("alpha") is True
        assert await registry.remove_adapter("alpha") is False
        assert adapter.teardowns == 1

    @pytest.mark.asyncio
    async def test_shutdown_settles_every_adapter(self, registry):
        """One adapter failing to shut down does not stop the others."""
        first = await add_adapter(registry, "a")
        second = await add_adapter(registry, "b")

        async def explode():
            raise RuntimeError("stuck")

        first.shutdown = explode  # type: ignore[method-assign]
        await registry.shutdown()

        assert second.teardowns == 1
        assert registry.list_providers() == []


class TestEntryPoints:
    """Tests for entry point discovery."""

    def test_discovers_adapter_classes(self):
        entry_point = SimpleNamespace(name="plugin", load=lambda: ScriptedAdapter)
        not_adapter = SimpleNamespace(name="other", load=lambda: dict)
        points = {"task_orchestra.adapters": [entry_point, not_adapter]}

        with patch("task_orchestra.providers.registry.metadata.entry_points", return_value=points):
            registry = AdapterRegistry(discover=True)

        assert registry.list_factories() == ["plugin"]

    def test_default_registry_has_builtins(self):
        registry = get_registry()
        for name in ("claude", "codex", "openai", "openrouter", "subprocess"):
            assert name in registry.list_factories()
        assert get_registry() is registry
