"""Registry of adapter factories and live provider adapters."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable, Mapping
from importlib import metadata
from typing import Any

from task_orchestra.errors import UnknownProviderError
from task_orchestra.protocol.types import HealthStatus, TaskRequirements, TaskType

from .base import ProviderAdapter

_ENTRY_POINT_GROUP = "task_orchestra.adapters"
_log = logging.getLogger(__name__)

AdapterFactory = Callable[[str], ProviderAdapter]
"""Builds an uninitialized adapter for a provider name. Adapter classes qualify."""


def _normalize(name: str) -> str:
    normalized = name.strip().lower()
    if not normalized:
        raise ValueError("Provider name must be a non-empty string.")
    return normalized


class AdapterRegistry:
    """Owns adapter factories and the live adapters created from them.

    Mutations of the adapter map (create, remove, shutdown) are serialized by an
    :class:`asyncio.Lock`; dispatch code reads a :meth:`snapshot` taken under the
    same lock so an adapter is never picked mid-removal.
    """

    def __init__(self, discover: bool = False) -> None:
        self._factories: dict[str, AdapterFactory] = {}
        self._adapters: dict[str, ProviderAdapter] = {}
        self._lock = asyncio.Lock()
        if discover:
            self._discover_entry_points()

    def register_factory(self, name: str, factory: AdapterFactory) -> None:
        """Register *factory* under *name*, replacing any previous factory.

        Adapters already created from the old factory are left untouched.
        """

        normalized = _normalize(name)
        if not callable(factory):
            raise TypeError("factory must be callable.")
        if normalized in self._factories:
            _log.debug("Replacing adapter factory for '%s'.", normalized)
        self._factories[normalized] = factory

    def list_factories(self) -> list[str]:
        """Return a sorted list of names with a registered factory."""
        return sorted(self._factories.keys())

    async def create_adapter(
        self, name: str, config: Mapping[str, Any] | None = None
    ) -> ProviderAdapter:
        """Construct, initialize and store the adapter for *name*.

        Raises:
            UnknownProviderError: No factory is registered for *name*.
        """

        normalized = _normalize(name)
        factory = self._factories.get(normalized)
        if factory is None:
            raise UnknownProviderError(normalized, available=self.list_factories())

        adapter = factory(normalized)
        if not await adapter.initialize(config or {}):
            _log.warning(
                "Adapter '%s' failed to initialize; it stays registered as unavailable.",
                normalized,
            )

        async with self._lock:
            previous = self._adapters.get(normalized)
            self._adapters[normalized] = adapter

        if previous is not None and previous is not adapter:
            await previous.shutdown()
        return adapter

    def get_adapter(self, name: str) -> ProviderAdapter | None:
        """Return the live adapter for *name*, or None."""
        return self._adapters.get(_normalize(name))

    def list_providers(self) -> list[str]:
        """Return a sorted list of provider names with a live adapter."""
        return sorted(self._adapters.keys())

    def get_all_adapters(self) -> list[ProviderAdapter]:
        return list(self._adapters.values())

    def get_healthy_adapters(self) -> list[ProviderAdapter]:
        """Return adapters that are ready and last reported healthy."""

        return [
            adapter
            for adapter in self._adapters.values()
            if adapter.is_ready() and adapter.health.status == HealthStatus.HEALTHY
        ]

    async def snapshot(self) -> dict[str, ProviderAdapter]:
        """Copy of the adapter map, consistent with concurrent mutations."""

        async with self._lock:
            return dict(self._adapters)

    async def eligible_adapters(
        self,
        task_type: TaskType,
        requirements: TaskRequirements | None = None,
        names: Iterable[str] | None = None,
    ) -> dict[str, ProviderAdapter]:
        """Snapshot filtered to ready adapters whose ``can_handle_task`` accepts the task.

        When *names* is given, only those providers are considered, in that order.
        """

        adapters = await self.snapshot()
        if names is not None:
            ordered = [_normalize(n) for n in names]
            adapters = {n: adapters[n] for n in ordered if n in adapters}
        return {
            name: adapter
            for name, adapter in adapters.items()
            if adapter.is_ready() and adapter.can_handle_task(task_type, requirements)
        }

    async def remove_adapter(self, name: str) -> bool:
        """Remove and shut down the adapter for *name*. Returns False if absent."""

        normalized = _normalize(name)
        async with self._lock:
            adapter = self._adapters.pop(normalized, None)
        if adapter is None:
            return False
        await adapter.shutdown()
        return True

    async def shutdown(self) -> None:
        """Shut down every adapter concurrently, then clear the map.

        One adapter failing to shut down does not stop the others.
        """

        async with self._lock:
            names = list(self._adapters.keys())
            adapters = list(self._adapters.values())
            results = await asyncio.gather(
                *(adapter.shutdown() for adapter in adapters), return_exceptions=True
            )
            for name, result in zip(names, results, strict=True):
                if isinstance(result, BaseException):
                    _log.warning("Adapter '%s' failed to shut down: %s", name, result)
            self._adapters.clear()

    def _discover_entry_points(self) -> None:
        """Load and register adapter factories from entry points."""

        try:
            entry_points = metadata.entry_points()
        except Exception:  # pragma: no cover - defensive for older importlib-metadata
            _log.debug("Failed to read adapter entry points.", exc_info=True)
            return

        for entry_point in self._select_entry_points(entry_points, _ENTRY_POINT_GROUP):
            try:
                factory = entry_point.load()
            except Exception:
                _log.debug(
                    "Failed to load adapter entry point '%s'.", entry_point.name, exc_info=True
                )
                continue

            if isinstance(factory, type) and not issubclass(factory, ProviderAdapter):
                _log.debug(
                    "Adapter entry point '%s' resolved to %s, not a ProviderAdapter; skipping.",
                    entry_point.name,
                    factory.__name__,
                )
                continue

            try:
                self.register_factory(entry_point.name, factory)
            except (TypeError, ValueError):
                _log.debug(
                    "Failed to register adapter entry point '%s'.", entry_point.name, exc_info=True
                )

    @staticmethod
    def _select_entry_points(entry_points: Any, group: str) -> Iterable[Any]:
        """Select entry points for *group* across importlib.metadata variants."""

        select = getattr(entry_points, "select", None)
        if callable(select):
            result: Iterable[Any] = select(group=group)
            return result

        if isinstance(entry_points, dict):
            result = entry_points.get(group, [])
            return result

        return []


_default_registry: AdapterRegistry | None = None


def get_registry() -> AdapterRegistry:
    """Return the default registry with built-in and entry point factories."""

    global _default_registry
    if _default_registry is None:
        from task_orchestra.providers import register_builtin_factories

        registry = AdapterRegistry(discover=False)
        register_builtin_factories(registry)
        registry._discover_entry_points()
        _default_registry = registry
    return _default_registry


def reset_registry() -> None:
    """Reset the default registry (for testing)."""
    global _default_registry
    _default_registry = None


__all__ = [
    "AdapterFactory",
    "AdapterRegistry",
    "get_registry",
    "reset_registry",
]
