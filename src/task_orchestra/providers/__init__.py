"""Provider adapters and registry utilities."""

from .base import (
    AdapterEvent,
    AdapterEventKind,
    AgentCapability,
    DoctorResult,
    OptimalAgent,
    ProviderAdapter,
    calculate_capability_score,
    failure_response,
)
from .registry import AdapterFactory, AdapterRegistry, get_registry, reset_registry
from .multi_agent import MultiAgentAdapter


def register_builtin_factories(registry: AdapterRegistry) -> None:
    """Register the adapters that ship with Task Orchestra on *registry*."""

    # Concrete adapters import httpx
    from .cli import ClaudeCLIAdapter, CodexCLIAdapter, SubprocessAdapter
    from .openai_compat import ChatCompletionsAdapter, OpenRouterAdapter

    registry.register_factory("claude", ClaudeCLIAdapter)
    registry.register_factory("codex", CodexCLIAdapter)
    registry.register_factory("subprocess", SubprocessAdapter)
    registry.register_factory("openai", ChatCompletionsAdapter)
    registry.register_factory("openrouter", OpenRouterAdapter)


__all__ = [
    "AdapterEvent",
    "AdapterEventKind",
    "AdapterFactory",
    "AdapterRegistry",
    "AgentCapability",
    "DoctorResult",
    "MultiAgentAdapter",
    "OptimalAgent",
    "ProviderAdapter",
    "calculate_capability_score",
    "failure_response",
    "get_registry",
    "register_builtin_factories",
    "reset_registry",
]
