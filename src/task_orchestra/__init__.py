"""task-orchestra package."""

from .engine.orchestrator import Orchestrator, OrchestratorConfig
from .errors import (
    LimitExceededError,
    OrchestrationError,
    ProviderUnavailableError,
    UnknownProviderError,
    UnsupportedStrategyError,
)
from .orchestra import Orchestra, build_request
from .protocol.types import (
    OrchestraConfig,
    OrchestrationResult,
    StrategyAssessment,
    TaskRequest,
    TaskResponse,
)
from .providers.base import DoctorResult, ProviderAdapter
from .providers.registry import AdapterRegistry, get_registry

__version__ = "0.1.0"

__all__ = [
    "__version__",
    "AdapterRegistry",
    "DoctorResult",
    "LimitExceededError",
    "Orchestra",
    "OrchestraConfig",
    "OrchestrationError",
    "OrchestrationResult",
    "Orchestrator",
    "OrchestratorConfig",
    "ProviderAdapter",
    "ProviderUnavailableError",
    "StrategyAssessment",
    "TaskRequest",
    "TaskResponse",
    "UnknownProviderError",
    "UnsupportedStrategyError",
    "build_request",
    "get_registry",
]
