"""
Protocol types for Task Orchestra.

Defines Pydantic models for task requests, provider responses, strategy
assessments, consensus and orchestration results. Everything that crosses an
adapter or engine boundary is one of these types. Requests and responses are
frozen: a dispatched request or a produced response is never mutated, derived
values are built with ``model_copy``.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _task_id() -> str:
    return f"task_{uuid.uuid4().hex[:12]}"


class TaskType(str, Enum):
    """Kinds of work a task can describe."""

    CODE = "code"
    RESEARCH = "research"
    ANALYSIS = "analysis"
    CREATIVE = "creative"
    COORDINATION = "coordination"
    HYBRID = "hybrid"


class QualityLevel(str, Enum):
    """Requested output quality."""

    DRAFT = "draft"
    PRODUCTION = "production"
    ENTERPRISE = "enterprise"


class SpeedPriority(str, Enum):
    """Requested latency/effort trade-off."""

    FAST = "fast"
    BALANCED = "balanced"
    THOROUGH = "thorough"


class TaskStatus(str, Enum):
    """Outcome of one adapter invocation."""

    SUCCESS = "success"
    FAILURE = "failure"
    PARTIAL = "partial"


class HealthStatus(str, Enum):
    """Adapter health as last observed by the adapter itself."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"  # Working but with issues
    UNAVAILABLE = "unavailable"  # Not usable


class ConsensusMode(str, Enum):
    """Algorithms for reconciling several responses to one task."""

    MAJORITY = "majority"
    BYZANTINE = "byzantine"
    RAFT = "raft"


class Approach(str, Enum):
    """Dispatch strategies understood by the orchestrator."""

    SINGLE_PROVIDER = "single-provider"
    PARALLEL = "parallel"
    SEQUENTIAL = "sequential"
    HIERARCHICAL = "hierarchical"


class TaskRequirements(BaseModel):
    """Quality and style requirements attached to a task."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    quality: QualityLevel = Field(default=QualityLevel.PRODUCTION)
    speed: SpeedPriority = Field(default=SpeedPriority.BALANCED)
    creativity: float = Field(default=0.6, ge=0.0, le=1.0)
    accuracy: float = Field(default=0.85, ge=0.0, le=1.0)


class TaskConstraints(BaseModel):
    """Hard limits for a single task."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    max_tokens: int | None = Field(default=None, ge=1)
    timeout_ms: int | None = Field(default=None, ge=1, description="Per-call timeout.")
    cost_ceiling: float | None = Field(default=None, ge=0.0, description="Budget in USD.")
    model: str | None = Field(default=None, description="Preferred model identifier.")


class TaskRequest(BaseModel):
    """A unit of work handed to the orchestrator."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    id: str = Field(default_factory=_task_id, min_length=1)
    type: TaskType = Field(...)
    description: str = Field(..., min_length=1)
    context: str | None = Field(default=None, description="Accumulated prior context.")
    requirements: TaskRequirements | None = Field(default=None)
    constraints: TaskConstraints | None = Field(default=None)
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def quality(self) -> QualityLevel:
        """Requested quality, production when unspecified."""
        return self.requirements.quality if self.requirements else QualityLevel.PRODUCTION

    @property
    def prompt(self) -> str:
        """Description with any accumulated context appended."""
        if self.context:
            return f"{self.description}\n\nContext:\n{self.context}"
        return self.description


class TaskResult(BaseModel):
    """The content part of a response, also the shape of a consensus decision."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    content: str = Field(default="")
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    reasoning: str | None = Field(default=None)
    alternatives: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)


class TaskPerformance(BaseModel):
    """Resource usage of one invocation."""

    model_config = ConfigDict(extra="forbid", frozen=True, protected_namespaces=())

    duration_ms: int = Field(default=0, ge=0)
    tokens_used: int = Field(default=0, ge=0)
    cost: float = Field(default=0.0, ge=0.0)
    model_used: str = Field(default="unknown")


class ProviderInfo(BaseModel):
    """Identity of the adapter that produced a response."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    name: str
    version: str = Field(default="1.0.0")
    capabilities: list[str] = Field(default_factory=list)


class TaskResponse(BaseModel):
    """Result of exactly one adapter invocation."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    id: str = Field(..., description="Echoes the request id.")
    status: TaskStatus
    result: TaskResult = Field(default_factory=TaskResult)
    performance: TaskPerformance = Field(default_factory=TaskPerformance)
    provider: ProviderInfo
    timestamp: datetime = Field(default_factory=_utcnow)

    @property
    def succeeded(self) -> bool:
        return self.status == TaskStatus.SUCCESS


class ProviderHealth(BaseModel):
    """Health snapshot owned by one adapter."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    status: HealthStatus = Field(default=HealthStatus.UNAVAILABLE)
    response_time_ms: float = Field(default=0.0, ge=0.0)
    success_rate: float = Field(default=0.0, ge=0.0, le=1.0)
    error_rate: float = Field(default=0.0, ge=0.0, le=1.0)
    quota_remaining: int | None = Field(default=None)
    quota_reset_time: datetime | None = Field(default=None)
    last_check: datetime = Field(default_factory=_utcnow)
    issues: list[str] = Field(default_factory=list)


class ProviderRecommendation(BaseModel):
    """One ranked provider suggestion from task assessment."""

    model_config = ConfigDict(extra="allow", frozen=True)

    provider: str = Field(..., min_length=1)
    confidence: float = Field(default=1.0, ge=0.0, le=1.0)
    reasoning: str = Field(default="")


class ExecutionPhase(BaseModel):
    """One step of a sequential plan."""

    model_config = ConfigDict(extra="allow", frozen=True)

    name: str = Field(..., min_length=1)
    provider: str = Field(..., min_length=1)
    description: str = Field(default="")


class StrategyAssessment(BaseModel):
    """Dispatch plan produced by the (external) task assessment step.

    ``approach`` is kept as a raw string so the orchestrator, not the parser,
    decides whether it is supported.
    """

    model_config = ConfigDict(extra="allow", frozen=True)

    approach: str = Field(default=Approach.SINGLE_PROVIDER.value)
    recommendations: list[ProviderRecommendation] = Field(default_factory=list)
    phases: list[ExecutionPhase] = Field(default_factory=list)
    coordinator: str | None = Field(
        default=None, description="Coordinating provider for hierarchical dispatch."
    )


class ConsensusResult(BaseModel):
    """Single decision reconciled from several responses."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    decision: TaskResult
    confidence: float = Field(..., ge=0.0, le=1.0)
    participant_count: int = Field(..., ge=0)
    consensus_time_ms: int = Field(default=0, ge=0)
    dissenting_providers: list[str] = Field(default_factory=list)
    fault_count: int = Field(default=0, ge=0)
    mode: ConsensusMode = Field(default=ConsensusMode.MAJORITY)


class PerformanceSummary(BaseModel):
    """Aggregate resource usage of an orchestration."""

    model_config = ConfigDict(frozen=True)

    total_duration_ms: int = Field(default=0, ge=0)
    providers_used: list[str] = Field(default_factory=list)
    tokens_used: int = Field(default=0, ge=0)
    total_cost: float = Field(default=0.0, ge=0.0)


class ValidationReport(BaseModel):
    """Cross-provider agreement check over the collected responses."""

    model_config = ConfigDict(frozen=True)

    cross_provider_agreement: float = Field(..., ge=0.0, le=1.0)
    quality_score: float = Field(..., ge=0.0, le=1.0)
    issues: list[str] = Field(default_factory=list)


class OrchestrationMetadata(BaseModel):
    """Bookkeeping about how an orchestration ran."""

    model_config = ConfigDict(extra="allow", frozen=True)

    phase_names: list[str] = Field(default_factory=list)
    memory_used: bool = Field(default=False)
    hierarchical_mode: str | None = Field(default=None)
    skipped_providers: list[str] = Field(default_factory=list)
    health_report: dict[str, Any] | None = Field(default=None)
    degradation: dict[str, Any] | None = Field(default=None)


class OrchestrationResult(BaseModel):
    """Terminal value returned by the orchestrator."""

    model_config = ConfigDict(frozen=True)

    task_id: str
    success: bool
    results: list[TaskResponse] = Field(default_factory=list)
    strategy_used: str
    performance: PerformanceSummary = Field(default_factory=PerformanceSummary)
    validation: ValidationReport | None = Field(default=None)
    consensus: ConsensusResult | None = Field(default=None)
    metadata: OrchestrationMetadata = Field(default_factory=OrchestrationMetadata)


class OrchestraConfig(BaseModel):
    """Configuration for the :class:`task_orchestra.Orchestra` facade."""

    model_config = ConfigDict(extra="allow")

    providers: list[str] = Field(
        default=["claude"],
        description="Provider names to create adapters for.",
    )
    provider_settings: dict[str, dict[str, Any]] = Field(
        default_factory=dict,
        description="Per-provider initialization config, keyed by provider name.",
    )
    default_provider: str | None = Field(
        default=None,
        description="Used when an assessment has no recommendations (first provider if unset).",
    )
    timeout_ms: int = Field(
        default=300_000,
        ge=1,
        description="Default per-call timeout in milliseconds.",
    )
    consensus_mode: ConsensusMode = Field(default=ConsensusMode.MAJORITY)
    fault_tolerance: float = Field(default=0.33, ge=0.0, lt=1.0)
    auto_validate: bool = Field(default=False)
    coordinator_provider: str | None = Field(default=None)
    max_retries: int = Field(default=0, ge=0, le=5)
    enable_health_check: bool = Field(
        default=False,
        description="Run preflight health check before dispatch",
    )
    enable_memory: bool = Field(
        default=False,
        description="Persist request/response pairs when a task asks for it",
    )
    memory_db_path: str | None = Field(default=None)
    memory_namespace: str = Field(default="tasks")
    enforce_limits: bool = Field(
        default=False,
        description="Refuse dispatch beyond the ORCHESTRA_* usage limits",
    )


__all__ = [
    "Approach",
    "ConsensusMode",
    "ConsensusResult",
    "ExecutionPhase",
    "HealthStatus",
    "OrchestraConfig",
    "OrchestrationMetadata",
    "OrchestrationResult",
    "PerformanceSummary",
    "ProviderHealth",
    "ProviderInfo",
    "ProviderRecommendation",
    "QualityLevel",
    "SpeedPriority",
    "StrategyAssessment",
    "TaskConstraints",
    "TaskPerformance",
    "TaskRequest",
    "TaskRequirements",
    "TaskResponse",
    "TaskResult",
    "TaskStatus",
    "TaskType",
    "ValidationReport",
]
