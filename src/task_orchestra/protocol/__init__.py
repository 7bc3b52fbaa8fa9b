"""Protocol module for Task Orchestra data types."""

from task_orchestra.protocol.types import (
    Approach,
    ConsensusMode,
    ConsensusResult,
    ExecutionPhase,
    HealthStatus,
    OrchestraConfig,
    OrchestrationMetadata,
    OrchestrationResult,
    PerformanceSummary,
    ProviderHealth,
    ProviderInfo,
    ProviderRecommendation,
    QualityLevel,
    SpeedPriority,
    StrategyAssessment,
    TaskConstraints,
    TaskPerformance,
    TaskRequest,
    TaskRequirements,
    TaskResponse,
    TaskResult,
    TaskStatus,
    TaskType,
    ValidationReport,
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
