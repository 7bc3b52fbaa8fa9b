"""
Orchestration Engine - dispatch logic for multi-provider tasks.

The engine coordinates:
1. Strategy-driven dispatch (single, parallel, sequential, hierarchical)
2. Consensus over parallel responses
3. Health checks and graceful degradation
"""

from task_orchestra.engine.consensus import ConsensusManager, cross_provider_validation
from task_orchestra.engine.degradation import (
    DegradationAction,
    DegradationDecision,
    DegradationPolicy,
    DegradationReport,
    FailureEvent,
)
from task_orchestra.engine.health import (
    HealthChecker,
    HealthEntry,
    HealthReport,
    preflight_check,
)
from task_orchestra.engine.orchestrator import Orchestrator, OrchestratorConfig, resolve_approach
from task_orchestra.engine.policy import (
    fault_tolerant_pool_size,
    parallel_fanout,
    required_agent_count,
)

__all__ = [
    # Orchestrator
    "Orchestrator",
    "OrchestratorConfig",
    "resolve_approach",
    # Consensus
    "ConsensusManager",
    "cross_provider_validation",
    # Agent-count policy
    "fault_tolerant_pool_size",
    "parallel_fanout",
    "required_agent_count",
    # Health checks
    "HealthChecker",
    "HealthEntry",
    "HealthReport",
    "preflight_check",
    # Degradation
    "DegradationAction",
    "DegradationDecision",
    "DegradationPolicy",
    "DegradationReport",
    "FailureEvent",
]
