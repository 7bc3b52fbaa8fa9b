"""Agent-count policy for fan-out dispatch."""

from __future__ import annotations

import math

from task_orchestra.protocol.types import QualityLevel, TaskRequest, TaskType

ENTERPRISE_AGENTS = 3
COORDINATION_AGENTS = 2
DEFAULT_AGENTS = 1
DEFAULT_PARALLEL_FANOUT = 2


def required_agent_count(request: TaskRequest) -> int:
    """Number of agents a request calls for.

    Enterprise quality asks for three, coordination and hybrid work for two,
    everything else for one.
    """

    if request.quality == QualityLevel.ENTERPRISE:
        return ENTERPRISE_AGENTS
    if request.type in (TaskType.COORDINATION, TaskType.HYBRID):
        return COORDINATION_AGENTS
    return DEFAULT_AGENTS


def fault_tolerant_pool_size(selected: int, fault_tolerance: float) -> int:
    """Pool size that tolerates *fault_tolerance* of participants failing.

    Only applies once at least three agents are selected; smaller pools are
    returned unchanged.
    """

    if not 0.0 <= fault_tolerance < 1.0:
        raise ValueError("fault_tolerance must be in [0, 1).")
    if selected < 3:
        return selected
    return math.ceil(selected / (1.0 - fault_tolerance))


def parallel_fanout(
    request: TaskRequest,
    available: int,
    *,
    fault_tolerant: bool = False,
    fault_tolerance: float = 0.33,
) -> int:
    """How many recommended providers a parallel dispatch should use.

    Two by default, more when the request's agent count demands it, expanded for
    Byzantine fault tolerance, never more than *available*.
    """

    count = min(max(DEFAULT_PARALLEL_FANOUT, required_agent_count(request)), available)
    if fault_tolerant:
        count = min(fault_tolerant_pool_size(count, fault_tolerance), available)
    return count


__all__ = [
    "fault_tolerant_pool_size",
    "parallel_fanout",
    "required_agent_count",
]
