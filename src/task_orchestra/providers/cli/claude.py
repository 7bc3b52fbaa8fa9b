"""
Claude CLI provider adapter.

Runs ``claude -p <prompt>`` in print mode for each task. The model follows the
requested speed and quality: haiku for fast work, opus for enterprise quality,
sonnet otherwise.
"""

from __future__ import annotations

from typing import ClassVar

from task_orchestra.protocol.types import (
    QualityLevel,
    SpeedPriority,
    TaskConstraints,
    TaskRequest,
    TaskRequirements,
    TaskType,
)
from task_orchestra.providers.base import AgentCapability
from task_orchestra.providers.cli.base import SubprocessAdapter

DEFAULT_MODEL = "claude-3-5-sonnet-20241022"
FAST_MODEL = "claude-3-5-haiku-20241022"
ENTERPRISE_MODEL = "claude-3-opus-20240229"


class ClaudeCLIAdapter(SubprocessAdapter):
    """Claude Code CLI provider adapter."""

    name: ClassVar[str] = "claude"
    version: ClassVar[str] = "1.0.0"
    executable: ClassVar[str] = "claude"
    default_model: ClassVar[str | None] = DEFAULT_MODEL
    env_allowlist: ClassVar[frozenset[str]] = SubprocessAdapter.env_allowlist | {
        "ANTHROPIC_API_KEY",
    }
    cost_per_token: ClassVar[float] = 0.00003
    supported_task_types: ClassVar[frozenset[TaskType]] = frozenset(
        {
            TaskType.CODE,
            TaskType.RESEARCH,
            TaskType.ANALYSIS,
            TaskType.CREATIVE,
            TaskType.COORDINATION,
        }
    )
    capabilities: ClassVar[tuple[AgentCapability, ...]] = (
        AgentCapability(
            name="coder",
            description="Implements and refactors code",
            tier="primary",
            domains=[TaskType.CODE],
            complexity="complex",
            speed=7,
            quality=9,
            cost=0.03,
        ),
        AgentCapability(
            name="reviewer",
            description="Reviews code and designs for defects",
            tier="secondary",
            domains=[TaskType.CODE, TaskType.ANALYSIS],
            complexity="enterprise",
            speed=6,
            quality=9,
            cost=0.03,
        ),
        AgentCapability(
            name="researcher",
            description="Gathers and summarises information",
            tier="primary",
            domains=[TaskType.RESEARCH, TaskType.ANALYSIS],
            complexity="medium",
            speed=8,
            quality=8,
            cost=0.02,
        ),
        AgentCapability(
            name="writer",
            description="Drafts documentation and prose",
            tier="specialized",
            domains=[TaskType.CREATIVE],
            complexity="simple",
            speed=9,
            quality=7,
            cost=0.01,
        ),
        AgentCapability(
            name="coordinator",
            description="Breaks work into steps for other agents",
            tier="secondary",
            domains=[TaskType.COORDINATION],
            complexity="complex",
            speed=6,
            quality=8,
            cost=0.03,
        ),
    )

    def can_handle_task(
        self, task_type: TaskType, requirements: TaskRequirements | None = None
    ) -> bool:
        if task_type not in self.supported_task_types:
            return False
        # Enterprise quality is only offered for code work
        if requirements is not None and requirements.quality == QualityLevel.ENTERPRISE:
            return task_type == TaskType.CODE
        return True

    def select_model(
        self,
        requirements: TaskRequirements | None = None,
        constraints: TaskConstraints | None = None,
    ) -> str | None:
        if constraints is not None and constraints.model:
            return constraints.model
        if self._config.get("model"):
            return str(self._config["model"])
        if requirements is not None:
            if requirements.quality == QualityLevel.ENTERPRISE:
                return ENTERPRISE_MODEL
            if requirements.speed == SpeedPriority.FAST:
                return FAST_MODEL
        return DEFAULT_MODEL

    def build_command(self, request: TaskRequest) -> list[str]:
        cmd = super().build_command(request)
        prompt = cmd.pop()
        model = self.select_model(request.requirements, request.constraints)
        cmd.extend(["-p", prompt])
        if model:
            cmd.extend(["--model", model])
        return cmd


__all__ = ["ClaudeCLIAdapter"]
