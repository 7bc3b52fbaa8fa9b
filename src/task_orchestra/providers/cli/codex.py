"""
Codex CLI provider adapter.

Runs ``codex exec`` non-interactively for each task. Defaults to a read-only
sandbox; permissive flags must be opted into through the ``flags`` config key
and trigger a warning.
"""

from __future__ import annotations

import shlex
import warnings
from typing import Any, ClassVar

from task_orchestra.protocol.types import TaskRequest, TaskType
from task_orchestra.providers.base import AgentCapability
from task_orchestra.providers.cli.base import SubprocessAdapter

DEFAULT_MODEL = "gpt-5.2-codex"
# Least-privilege defaults: read-only sandbox, no auto-approve
DEFAULT_FLAGS = "--sandbox read-only --skip-git-repo-check"

_UNSAFE_FLAGS = ("--full-auto", "--sandbox workspace-write", "--dangerously-bypass-approvals")
_UNSAFE_WARNING = (
    "Codex CLI is running with permissive flags that allow local file access. "
    "This is unsafe with untrusted task descriptions."
)


class CodexCLIAdapter(SubprocessAdapter):
    """Codex CLI provider adapter."""

    name: ClassVar[str] = "codex"
    executable: ClassVar[str] = "codex"
    default_model: ClassVar[str | None] = DEFAULT_MODEL
    env_allowlist: ClassVar[frozenset[str]] = SubprocessAdapter.env_allowlist | {
        "OPENAI_API_KEY",
    }
    cost_per_token: ClassVar[float] = 0.00001
    supported_task_types: ClassVar[frozenset[TaskType]] = frozenset(
        {TaskType.CODE, TaskType.ANALYSIS, TaskType.HYBRID}
    )
    capabilities: ClassVar[tuple[AgentCapability, ...]] = (
        AgentCapability(
            name="implementer",
            description="Writes code changes from a task description",
            tier="primary",
            domains=[TaskType.CODE, TaskType.HYBRID],
            complexity="complex",
            speed=6,
            quality=8,
            cost=0.01,
        ),
        AgentCapability(
            name="analyst",
            description="Explains and audits existing code",
            tier="secondary",
            domains=[TaskType.ANALYSIS],
            complexity="medium",
            speed=7,
            quality=7,
            cost=0.01,
        ),
    )

    def __init__(
        self,
        provider_name: str | None = None,
        cli_path: str | None = None,
        extra_args: list[str] | None = None,
    ) -> None:
        super().__init__(
            provider_name,
            cli_path=cli_path,
            extra_args=extra_args if extra_args is not None else shlex.split(DEFAULT_FLAGS),
        )

    async def _setup(self, config: dict[str, Any]) -> None:
        await super()._setup(config)
        flags = " ".join(self._extra_args)
        if any(unsafe in flags for unsafe in _UNSAFE_FLAGS):
            warnings.warn(_UNSAFE_WARNING, UserWarning, stacklevel=2)

    def build_command(self, request: TaskRequest) -> list[str]:
        cmd = super().build_command(request)
        prompt = cmd.pop()
        cmd.insert(1, "exec")
        model = self.select_model(request.requirements, request.constraints)
        if model:
            cmd.extend(["-m", model])
        cmd.append(prompt)
        return cmd


__all__ = ["CodexCLIAdapter"]
