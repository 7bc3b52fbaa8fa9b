"""
CLI-based provider adapters.

These adapters invoke external CLI tools (claude, codex) via subprocess, one
process per task. Use with caution in CI environments where the CLIs may not
be installed; initialization fails closed when the executable is missing.
"""

from task_orchestra.providers.cli.base import ProcessOutcome, SubprocessAdapter
from task_orchestra.providers.cli.claude import ClaudeCLIAdapter
from task_orchestra.providers.cli.codex import CodexCLIAdapter

__all__ = [
    "ClaudeCLIAdapter",
    "CodexCLIAdapter",
    "ProcessOutcome",
    "SubprocessAdapter",
]
