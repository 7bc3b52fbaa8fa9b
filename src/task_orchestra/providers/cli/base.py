"""
Subprocess-backed provider adapters.

Invokes a provider CLI once per task with an argument list built from the task
description, captures stdout/stderr, and maps the exit status onto a
TaskResponse.

SECURITY NOTE: Uses asyncio.create_subprocess_exec with argument lists,
which is safe from shell injection, and a minimal environment allowlist.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import re
import shlex
import shutil
import time
from dataclasses import dataclass
from typing import Any, ClassVar

from task_orchestra.errors import ErrorType, ProviderCallError, classify_error
from task_orchestra.protocol.types import TaskRequest, TaskResponse
from task_orchestra.providers.base import DoctorResult, ProviderAdapter

logger = logging.getLogger(__name__)

# Minimal environment allowlist for subprocess
_ENV_ALLOWLIST = frozenset(
    {
        "PATH",
        "HOME",
        "TERM",
        "LANG",
        "LC_ALL",
        "TMPDIR",
    }
)

_TOKEN_PATTERN = re.compile(r"tokens?:\s*(\d+)", re.IGNORECASE)

SHUTDOWN_GRACE_SECONDS = 5.0
HEALTH_CHECK_TIMEOUT_SECONDS = 5.0


@dataclass(frozen=True)
class ProcessOutcome:
    """Captured result of one CLI invocation."""

    returncode: int
    stdout: str
    stderr: str


class SubprocessAdapter(ProviderAdapter):
    """Base class for adapters that drive a provider CLI.

    Every call spawns its own process; the set of live processes is tracked so
    :meth:`shutdown` can terminate whatever is still running (SIGTERM, then a
    forced kill after the grace period).

    Subclasses set :attr:`executable` and override :meth:`build_command`.
    """

    name: ClassVar[str] = "subprocess"
    executable: ClassVar[str] = ""
    env_allowlist: ClassVar[frozenset[str]] = _ENV_ALLOWLIST
    cost_per_token: ClassVar[float] = 0.0
    default_confidence: ClassVar[float] = 0.85

    def __init__(
        self,
        provider_name: str | None = None,
        cli_path: str | None = None,
        extra_args: list[str] | None = None,
    ) -> None:
        super().__init__(provider_name)
        self._cli_path = cli_path
        self._extra_args = list(extra_args or [])
        self._grace_seconds = SHUTDOWN_GRACE_SECONDS
        self._processes: set[asyncio.subprocess.Process] = set()

    async def _setup(self, config: dict[str, Any]) -> None:
        cli_path = config.get("cli_path") or self._cli_path
        if cli_path is None and self.executable:
            cli_path = shutil.which(self.executable)
        if not cli_path:
            raise ProviderCallError(
                f"{self.executable or self.provider_name} CLI not found.",
                ErrorType.CLI_NOT_FOUND,
            )
        self._cli_path = str(cli_path)

        flags = config.get("flags")
        if isinstance(flags, str):
            self._extra_args = shlex.split(flags)
        elif flags is not None:
            self._extra_args = [str(flag) for flag in flags]

        self._grace_seconds = float(config.get("shutdown_grace_seconds", SHUTDOWN_GRACE_SECONDS))

    @property
    def cli_path(self) -> str | None:
        return self._cli_path

    @property
    def active_processes(self) -> int:
        return len(self._processes)

    def build_command(self, request: TaskRequest) -> list[str]:
        """Build the CLI command as argument list (safe from injection)."""

        if not self._cli_path:
            raise ProviderCallError("CLI path is not configured.", ErrorType.CLI_NOT_FOUND)
        return [self._cli_path, *self._extra_args, request.prompt]

    def _get_minimal_env(self) -> dict[str, str]:
        """Get minimal environment with only allowlisted variables."""
        return {k: v for k, v in os.environ.items() if k in self.env_allowlist}

    async def run_command(self, cmd: list[str], timeout: float) -> ProcessOutcome:
        """Run *cmd* to completion, bounded by *timeout* seconds.

        The process handle lives only for this call, so concurrent tasks on one
        adapter never share a process.
        """

        proc = await asyncio.create_subprocess_exec(
            cmd[0],
            *cmd[1:],
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=self._get_minimal_env(),
        )
        self._processes.add(proc)
        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            await self._terminate(proc)
            raise ProviderCallError(
                f"{self.provider_name} CLI timed out after {timeout:g}s.",
                ErrorType.TIMEOUT,
            ) from None
        except asyncio.CancelledError:
            with contextlib.suppress(ProcessLookupError):
                proc.kill()
            with contextlib.suppress(asyncio.TimeoutError, asyncio.CancelledError):
                await asyncio.wait_for(proc.wait(), timeout=self._grace_seconds)
            raise
        finally:
            self._processes.discard(proc)

        return ProcessOutcome(
            returncode=proc.returncode if proc.returncode is not None else -1,
            stdout=stdout.decode("utf-8", errors="replace"),
            stderr=stderr.decode("utf-8", errors="replace"),
        )

    async def _execute(self, request: TaskRequest) -> TaskResponse:
        cmd = self.build_command(request)
        start = time.monotonic()
        outcome = await self.run_command(cmd, self.timeout_seconds(request))

        if outcome.returncode != 0:
            stderr_text = outcome.stderr.strip() or f"exit status {outcome.returncode}"
            error_type = classify_error(stderr_text, outcome.returncode)
            raise ProviderCallError(
                f"{self.provider_name} CLI failed ({error_type.value}): {stderr_text[:500]}",
                error_type,
            )

        output = outcome.stdout.strip()
        if not output:
            logger.warning("%s CLI returned success but empty output", self.provider_name)

        tokens = self.extract_token_count(outcome.stdout + "\n" + outcome.stderr)
        return self.build_response(
            request,
            output,
            confidence=self.default_confidence,
            reasoning=f"Executed via {self.executable or self.provider_name} CLI",
            metadata={"returncode": outcome.returncode, "stderr": outcome.stderr[:500]},
            tokens_used=tokens,
            cost=tokens * self.cost_per_token,
            duration_ms=self._elapsed_ms(start),
        )

    @staticmethod
    def extract_token_count(text: str) -> int:
        """Parse a ``tokens: N`` usage line from CLI output, 0 if absent."""

        match = _TOKEN_PATTERN.search(text)
        return int(match.group(1)) if match else 0

    async def _probe(self) -> DoctorResult:
        if not self._cli_path:
            return DoctorResult(ok=False, message="CLI not found")

        start = time.monotonic()
        try:
            outcome = await self.run_command(
                [self._cli_path, "--version"], HEALTH_CHECK_TIMEOUT_SECONDS
            )
        except (OSError, ProviderCallError) as exc:
            return DoctorResult(ok=False, message=str(exc))

        latency_ms = (time.monotonic() - start) * 1000
        if outcome.returncode != 0:
            return DoctorResult(
                ok=False,
                message=outcome.stderr.strip()[:200] or f"exit status {outcome.returncode}",
                latency_ms=latency_ms,
            )
        return DoctorResult(
            ok=True,
            message="CLI available",
            latency_ms=latency_ms,
            details={"version": outcome.stdout.strip()[:100]},
        )

    async def _terminate(self, proc: asyncio.subprocess.Process) -> None:
        """SIGTERM, then kill if the process outlives the grace period."""

        if proc.returncode is not None:
            return
        with contextlib.suppress(ProcessLookupError):
            proc.terminate()
        try:
            await asyncio.wait_for(proc.wait(), timeout=self._grace_seconds)
        except asyncio.TimeoutError:
            with contextlib.suppress(ProcessLookupError):
                proc.kill()
            await proc.wait()

    async def _teardown(self) -> None:
        processes = list(self._processes)
        if processes:
            logger.debug(
                "Terminating %d running %s process(es)", len(processes), self.provider_name
            )
            await asyncio.gather(
                *(self._terminate(proc) for proc in processes), return_exceptions=True
            )
        self._processes.clear()


__all__ = [
    "ProcessOutcome",
    "SubprocessAdapter",
]
