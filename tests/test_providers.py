"""Tests for the built-in provider adapters."""

from __future__ import annotations

import asyncio
import json
import sys
import time

import httpx
import pytest

from task_orchestra.errors import ErrorType
from task_orchestra.protocol.types import (
    HealthStatus,
    QualityLevel,
    SpeedPriority,
    TaskConstraints,
    TaskRequest,
    TaskRequirements,
    TaskStatus,
    TaskType,
)
from task_orchestra.providers.base import response_error_type
from task_orchestra.providers.cli import ClaudeCLIAdapter, CodexCLIAdapter, SubprocessAdapter
from task_orchestra.providers.cli.claude import ENTERPRISE_MODEL, FAST_MODEL
from task_orchestra.providers.openai_compat import ChatCompletionsAdapter, OpenRouterAdapter


async def _python_adapter(script: str, **config) -> SubprocessAdapter:
    adapter = SubprocessAdapter("py", cli_path=sys.executable)
    assert await adapter.initialize({"flags": ["-c", script], **config})
    return adapter


class TestSubprocessAdapter:
    """Tests for the generic CLI adapter."""

    @pytest.mark.asyncio
    async def test_stdout_becomes_content(self, sample_request):
        script = "import sys; print(sys.argv[-1].upper()); sys.stderr.write('tokens: 42')"
        adapter = await _python_adapter(script)
        response = await adapter.execute_task(sample_request)

        assert response.status == TaskStatus.SUCCESS
        assert response.result.content == "IMPLEMENT A RATE LIMITER"
        assert response.performance.tokens_used == 42
        assert response.result.metadata["returncode"] == 0
        assert adapter.active_processes == 0

    @pytest.mark.asyncio
    async def test_nonzero_exit_is_classified(self, sample_request):
        script = "import sys; sys.stderr.write('rate limit exceeded'); sys.exit(3)"
        adapter = await _python_adapter(script)
        response = await adapter.execute_task(sample_request)

        assert response.status == TaskStatus.FAILURE
        assert response_error_type(response) == ErrorType.RATE_LIMIT
        assert "rate limit exceeded" in response.result.reasoning

    @pytest.mark.asyncio
    async def test_timeout_terminates_process(self):
        adapter = await _python_adapter("import time; time.sleep(10)")
        request = TaskRequest(
            type=TaskType.CODE,
            description="Sleep",
            constraints=TaskConstraints(timeout_ms=200),
        )
        start = time.monotonic()
        response = await adapter.execute_task(request)

        assert time.monotonic() - start < 5
        assert response.status == TaskStatus.FAILURE
        assert response_error_type(response) == ErrorType.TIMEOUT
        assert adapter.active_processes == 0

    @pytest.mark.asyncio
    async def test_cancel_reaps_process(self, sample_request, monkeypatch):
        adapter = await _python_adapter("import time; time.sleep(10)")
        spawned = []
        spawn = asyncio.create_subprocess_exec

        async def recording_spawn(*args, **kwargs):
            proc = await spawn(*args, **kwargs)
            spawned.append(proc)
            return proc

        monkeypatch.setattr(asyncio, "create_subprocess_exec", recording_spawn)
        task = asyncio.create_task(adapter.execute_task(sample_request))
        while not spawned:
            await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert spawned[0].returncode is not None
        assert adapter.active_processes == 0

    @pytest.mark.asyncio
    async def test_missing_cli_fails_initialization(self):
        adapter = ClaudeCLIAdapter(cli_path=None)
        with pytest.MonkeyPatch.context() as mp:
            mp.setattr("task_orchestra.providers.cli.base.shutil.which", lambda _: None)
            assert await adapter.initialize({}) is False
        assert adapter.health.status == HealthStatus.UNAVAILABLE
        assert "CLI not found" in adapter.health.issues[0]

    @pytest.mark.asyncio
    async def test_health_probe_runs_version(self):
        adapter = await _python_adapter("print('unused')")
        # --version is passed straight to the interpreter
        health = await adapter.check_health()
        assert health.status == HealthStatus.HEALTHY

    def test_extract_token_count(self):
        assert SubprocessAdapter.extract_token_count("done\nTokens: 1234\n") == 1234
        assert SubprocessAdapter.extract_token_count("no usage here") == 0


class TestClaudeCLIAdapter:
    """Tests for Claude CLI command construction."""

    @pytest.mark.asyncio
    async def test_print_mode_command(self, sample_request):
        adapter = ClaudeCLIAdapter(cli_path="/usr/local/bin/claude")
        await adapter.initialize({})
        cmd = adapter.build_command(sample_request)
        assert cmd[:3] == ["/usr/local/bin/claude", "-p", "Implement a rate limiter"]
        assert cmd[3] == "--model"

    def test_model_follows_requirements(self):
        adapter = ClaudeCLIAdapter(cli_path="claude")
        assert adapter.select_model(TaskRequirements(speed=SpeedPriority.FAST)) == FAST_MODEL
        assert (
            adapter.select_model(TaskRequirements(quality=QualityLevel.ENTERPRISE))
            == ENTERPRISE_MODEL
        )

    def test_enterprise_only_for_code(self):
        adapter = ClaudeCLIAdapter()
        enterprise = TaskRequirements(quality=QualityLevel.ENTERPRISE)
        assert adapter.can_handle_task(TaskType.CODE, enterprise)
        assert not adapter.can_handle_task(TaskType.RESEARCH, enterprise)
        assert not adapter.can_handle_task(TaskType.HYBRID)


class TestCodexCLIAdapter:
    """Tests for Codex CLI command construction."""

    @pytest.mark.asyncio
    async def test_exec_command_with_safe_defaults(self, sample_request):
        adapter = CodexCLIAdapter(cli_path="/opt/codex")
        await adapter.initialize({})
        cmd = adapter.build_command(sample_request)
        assert cmd[:2] == ["/opt/codex", "exec"]
        assert "read-only" in cmd
        assert cmd[-1] == "Implement a rate limiter"
        assert cmd[cmd.index("-m") + 1] == "gpt-5.2-codex"

    @pytest.mark.asyncio
    async def test_permissive_flags_warn(self):
        adapter = CodexCLIAdapter(cli_path="/opt/codex")
        with pytest.warns(UserWarning, match="permissive flags"):
            await adapter.initialize({"flags": "--full-auto"})


def _completion(content: str = "Here is the code", finish_reason: str = "stop") -> dict:
    return {
        "id": "chatcmpl-1",
        "model": "gpt-4o-mini-2024-07-18",
        "choices": [{"message": {"content": content}, "finish_reason": finish_reason}],
        "usage": {"prompt_tokens": 100, "completion_tokens": 50, "total_tokens": 150},
    }


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestChatCompletionsAdapter:
    """Tests for the OpenAI-compatible HTTP adapter."""

    @pytest.mark.asyncio
    async def test_successful_completion(self, sample_request):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json=_completion())

        adapter = ChatCompletionsAdapter(http_client=_client(handler))
        assert await adapter.initialize({"api_key": "sk-test", "base_url": "https://llm.local/v1/"})
        response = await adapter.execute_task(sample_request)

        assert seen["url"] == "https://llm.local/v1/chat/completions"
        assert seen["auth"] == "Bearer sk-test"
        assert seen["body"]["model"] == "gpt-4o-mini"
        assert seen["body"]["messages"][1]["content"] == "Implement a rate limiter"
        assert response.status == TaskStatus.SUCCESS
        assert response.result.content == "Here is the code"
        assert response.performance.tokens_used == 150
        assert response.performance.model_used == "gpt-4o-mini-2024-07-18"
        assert response.performance.cost > 0

    @pytest.mark.asyncio
    async def test_truncated_completion_is_partial(self, sample_request):
        adapter = ChatCompletionsAdapter(
            http_client=_client(lambda r: httpx.Response(200, json=_completion(finish_reason="length")))
        )
        await adapter.initialize({"api_key": "sk-test"})
        response = await adapter.execute_task(sample_request)
        assert response.status == TaskStatus.PARTIAL
        assert response.result.metadata["finish_reason"] == "length"

    @pytest.mark.asyncio
    async def test_http_error_is_classified(self, sample_request):
        adapter = ChatCompletionsAdapter(
            http_client=_client(lambda r: httpx.Response(429, text="Too Many Requests"))
        )
        await adapter.initialize({"api_key": "sk-test"})
        response = await adapter.execute_task(sample_request)
        assert response.status == TaskStatus.FAILURE
        assert response_error_type(response) == ErrorType.RATE_LIMIT

    @pytest.mark.asyncio
    async def test_enterprise_max_tokens(self):
        bodies = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json=_completion())

        adapter = ChatCompletionsAdapter(http_client=_client(handler))
        await adapter.initialize({"api_key": "sk-test"})
        request = TaskRequest(
            type=TaskType.ANALYSIS,
            description="Assess risk",
            requirements=TaskRequirements(quality=QualityLevel.ENTERPRISE, creativity=0.3),
        )
        await adapter.execute_task(request)
        assert bodies[0]["max_tokens"] == 8192
        assert bodies[0]["temperature"] == 0.3

    @pytest.mark.asyncio
    async def test_missing_api_key(self, monkeypatch):
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        adapter = ChatCompletionsAdapter()
        assert await adapter.initialize({}) is False
        assert "OPENAI_API_KEY" in adapter.health.issues[0]

    @pytest.mark.asyncio
    async def test_probe_lists_models(self):
        adapter = ChatCompletionsAdapter(
            http_client=_client(lambda r: httpx.Response(200, json={"data": []}))
        )
        await adapter.initialize({"api_key": "sk-test"})
        health = await adapter.check_health()
        assert health.status == HealthStatus.HEALTHY

    @pytest.mark.asyncio
    async def test_injected_client_survives_shutdown(self):
        client = _client(lambda r: httpx.Response(200, json={}))
        adapter = ChatCompletionsAdapter(http_client=client)
        await adapter.initialize({"api_key": "sk-test"})
        await adapter.shutdown()
        assert not client.is_closed
        await client.aclose()


class TestOpenRouterAdapter:
    """Tests for the OpenRouter adapter."""

    @pytest.mark.asyncio
    async def test_title_header_and_env_key(self, monkeypatch, sample_request):
        monkeypatch.setenv("OPENROUTER_API_KEY", "or-key")
        headers = {}

        def handler(request: httpx.Request) -> httpx.Response:
            headers.update(request.headers)
            return httpx.Response(200, json=_completion())

        adapter = OpenRouterAdapter(http_client=_client(handler))
        assert await adapter.initialize({})
        await adapter.execute_task(sample_request)

        assert headers["authorization"] == "Bearer or-key"
        assert headers["x-title"] == "Task Orchestra"
        assert adapter.provider_name == "openrouter"
