"""
OpenAI-compatible chat completions adapters.

Talks to any endpoint implementing ``POST /chat/completions`` over httpx:
OpenAI itself and OpenRouter, which routes to many upstream models behind one
API key.

Docs: https://platform.openai.com/docs/api-reference/chat
      https://openrouter.ai/docs
"""

from __future__ import annotations

import os
import time
from typing import Any, ClassVar

import httpx

from task_orchestra.errors import ErrorType, ProviderCallError, classify_error
from task_orchestra.protocol.types import (
    QualityLevel,
    TaskRequest,
    TaskResponse,
    TaskStatus,
    TaskType,
)
from task_orchestra.providers.base import AgentCapability, DoctorResult, ProviderAdapter

DEFAULT_MAX_TOKENS = 4096
ENTERPRISE_MAX_TOKENS = 8192

_SYSTEM_PROMPTS: dict[TaskType, str] = {
    TaskType.CODE: "You are a senior software engineer. Return working, idiomatic code.",
    TaskType.RESEARCH: "You are a careful researcher. Cite assumptions and summarise findings.",
    TaskType.ANALYSIS: "You are an analyst. Identify key factors, risks and trade-offs.",
    TaskType.CREATIVE: "You are a creative writer. Produce original, engaging content.",
    TaskType.COORDINATION: "You are a project coordinator. Break work into ordered steps.",
    TaskType.HYBRID: "You are a versatile assistant. Combine analysis and implementation.",
}


class ChatCompletionsAdapter(ProviderAdapter):
    """OpenAI chat completions API provider adapter.

    Environment variables:
        OPENAI_API_KEY: Required unless ``api_key`` is passed in the config.
        OPENAI_BASE_URL: Optional. Override the API base URL.
    """

    name: ClassVar[str] = "openai"
    default_model: ClassVar[str | None] = "gpt-4o-mini"
    base_url: ClassVar[str] = "https://api.openai.com/v1"
    api_key_env: ClassVar[str] = "OPENAI_API_KEY"
    base_url_env: ClassVar[str] = "OPENAI_BASE_URL"
    default_confidence: ClassVar[float] = 0.8
    # USD per token
    cost_per_input_token: ClassVar[float] = 0.00000015
    cost_per_output_token: ClassVar[float] = 0.0000006
    capabilities: ClassVar[tuple[AgentCapability, ...]] = (
        AgentCapability(
            name="generalist",
            description="General purpose reasoning and writing",
            tier="primary",
            domains=[TaskType.RESEARCH, TaskType.ANALYSIS, TaskType.CREATIVE, TaskType.HYBRID],
            complexity="medium",
            speed=8,
            quality=8,
            cost=0.005,
        ),
        AgentCapability(
            name="planner",
            description="Plans and coordinates multi-step work",
            tier="primary",
            domains=[TaskType.COORDINATION],
            complexity="complex",
            speed=7,
            quality=8,
            cost=0.005,
        ),
        AgentCapability(
            name="coder",
            description="Writes and explains code",
            tier="secondary",
            domains=[TaskType.CODE],
            complexity="medium",
            speed=8,
            quality=7,
            cost=0.005,
        ),
    )

    def __init__(
        self,
        provider_name: str | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(provider_name)
        self._client = http_client
        self._owns_client = http_client is None
        self._api_key: str | None = None
        self._base_url = self.base_url

    async def _setup(self, config: dict[str, Any]) -> None:
        self._api_key = config.get("api_key") or os.environ.get(self.api_key_env)
        if not self._api_key:
            raise ProviderCallError(
                f"{self.api_key_env} environment variable not set", ErrorType.AUTH
            )
        self._base_url = (
            config.get("base_url") or os.environ.get(self.base_url_env) or self.base_url
        ).rstrip("/")

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(120.0, connect=10.0))
            self._owns_client = True
        return self._client

    async def _teardown(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    def _get_headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }

    def _build_request_body(self, request: TaskRequest) -> dict[str, Any]:
        """Build the chat completions request body."""

        requirements = request.requirements
        constraints = request.constraints
        if constraints is not None and constraints.max_tokens:
            max_tokens = constraints.max_tokens
        elif request.quality == QualityLevel.ENTERPRISE:
            max_tokens = ENTERPRISE_MAX_TOKENS
        else:
            max_tokens = DEFAULT_MAX_TOKENS

        body: dict[str, Any] = {
            "model": self.select_model(requirements, constraints),
            "messages": [
                {"role": "system", "content": _SYSTEM_PROMPTS[request.type]},
                {"role": "user", "content": request.prompt},
            ],
            "max_tokens": max_tokens,
        }
        if requirements is not None:
            body["temperature"] = round(requirements.creativity, 2)
        return body

    async def _execute(self, request: TaskRequest) -> TaskResponse:
        client = await self._get_client()
        start = time.monotonic()
        try:
            response = await client.post(
                f"{self._base_url}/chat/completions",
                headers=self._get_headers(),
                json=self._build_request_body(request),
                timeout=self.timeout_seconds(request),
            )
        except httpx.TimeoutException as exc:
            raise ProviderCallError(f"API request timed out: {exc}", ErrorType.TIMEOUT) from exc
        except httpx.HTTPError as exc:
            raise ProviderCallError(f"Connection error: {exc}", ErrorType.NETWORK) from exc

        if response.status_code >= 400:
            detail = response.text[:300]
            raise ProviderCallError(
                f"API error {response.status_code}: {detail}",
                classify_error(f"{response.status_code} {detail}"),
            )

        return self._parse_response(request, response.json(), self._elapsed_ms(start))

    def _parse_response(
        self, request: TaskRequest, data: dict[str, Any], duration_ms: int
    ) -> TaskResponse:
        """Parse a chat completions payload into a TaskResponse."""

        choices = data.get("choices") or []
        if not choices:
            raise ProviderCallError("API response contained no choices.")
        choice = choices[0]
        content = (choice.get("message") or {}).get("content") or ""
        finish_reason = choice.get("finish_reason")

        usage = data.get("usage") or {}
        prompt_tokens = int(usage.get("prompt_tokens") or 0)
        completion_tokens = int(usage.get("completion_tokens") or 0)
        total_tokens = int(usage.get("total_tokens") or prompt_tokens + completion_tokens)
        cost = (
            prompt_tokens * self.cost_per_input_token
            + completion_tokens * self.cost_per_output_token
        )

        # A truncated completion is usable but incomplete
        status = TaskStatus.PARTIAL if finish_reason == "length" else TaskStatus.SUCCESS
        return self.build_response(
            request,
            content,
            status=status,
            confidence=self.default_confidence,
            reasoning=f"Completed by {data.get('model') or 'model'} (finish_reason={finish_reason})",
            metadata={"finish_reason": finish_reason, "response_id": data.get("id")},
            tokens_used=total_tokens,
            cost=round(cost, 8),
            model=data.get("model"),
            duration_ms=duration_ms,
        )

    async def _probe(self) -> DoctorResult:
        if not self._api_key:
            return DoctorResult(
                ok=False,
                message=f"{self.api_key_env} environment variable not set",
                details={"error": "missing_api_key"},
            )

        start_time = time.time()
        try:
            client = await self._get_client()
            response = await client.get(f"{self._base_url}/models", headers=self._get_headers())
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            return DoctorResult(
                ok=False,
                message=f"API error: {e.response.status_code}",
                latency_ms=(time.time() - start_time) * 1000,
                details={"status_code": e.response.status_code},
            )
        except httpx.HTTPError as e:
            return DoctorResult(
                ok=False,
                message=f"Connection error: {e}",
                latency_ms=(time.time() - start_time) * 1000,
            )

        return DoctorResult(
            ok=True,
            message=f"{self.provider_name} API is accessible",
            latency_ms=(time.time() - start_time) * 1000,
        )


class OpenRouterAdapter(ChatCompletionsAdapter):
    """OpenRouter API provider adapter.

    Environment variables:
        OPENROUTER_API_KEY: Required. Your OpenRouter API key.
        OPENROUTER_BASE_URL: Optional. Override the API base URL.
        OPENROUTER_APP_TITLE: Optional. Custom X-Title header.
    """

    name: ClassVar[str] = "openrouter"
    default_model: ClassVar[str | None] = "anthropic/claude-3.5-sonnet"
    base_url: ClassVar[str] = "https://openrouter.ai/api/v1"
    api_key_env: ClassVar[str] = "OPENROUTER_API_KEY"
    base_url_env: ClassVar[str] = "OPENROUTER_BASE_URL"
    cost_per_input_token: ClassVar[float] = 0.000003
    cost_per_output_token: ClassVar[float] = 0.000015

    def _get_headers(self) -> dict[str, str]:
        headers = super()._get_headers()
        headers["X-Title"] = os.environ.get("OPENROUTER_APP_TITLE", "Task Orchestra")
        return headers


__all__ = [
    "ChatCompletionsAdapter",
    "OpenRouterAdapter",
]
