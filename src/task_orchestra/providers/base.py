"""Base provider adapter definitions for Task Orchestra."""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, ClassVar, Literal

from pydantic import BaseModel, ConfigDict, Field

from task_orchestra.errors import (
    NON_RETRYABLE_ERRORS,
    ErrorType,
    ProviderCallError,
    classify_error,
)
from task_orchestra.protocol.types import (
    HealthStatus,
    ProviderHealth,
    ProviderInfo,
    QualityLevel,
    SpeedPriority,
    TaskConstraints,
    TaskPerformance,
    TaskRequest,
    TaskRequirements,
    TaskResponse,
    TaskResult,
    TaskStatus,
    TaskType,
)

logger = logging.getLogger(__name__)

CapabilityTier = Literal["primary", "secondary", "specialized"]
Complexity = Literal["simple", "medium", "complex", "enterprise"]

MAX_CAPABILITY_SCORE = 20
GENERALIST_CONFIDENCE = 0.3
DEFAULT_TIMEOUT_MS = 300_000

_TIER_SCORES: dict[str, int] = {"primary": 10, "secondary": 7, "specialized": 5}

# Bonus for how well a capability's complexity fits the requested quality
_COMPLEXITY_FIT: dict[str, dict[QualityLevel, int]] = {
    "simple": {QualityLevel.DRAFT: 3, QualityLevel.PRODUCTION: 1, QualityLevel.ENTERPRISE: 0},
    "medium": {QualityLevel.DRAFT: 2, QualityLevel.PRODUCTION: 3, QualityLevel.ENTERPRISE: 2},
    "complex": {QualityLevel.DRAFT: 1, QualityLevel.PRODUCTION: 2, QualityLevel.ENTERPRISE: 3},
    "enterprise": {QualityLevel.DRAFT: 0, QualityLevel.PRODUCTION: 1, QualityLevel.ENTERPRISE: 5},
}


class AgentCapability(BaseModel):
    """A named agent profile an adapter can route work to."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    name: str = Field(..., min_length=1)
    description: str = Field(default="")
    tier: CapabilityTier = Field(default="primary")
    domains: list[TaskType] = Field(default_factory=list)
    complexity: Complexity = Field(default="medium")
    speed: int = Field(default=5, ge=1, le=10)
    quality: int = Field(default=5, ge=1, le=10)
    cost: float = Field(default=1.0, ge=0.0, description="Relative cost per task.")


class OptimalAgent(BaseModel):
    """Best agent profile for a task, as chosen by an adapter."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    agent: str
    model: str | None = None
    confidence: float = Field(..., ge=0.0, le=1.0)
    reasoning: str = ""


class DoctorResult(BaseModel):
    """Health probe result for providers."""

    model_config = ConfigDict(extra="allow", frozen=True)

    ok: bool = Field(..., description="Whether the provider is healthy.")
    message: str | None = Field(default=None, description="Optional status message.")
    latency_ms: float | None = Field(
        default=None, description="Measured latency in milliseconds for the health check."
    )
    details: Mapping[str, Any] | None = Field(
        default=None, description="Additional diagnostic details."
    )


class AdapterEventKind(str, Enum):
    """Notifications an adapter publishes to its subscribers."""

    HEALTH_UPDATED = "health_updated"
    TASK_STARTED = "task_started"
    TASK_COMPLETED = "task_completed"
    TASK_FAILED = "task_failed"


@dataclass(frozen=True)
class AdapterEvent:
    """One adapter notification."""

    kind: AdapterEventKind
    provider: str
    request_id: str | None = None
    health: ProviderHealth | None = None
    response: TaskResponse | None = None
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())


AdapterListener = Callable[[AdapterEvent], None]


def calculate_capability_score(
    capability: AgentCapability,
    task_type: TaskType,
    requirements: TaskRequirements | None = None,
    constraints: TaskConstraints | None = None,
) -> int:
    """Score how well *capability* fits a task, from 0 to ``MAX_CAPABILITY_SCORE``."""

    score = 0
    if task_type in capability.domains:
        score += _TIER_SCORES[capability.tier]

    if requirements is not None:
        if requirements.speed == SpeedPriority.FAST and capability.speed >= 8:
            score += 3
        if requirements.quality == QualityLevel.ENTERPRISE and capability.quality >= 9:
            score += 5

    if constraints is not None and constraints.cost_ceiling is not None:
        if capability.cost <= constraints.cost_ceiling:
            score += 2

    quality = requirements.quality if requirements else QualityLevel.PRODUCTION
    score += _COMPLEXITY_FIT.get(capability.complexity, {}).get(quality, 1)

    return min(score, MAX_CAPABILITY_SCORE)


def failure_response(
    request: TaskRequest,
    provider: ProviderInfo,
    message: str,
    *,
    error_type: ErrorType = ErrorType.UNKNOWN,
    duration_ms: float = 0,
    error_name: str = "Error",
) -> TaskResponse:
    """Build the terminal failure response for *request*."""

    return TaskResponse(
        id=request.id,
        status=TaskStatus.FAILURE,
        result=TaskResult(
            content="",
            confidence=0.0,
            reasoning=f"Error: {message}",
            metadata={
                "error": error_name,
                "error_type": error_type.value,
                "message": message,
            },
        ),
        performance=TaskPerformance(duration_ms=max(0, int(duration_ms)), model_used="error"),
        provider=provider,
    )


def response_error_type(response: TaskResponse) -> ErrorType:
    """Return the classified error type recorded on a failure response."""

    raw = response.result.metadata.get("error_type")
    if raw:
        try:
            return ErrorType(raw)
        except ValueError:
            pass
    return classify_error(response.result.reasoning or "")


class ProviderAdapter(ABC):
    """Abstract base class for provider adapters.

    Implementations should:
    - set :attr:`name` to a stable default provider identifier (e.g. "claude", "openai")
    - set :attr:`capabilities` to the agent profiles the provider offers
    - implement async :meth:`_execute` and async :meth:`_probe`
    - optionally override :meth:`_setup`, :meth:`_teardown` and :meth:`can_handle_task`

    The public methods enforce the adapter boundary: :meth:`initialize` fails
    closed, :meth:`execute_task` always returns a :class:`TaskResponse` and
    :meth:`shutdown` is idempotent. Only cancellation propagates.
    """

    name: ClassVar[str]
    version: ClassVar[str] = "1.0.0"
    capabilities: ClassVar[tuple[AgentCapability, ...]] = ()
    supported_task_types: ClassVar[frozenset[TaskType]] = frozenset(TaskType)
    default_model: ClassVar[str | None] = None

    def __init__(self, provider_name: str | None = None) -> None:
        self.provider_name = provider_name or self.name
        self._config: dict[str, Any] = {}
        self._initialized = False
        self._closed = False
        self._health = ProviderHealth()
        self._listeners: list[AdapterListener] = []
        self._calls = 0
        self._answered = 0
        self._total_response_ms = 0.0

    # ------------------------------------------------------------------
    # Hooks for concrete adapters
    # ------------------------------------------------------------------

    async def _setup(self, config: dict[str, Any]) -> None:
        """Prepare provider resources. Raise to signal an unusable provider."""

    @abstractmethod
    async def _execute(self, request: TaskRequest) -> TaskResponse:
        """Run *request* against the provider. May raise; the base class converts."""

    @abstractmethod
    async def _probe(self) -> DoctorResult:
        """Perform a lightweight provider health check."""

    async def _teardown(self) -> None:
        """Release provider resources."""

    # ------------------------------------------------------------------
    # Capability contract
    # ------------------------------------------------------------------

    @property
    def health(self) -> ProviderHealth:
        return self._health

    @property
    def initialized(self) -> bool:
        return self._initialized

    def is_ready(self) -> bool:
        """Initialized and not known to be unavailable."""
        return self._initialized and self._health.status != HealthStatus.UNAVAILABLE

    async def initialize(self, config: Mapping[str, Any] | None = None) -> bool:
        """Initialize the adapter. Returns False (never raises) on setup errors."""

        self._config = dict(config or {})
        self._closed = False
        try:
            await self._setup(self._config)
        except Exception as exc:
            logger.warning("Provider %s failed to initialize: %s", self.provider_name, exc)
            self._initialized = False
            self._set_health(status=HealthStatus.UNAVAILABLE, issues=[f"Initialization failed: {exc}"])
            return False

        self._initialized = True
        self._set_health(status=HealthStatus.HEALTHY, issues=[])
        return True

    async def execute_task(self, request: TaskRequest) -> TaskResponse:
        """Execute *request* and return exactly one response."""

        start = time.monotonic()
        self._emit(AdapterEventKind.TASK_STARTED, request_id=request.id)

        if not self._initialized:
            response = self.create_error_response(
                request, ProviderCallError(f"Provider {self.provider_name} is not initialized.")
            )
        else:
            try:
                response = await self._execute(request)
            except Exception as exc:
                logger.warning(
                    "Provider %s failed task %s: %s", self.provider_name, request.id, exc
                )
                response = self.create_error_response(request, exc, self._elapsed_ms(start))
            else:
                response = self._finalize(request, response, start)
            self._record_outcome(response)

        kind = (
            AdapterEventKind.TASK_FAILED
            if response.status == TaskStatus.FAILURE
            else AdapterEventKind.TASK_COMPLETED
        )
        self._emit(kind, request_id=request.id, response=response)
        return response

    def get_capabilities(self) -> list[AgentCapability]:
        return list(self.capabilities)

    def can_handle_task(
        self, task_type: TaskType, requirements: TaskRequirements | None = None
    ) -> bool:
        """Return True if this provider should receive tasks of *task_type*."""
        return task_type in self.supported_task_types

    def select_model(
        self,
        requirements: TaskRequirements | None = None,
        constraints: TaskConstraints | None = None,
    ) -> str | None:
        """Pick the model identifier for a task."""

        if constraints is not None and constraints.model:
            return constraints.model
        configured = self._config.get("model")
        if configured:
            return str(configured)
        return self.default_model

    def get_optimal_agent(
        self,
        task_type: TaskType,
        requirements: TaskRequirements | None = None,
        constraints: TaskConstraints | None = None,
    ) -> OptimalAgent:
        """Choose the best-scoring capability for a task."""

        best: AgentCapability | None = None
        best_score = 0
        for capability in self.get_capabilities():
            score = calculate_capability_score(capability, task_type, requirements, constraints)
            if score > best_score:
                best, best_score = capability, score

        model = self.select_model(requirements, constraints)
        if best is None:
            return OptimalAgent(
                agent=f"{self.provider_name}-generalist",
                model=model,
                confidence=GENERALIST_CONFIDENCE,
                reasoning="No specialised capability matched; using the general agent.",
            )

        return OptimalAgent(
            agent=best.name,
            model=model,
            confidence=best_score / MAX_CAPABILITY_SCORE,
            reasoning=(
                f"Selected {best.name} (score {best_score}/{MAX_CAPABILITY_SCORE}) "
                f"for {task_type.value} task"
            ),
        )

    async def check_health(self) -> ProviderHealth:
        """Probe the provider and refresh :attr:`health`. Never raises."""

        if not self._initialized:
            self._set_health(status=HealthStatus.UNAVAILABLE, issues=["Adapter not initialized"])
            return self._health

        start = time.monotonic()
        try:
            result = await self._probe()
        except Exception as exc:
            logger.debug("Provider %s health probe failed: %s", self.provider_name, exc)
            result = DoctorResult(ok=False, message=str(exc))

        latency_ms = result.latency_ms if result.latency_ms is not None else self._elapsed_ms(start)
        if result.ok:
            self._set_health(status=HealthStatus.HEALTHY, response_time_ms=latency_ms, issues=[])
        else:
            message = result.message or "Health check failed"
            error_type = classify_error(message)
            status = (
                HealthStatus.UNAVAILABLE
                if error_type in NON_RETRYABLE_ERRORS
                else HealthStatus.DEGRADED
            )
            self._set_health(status=status, response_time_ms=latency_ms, issues=[message])
        return self._health

    async def shutdown(self) -> None:
        """Release resources. Safe to call more than once."""

        if self._closed:
            return
        self._closed = True
        try:
            await self._teardown()
        except Exception as exc:
            logger.warning("Provider %s shutdown error: %s", self.provider_name, exc)
        finally:
            self._initialized = False
            self._set_health(status=HealthStatus.UNAVAILABLE, issues=["Adapter shut down"])

    # ------------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------------

    def subscribe(self, listener: AdapterListener) -> Callable[[], None]:
        """Register *listener* for adapter events and return an unsubscribe callable."""

        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _emit(self, kind: AdapterEventKind, **fields: Any) -> None:
        event = AdapterEvent(kind=kind, provider=self.provider_name, **fields)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.debug("Adapter listener failed for %s", kind.value, exc_info=True)

    # ------------------------------------------------------------------
    # Response helpers
    # ------------------------------------------------------------------

    def provider_info(self) -> ProviderInfo:
        return ProviderInfo(
            name=self.provider_name,
            version=self.version,
            capabilities=[capability.name for capability in self.get_capabilities()],
        )

    def build_response(
        self,
        request: TaskRequest,
        content: str,
        *,
        confidence: float,
        status: TaskStatus = TaskStatus.SUCCESS,
        reasoning: str | None = None,
        alternatives: list[str] | None = None,
        metadata: Mapping[str, Any] | None = None,
        tokens_used: int = 0,
        cost: float = 0.0,
        model: str | None = None,
        duration_ms: int = 0,
    ) -> TaskResponse:
        """Assemble a response attributed to this adapter."""

        return TaskResponse(
            id=request.id,
            status=status,
            result=TaskResult(
                content=content,
                confidence=confidence,
                reasoning=reasoning,
                alternatives=list(alternatives or []),
                metadata=dict(metadata or {}),
            ),
            performance=TaskPerformance(
                duration_ms=duration_ms,
                tokens_used=tokens_used,
                cost=cost,
                model_used=model or self.select_model(request.requirements, request.constraints) or "unknown",
            ),
            provider=self.provider_info(),
        )

    def create_error_response(
        self, request: TaskRequest, error: BaseException | str, duration_ms: float = 0
    ) -> TaskResponse:
        """Convert *error* into this adapter's failure response for *request*."""

        message = str(error) or type(error).__name__
        error_type = getattr(error, "error_type", None)
        if not isinstance(error_type, ErrorType):
            error_type = classify_error(message)
        error_name = "Error" if isinstance(error, str) else type(error).__name__
        return failure_response(
            request,
            self.provider_info(),
            message,
            error_type=error_type,
            duration_ms=duration_ms,
            error_name=error_name,
        )

    def timeout_seconds(self, request: TaskRequest) -> float:
        """Per-call timeout for *request* in seconds."""

        if request.constraints is not None and request.constraints.timeout_ms:
            return request.constraints.timeout_ms / 1000.0
        return float(self._config.get("timeout_ms", DEFAULT_TIMEOUT_MS)) / 1000.0

    # ------------------------------------------------------------------
    # Internal bookkeeping
    # ------------------------------------------------------------------

    @staticmethod
    def _elapsed_ms(start: float) -> int:
        return int((time.monotonic() - start) * 1000)

    def _finalize(self, request: TaskRequest, response: TaskResponse, start: float) -> TaskResponse:
        """Pin the response id to the request and fill in measured duration."""

        updates: dict[str, Any] = {}
        if response.id != request.id:
            updates["id"] = request.id
        if response.performance.duration_ms == 0:
            updates["performance"] = response.performance.model_copy(
                update={"duration_ms": self._elapsed_ms(start)}
            )
        return response.model_copy(update=updates) if updates else response

    def _record_outcome(self, response: TaskResponse) -> None:
        """Update running health statistics from one call outcome."""

        self._calls += 1
        if response.status != TaskStatus.FAILURE:
            self._answered += 1
        self._total_response_ms += response.performance.duration_ms
        success_rate = self._answered / self._calls

        if response.status == TaskStatus.FAILURE:
            error_type = response_error_type(response)
            if error_type in NON_RETRYABLE_ERRORS:
                status = HealthStatus.UNAVAILABLE
            elif error_type == ErrorType.CANCELLED:
                status = self._health.status
            else:
                status = HealthStatus.DEGRADED
            issues = [response.result.reasoning or "Task failed"]
        else:
            status = HealthStatus.HEALTHY
            issues = []

        self._set_health(
            status=status,
            response_time_ms=self._total_response_ms / self._calls,
            success_rate=success_rate,
            error_rate=1.0 - success_rate,
            issues=issues,
        )

    def _set_health(self, **updates: Any) -> None:
        updates.setdefault("last_check", datetime.now(timezone.utc))
        self._health = self._health.model_copy(update=updates)
        self._emit(AdapterEventKind.HEALTH_UPDATED, health=self._health)


__all__ = [
    "AdapterEvent",
    "AdapterEventKind",
    "AdapterListener",
    "AgentCapability",
    "DoctorResult",
    "MAX_CAPABILITY_SCORE",
    "OptimalAgent",
    "ProviderAdapter",
    "calculate_capability_score",
    "failure_response",
    "response_error_type",
]
