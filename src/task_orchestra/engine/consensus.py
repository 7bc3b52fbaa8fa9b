"""
Consensus over several responses to the same logical task.

Three modes are supported:

- ``majority``: confidence is the share of successful responses.
- ``byzantine``: up to ``floor(total * fault_tolerance)`` faulty participants
  are tolerated; below that threshold confidence drops to a flat 0.5.
- ``raft``: a strict majority of successes yields full confidence.

In every mode the decision is the successful result with the highest
self-reported confidence (earliest response wins ties). The computation is
deterministic; the clock used for ``consensus_time_ms`` is injectable.
"""

from __future__ import annotations

import logging
import math
import time
from collections.abc import Callable, Sequence

from task_orchestra.protocol.types import (
    ConsensusMode,
    ConsensusResult,
    TaskResponse,
    TaskResult,
    TaskStatus,
    ValidationReport,
)

logger = logging.getLogger(__name__)

DEFAULT_FAULT_TOLERANCE = 0.33
BYZANTINE_DEGRADED_CONFIDENCE = 0.5
AGREEMENT_THRESHOLD = 0.8
QUALITY_THRESHOLD = 0.7


class ConsensusManager:
    """Reconciles responses into a single :class:`ConsensusResult`."""

    def __init__(
        self,
        fault_tolerance: float = DEFAULT_FAULT_TOLERANCE,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if not 0.0 <= fault_tolerance < 1.0:
            raise ValueError("fault_tolerance must be in [0, 1).")
        self._fault_tolerance = fault_tolerance
        self._clock = clock

    @property
    def fault_tolerance(self) -> float:
        return self._fault_tolerance

    def reach(
        self,
        responses: Sequence[TaskResponse],
        mode: ConsensusMode | str = ConsensusMode.MAJORITY,
    ) -> ConsensusResult:
        """Reconcile *responses* under *mode*.

        Raises:
            ValueError: *responses* is empty or *mode* is not a known mode.
        """

        if not responses:
            raise ValueError("Consensus requires at least one response.")
        consensus_mode = ConsensusMode(mode)

        start = self._clock()
        total = len(responses)
        successful = [r for r in responses if r.status == TaskStatus.SUCCESS]
        successes = len(successful)
        dissenting = [r.provider.name for r in responses if r.status != TaskStatus.SUCCESS]

        if consensus_mode == ConsensusMode.BYZANTINE:
            confidence, faults = self._byzantine(total, successes)
        elif consensus_mode == ConsensusMode.RAFT:
            confidence, faults = self._raft(total, successes)
        else:
            confidence, faults = successes / total, 0

        if successes == 0:
            # No usable answer, whatever the mode
            confidence = 0.0

        elapsed_ms = max(0, int((self._clock() - start) * 1000))
        logger.debug(
            "Consensus (%s): %d/%d successful, confidence %.2f",
            consensus_mode.value,
            successes,
            total,
            confidence,
        )
        return ConsensusResult(
            decision=self._select_decision(responses, successful),
            confidence=confidence,
            participant_count=total,
            consensus_time_ms=elapsed_ms,
            dissenting_providers=dissenting,
            fault_count=faults,
            mode=consensus_mode,
        )

    def _byzantine(self, total: int, successes: int) -> tuple[float, int]:
        max_faults = math.floor(total * self._fault_tolerance)
        if successes >= total - max_faults:
            confidence = successes / total
        else:
            confidence = BYZANTINE_DEGRADED_CONFIDENCE
        return confidence, total - successes

    @staticmethod
    def _raft(total: int, successes: int) -> tuple[float, int]:
        majority = total // 2 + 1
        confidence = 1.0 if successes >= majority else successes / total
        return confidence, 0

    @staticmethod
    def _select_decision(
        responses: Sequence[TaskResponse], successful: Sequence[TaskResponse]
    ) -> TaskResult:
        """Highest-confidence successful result; first response if none succeeded."""

        best: TaskResponse | None = None
        for response in successful:
            if best is None or response.result.confidence > best.result.confidence:
                best = response
        if best is None:
            return responses[0].result
        return best.result


def cross_provider_validation(responses: Sequence[TaskResponse]) -> ValidationReport:
    """Score agreement and quality across *responses*.

    Agreement is the share of successful responses, quality the mean
    self-reported confidence.
    """

    if not responses:
        raise ValueError("Validation requires at least one response.")

    total = len(responses)
    agreement = sum(1 for r in responses if r.status == TaskStatus.SUCCESS) / total
    quality = min(1.0, sum(r.result.confidence for r in responses) / total)

    issues: list[str] = []
    if agreement < AGREEMENT_THRESHOLD:
        issues.append("Low cross-provider agreement")
    if quality < QUALITY_THRESHOLD:
        issues.append("Low confidence scores")

    return ValidationReport(
        cross_provider_agreement=agreement,
        quality_score=quality,
        issues=issues,
    )


__all__ = [
    "ConsensusManager",
    "DEFAULT_FAULT_TOLERANCE",
    "cross_provider_validation",
]
