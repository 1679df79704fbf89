"""
Per-cycle bookkeeping shared by the verifier and the transfer executor.

Each record examined in a cycle ends in exactly one ``RecordOutcome``;
``CycleTally`` counts them and produces the immutable ``StageCycleResult``.
"""

from __future__ import annotations

import time
from enum import Enum
from uuid import uuid4

from approval_kernel.domain.clock import Clock
from approval_kernel.domain.types import CycleStage, StageCycleResult
from approval_kernel.logging_config import get_logger

logger = get_logger("batch.cycle")


class RecordOutcome(str, Enum):
    ADVANCED = "advanced"  # Moved to the success state
    FAILED = "failed"  # Moved to a terminal failure state
    SKIPPED = "skipped"  # Configuration problem, unchanged
    DEFERRED = "deferred"  # Transient ledger condition, unchanged
    CONFLICT = "conflict"  # Another worker moved it first
    ERROR = "error"  # Unexpected exception, unchanged


class CycleTally:
    """Mutable counter for one stage pass."""

    def __init__(self, stage: CycleStage, clock: Clock):
        self.stage = stage
        self.cycle_id = uuid4().hex[:12]
        self._clock = clock
        self._started_at = clock.now()
        self._start = time.monotonic()
        self._counts: dict[RecordOutcome, int] = {o: 0 for o in RecordOutcome}
        self._examined = 0

    def record(self, outcome: RecordOutcome) -> None:
        self._examined += 1
        self._counts[outcome] += 1

    def finish(self) -> StageCycleResult:
        duration_ms = int((time.monotonic() - self._start) * 1000)
        result = StageCycleResult(
            stage=self.stage,
            examined=self._examined,
            advanced=self._counts[RecordOutcome.ADVANCED],
            failed=self._counts[RecordOutcome.FAILED],
            skipped=self._counts[RecordOutcome.SKIPPED],
            deferred=self._counts[RecordOutcome.DEFERRED],
            conflicts=self._counts[RecordOutcome.CONFLICT],
            errors=self._counts[RecordOutcome.ERROR],
            started_at=self._started_at,
            completed_at=self._clock.now(),
            duration_ms=duration_ms,
            cycle_id=self.cycle_id,
        )
        logger.info(
            "cycle_completed",
            extra={
                "examined": result.examined,
                "advanced": result.advanced,
                "failed": result.failed,
                "skipped": result.skipped,
                "deferred": result.deferred,
                "conflicts": result.conflicts,
                "errors": result.errors,
                "duration_ms": duration_ms,
            },
        )
        return result
