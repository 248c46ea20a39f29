"""Run-state, strategy, and run-tracking models.

Used by :class:`~pipekit.kernel.orchestration.pipeline.Pipeline` for its
state machine and by :class:`~pipekit.kernel.registry.PipelineRegistry` to
keep execution history and statistics.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any


class ExecutionStrategy(StrEnum):
    """How a pipeline dispatches its steps."""

    SEQUENTIAL = "sequential"
    PARALLEL = "parallel"
    CONDITIONAL = "conditional"
    HYBRID = "hybrid"


class PipelineRunState(StrEnum):
    """Lifecycle state of a pipeline.

    ``IDLE -> RUNNING -> {COMPLETED, CANCELLED, FAILED}``; a terminated
    pipeline may be executed again.
    """

    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (
            PipelineRunState.COMPLETED,
            PipelineRunState.CANCELLED,
            PipelineRunState.FAILED,
        )


@dataclass(frozen=True, slots=True)
class PipelineRunRecord:
    """History entry for one registry-managed execution."""

    execution_id: str
    pipeline_name: str
    status: PipelineRunState
    started_at: datetime
    duration_ms: float
    executed_steps: int = 0
    skipped_steps: int = 0
    failed_steps: int = 0
    cancelled_steps: int = 0
    error: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def is_success(self) -> bool:
        return self.status == PipelineRunState.COMPLETED


@dataclass(slots=True)
class PipelineStatistics:
    """Aggregate numbers over the recorded runs of one pipeline."""

    pipeline_name: str
    total_executions: int = 0
    successful_executions: int = 0
    failed_executions: int = 0
    cancelled_executions: int = 0
    average_duration_ms: float = 0.0
    last_duration_ms: float | None = None
    last_execution_time: datetime | None = None

    @property
    def success_rate(self) -> float:
        """Percentage of runs that completed."""
        if not self.total_executions:
            return 0.0
        return self.successful_executions / self.total_executions * 100

    @property
    def failure_rate(self) -> float:
        if not self.total_executions:
            return 0.0
        return self.failed_executions / self.total_executions * 100

    @classmethod
    def from_records(
        cls, pipeline_name: str, records: list[PipelineRunRecord]
    ) -> PipelineStatistics:
        stats = cls(pipeline_name=pipeline_name)
        if not records:
            return stats
        stats.total_executions = len(records)
        stats.successful_executions = sum(1 for r in records if r.is_success)
        stats.failed_executions = sum(1 for r in records if r.status == PipelineRunState.FAILED)
        stats.cancelled_executions = sum(
            1 for r in records if r.status == PipelineRunState.CANCELLED
        )
        stats.average_duration_ms = sum(r.duration_ms for r in records) / len(records)
        last = max(records, key=lambda r: r.started_at)
        stats.last_duration_ms = last.duration_ms
        stats.last_execution_time = last.started_at
        return stats
