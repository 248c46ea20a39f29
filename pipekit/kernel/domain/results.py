"""Immutable result records produced by step and pipeline runs.

Step counts on :class:`PipelineExecutionResult` are derived from the ordered
step results, so ``executed + skipped + failed + cancelled`` always equals
the number of recorded steps.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

from pipekit.kernel.domain.pipeline_run import ExecutionStrategy, PipelineRunState
from pipekit.kernel.domain.step import StepOutcome

if TYPE_CHECKING:
    from pipekit.kernel.context import ExecutionContext


@dataclass(frozen=True, slots=True)
class StepExecutionResult:
    """What happened to one step in one run.

    ``input_payload`` and ``output_payload`` are the payload references seen
    before and after the step; they are not copies. ``cancelled`` marks a
    step interrupted by cancellation or a deadline; its outcome is STOP.
    ``step_index`` is the step's declared position in the pipeline, which
    tells apart steps that share a name.
    """

    step_name: str
    outcome: StepOutcome
    step_index: int = 0
    duration_ms: float = 0.0
    retry_count: int = 0
    input_payload: Any = None
    output_payload: Any = None
    error: BaseException | None = None
    cancelled: bool = False
    started_at: datetime | None = None

    @property
    def is_executed(self) -> bool:
        return self.outcome in (StepOutcome.SUCCESS, StepOutcome.STOP) and not self.cancelled

    @property
    def is_skipped(self) -> bool:
        return self.outcome == StepOutcome.SKIP

    @property
    def is_failed(self) -> bool:
        return self.outcome == StepOutcome.FAILED

    @property
    def is_success(self) -> bool:
        return not self.cancelled and self.outcome != StepOutcome.FAILED


@dataclass(frozen=True, slots=True)
class PipelineExecutionResult:
    """Aggregate result of one ``Pipeline.execute`` call.

    Attributes
    ----------
    pipeline_id : str
        Id of the pipeline that produced the result
    pipeline_name : str
        Name of that pipeline
    run_id : str
        Unique id of this run, also used as the log correlation id
    status : PipelineRunState
        COMPLETED, CANCELLED, or FAILED
    payload : Any
        Final payload of the run
    duration_ms : float
        Wall-clock duration of the run
    step_results : tuple[StepExecutionResult, ...]
        Per-step results in reporting order
    context : ExecutionContext
        Context used for the run
    strategy : ExecutionStrategy
        Strategy the run was dispatched with
    error : BaseException | None
        Top-level error: validation, step failure, or cancellation
    """

    pipeline_id: str
    pipeline_name: str
    run_id: str
    status: PipelineRunState
    payload: Any
    duration_ms: float
    step_results: tuple[StepExecutionResult, ...]
    context: ExecutionContext
    strategy: ExecutionStrategy = ExecutionStrategy.SEQUENTIAL
    error: BaseException | None = None
    started_at: datetime | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def is_success(self) -> bool:
        return self.status == PipelineRunState.COMPLETED

    @property
    def is_cancelled(self) -> bool:
        return self.status == PipelineRunState.CANCELLED

    @property
    def executed_steps(self) -> int:
        return sum(1 for r in self.step_results if r.is_executed)

    @property
    def skipped_steps(self) -> int:
        return sum(1 for r in self.step_results if r.is_skipped)

    @property
    def failed_steps(self) -> int:
        return sum(1 for r in self.step_results if r.is_failed)

    @property
    def cancelled_steps(self) -> int:
        return sum(1 for r in self.step_results if r.cancelled)

    @property
    def total_steps(self) -> int:
        return len(self.step_results)

    def get_step_result(self, step_name: str) -> StepExecutionResult | None:
        """First result named ``step_name``; see :meth:`get_step_result_at`."""
        for result in self.step_results:
            if result.step_name == step_name:
                return result
        return None

    def get_step_result_at(self, step_index: int) -> StepExecutionResult | None:
        """Result of the step declared at ``step_index``, if it was recorded."""
        for result in self.step_results:
            if result.step_index == step_index:
                return result
        return None

    def summary(self) -> dict[str, Any]:
        """Plain-dict view, convenient for logging and assertions."""
        return {
            "pipeline": self.pipeline_name,
            "run_id": self.run_id,
            "status": str(self.status),
            "strategy": str(self.strategy),
            "duration_ms": round(self.duration_ms, 2),
            "executed": self.executed_steps,
            "skipped": self.skipped_steps,
            "failed": self.failed_steps,
            "cancelled": self.cancelled_steps,
            "error": str(self.error) if self.error is not None else None,
        }
