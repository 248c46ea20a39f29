"""Tests for result records, run state and run statistics."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from pipekit.kernel.context import ExecutionContext
from pipekit.kernel.domain import (
    ExecutionStrategy,
    PipelineExecutionResult,
    PipelineRunRecord,
    PipelineRunState,
    PipelineStatistics,
    StepExecutionResult,
    StepOutcome,
)


def make_result(*step_results: StepExecutionResult, **kwargs) -> PipelineExecutionResult:
    values = {
        "pipeline_id": "id",
        "pipeline_name": "p",
        "run_id": "run",
        "status": PipelineRunState.COMPLETED,
        "payload": None,
        "duration_ms": 12.3456,
        "step_results": step_results,
        "context": ExecutionContext(),
    }
    values.update(kwargs)
    return PipelineExecutionResult(**values)


def make_record(status: PipelineRunState, duration_ms: float, minutes: int) -> PipelineRunRecord:
    return PipelineRunRecord(
        execution_id=f"e{minutes}",
        pipeline_name="p",
        status=status,
        started_at=datetime(2024, 1, 1, tzinfo=UTC) + timedelta(minutes=minutes),
        duration_ms=duration_ms,
    )


class TestStepExecutionResult:
    """Classification of a single step result."""

    @pytest.mark.parametrize(
        ("outcome", "cancelled", "executed", "success"),
        [
            (StepOutcome.SUCCESS, False, True, True),
            (StepOutcome.STOP, False, True, True),
            (StepOutcome.STOP, True, False, False),
            (StepOutcome.SKIP, False, False, True),
            (StepOutcome.FAILED, False, False, False),
        ],
    )
    def test_flags(
        self, outcome: StepOutcome, cancelled: bool, executed: bool, success: bool
    ) -> None:
        result = StepExecutionResult("s", outcome, cancelled=cancelled)
        assert result.is_executed is executed
        assert result.is_success is success
        assert result.is_skipped is (outcome == StepOutcome.SKIP)
        assert result.is_failed is (outcome == StepOutcome.FAILED)


class TestPipelineExecutionResult:
    """Counts are derived from the step results."""

    def test_counts_partition_steps(self) -> None:
        result = make_result(
            StepExecutionResult("a", StepOutcome.SUCCESS),
            StepExecutionResult("b", StepOutcome.SKIP),
            StepExecutionResult("c", StepOutcome.FAILED),
            StepExecutionResult("d", StepOutcome.STOP, cancelled=True),
            StepExecutionResult("e", StepOutcome.STOP),
        )
        assert result.executed_steps == 2
        assert result.skipped_steps == 1
        assert result.failed_steps == 1
        assert result.cancelled_steps == 1
        assert result.total_steps == 5
        assert (
            result.executed_steps
            + result.skipped_steps
            + result.failed_steps
            + result.cancelled_steps
            == result.total_steps
        )

    def test_status_flags(self) -> None:
        assert make_result().is_success
        cancelled = make_result(status=PipelineRunState.CANCELLED)
        assert cancelled.is_cancelled
        assert not cancelled.is_success
        assert not make_result(status=PipelineRunState.FAILED).is_success

    def test_get_step_result(self) -> None:
        a = StepExecutionResult("a", StepOutcome.SUCCESS)
        result = make_result(a)
        assert result.get_step_result("a") is a
        assert result.get_step_result("missing") is None

    def test_get_step_result_at(self) -> None:
        first = StepExecutionResult("same", StepOutcome.SUCCESS, step_index=0)
        second = StepExecutionResult("same", StepOutcome.SKIP, step_index=2)
        result = make_result(first, second)
        assert result.get_step_result("same") is first
        assert result.get_step_result_at(2) is second
        assert result.get_step_result_at(1) is None

    def test_summary(self) -> None:
        result = make_result(
            StepExecutionResult("a", StepOutcome.SUCCESS),
            status=PipelineRunState.FAILED,
            strategy=ExecutionStrategy.PARALLEL,
            error=ValueError("boom"),
        )
        assert result.summary() == {
            "pipeline": "p",
            "run_id": "run",
            "status": "failed",
            "strategy": "parallel",
            "duration_ms": 12.35,
            "executed": 1,
            "skipped": 0,
            "failed": 0,
            "cancelled": 0,
            "error": "boom",
        }


class TestRunState:
    def test_terminal_states(self) -> None:
        assert not PipelineRunState.IDLE.is_terminal
        assert not PipelineRunState.RUNNING.is_terminal
        assert PipelineRunState.COMPLETED.is_terminal
        assert PipelineRunState.CANCELLED.is_terminal
        assert PipelineRunState.FAILED.is_terminal


class TestPipelineStatistics:
    """Aggregates over run records."""

    def test_empty(self) -> None:
        stats = PipelineStatistics.from_records("p", [])
        assert stats.total_executions == 0
        assert stats.success_rate == 0.0
        assert stats.failure_rate == 0.0
        assert stats.last_execution_time is None

    def test_aggregates(self) -> None:
        records = [
            make_record(PipelineRunState.COMPLETED, 10.0, 0),
            make_record(PipelineRunState.FAILED, 30.0, 2),
            make_record(PipelineRunState.CANCELLED, 20.0, 1),
            make_record(PipelineRunState.COMPLETED, 40.0, 3),
        ]
        stats = PipelineStatistics.from_records("p", records)
        assert stats.total_executions == 4
        assert stats.successful_executions == 2
        assert stats.failed_executions == 1
        assert stats.cancelled_executions == 1
        assert stats.average_duration_ms == 25.0
        assert stats.last_duration_ms == 40.0
        assert stats.last_execution_time == records[3].started_at
        assert stats.success_rate == 50.0
        assert stats.failure_rate == 25.0
