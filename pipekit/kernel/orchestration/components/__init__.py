"""Execution components used by :class:`~pipekit.kernel.orchestration.pipeline.Pipeline`."""

from pipekit.kernel.orchestration.components.retry import RetryPolicy
from pipekit.kernel.orchestration.components.step_runner import StepRunner
from pipekit.kernel.orchestration.components.strategy_executor import (
    PhaseResult,
    StrategyExecutor,
    dependency_cycle,
)

__all__ = [
    "PhaseResult",
    "RetryPolicy",
    "StepRunner",
    "StrategyExecutor",
    "dependency_cycle",
]
