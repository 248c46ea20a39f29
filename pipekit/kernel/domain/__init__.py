"""Domain models: steps, step entries, run state, and results."""

from pipekit.kernel.domain.entries import (
    ConditionalEntry,
    ParallelEntry,
    PlainEntry,
    Predicate,
    StepEntry,
    as_entry,
    conditional,
    parallel,
)
from pipekit.kernel.domain.pipeline_run import (
    ExecutionStrategy,
    PipelineRunRecord,
    PipelineRunState,
    PipelineStatistics,
)
from pipekit.kernel.domain.results import PipelineExecutionResult, StepExecutionResult
from pipekit.kernel.domain.step import (
    DEFAULT_MAX_RETRIES,
    DEFAULT_STEP_TIMEOUT_MS,
    FunctionStep,
    Step,
    StepOutcome,
    TransformStep,
)

__all__ = [
    "DEFAULT_MAX_RETRIES",
    "DEFAULT_STEP_TIMEOUT_MS",
    "ConditionalEntry",
    "ExecutionStrategy",
    "FunctionStep",
    "ParallelEntry",
    "PipelineExecutionResult",
    "PipelineRunRecord",
    "PipelineRunState",
    "PipelineStatistics",
    "PlainEntry",
    "Predicate",
    "Step",
    "StepEntry",
    "StepExecutionResult",
    "StepOutcome",
    "TransformStep",
    "as_entry",
    "conditional",
    "parallel",
]
