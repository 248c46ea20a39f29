"""Pipeline orchestration: the pipeline, its execution components and events."""

from pipekit.kernel.orchestration.components import RetryPolicy, StepRunner, StrategyExecutor
from pipekit.kernel.orchestration.observer_manager import (
    ErrorHandler,
    LoggingErrorHandler,
    Observer,
    ObserverManager,
)
from pipekit.kernel.orchestration.pipeline import Pipeline

__all__ = [
    "ErrorHandler",
    "LoggingErrorHandler",
    "Observer",
    "ObserverManager",
    "Pipeline",
    "RetryPolicy",
    "StepRunner",
    "StrategyExecutor",
]
