"""Event data classes emitted during pipeline runs.

Events are plain data. They are delivered in order, on the run's own task,
through :class:`~pipekit.kernel.orchestration.observer_manager.ObserverManager`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from pipekit.kernel.domain.results import PipelineExecutionResult, StepExecutionResult


@dataclass
class Event:
    """Base class for all events - provides timestamp."""

    timestamp: datetime = field(default_factory=datetime.now, init=False)

    def log_message(self) -> str:
        """Get a formatted log message for this event.

        Override in subclasses to provide custom formatting.
        """
        return f"{self.__class__.__name__} at {self.timestamp.isoformat()}"


# Pipeline events
@dataclass(slots=True)
class PipelineStarted(Event):
    """A pipeline run has started."""

    name: str
    run_id: str
    strategy: str
    total_steps: int
    context: Any = field(default=None, repr=False)

    def log_message(self) -> str:
        return (
            f"🚀 Pipeline '{self.name}' started ({self.strategy}, {self.total_steps} steps)"
        )


@dataclass(slots=True)
class PipelineCompleted(Event):
    """A pipeline run finished successfully."""

    name: str
    run_id: str
    duration_ms: float
    result: PipelineExecutionResult | None = field(default=None, repr=False)

    def log_message(self) -> str:
        return f"🎉 Pipeline '{self.name}' completed in {self.duration_ms / 1000:.2f}s"


@dataclass(slots=True)
class PipelineFailed(Event):
    """A pipeline run failed."""

    name: str
    run_id: str
    error: BaseException | None
    duration_ms: float = 0.0
    result: PipelineExecutionResult | None = field(default=None, repr=False)

    def log_message(self) -> str:
        return f"❌ Pipeline '{self.name}' failed: {self.error}"


@dataclass(slots=True)
class PipelineCancelled(Event):
    """A pipeline run was cancelled or timed out."""

    name: str
    run_id: str
    reason: str | None = None
    duration_ms: float = 0.0
    result: PipelineExecutionResult | None = field(default=None, repr=False)

    def log_message(self) -> str:
        return f"🛑 Pipeline '{self.name}' cancelled: {self.reason or 'unknown'}"


# Step events
@dataclass(slots=True)
class StepStarted(Event):
    """A step has started executing."""

    name: str
    pipeline_name: str
    step_index: int
    context: Any = field(default=None, repr=False)

    def log_message(self) -> str:
        return f"▶️ Step '{self.name}' started (#{self.step_index} in '{self.pipeline_name}')"


@dataclass(slots=True)
class StepCompleted(Event):
    """A step finished with SUCCESS or STOP."""

    name: str
    pipeline_name: str
    result: StepExecutionResult

    @property
    def duration_ms(self) -> float:
        return self.result.duration_ms

    def log_message(self) -> str:
        return (
            f"✅ Step '{self.name}' {self.result.outcome} in {self.result.duration_ms:.1f}ms"
        )


@dataclass(slots=True)
class StepFailed(Event):
    """A step failed."""

    name: str
    pipeline_name: str
    error: BaseException | None
    result: StepExecutionResult | None = None

    def log_message(self) -> str:
        return f"❌ Step '{self.name}' failed: {self.error}"


@dataclass(slots=True)
class StepSkipped(Event):
    """A step was skipped (``can_execute`` off or predicate false)."""

    name: str
    pipeline_name: str
    reason: str | None = None
    context: Any = field(default=None, repr=False)

    def log_message(self) -> str:
        return f"⏭️ Step '{self.name}' skipped: {self.reason or 'unknown'}"


@dataclass(slots=True)
class StepCancelled(Event):
    """A step was interrupted by cancellation or a deadline."""

    name: str
    pipeline_name: str
    reason: str | None = None

    def log_message(self) -> str:
        return f"🚫 Step '{self.name}' cancelled: {self.reason or 'unknown'}"


@dataclass(slots=True)
class StepRetrying(Event):
    """A step is about to be attempted again."""

    name: str
    pipeline_name: str
    attempt: int
    max_retries: int
    delay_ms: float
    error: BaseException | None = None

    def log_message(self) -> str:
        cause = f" after error: {self.error}" if self.error is not None else ""
        return (
            f"🔄 Step '{self.name}' retry {self.attempt}/{self.max_retries} "
            f"in {self.delay_ms:.0f}ms{cause}"
        )
