"""Ready-to-use observers.

Observers are read-only: they never modify the run they watch. Failures
inside an observer are isolated by the observer manager.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from pipekit.kernel.logging import get_logger
from pipekit.kernel.orchestration.events.events import (
    Event,
    PipelineCancelled,
    PipelineCompleted,
    PipelineFailed,
    PipelineStarted,
    StepCancelled,
    StepCompleted,
    StepFailed,
    StepRetrying,
    StepSkipped,
    StepStarted,
)

logger = get_logger(__name__)


@dataclass(slots=True)
class StepMetrics:
    """Counters and timings for one step name."""

    executions: int = 0
    failures: int = 0
    skips: int = 0
    retries: int = 0
    cancellations: int = 0
    timings: list[float] = field(default_factory=list)

    @property
    def average_ms(self) -> float:
        return sum(self.timings) / len(self.timings) if self.timings else 0.0

    @property
    def min_ms(self) -> float:
        return min(self.timings) if self.timings else 0.0

    @property
    def max_ms(self) -> float:
        return max(self.timings) if self.timings else 0.0

    @property
    def success_rate(self) -> float:
        """Percentage of executions that did not fail."""
        if not self.executions:
            return 0.0
        return (self.executions - self.failures) / self.executions * 100


class PerformanceMetricsObserver:
    """Collects per-step execution counts, timings and failures.

    Examples
    --------
    Example usage::

        metrics = PerformanceMetricsObserver()
        pipeline.observers.register(metrics)
        await pipeline.execute(payload)
        print(metrics.get_summary())
    """

    def __init__(self) -> None:
        self.reset()

    def reset(self) -> None:
        self.metrics: dict[str, StepMetrics] = {}
        self.total_steps = 0
        self.total_duration_ms = 0.0
        self.pipeline_runs: dict[str, int] = {}
        self.pipeline_durations_ms: dict[str, list[float]] = {}

    def _metrics_for(self, name: str) -> StepMetrics:
        if name not in self.metrics:
            self.metrics[name] = StepMetrics()
        return self.metrics[name]

    async def handle(self, event: Event) -> None:
        if isinstance(event, PipelineStarted):
            self.pipeline_runs[event.name] = self.pipeline_runs.get(event.name, 0) + 1

        elif isinstance(event, PipelineCompleted | PipelineFailed | PipelineCancelled):
            self.pipeline_durations_ms.setdefault(event.name, []).append(event.duration_ms)

        elif isinstance(event, StepStarted):
            self._metrics_for(event.name).executions += 1
            self.total_steps += 1

        elif isinstance(event, StepCompleted):
            self._metrics_for(event.name).timings.append(event.duration_ms)
            self.total_duration_ms += event.duration_ms

        elif isinstance(event, StepFailed):
            self._metrics_for(event.name).failures += 1

        elif isinstance(event, StepSkipped):
            self._metrics_for(event.name).skips += 1

        elif isinstance(event, StepRetrying):
            self._metrics_for(event.name).retries += 1

        elif isinstance(event, StepCancelled):
            self._metrics_for(event.name).cancellations += 1

    def get_summary(self) -> dict[str, Any]:
        """Summarize collected metrics.

        Returns
        -------
        dict[str, Any]
            Totals plus per-step dictionaries keyed by step name:
            ``average_timings_ms``, ``min_timings_ms``, ``max_timings_ms``,
            ``step_executions``, ``failures``, ``skips``, ``retries``,
            ``success_rates`` (percent), and ``overall_success_rate``
        """
        total_failures = sum(m.failures for m in self.metrics.values())
        overall_success_rate = (
            (self.total_steps - total_failures) / self.total_steps * 100
            if self.total_steps > 0
            else 0.0
        )
        return {
            "total_steps_executed": self.total_steps,
            "unique_steps": len(self.metrics),
            "total_duration_ms": self.total_duration_ms,
            "average_timings_ms": {n: m.average_ms for n, m in self.metrics.items()},
            "min_timings_ms": {n: m.min_ms for n, m in self.metrics.items()},
            "max_timings_ms": {n: m.max_ms for n, m in self.metrics.items()},
            "step_executions": {n: m.executions for n, m in self.metrics.items()},
            "failures": {n: m.failures for n, m in self.metrics.items()},
            "skips": {n: m.skips for n, m in self.metrics.items()},
            "retries": {n: m.retries for n, m in self.metrics.items()},
            "success_rates": {n: m.success_rate for n, m in self.metrics.items()},
            "total_failures": total_failures,
            "overall_success_rate": overall_success_rate,
            "pipeline_runs": dict(self.pipeline_runs),
        }


class SimpleLoggingObserver:
    """Logs every event through the pipekit logger.

    Uses each event's ``log_message()``; failures go to ERROR, cancellations
    and retries to WARNING, everything else to INFO.

    Parameters
    ----------
    verbose : bool
        Also log a preview of each completed step's output at DEBUG
    """

    def __init__(self, verbose: bool = False) -> None:
        self.verbose = verbose

    async def handle(self, event: Event) -> None:
        if isinstance(event, StepFailed | PipelineFailed):
            logger.error(event.log_message())
        elif isinstance(event, StepCancelled | PipelineCancelled | StepRetrying):
            logger.warning(event.log_message())
        else:
            logger.info(event.log_message())

        if self.verbose and isinstance(event, StepCompleted):
            preview = str(event.result.output_payload)[:100]
            logger.debug("  Output: {preview}", preview=preview)
