"""Event system for pipekit.

- events.py: event data classes (just data, no behavior)
- observers.py: ready-to-use observers for logging and metrics
"""

from .events import (
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
from .observers import PerformanceMetricsObserver, SimpleLoggingObserver, StepMetrics

# Event taxonomy - grouped event types for observer filtering
STEP_LIFECYCLE_EVENTS = (StepStarted, StepCompleted, StepFailed, StepSkipped, StepCancelled)
STEP_EVENTS = STEP_LIFECYCLE_EVENTS + (StepRetrying,)
PIPELINE_EVENTS = (PipelineStarted, PipelineCompleted, PipelineFailed, PipelineCancelled)
ALL_EXECUTION_EVENTS = STEP_EVENTS + PIPELINE_EVENTS

__all__ = [
    "ALL_EXECUTION_EVENTS",
    "PIPELINE_EVENTS",
    "STEP_EVENTS",
    "STEP_LIFECYCLE_EVENTS",
    "Event",
    "PerformanceMetricsObserver",
    "PipelineCancelled",
    "PipelineCompleted",
    "PipelineFailed",
    "PipelineStarted",
    "SimpleLoggingObserver",
    "StepCancelled",
    "StepCompleted",
    "StepFailed",
    "StepMetrics",
    "StepRetrying",
    "StepSkipped",
    "StepStarted",
]
