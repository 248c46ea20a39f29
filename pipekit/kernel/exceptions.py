"""Core exception hierarchy for pipekit.

All pipekit exceptions inherit from PipekitError so callers can catch every
library error in one place. Errors raised *during* a run (validation,
step failure, cancellation) are not propagated out of ``Pipeline.execute``;
they are captured on the returned PipelineExecutionResult. Caller errors
(re-entrant execute, mutating a running pipeline, bad builder arguments)
are raised immediately.
"""

from __future__ import annotations

# ============================================================================
# Base Exception
# ============================================================================


class PipekitError(Exception):
    """Base exception for all pipekit errors."""

    pass


# ============================================================================
# Configuration & Validation Errors
# ============================================================================


class ConfigurationError(PipekitError):
    """Raised when configuration is invalid or missing.

    Examples
    --------
    Example usage::

        raise ConfigurationError("pipeline_builder", "max_parallel_steps must be positive")
    """

    def __init__(self, component: str, reason: str) -> None:
        super().__init__(f"Configuration error in '{component}': {reason}")
        self.component = component
        self.reason = reason


class ValidationError(PipekitError):
    """Raised when a value fails validation.

    Examples
    --------
    Example usage::

        raise ValidationError("timeout_ms", "must be positive", value=-1)
    """

    def __init__(self, field: str, constraint: str, value: object = None) -> None:
        if value is not None:
            msg = f"Validation failed for '{field}': {constraint} (got {value!r})"
        else:
            msg = f"Validation failed for '{field}': {constraint}"
        super().__init__(msg)
        self.field = field
        self.constraint = constraint
        self.value = value


class ResourceNotFoundError(PipekitError):
    """Raised when a named resource (e.g. a registered pipeline) is missing.

    Examples
    --------
    Example usage::

        raise ResourceNotFoundError("pipeline", "ingest", ["etl", "report"])
    """

    def __init__(
        self, resource_type: str, resource_id: str, available: list[str] | None = None
    ) -> None:
        msg = f"{resource_type.title()} '{resource_id}' not found"
        if available:
            msg += f". Available: {', '.join(available[:5])}"
            if len(available) > 5:
                msg += f" ... and {len(available) - 5} more"
        super().__init__(msg)
        self.resource_type = resource_type
        self.resource_id = resource_id
        self.available = available


# ============================================================================
# Run-time Errors
# ============================================================================


class PipelineError(PipekitError):
    """Base class for errors that happen while a pipeline runs."""

    pass


class PipelineValidationError(PipelineError):
    """A step rejected its preconditions before any side effect happened.

    Always fatal to the run, never retried.
    """

    def __init__(self, step_name: str | None, reason: str | None = None) -> None:
        if step_name is None:
            msg = f"Pipeline validation failed: {reason or 'no steps'}"
        else:
            msg = f"Step '{step_name}' validation failed"
            if reason:
                msg += f": {reason}"
        super().__init__(msg)
        self.step_name = step_name
        self.reason = reason


class StepFailedError(PipelineError):
    """A step returned FAILED, or raised and declined to retry."""

    def __init__(self, step_name: str, cause: BaseException | None = None) -> None:
        msg = f"Step '{step_name}' failed"
        if cause is not None:
            msg += f": {cause}"
        super().__init__(msg)
        self.step_name = step_name
        self.cause = cause


class OperationCancelledError(PipelineError):
    """A cancellation token fired while work was in flight.

    Covers both external cancellation and elapsed deadlines; ``reason`` is
    ``"timeout"`` for deadlines.
    """

    def __init__(self, reason: str | None = None) -> None:
        super().__init__(f"Operation cancelled: {reason or 'unknown'}")
        self.reason = reason

    @property
    def is_timeout(self) -> bool:
        return self.reason == "timeout"


class StepTimeoutError(OperationCancelledError):
    """A step exceeded its own ``timeout_ms``."""

    def __init__(self, step_name: str, timeout_ms: float) -> None:
        super().__init__("timeout")
        self.args = (f"Step '{step_name}' timed out after {timeout_ms:.0f}ms",)
        self.step_name = step_name
        self.timeout_ms = timeout_ms


class ReentrancyError(PipelineError):
    """A pipeline or step was started while already running.

    Examples
    --------
    Example usage::

        raise ReentrancyError("ingest")
        raise ReentrancyError("load_rows", kind="step")
    """

    def __init__(self, name: str, kind: str = "pipeline") -> None:
        super().__init__(f"{kind.title()} '{name}' is already running")
        self.name = name
        self.kind = kind


class PipelineStateError(PipelineError):
    """An operation is not allowed in the pipeline's current state."""

    def __init__(self, pipeline_name: str, operation: str, state: str) -> None:
        super().__init__(f"Cannot {operation} pipeline '{pipeline_name}' while {state}")
        self.pipeline_name = pipeline_name
        self.operation = operation
        self.state = state
