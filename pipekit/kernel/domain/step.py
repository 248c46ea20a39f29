"""Step contract and the built-in step kinds.

A step is a named unit of work with its own validation, retry and timeout
policy. Subclasses implement :meth:`Step.execute`; the remaining hooks have
no-op defaults. The step runner drives the hooks in this order::

    validate -> before_execute -> execute (retried) -> after_execute

and consults :meth:`Step.on_error` when ``execute`` raises.
"""

from __future__ import annotations

import asyncio
import contextvars
import inspect
import threading
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from pipekit.kernel.exceptions import PipelineValidationError, ValidationError

if TYPE_CHECKING:
    from pipekit.kernel.context import ExecutionContext

DEFAULT_MAX_RETRIES = 3
DEFAULT_STEP_TIMEOUT_MS = 30_000


class StepOutcome(StrEnum):
    """Result of one step invocation.

    ``RETRY`` is consumed by the runner's retry loop and never appears in a
    reported result.
    """

    SUCCESS = "success"
    FAILED = "failed"
    SKIP = "skip"
    RETRY = "retry"
    STOP = "stop"


class Step(ABC):
    """Base class for pipeline steps.

    Class attributes provide defaults that constructor arguments override,
    so simple steps can be declared without an ``__init__``::

        class Normalize(Step):
            max_retries = 0
            timeout_ms = 5_000

            async def execute(self, ctx):
                ctx.set_payload(ctx.payload.strip().lower())
                return StepOutcome.SUCCESS

    Parameters
    ----------
    name : str | None
        Step name, defaults to the class name
    description : str | None
        Free-form description
    priority : int | None
        Informational priority; steps always run in declaration order
    max_retries : int | None
        Extra attempts after the first one, must be >= 0
    timeout_ms : int | None
        Deadline in milliseconds covering every attempt and retry back-off,
        0 disables it
    can_execute : bool | None
        When False the step is always skipped
    """

    description: str = ""
    priority: int = 0
    max_retries: int = DEFAULT_MAX_RETRIES
    timeout_ms: int = DEFAULT_STEP_TIMEOUT_MS
    can_execute: bool = True

    def __init__(
        self,
        name: str | None = None,
        *,
        description: str | None = None,
        priority: int | None = None,
        max_retries: int | None = None,
        timeout_ms: int | None = None,
        can_execute: bool | None = None,
    ) -> None:
        self.name = name or type(self).__name__
        if description is not None:
            self.description = description
        if priority is not None:
            self.priority = priority
        if max_retries is not None:
            self.max_retries = max_retries
        if timeout_ms is not None:
            self.timeout_ms = timeout_ms
        if can_execute is not None:
            self.can_execute = can_execute

        if not self.name:
            raise ValidationError("name", "cannot be empty")
        if self.max_retries < 0:
            raise ValidationError("max_retries", "must be >= 0", self.max_retries)
        if self.timeout_ms < 0:
            raise ValidationError("timeout_ms", "must be >= 0", self.timeout_ms)

        self._state_lock = threading.Lock()
        self._executing = False
        self._completed = False
        self.last_execution_time: datetime | None = None
        self.last_outcome: StepOutcome | None = None

    # ------------------------------------------------------------------
    # Hooks
    # ------------------------------------------------------------------

    async def validate(self, ctx: ExecutionContext) -> bool:
        """Check preconditions before any side effect. Default: accept."""
        return True

    async def before_execute(self, ctx: ExecutionContext) -> None:
        """Called once before the first attempt."""

    @abstractmethod
    async def execute(self, ctx: ExecutionContext) -> StepOutcome:
        """Do the work and report an outcome."""

    async def after_execute(self, ctx: ExecutionContext, outcome: StepOutcome) -> None:
        """Called once with the final outcome, including on cancellation."""

    async def on_error(self, ctx: ExecutionContext, error: Exception) -> bool:
        """Return True to retry after ``execute`` raised ``error``."""
        return False

    # ------------------------------------------------------------------
    # Execution state
    # ------------------------------------------------------------------

    @property
    def is_executing(self) -> bool:
        return self._executing

    @property
    def is_completed(self) -> bool:
        return self._completed

    def reset(self) -> None:
        """Forget the previous run's completion state."""
        with self._state_lock:
            self._completed = False
            self.last_outcome = None
            self.last_execution_time = None

    def _try_begin(self) -> bool:
        with self._state_lock:
            if self._executing:
                return False
            self._executing = True
            self._completed = False
            self.last_execution_time = datetime.now(UTC)
            return True

    def _finish(self, outcome: StepOutcome | None) -> None:
        with self._state_lock:
            self._executing = False
            self._completed = outcome == StepOutcome.SUCCESS
            self.last_outcome = outcome

    def __repr__(self) -> str:
        return f"<{type(self).__name__} name={self.name!r}>"


class TransformStep(Step):
    """Step that maps the current payload to a new one.

    Subclasses implement :meth:`transform`; the returned output replaces the
    payload when the outcome is SUCCESS or STOP. When ``input_type`` is set,
    a payload of any other type fails the step with PipelineValidationError
    when it executes, not in :meth:`validate`.

    Examples
    --------
    Example usage::

        class ParseCsv(TransformStep):
            input_type = str

            async def transform(self, payload, ctx):
                return payload.splitlines(), StepOutcome.SUCCESS
    """

    input_type: type | tuple[type, ...] | None = None

    @abstractmethod
    async def transform(self, payload: Any, ctx: ExecutionContext) -> tuple[Any, StepOutcome]:
        """Return ``(output, outcome)`` for ``payload``."""

    async def execute(self, ctx: ExecutionContext) -> StepOutcome:
        if self.input_type is not None and not isinstance(ctx.payload, self.input_type):
            expected = self.input_type
            raise PipelineValidationError(
                self.name, f"expected payload of type {expected!r}, got {type(ctx.payload)!r}"
            )
        output, outcome = await self.transform(ctx.payload, ctx)
        if outcome in (StepOutcome.SUCCESS, StepOutcome.STOP):
            ctx.set_payload(output)
        return outcome


StepFunction = Callable[..., Any] | Callable[..., Awaitable[Any]]


class FunctionStep(Step):
    """Wrap a plain callable as a step.

    The callable receives the payload (and the context when
    ``pass_context=True``). Returning a :class:`StepOutcome` reports that
    outcome and leaves the payload alone; any other return value becomes the
    new payload with outcome SUCCESS. Sync callables run in the default
    executor so they never block the event loop.

    Examples
    --------
    Example usage::

        step = FunctionStep(lambda rows: [r for r in rows if r], name="drop_empty")
    """

    def __init__(
        self,
        fn: StepFunction,
        name: str | None = None,
        *,
        pass_context: bool = False,
        **kwargs: Any,
    ) -> None:
        if not callable(fn):
            raise ValidationError("fn", "must be callable", fn)
        super().__init__(name or getattr(fn, "__name__", None) or type(self).__name__, **kwargs)
        self.fn = fn
        self.pass_context = pass_context

    async def execute(self, ctx: ExecutionContext) -> StepOutcome:
        args: tuple[Any, ...] = (ctx.payload, ctx) if self.pass_context else (ctx.payload,)
        result = await self._call(args)
        if isinstance(result, StepOutcome):
            return result
        ctx.set_payload(result)
        return StepOutcome.SUCCESS

    async def _call(self, args: tuple[Any, ...]) -> Any:
        if inspect.iscoroutinefunction(self.fn):
            return await self.fn(*args)
        # Copy context so ContextVars propagate to the worker thread
        run_ctx = contextvars.copy_context()

        def _run_sync() -> Any:
            return self.fn(*args)

        result = await asyncio.get_running_loop().run_in_executor(None, run_ctx.run, _run_sync)
        if inspect.isawaitable(result):
            return await result
        return result
