"""Pipeline - ordered steps executed under one strategy.

A :class:`Pipeline` owns its step entries, an execution strategy, a global
timeout and a concurrency cap. Each ``execute`` call:

1. refuses to start while another run of the same pipeline is in flight
2. links the caller's cancellation with the pipeline's own token
3. validates every step against a throwaway context (optional)
4. emits ``PipelineStarted`` and arms the global deadline
5. dispatches the entries through the strategy executor
6. emits exactly one terminal event and returns the aggregate result

Run-time problems never escape ``execute``; they are reported on the
returned :class:`~pipekit.kernel.domain.results.PipelineExecutionResult`.
"""

from __future__ import annotations

import asyncio
import copy
import inspect
import threading
import uuid
from collections.abc import Iterable
from datetime import UTC, datetime
from typing import Any

from pipekit.kernel.config import PipelineDefaults, load_config
from pipekit.kernel.context import CancellationToken, ExecutionContext
from pipekit.kernel.domain.entries import StepEntry, as_entry
from pipekit.kernel.domain.pipeline_run import ExecutionStrategy, PipelineRunState
from pipekit.kernel.domain.results import PipelineExecutionResult
from pipekit.kernel.domain.step import Step
from pipekit.kernel.exceptions import (
    OperationCancelledError,
    PipelineStateError,
    PipelineValidationError,
    ReentrancyError,
    ValidationError,
)
from pipekit.kernel.logging import get_logger, reset_correlation_id, set_correlation_id
from pipekit.kernel.orchestration.components import (
    PhaseResult,
    RetryPolicy,
    StepRunner,
    StrategyExecutor,
    dependency_cycle,
)
from pipekit.kernel.orchestration.events import (
    Event,
    PipelineCancelled,
    PipelineCompleted,
    PipelineFailed,
    PipelineStarted,
)
from pipekit.kernel.orchestration.observer_manager import ObserverManager
from pipekit.kernel.utils import Timer

logger = get_logger(__name__)


class Pipeline:
    """Ordered collection of steps executed under one strategy.

    Parameters
    ----------
    name : str
        Pipeline name, used in events, logs and registry lookups
    steps : Iterable[Step | StepEntry] | None
        Initial steps; bare steps are wrapped in a PlainEntry
    description : str
        Free-form description
    strategy : ExecutionStrategy
        How the steps are dispatched
    max_parallel_steps : int | None
        Concurrency cap for parallel phases; defaults to the configured value
        (the CPU count unless overridden)
    timeout_ms : int | None
        Global run deadline in milliseconds, 0 disables it
    retry_delay_ms : int | None
        Base of the linear retry back-off
    validate_before_run : bool | None
        Run :meth:`validate` at the start of every ``execute``
    metadata : dict[str, Any] | None
        Seeded into the context metadata of every run (context values win)
    defaults : PipelineDefaults | None
        Source of unset values, defaults to ``load_config().pipeline``

    Examples
    --------
    Example usage::

        pipeline = Pipeline("ingest", [LoadRows(), conditional(Clean(), needs_cleaning)])
        pipeline.observers.register(SimpleLoggingObserver())
        result = await pipeline.execute(payload=path)
        if not result.is_success:
            print(result.error)
    """

    def __init__(
        self,
        name: str = "pipeline",
        steps: Iterable[Step | StepEntry] | None = None,
        *,
        description: str = "",
        strategy: ExecutionStrategy = ExecutionStrategy.SEQUENTIAL,
        max_parallel_steps: int | None = None,
        timeout_ms: int | None = None,
        retry_delay_ms: int | None = None,
        validate_before_run: bool | None = None,
        metadata: dict[str, Any] | None = None,
        defaults: PipelineDefaults | None = None,
    ) -> None:
        if not name:
            raise ValidationError("name", "cannot be empty")
        defaults = defaults or load_config().pipeline

        self.id = str(uuid.uuid4())
        self.name = name
        self.description = description
        self.strategy = ExecutionStrategy(strategy)
        self.max_parallel_steps = (
            max_parallel_steps
            if max_parallel_steps is not None
            else defaults.resolved_max_parallel_steps
        )
        self.timeout_ms = timeout_ms if timeout_ms is not None else defaults.timeout_ms
        self.retry_delay_ms = (
            retry_delay_ms if retry_delay_ms is not None else defaults.retry_delay_ms
        )
        self.validate_before_run = (
            validate_before_run
            if validate_before_run is not None
            else defaults.validate_before_run
        )
        self.metadata: dict[str, Any] = dict(metadata) if metadata else {}
        self.observers = ObserverManager()

        if self.max_parallel_steps < 1:
            raise ValidationError("max_parallel_steps", "must be >= 1", self.max_parallel_steps)
        if self.timeout_ms < 0:
            raise ValidationError("timeout_ms", "must be >= 0", self.timeout_ms)
        if self.retry_delay_ms < 0:
            raise ValidationError("retry_delay_ms", "must be >= 0", self.retry_delay_ms)

        self._entries: list[StepEntry] = [as_entry(item) for item in steps or ()]
        self._lock = threading.Lock()
        self._state = PipelineRunState.IDLE
        self._run_token: CancellationToken | None = None

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    @property
    def steps(self) -> tuple[StepEntry, ...]:
        return tuple(self._entries)

    @property
    def state(self) -> PipelineRunState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state == PipelineRunState.RUNNING

    @property
    def is_cancelled(self) -> bool:
        return self._state == PipelineRunState.CANCELLED

    @property
    def is_completed(self) -> bool:
        return self._state == PipelineRunState.COMPLETED

    def __repr__(self) -> str:
        return (
            f"Pipeline(name={self.name!r}, strategy={self.strategy.value}, "
            f"steps={len(self._entries)}, state={self._state.value})"
        )

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def add_step(self, step: Step | StepEntry) -> Pipeline:
        """Append a step.

        Raises
        ------
        PipelineStateError
            If the pipeline is running
        """
        entry = as_entry(step)
        with self._lock:
            if self._state == PipelineRunState.RUNNING:
                raise PipelineStateError(self.name, "add steps to", "running")
            self._entries.append(entry)
        return self

    def clear_steps(self) -> None:
        with self._lock:
            if self._state == PipelineRunState.RUNNING:
                raise PipelineStateError(self.name, "clear steps of", "running")
            self._entries.clear()

    def clone(self) -> Pipeline:
        """Copy with a new id, the same step objects and settings.

        Observers are not copied. Step objects are shared, so the clone and
        the original must not run the same step concurrently.
        """
        clone = Pipeline(
            self.name,
            self._entries,
            description=self.description,
            strategy=self.strategy,
            max_parallel_steps=self.max_parallel_steps,
            timeout_ms=self.timeout_ms,
            retry_delay_ms=self.retry_delay_ms,
            validate_before_run=self.validate_before_run,
            metadata=copy.deepcopy(self.metadata),
            defaults=PipelineDefaults(),
        )
        return clone

    # ------------------------------------------------------------------
    # Cancellation and validation
    # ------------------------------------------------------------------

    def cancel(self, reason: str = "cancelled") -> bool:
        """Request cancellation of the current run.

        Safe from any thread, any number of times, and when no run is in
        flight; terminal results are never changed.

        Returns
        -------
        bool
            True if this call cancelled a running execution
        """
        with self._lock:
            token = self._run_token if self._state == PipelineRunState.RUNNING else None
        if token is None:
            logger.debug("Cancel requested for idle pipeline '{name}'", name=self.name)
            return False
        cancelled = token.cancel(reason)
        if cancelled:
            logger.info("Pipeline '{name}' cancellation requested", name=self.name)
        return cancelled

    async def validate(self, payload: Any = None) -> bool:
        """Validate every step against a throwaway context.

        Returns False for an empty pipeline, a dependency cycle among
        parallel steps, or the first step whose ``validate`` rejects.
        """
        error = await self._validate_entries(self.steps, ExecutionContext(payload=payload))
        return error is None

    async def _validate_entries(
        self, entries: tuple[StepEntry, ...], ctx: ExecutionContext
    ) -> PipelineValidationError | None:
        if not entries:
            logger.warning("Pipeline '{name}' has no steps", name=self.name)
            return PipelineValidationError(None, "no steps")

        if self.strategy in (ExecutionStrategy.PARALLEL, ExecutionStrategy.HYBRID):
            if cycle := dependency_cycle(entries):
                logger.error(
                    "Pipeline '{name}' has a dependency cycle: {cycle}",
                    name=self.name,
                    cycle=" -> ".join(cycle),
                )
                return PipelineValidationError(None, f"dependency cycle: {' -> '.join(cycle)}")

        for entry in entries:
            try:
                valid = entry.step.validate(ctx)
                if inspect.isawaitable(valid):
                    valid = await valid
            except Exception as e:
                logger.error(
                    "Step '{step}' validation raised: {error}", step=entry.name, error=e
                )
                error = PipelineValidationError(entry.name, str(e))
                error.__cause__ = e
                return error
            if not valid:
                logger.error("Step '{step}' validation failed", step=entry.name)
                return PipelineValidationError(entry.name)
        return None

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def execute(
        self,
        payload: Any = None,
        cancellation: CancellationToken | None = None,
        *,
        context: ExecutionContext | None = None,
    ) -> PipelineExecutionResult:
        """Run the pipeline once.

        Parameters
        ----------
        payload : Any
            Initial payload, ignored when ``context`` is given
        cancellation : CancellationToken | None
            Caller token; firing it cancels the run
        context : ExecutionContext | None
            Context to run against instead of a fresh one; its own token is
            linked into the run as well

        Returns
        -------
        PipelineExecutionResult
            Aggregate result; ``status`` is COMPLETED, CANCELLED or FAILED

        Raises
        ------
        ReentrancyError
            If the pipeline is already running; its state is not touched
        """
        ctx = context if context is not None else ExecutionContext(payload=payload)
        started_at = datetime.now(UTC)
        timer = Timer()
        run_id = str(uuid.uuid4())

        with self._lock:
            if self._state == PipelineRunState.RUNNING:
                raise ReentrancyError(self.name)
            entries = tuple(self._entries)
            if entries:
                run_token = CancellationToken.linked(ctx.cancellation, cancellation, name=self.name)
                self._run_token = run_token
                self._state = PipelineRunState.RUNNING

        if not entries:
            logger.warning("Pipeline '{name}' has no steps, nothing to run", name=self.name)
            return self._result(run_id, ctx, PhaseResult(), timer, started_at)

        try:
            cid_token = set_correlation_id(run_id)
            try:
                return await self._run_and_report(
                    entries, ctx, run_id, run_token, timer, started_at
                )
            finally:
                reset_correlation_id(cid_token)
        except asyncio.CancelledError:
            # the calling task was cancelled mid-run
            self._settle(PipelineRunState.CANCELLED)
            raise
        finally:
            self._settle(PipelineRunState.FAILED)

    def _settle(self, state: PipelineRunState) -> None:
        """Leave RUNNING for ``state``; a no-op once the run has settled."""
        with self._lock:
            if self._state == PipelineRunState.RUNNING:
                self._state = state
                self._run_token = None

    async def _run_and_report(
        self,
        entries: tuple[StepEntry, ...],
        ctx: ExecutionContext,
        run_id: str,
        run_token: CancellationToken,
        timer: Timer,
        started_at: datetime,
    ) -> PipelineExecutionResult:
        outer_token = ctx.cancellation
        ctx.cancellation = run_token
        try:
            phase = await self._run(entries, ctx, run_id)
            if phase.status == PipelineRunState.CANCELLED and phase.error is None:
                phase.error = OperationCancelledError(run_token.reason)
        finally:
            ctx.cancellation = outer_token
            run_token.close()

        result = self._result(run_id, ctx, phase, timer, started_at)
        self._settle(result.status)
        await self._report(result)
        return result

    def _prepare(self, entries: tuple[StepEntry, ...], ctx: ExecutionContext) -> None:
        for key, value in self.metadata.items():
            ctx.metadata.setdefault(key, copy.deepcopy(value))
        ctx.total_steps = len(entries)
        ctx.current_step_index = 0

    async def _run(
        self, entries: tuple[StepEntry, ...], ctx: ExecutionContext, run_id: str
    ) -> PhaseResult:
        try:
            self._prepare(entries, ctx)
            error = None
            if self.validate_before_run:
                check_ctx = ExecutionContext(
                    payload=ctx.payload, metadata=copy.deepcopy(ctx.metadata)
                )
                error = await self._validate_entries(entries, check_ctx)
        except Exception as e:
            logger.opt(exception=e).error(
                "Pipeline '{name}' could not prepare the run: {error}", name=self.name, error=e
            )
            ctx.set_error(e)
            return PhaseResult().fail(e)
        if error is not None:
            ctx.set_error(error)
            return PhaseResult().fail(error)

        logger.info(
            "Pipeline '{name}' starting: {count} steps, {strategy}",
            name=self.name,
            count=len(entries),
            strategy=self.strategy.value,
        )
        await self.observers.notify(
            PipelineStarted(self.name, run_id, self.strategy.value, len(entries), context=ctx)
        )
        if self.timeout_ms > 0:
            ctx.cancellation.cancel_after(self.timeout_ms / 1000)

        runner = StepRunner(RetryPolicy(self.retry_delay_ms), self.observers, self.name)
        executor = StrategyExecutor(runner, self.max_parallel_steps, self.observers, self.name)
        try:
            return await executor.run(self.strategy, entries, ctx)
        except OperationCancelledError as e:
            return PhaseResult().cancel(e)
        except Exception as e:
            logger.opt(exception=e).error(
                "Pipeline '{name}' crashed: {error}", name=self.name, error=e
            )
            ctx.set_error(e)
            return PhaseResult().fail(e)

    def _result(
        self,
        run_id: str,
        ctx: ExecutionContext,
        phase: PhaseResult,
        timer: Timer,
        started_at: datetime,
    ) -> PipelineExecutionResult:
        return PipelineExecutionResult(
            pipeline_id=self.id,
            pipeline_name=self.name,
            run_id=run_id,
            status=phase.status,
            payload=ctx.payload,
            duration_ms=timer.stop(),
            step_results=tuple(phase.results),
            context=ctx,
            strategy=self.strategy,
            error=phase.error,
            started_at=started_at,
            metadata=dict(self.metadata),
        )

    async def _report(self, result: PipelineExecutionResult) -> None:
        event: Event
        match result.status:
            case PipelineRunState.COMPLETED:
                logger.info(
                    "Pipeline '{name}' completed in {ms:.1f}ms "
                    "({executed} executed, {skipped} skipped)",
                    name=self.name,
                    ms=result.duration_ms,
                    executed=result.executed_steps,
                    skipped=result.skipped_steps,
                )
                event = PipelineCompleted(
                    self.name, result.run_id, result.duration_ms, result
                )
            case PipelineRunState.CANCELLED:
                reason = (
                    result.error.reason
                    if isinstance(result.error, OperationCancelledError)
                    else None
                )
                logger.warning(
                    "Pipeline '{name}' cancelled after {ms:.1f}ms: {reason}",
                    name=self.name,
                    ms=result.duration_ms,
                    reason=reason,
                )
                event = PipelineCancelled(
                    self.name, result.run_id, reason, result.duration_ms, result
                )
            case _:
                logger.error(
                    "Pipeline '{name}' failed after {ms:.1f}ms: {error}",
                    name=self.name,
                    ms=result.duration_ms,
                    error=result.error,
                )
                event = PipelineFailed(
                    self.name, result.run_id, result.error, result.duration_ms, result
                )
        await self.observers.notify(event)
