"""Step runner for individual step execution.

Runs one step invocation with full lifecycle management: the ``can_execute``
pre-check, re-entrancy guard, validation, hooks, the retry loop with linear
back-off, per-step deadlines, and translation of everything that can happen
into a single :class:`~pipekit.kernel.domain.results.StepExecutionResult`.
"""

from __future__ import annotations

import inspect
from collections.abc import Callable
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from pipekit.kernel.context import (
    CancellationToken,
    ExecutionContext,
    reset_current_context,
    set_current_context,
)
from pipekit.kernel.domain.results import StepExecutionResult
from pipekit.kernel.domain.step import Step, StepOutcome
from pipekit.kernel.exceptions import (
    OperationCancelledError,
    PipelineValidationError,
    ReentrancyError,
    StepTimeoutError,
)
from pipekit.kernel.logging import get_logger
from pipekit.kernel.orchestration.components.retry import RetryPolicy
from pipekit.kernel.orchestration.events import (
    Event,
    StepCancelled,
    StepCompleted,
    StepFailed,
    StepRetrying,
    StepSkipped,
    StepStarted,
)
from pipekit.kernel.utils import Timer

if TYPE_CHECKING:
    from pipekit.kernel.orchestration.observer_manager import ObserverManager

logger = get_logger(__name__)


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class StepRunner:
    """Executes a single step and reports exactly one result.

    Outcome rules:

    - ``can_execute`` False: SKIP, the step is not touched
    - step already executing: FAILED with ReentrancyError
    - ``validate`` False or raising: FAILED with PipelineValidationError
    - ``execute`` returns RETRY, or raises and ``on_error`` returns True:
      retried while ``retry_count < max_retries``, sleeping
      ``retry_delay_ms * retry_count``; FAILED once retries run out
    - ``execute`` raises and ``on_error`` returns False: FAILED
    - cancellation or deadline at any point: STOP with ``cancelled=True``

    ``after_execute`` always runs once with the final outcome, and the step's
    executing flag is always cleared.

    Parameters
    ----------
    retry_policy : RetryPolicy | None
        Back-off policy, defaults to 1000ms linear
    observers : ObserverManager | None
        Receives step events
    pipeline_name : str
        Included in events and logs

    Examples
    --------
    Example usage::

        runner = StepRunner(RetryPolicy(delay_ms=50))
        result = await runner.run(step, ExecutionContext(payload=data))
    """

    def __init__(
        self,
        retry_policy: RetryPolicy | None = None,
        observers: ObserverManager | None = None,
        pipeline_name: str = "",
    ) -> None:
        self.retry_policy = retry_policy or RetryPolicy()
        self.observers = observers
        self.pipeline_name = pipeline_name

    async def run(
        self, step: Step, ctx: ExecutionContext, step_index: int = 0
    ) -> StepExecutionResult:
        """Run ``step`` against ``ctx`` and return its result.

        Only cancellation of the calling task escapes as an exception;
        everything else is captured on the result.
        """
        started_at = datetime.now(UTC)
        input_payload = ctx.payload

        if not step.can_execute:
            logger.debug("Step '{step}' cannot execute, skipping", step=step.name)
            skipped = StepSkipped(
                step.name, self.pipeline_name, reason="can_execute is False", context=ctx
            )
            await self._emit(skipped)
            return StepExecutionResult(
                step_name=step.name,
                outcome=StepOutcome.SKIP,
                step_index=step_index,
                input_payload=input_payload,
                output_payload=ctx.payload,
                started_at=started_at,
            )

        if not step._try_begin():
            error = ReentrancyError(step.name, kind="step")
            ctx.set_error(error)
            logger.error("Step '{step}' is already executing", step=step.name)
            result = StepExecutionResult(
                step_name=step.name,
                outcome=StepOutcome.FAILED,
                step_index=step_index,
                input_payload=input_payload,
                output_payload=ctx.payload,
                error=error,
                started_at=started_at,
            )
            await self._emit(StepFailed(step.name, self.pipeline_name, error, result))
            return result

        timer = Timer()
        outer_token = ctx.cancellation
        step_token = self._derive_token(step, outer_token)
        ctx.cancellation = step_token
        ctx.retry_count = 0
        ctx_token = set_current_context(ctx)

        outcome: StepOutcome | None = None
        error: BaseException | None = None
        cancelled = False
        try:
            await self._emit(StepStarted(step.name, self.pipeline_name, step_index, context=ctx))
            try:
                step_token.raise_if_cancelled()
                outcome, error = await self._validate(step, ctx)
                if outcome is None:
                    await self._call_hook(step, step.before_execute, ctx)
                    outcome, error = await self._attempt_loop(step, ctx, step_token)
            except OperationCancelledError as e:
                cancelled = True
                outcome = StepOutcome.STOP
                error = StepTimeoutError(step.name, step.timeout_ms) if step_token.expired else e
                ctx.set_error(error)
        finally:
            ctx.cancellation = outer_token
            step_token.close()
            reset_current_context(ctx_token)
            final = outcome if outcome is not None else StepOutcome.STOP
            try:
                await self._call_hook(step, step.after_execute, ctx, final)
            finally:
                step._finish(final)

        result = StepExecutionResult(
            step_name=step.name,
            outcome=final,
            step_index=step_index,
            duration_ms=timer.stop(),
            retry_count=ctx.retry_count,
            input_payload=input_payload,
            output_payload=ctx.payload,
            error=error,
            cancelled=cancelled,
            started_at=started_at,
        )
        await self._report(step, result)
        return result

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    @staticmethod
    def _derive_token(step: Step, parent: CancellationToken) -> CancellationToken:
        # The child also fires with the parent, so the effective deadline is
        # min(parent remaining, step timeout).
        token = parent.link(name=step.name)
        if step.timeout_ms > 0:
            token.cancel_after(step.timeout_ms / 1000)
        return token

    async def _validate(
        self, step: Step, ctx: ExecutionContext
    ) -> tuple[StepOutcome | None, BaseException | None]:
        try:
            valid = await _maybe_await(step.validate(ctx))
        except OperationCancelledError:
            raise
        except Exception as e:
            logger.warning(
                "Step '{step}' validation raised: {error}", step=step.name, error=e
            )
            error = PipelineValidationError(step.name, str(e))
            error.__cause__ = e
            ctx.set_error(error)
            return StepOutcome.FAILED, error

        if not valid:
            logger.warning("Step '{step}' validation failed", step=step.name)
            error = PipelineValidationError(step.name)
            ctx.set_error(error)
            return StepOutcome.FAILED, error
        return None, None

    async def _attempt_loop(
        self, step: Step, ctx: ExecutionContext, token: CancellationToken
    ) -> tuple[StepOutcome, BaseException | None]:
        error: BaseException | None = None
        while True:
            token.raise_if_cancelled()
            try:
                outcome = await token.guard(step.execute(ctx))
                if not isinstance(outcome, StepOutcome):
                    raise TypeError(
                        f"Step '{step.name}' returned {outcome!r}, expected a StepOutcome"
                    )
            except OperationCancelledError:
                raise
            except Exception as e:
                error = e
                ctx.set_error(e)
                retry = await self._wants_retry(step, ctx, e)
                outcome = StepOutcome.RETRY if retry else StepOutcome.FAILED

            if outcome != StepOutcome.RETRY:
                return outcome, error if outcome == StepOutcome.FAILED else None

            if not RetryPolicy.can_retry(ctx.retry_count, step.max_retries):
                logger.warning(
                    "Step '{step}' gave up after {retries} retries",
                    step=step.name,
                    retries=ctx.retry_count,
                )
                return StepOutcome.FAILED, error

            ctx.retry_count += 1
            delay_ms = self.retry_policy.delay_ms_for(ctx.retry_count)
            logger.debug(
                "Step '{step}' retry {attempt}/{max_retries} in {delay}ms",
                step=step.name,
                attempt=ctx.retry_count,
                max_retries=step.max_retries,
                delay=delay_ms,
            )
            await self._emit(
                StepRetrying(
                    step.name,
                    self.pipeline_name,
                    attempt=ctx.retry_count,
                    max_retries=step.max_retries,
                    delay_ms=delay_ms,
                    error=error,
                )
            )
            if delay_ms > 0:
                await token.sleep(delay_ms / 1000)

    async def _wants_retry(self, step: Step, ctx: ExecutionContext, error: Exception) -> bool:
        try:
            return bool(await _maybe_await(step.on_error(ctx, error)))
        except OperationCancelledError:
            raise
        except Exception as handler_error:
            logger.error(
                "Step '{step}' on_error raised: {error}", step=step.name, error=handler_error
            )
            return False

    async def _call_hook(self, step: Step, hook: Callable[..., Any], *args: Any) -> None:
        # Hook errors are logged, never fatal
        try:
            await _maybe_await(hook(*args))
        except OperationCancelledError:
            raise
        except Exception as e:
            logger.warning(
                "Step '{step}' {hook} raised: {error}", step=step.name, hook=hook.__name__, error=e
            )

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    async def _report(self, step: Step, result: StepExecutionResult) -> None:
        if result.cancelled:
            reason = "timeout" if isinstance(result.error, StepTimeoutError) else None
            if reason is None and isinstance(result.error, OperationCancelledError):
                reason = result.error.reason
            logger.info("Step '{step}' cancelled: {reason}", step=step.name, reason=reason)
            await self._emit(StepCancelled(step.name, self.pipeline_name, reason))
        elif result.outcome == StepOutcome.FAILED:
            logger.error("Step '{step}' failed: {error}", step=step.name, error=result.error)
            await self._emit(StepFailed(step.name, self.pipeline_name, result.error, result))
        else:
            logger.debug(
                "Step '{step}' finished with {outcome} in {ms:.1f}ms",
                step=step.name,
                outcome=result.outcome,
                ms=result.duration_ms,
            )
            await self._emit(StepCompleted(step.name, self.pipeline_name, result))

    async def _emit(self, event: Event) -> None:
        if self.observers is not None:
            await self.observers.notify(event)

