"""Strategy executor: dispatches step entries under one execution strategy.

- SEQUENTIAL: declaration order, abort on FAILED, end early on STOP
- CONDITIONAL: as sequential, but ConditionalEntry predicates gate each step
- PARALLEL: bounded fan-out over context clones, fan-in before deciding
- HYBRID: ParallelEntry steps in parallel first, then the rest sequentially

The executor never raises for step-level problems; it returns a
:class:`PhaseResult` describing the phase's terminal status.
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from pipekit.kernel.context import ExecutionContext
from pipekit.kernel.domain.entries import ConditionalEntry, ParallelEntry, PlainEntry, StepEntry
from pipekit.kernel.domain.pipeline_run import ExecutionStrategy, PipelineRunState
from pipekit.kernel.domain.results import StepExecutionResult
from pipekit.kernel.domain.step import StepOutcome
from pipekit.kernel.exceptions import (
    OperationCancelledError,
    PipelineValidationError,
    StepFailedError,
)
from pipekit.kernel.logging import get_logger
from pipekit.kernel.orchestration.components.step_runner import StepRunner
from pipekit.kernel.orchestration.events import StepSkipped

if TYPE_CHECKING:
    from pipekit.kernel.orchestration.observer_manager import ObserverManager

logger = get_logger(__name__)


@dataclass(slots=True)
class PhaseResult:
    """Outcome of running a list of entries."""

    status: PipelineRunState = PipelineRunState.COMPLETED
    results: list[StepExecutionResult] = field(default_factory=list)
    error: BaseException | None = None

    def absorb(self, other: PhaseResult) -> None:
        self.results.extend(other.results)
        self.status = other.status
        self.error = other.error

    def fail(self, error: BaseException) -> PhaseResult:
        self.status = PipelineRunState.FAILED
        self.error = error
        return self

    def cancel(self, error: BaseException | None) -> PhaseResult:
        self.status = PipelineRunState.CANCELLED
        self.error = error
        return self


def step_failure(result: StepExecutionResult) -> BaseException:
    """Top-level error for a FAILED step result."""
    if isinstance(result.error, PipelineValidationError):
        return result.error
    return StepFailedError(result.step_name, result.error)


def dependency_cycle(entries: Sequence[StepEntry]) -> list[str] | None:
    """Return one dependency cycle among ParallelEntry steps, or None.

    Only dependencies on names present in ``entries`` are considered.
    """
    graph: dict[str, set[str]] = {}
    for entry in entries:
        deps = entry.dependencies if isinstance(entry, ParallelEntry) else frozenset()
        graph.setdefault(entry.name, set()).update(deps)
    names = set(graph)

    visiting: list[str] = []
    done: set[str] = set()

    def visit(node: str) -> list[str] | None:
        if node in visiting:
            return [*visiting[visiting.index(node) :], node]
        if node in done:
            return None
        visiting.append(node)
        for dep in sorted(graph[node] & names):
            if cycle := visit(dep):
                return cycle
        visiting.pop()
        done.add(node)
        return None

    for name in graph:
        if cycle := visit(name):
            return cycle
    return None


class StrategyExecutor:
    """Runs entries under a strategy using a shared StepRunner.

    Parameters
    ----------
    runner : StepRunner
        Runner used for every step
    max_parallel_steps : int
        Concurrency bound for parallel phases, >= 1
    observers : ObserverManager | None
        Receives StepSkipped events for predicate-gated steps
    pipeline_name : str
        Included in events and logs
    """

    def __init__(
        self,
        runner: StepRunner,
        max_parallel_steps: int,
        observers: ObserverManager | None = None,
        pipeline_name: str = "",
    ) -> None:
        self.runner = runner
        self.max_parallel_steps = max_parallel_steps
        self.observers = observers
        self.pipeline_name = pipeline_name

    async def run(
        self, strategy: ExecutionStrategy, entries: Sequence[StepEntry], ctx: ExecutionContext
    ) -> PhaseResult:
        match strategy:
            case ExecutionStrategy.SEQUENTIAL:
                return await self.run_sequential(entries, ctx)
            case ExecutionStrategy.CONDITIONAL:
                return await self.run_sequential(entries, ctx, evaluate_predicates=True)
            case ExecutionStrategy.PARALLEL:
                return await self.run_parallel(entries, ctx)
            case ExecutionStrategy.HYBRID:
                return await self.run_hybrid(entries, ctx)
            case _:
                raise ValueError(f"Unsupported execution strategy: {strategy!r}")

    # ------------------------------------------------------------------
    # Sequential / conditional
    # ------------------------------------------------------------------

    async def run_sequential(
        self,
        entries: Sequence[StepEntry],
        ctx: ExecutionContext,
        evaluate_predicates: bool = False,
        indexes: Sequence[int] | None = None,
    ) -> PhaseResult:
        """Run ``entries`` one at a time.

        ``indexes`` are the declared pipeline positions of ``entries``; they
        default to ``0..n-1``.
        """
        phase = PhaseResult()
        token = ctx.cancellation

        for index, entry in zip(_positions(entries, indexes), entries, strict=True):
            if token.cancelled:
                return phase.cancel(OperationCancelledError(token.reason))

            ctx.current_step_index = index

            if evaluate_predicates and isinstance(entry, ConditionalEntry):
                try:
                    should_run = await token.guard(entry.evaluate(ctx))
                except OperationCancelledError as e:
                    return phase.cancel(e)
                except Exception as e:
                    logger.error(
                        "Predicate of step '{step}' raised: {error}", step=entry.name, error=e
                    )
                    ctx.set_error(e)
                    phase.results.append(
                        StepExecutionResult(
                            step_name=entry.name,
                            outcome=StepOutcome.FAILED,
                            step_index=index,
                            input_payload=ctx.payload,
                            output_payload=ctx.payload,
                            error=e,
                            started_at=datetime.now(UTC),
                        )
                    )
                    return phase.fail(StepFailedError(entry.name, e))

                if not should_run:
                    phase.results.append(await self._skip(entry, ctx, index))
                    continue

            result = await self.runner.run(entry.step, ctx, index)
            phase.results.append(result)

            if result.cancelled:
                return phase.cancel(result.error)
            if result.outcome == StepOutcome.FAILED:
                return phase.fail(step_failure(result))
            if result.outcome == StepOutcome.STOP:
                logger.info("Step '{step}' requested stop, ending run early", step=entry.name)
                break

            if token.cancelled:
                return phase.cancel(OperationCancelledError(token.reason))

        return phase

    async def _skip(
        self, entry: StepEntry, ctx: ExecutionContext, index: int
    ) -> StepExecutionResult:
        logger.debug("Predicate false, skipping step '{step}'", step=entry.name)
        if self.observers is not None:
            await self.observers.notify(
                StepSkipped(
                    entry.name, self.pipeline_name, reason="predicate is false", context=ctx
                )
            )
        return StepExecutionResult(
            step_name=entry.name,
            outcome=StepOutcome.SKIP,
            step_index=index,
            input_payload=ctx.payload,
            output_payload=ctx.payload,
            started_at=datetime.now(UTC),
        )

    # ------------------------------------------------------------------
    # Parallel
    # ------------------------------------------------------------------

    async def run_parallel(
        self,
        entries: Sequence[StepEntry],
        ctx: ExecutionContext,
        indexes: Sequence[int] | None = None,
    ) -> PhaseResult:
        phase = PhaseResult()
        if not entries:
            return phase

        if cycle := dependency_cycle(entries):
            return phase.fail(
                PipelineValidationError(None, f"dependency cycle: {' -> '.join(cycle)}")
            )

        token = ctx.cancellation
        semaphore = asyncio.Semaphore(self.max_parallel_steps)
        settled = {entry.name: asyncio.Event() for entry in entries}

        async def branch(index: int, entry: StepEntry) -> StepExecutionResult | None:
            try:
                for dep in self._dependencies(entry, settled):
                    await token.guard(settled[dep].wait())
                async with semaphore:
                    if token.cancelled:
                        return None
                    branch_ctx = ctx.clone()
                    branch_ctx.current_step_index = index
                    return await self.runner.run(entry.step, branch_ctx, index)
            except OperationCancelledError:
                return None
            finally:
                settled[entry.name].set()

        # gather keeps declaration order regardless of completion order
        outcomes = await asyncio.gather(
            *(
                branch(index, entry)
                for index, entry in zip(_positions(entries, indexes), entries, strict=True)
            )
        )
        phase.results = [result for result in outcomes if result is not None]

        cancelled = next((r for r in phase.results if r.cancelled), None)
        if cancelled is not None:
            return phase.cancel(cancelled.error)
        if token.cancelled:
            return phase.cancel(OperationCancelledError(token.reason))
        failed = next((r for r in phase.results if r.outcome == StepOutcome.FAILED), None)
        if failed is not None:
            return phase.fail(step_failure(failed))
        return phase

    def _dependencies(self, entry: StepEntry, settled: dict[str, asyncio.Event]) -> list[str]:
        if not isinstance(entry, ParallelEntry):
            return []
        known = []
        for dep in sorted(entry.dependencies):
            if dep not in settled:
                logger.warning(
                    "Step '{step}' depends on unknown step '{dep}', ignoring",
                    step=entry.name,
                    dep=dep,
                )
                continue
            known.append(dep)
        return known

    # ------------------------------------------------------------------
    # Hybrid
    # ------------------------------------------------------------------

    async def run_hybrid(
        self, entries: Sequence[StepEntry], ctx: ExecutionContext
    ) -> PhaseResult:
        parallel_part = [(i, e) for i, e in enumerate(entries) if isinstance(e, ParallelEntry)]
        sequential_part = [
            (i, e) for i, e in enumerate(entries) if isinstance(e, PlainEntry | ConditionalEntry)
        ]
        phase = PhaseResult()

        if parallel_part:
            indexes, parallel_entries = zip(*parallel_part, strict=True)
            phase.absorb(await self.run_parallel(parallel_entries, ctx.clone(), indexes))
            if phase.status != PipelineRunState.COMPLETED:
                return phase

        if sequential_part:
            indexes, sequential_entries = zip(*sequential_part, strict=True)
            sequential_ctx = ctx.clone()
            phase.absorb(
                await self.run_sequential(sequential_entries, sequential_ctx, indexes=indexes)
            )
            ctx.payload = sequential_ctx.payload
            ctx.metadata.update(sequential_ctx.metadata)
            ctx.last_error = sequential_ctx.last_error
            ctx.current_step_index = sequential_ctx.current_step_index

        return phase


def _positions(entries: Sequence[StepEntry], indexes: Sequence[int] | None) -> Sequence[int]:
    return range(len(entries)) if indexes is None else indexes
