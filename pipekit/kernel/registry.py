"""Pipeline registry: named pipelines, bounded concurrent execution, history.

The registry is an ordinary object; applications construct one and pass it
to whatever schedules pipeline runs. It adds, on top of
:meth:`Pipeline.execute <pipekit.kernel.orchestration.pipeline.Pipeline.execute>`:

- lookup by name, with pipelines registered directly, via a builder, or via
  a factory
- a global cap on concurrently running pipelines
- rejection of a second concurrent run of the same name
- chained (sequential) and fan-out (parallel) execution of several pipelines
- a bounded history of run records and per-pipeline statistics
- forwarding of every registered pipeline's lifecycle events to
  :attr:`PipelineRegistry.observers`
"""

from __future__ import annotations

import asyncio
import uuid
from collections import deque
from collections.abc import Callable, Iterable
from datetime import UTC, datetime
from typing import Any

from pipekit.kernel.config import RegistryConfig, load_config
from pipekit.kernel.context import CancellationToken, ExecutionContext
from pipekit.kernel.domain.pipeline_run import PipelineRunRecord, PipelineStatistics
from pipekit.kernel.domain.results import PipelineExecutionResult
from pipekit.kernel.exceptions import (
    PipelineStateError,
    ReentrancyError,
    ResourceNotFoundError,
    ValidationError,
)
from pipekit.kernel.logging import get_logger
from pipekit.kernel.orchestration.events import PIPELINE_EVENTS, Event
from pipekit.kernel.orchestration.observer_manager import ObserverManager
from pipekit.kernel.orchestration.pipeline import Pipeline
from pipekit.kernel.pipeline_builder import PipelineBuilder

logger = get_logger(__name__)

PIPELINE_NAME_KEY = "pipeline_name"
EXECUTION_ID_KEY = "execution_id"

PipelineSource = Pipeline | PipelineBuilder | Callable[[], Pipeline]


class PipelineRegistry:
    """Named pipelines with bounded concurrent execution.

    Parameters
    ----------
    config : RegistryConfig | None
        Limits; defaults to ``load_config().registry``

    Examples
    --------
    Example usage::

        registry = PipelineRegistry(RegistryConfig(max_concurrent_pipelines=2))
        registry.register("ingest", create_sequential("ingest").add_step(LoadRows()))
        registry.observers.register(SimpleLoggingObserver())

        result = await registry.execute("ingest", payload=path)
        print(registry.statistics("ingest").success_rate)
    """

    def __init__(self, config: RegistryConfig | None = None) -> None:
        self.config = config or load_config().registry
        self.observers = ObserverManager()
        self._pipelines: dict[str, Pipeline] = {}
        self._forwarders: dict[str, str] = {}
        self._running: set[str] = set()
        self._history: deque[PipelineRunRecord] = deque(maxlen=self.config.max_history)
        self._semaphore = asyncio.Semaphore(self.config.max_concurrent_pipelines)

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(self, name: str, source: PipelineSource) -> Pipeline:
        """Register a pipeline under ``name``, replacing any previous one.

        Parameters
        ----------
        name : str
            Registry key, independent of the pipeline's own name
        source : Pipeline | PipelineBuilder | Callable[[], Pipeline]
            The pipeline, a builder to build it from, or a factory to call

        Returns
        -------
        Pipeline
            The registered pipeline

        Raises
        ------
        ValidationError
            If the name is empty or the source does not yield a Pipeline
        PipelineStateError
            If a pipeline registered under ``name`` is running
        """
        if not name:
            raise ValidationError("name", "cannot be empty")
        pipeline = self._resolve(source)
        if name in self._running:
            raise PipelineStateError(name, "replace", "running")

        self._detach(name)
        self._pipelines[name] = pipeline
        self._forwarders[name] = pipeline.observers.register(
            self._forward, event_types=PIPELINE_EVENTS
        )
        logger.debug("Registered pipeline '{name}'", name=name)
        return pipeline

    @staticmethod
    def _resolve(source: PipelineSource) -> Pipeline:
        if isinstance(source, Pipeline):
            return source
        if isinstance(source, PipelineBuilder):
            return source.build()
        if callable(source):
            pipeline = source()
            if isinstance(pipeline, Pipeline):
                return pipeline
            raise ValidationError("factory", "must return a Pipeline", pipeline)
        raise ValidationError("source", "must be a Pipeline, builder or factory", source)

    def unregister(self, name: str) -> bool:
        """Remove ``name``, cancelling its run if one is in flight."""
        if name not in self._pipelines:
            return False
        if name in self._running:
            self.cancel(name)
        self._detach(name)
        del self._pipelines[name]
        logger.debug("Unregistered pipeline '{name}'", name=name)
        return True

    def unregister_all(self) -> None:
        for name in list(self._pipelines):
            self.unregister(name)

    def _detach(self, name: str) -> None:
        observer_id = self._forwarders.pop(name, None)
        pipeline = self._pipelines.get(name)
        if observer_id is not None and pipeline is not None:
            pipeline.observers.unregister(observer_id)

    async def _forward(self, event: Event) -> None:
        await self.observers.notify(event)

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def get(self, name: str) -> Pipeline:
        """Return the pipeline registered under ``name``.

        Raises
        ------
        ResourceNotFoundError
            If nothing is registered under ``name``
        """
        try:
            return self._pipelines[name]
        except KeyError:
            raise ResourceNotFoundError("pipeline", name, sorted(self._pipelines)) from None

    @property
    def names(self) -> list[str]:
        return list(self._pipelines)

    @property
    def registered_count(self) -> int:
        return len(self._pipelines)

    @property
    def running_count(self) -> int:
        return len(self._running)

    def __contains__(self, name: object) -> bool:
        return name in self._pipelines

    def is_running(self, name: str) -> bool:
        return name in self._running

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def execute(
        self,
        name: str,
        payload: Any = None,
        cancellation: CancellationToken | None = None,
    ) -> PipelineExecutionResult:
        """Run the pipeline registered under ``name``.

        Waits for a free slot when ``max_concurrent_pipelines`` runs are in
        flight. The run's context metadata carries ``pipeline_name`` and a
        fresh ``execution_id``.

        Raises
        ------
        ResourceNotFoundError
            If ``name`` is not registered
        ReentrancyError
            If ``name`` is already running or waiting for a slot
        OperationCancelledError
            If ``cancellation`` fires while waiting for a slot
        """
        pipeline = self.get(name)
        if name in self._running:
            raise ReentrancyError(name)
        self._running.add(name)
        try:
            if cancellation is not None:
                await cancellation.guard(self._semaphore.acquire())
            else:
                await self._semaphore.acquire()
            try:
                return await self._run(name, pipeline, payload, cancellation)
            finally:
                self._semaphore.release()
        finally:
            self._running.discard(name)

    async def _run(
        self,
        name: str,
        pipeline: Pipeline,
        payload: Any,
        cancellation: CancellationToken | None,
    ) -> PipelineExecutionResult:
        execution_id = str(uuid.uuid4())
        ctx = ExecutionContext(payload=payload, cancellation=cancellation)
        ctx.set_metadata(PIPELINE_NAME_KEY, name)
        ctx.set_metadata(EXECUTION_ID_KEY, execution_id)

        logger.debug(
            "Executing pipeline '{name}' (execution {execution_id})",
            name=name,
            execution_id=execution_id,
        )
        result = await pipeline.execute(context=ctx)
        self._history.append(
            PipelineRunRecord(
                execution_id=execution_id,
                pipeline_name=name,
                status=result.status,
                started_at=result.started_at or datetime.now(UTC),
                duration_ms=result.duration_ms,
                executed_steps=result.executed_steps,
                skipped_steps=result.skipped_steps,
                failed_steps=result.failed_steps,
                cancelled_steps=result.cancelled_steps,
                error=str(result.error) if result.error is not None else None,
                metadata=dict(ctx.metadata),
            )
        )
        return result

    async def execute_sequentially(
        self,
        names: Iterable[str],
        payload: Any = None,
        cancellation: CancellationToken | None = None,
    ) -> list[PipelineExecutionResult]:
        """Run pipelines one after another, feeding each output to the next.

        Stops after the first result that is not successful; that result is
        the last element of the returned list.
        """
        names = list(names)
        for name in names:
            self.get(name)

        results: list[PipelineExecutionResult] = []
        current = payload
        for name in names:
            result = await self.execute(name, current, cancellation)
            results.append(result)
            if not result.is_success:
                logger.warning(
                    "Sequential execution stopped at '{name}' ({status})",
                    name=name,
                    status=result.status.value,
                )
                break
            current = result.payload
        return results

    async def execute_parallel(
        self,
        names: Iterable[str],
        payload: Any = None,
        cancellation: CancellationToken | None = None,
    ) -> list[PipelineExecutionResult]:
        """Run pipelines concurrently with the same input.

        Results are returned in the order of ``names``. Concurrency is still
        bounded by ``max_concurrent_pipelines``.

        Raises
        ------
        ValidationError
            If a name appears more than once
        """
        names = list(names)
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ValidationError("names", "must be unique", duplicates)
        for name in names:
            self.get(name)
        return list(
            await asyncio.gather(*(self.execute(name, payload, cancellation) for name in names))
        )

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    def cancel(self, name: str) -> bool:
        """Cancel the run of ``name``; False if unknown or not running."""
        pipeline = self._pipelines.get(name)
        if pipeline is None:
            return False
        cancelled = pipeline.cancel()
        if cancelled:
            logger.info("Cancelled pipeline '{name}'", name=name)
        return cancelled

    def cancel_all(self) -> int:
        """Cancel every running pipeline; return how many were cancelled."""
        return sum(1 for name in list(self._pipelines) if self.cancel(name))

    # ------------------------------------------------------------------
    # History and statistics
    # ------------------------------------------------------------------

    @property
    def history(self) -> tuple[PipelineRunRecord, ...]:
        return tuple(self._history)

    def clear_history(self) -> None:
        self._history.clear()

    def statistics(self, name: str) -> PipelineStatistics:
        records = [r for r in self._history if r.pipeline_name == name]
        return PipelineStatistics.from_records(name, records)

    def all_statistics(self) -> list[PipelineStatistics]:
        """Statistics for every registered pipeline, in registration order."""
        return [self.statistics(name) for name in self._pipelines]

    def __repr__(self) -> str:
        return (
            f"PipelineRegistry(registered={len(self._pipelines)}, "
            f"running={len(self._running)}, history={len(self._history)})"
        )
