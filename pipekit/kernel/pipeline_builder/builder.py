"""Fluent construction of :class:`~pipekit.kernel.orchestration.pipeline.Pipeline` objects.

The builder never executes anything. It collects step entries, settings and
observers, and :meth:`PipelineBuilder.build` turns them into a fresh
pipeline each time it is called.

Examples
--------
Example usage::

    pipeline = (
        create_hybrid("ingest")
        .add_parallel_step(FetchUsers())
        .add_parallel_step(FetchOrders())
        .add_step(JoinRows())
        .with_timeout(timedelta(seconds=30))
        .with_observer(SimpleLoggingObserver())
        .build()
    )
"""

from __future__ import annotations

import copy
from collections.abc import Callable, Iterable
from datetime import timedelta
from typing import Any

import pydantic

from pipekit.kernel.config import PipelineDefaults
from pipekit.kernel.domain.entries import (
    ConditionalEntry,
    ParallelEntry,
    PlainEntry,
    Predicate,
    StepEntry,
    as_entry,
)
from pipekit.kernel.domain.pipeline_run import ExecutionStrategy
from pipekit.kernel.domain.step import Step
from pipekit.kernel.exceptions import ValidationError
from pipekit.kernel.logging import get_logger
from pipekit.kernel.orchestration.events import Event
from pipekit.kernel.orchestration.observer_manager import Observer, ObserverFunc
from pipekit.kernel.orchestration.pipeline import Pipeline
from pipekit.kernel.pipeline_builder.settings import PipelineSettings

logger = get_logger(__name__)

StepFactory = Callable[[], Step]


class PipelineBuilder:
    """Accumulates steps and settings, then builds pipelines.

    Parameters
    ----------
    name : str
        Pipeline name
    description : str
        Pipeline description
    defaults : PipelineDefaults | None
        Passed to every built pipeline for the settings left unset
    """

    def __init__(
        self,
        name: str = "pipeline",
        description: str = "",
        *,
        defaults: PipelineDefaults | None = None,
    ) -> None:
        self._settings = self._validated(PipelineSettings, name=name, description=description)
        self._defaults = defaults
        self._entries: list[StepEntry] = []
        self._observers: list[tuple[Observer | ObserverFunc, tuple[type[Event], ...] | None]] = []

    @property
    def settings(self) -> PipelineSettings:
        return self._settings

    @property
    def steps(self) -> tuple[StepEntry, ...]:
        return tuple(self._entries)

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def add_step(self, step: Step | StepEntry | type[Step]) -> PipelineBuilder:
        """Add a step, a step entry, or a Step subclass to instantiate."""
        if isinstance(step, type) and issubclass(step, Step):
            step = step()
        entry = as_entry(step)
        self._entries.append(entry)
        logger.debug("Added step '{step}'", step=entry.name)
        return self

    def add_steps(self, *steps: Step | StepEntry | Iterable[Step | StepEntry]) -> PipelineBuilder:
        """Add several steps; iterables of steps are flattened one level."""
        for item in steps:
            if isinstance(item, Step | PlainEntry | ConditionalEntry | ParallelEntry | type):
                self.add_step(item)
            else:
                for step in item:
                    self.add_step(step)
        return self

    def add_step_factory(self, factory: StepFactory) -> PipelineBuilder:
        """Call ``factory`` now and add the step it returns."""
        if not callable(factory):
            raise ValidationError("factory", "must be callable", factory)
        step = factory()
        if not isinstance(step, Step):
            raise ValidationError("factory", "must return a Step", step)
        return self.add_step(step)

    def add_conditional_step(self, step: Step, predicate: Predicate) -> PipelineBuilder:
        """Add a step gated by ``predicate(ctx)`` (sync or async).

        The predicate is only consulted under the CONDITIONAL strategy.
        """
        entry = ConditionalEntry(step, predicate)
        self._entries.append(entry)
        logger.debug("Added conditional step '{step}'", step=entry.name)
        return self

    def add_parallel_step(self, step: Step, *dependencies: str) -> PipelineBuilder:
        """Add a step eligible for the parallel phase.

        Parameters
        ----------
        step : Step
            The step
        *dependencies : str
            Names of sibling parallel steps that must settle first
        """
        entry = ParallelEntry(step, frozenset(dependencies))
        self._entries.append(entry)
        logger.debug(
            "Added parallel step '{step}' (depends on {deps})",
            step=entry.name,
            deps=sorted(entry.dependencies) or "nothing",
        )
        return self

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    def with_name(self, name: str) -> PipelineBuilder:
        self._assign("name", name)
        return self

    def with_description(self, description: str) -> PipelineBuilder:
        self._assign("description", description)
        return self

    def with_strategy(self, strategy: ExecutionStrategy | str) -> PipelineBuilder:
        self._assign("strategy", strategy)
        logger.debug("Set execution strategy: {strategy}", strategy=self._settings.strategy)
        return self

    def with_max_parallel_steps(self, max_parallel_steps: int) -> PipelineBuilder:
        self._assign("max_parallel_steps", max_parallel_steps)
        return self

    def with_timeout(self, timeout: int | timedelta) -> PipelineBuilder:
        """Set the global run deadline in milliseconds (or as a timedelta)."""
        if isinstance(timeout, timedelta):
            timeout = int(timeout.total_seconds() * 1000)
        self._assign("timeout_ms", timeout)
        return self

    def with_retry_delay(self, retry_delay_ms: int) -> PipelineBuilder:
        self._assign("retry_delay_ms", retry_delay_ms)
        return self

    def with_validation(self, enabled: bool = True) -> PipelineBuilder:
        self._assign("validate_before_run", enabled)
        return self

    def with_metadata(self, key: str, value: Any) -> PipelineBuilder:
        if not key:
            raise ValidationError("key", "cannot be empty")
        self._settings.metadata[key] = value
        return self

    def with_observer(
        self,
        handler: Observer | ObserverFunc,
        event_types: Iterable[type[Event]] | None = None,
    ) -> PipelineBuilder:
        """Register ``handler`` on every pipeline this builder builds."""
        if not (isinstance(handler, Observer) or callable(handler)):
            raise ValidationError("handler", "must be callable or have a handle method", handler)
        types = tuple(event_types) if event_types is not None else None
        self._observers.append((handler, types))
        return self

    # ------------------------------------------------------------------
    # Build
    # ------------------------------------------------------------------

    def build(self) -> Pipeline:
        """Create a new pipeline from the current state."""
        settings = self._settings
        pipeline = Pipeline(
            settings.name,
            self._entries,
            description=settings.description,
            strategy=settings.strategy,
            max_parallel_steps=settings.max_parallel_steps,
            timeout_ms=settings.timeout_ms,
            retry_delay_ms=settings.retry_delay_ms,
            validate_before_run=settings.validate_before_run,
            metadata=copy.deepcopy(settings.metadata),
            defaults=self._defaults,
        )
        for handler, event_types in self._observers:
            pipeline.observers.register(handler, event_types=event_types)
        logger.debug(
            "Built pipeline '{name}' with {count} steps ({strategy})",
            name=pipeline.name,
            count=len(self._entries),
            strategy=pipeline.strategy.value,
        )
        return pipeline

    def reset(self) -> PipelineBuilder:
        """Drop steps, metadata and observers; restore default settings.

        The name and description are kept.
        """
        self._entries.clear()
        self._observers.clear()
        self._settings = PipelineSettings(
            name=self._settings.name, description=self._settings.description
        )
        return self

    def clone(self) -> PipelineBuilder:
        """Independent copy sharing the step objects."""
        clone = PipelineBuilder(defaults=self._defaults)
        clone._settings = self._settings.model_copy(deep=True)
        clone._entries = list(self._entries)
        clone._observers = list(self._observers)
        return clone

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _assign(self, field: str, value: Any) -> None:
        try:
            setattr(self._settings, field, value)
        except pydantic.ValidationError as e:
            raise ValidationError(field, _first_message(e), value) from e

    @staticmethod
    def _validated(model: type[PipelineSettings], **values: Any) -> PipelineSettings:
        try:
            return model(**values)
        except pydantic.ValidationError as e:
            field = ".".join(str(part) for part in e.errors()[0]["loc"]) or "settings"
            raise ValidationError(field, _first_message(e)) from e

    def __repr__(self) -> str:
        return (
            f"PipelineBuilder(name={self._settings.name!r}, "
            f"strategy={self._settings.strategy.value}, steps={len(self._entries)})"
        )


def _first_message(error: pydantic.ValidationError) -> str:
    errors = error.errors()
    return errors[0]["msg"] if errors else str(error)


# ============================================================================
# Presets
# ============================================================================


def create(name: str, description: str = "") -> PipelineBuilder:
    return PipelineBuilder(name, description)


def create_sequential(name: str, description: str = "") -> PipelineBuilder:
    return PipelineBuilder(name, description).with_strategy(ExecutionStrategy.SEQUENTIAL)


def create_parallel(
    name: str, description: str = "", max_parallel_steps: int | None = None
) -> PipelineBuilder:
    builder = PipelineBuilder(name, description).with_strategy(ExecutionStrategy.PARALLEL)
    if max_parallel_steps is not None:
        builder.with_max_parallel_steps(max_parallel_steps)
    return builder


def create_conditional(name: str, description: str = "") -> PipelineBuilder:
    return PipelineBuilder(name, description).with_strategy(ExecutionStrategy.CONDITIONAL)


def create_hybrid(name: str, description: str = "") -> PipelineBuilder:
    return PipelineBuilder(name, description).with_strategy(ExecutionStrategy.HYBRID)
