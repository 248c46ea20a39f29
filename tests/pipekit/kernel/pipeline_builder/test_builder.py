"""Tests for PipelineBuilder and the preset constructors."""

from __future__ import annotations

from datetime import timedelta

import pytest

from pipekit.kernel.config import PipelineDefaults
from pipekit.kernel.domain import (
    ConditionalEntry,
    ExecutionStrategy,
    ParallelEntry,
    PlainEntry,
    Step,
    StepOutcome,
)
from pipekit.kernel.exceptions import ValidationError
from pipekit.kernel.orchestration.events import PipelineCompleted, StepStarted
from pipekit.kernel.pipeline_builder import (
    PipelineBuilder,
    PipelineSettings,
    create,
    create_conditional,
    create_hybrid,
    create_parallel,
    create_sequential,
)


class Append(Step):
    async def execute(self, ctx):
        ctx.payload.append(self.name)
        return StepOutcome.SUCCESS


class Other(Append):
    pass


@pytest.fixture
def builder() -> PipelineBuilder:
    return PipelineBuilder("etl", "nightly load")


class TestSteps:
    """Adding steps in their different shapes."""

    def test_add_step_wraps_plain(self, builder):
        step = Append("a")
        builder.add_step(step)
        (entry,) = builder.steps
        assert isinstance(entry, PlainEntry)
        assert entry.step is step

    def test_add_step_class_is_instantiated(self, builder):
        builder.add_step(Append)
        assert isinstance(builder.steps[0].step, Append)
        assert builder.steps[0].name == "Append"

    def test_add_steps_flattens_one_level(self, builder):
        builder.add_steps(Append("a"), [Append("b"), Append("c")], (Append("d"),))
        assert [e.name for e in builder.steps] == ["a", "b", "c", "d"]

    def test_add_step_factory(self, builder):
        builder.add_step_factory(lambda: Append("made"))
        assert builder.steps[0].name == "made"

    @pytest.mark.parametrize("factory", [None, lambda: "not a step"])
    def test_add_step_factory_rejects(self, builder, factory):
        with pytest.raises(ValidationError) as exc_info:
            builder.add_step_factory(factory)
        assert exc_info.value.field == "factory"

    def test_conditional_and_parallel(self, builder):
        predicate = lambda ctx: True  # noqa: E731
        builder.add_conditional_step(Append("c"), predicate)
        builder.add_parallel_step(Append("p"), "x", "y")
        conditional_entry, parallel_entry = builder.steps

        assert isinstance(conditional_entry, ConditionalEntry)
        assert conditional_entry.predicate is predicate
        assert isinstance(parallel_entry, ParallelEntry)
        assert parallel_entry.dependencies == frozenset({"x", "y"})

    def test_chaining_returns_builder(self, builder):
        assert builder.add_step(Append()) is builder
        assert builder.with_timeout(10).with_retry_delay(0) is builder


class TestSettings:
    """Settings are validated when they are assigned."""

    def test_defaults_are_unset(self, builder):
        settings = builder.settings
        assert isinstance(settings, PipelineSettings)
        assert settings.name == "etl"
        assert settings.description == "nightly load"
        assert settings.strategy == ExecutionStrategy.SEQUENTIAL
        assert settings.max_parallel_steps is None
        assert settings.timeout_ms is None

    def test_with_methods(self, builder):
        (
            builder.with_name("renamed")
            .with_description("desc")
            .with_strategy("parallel")
            .with_max_parallel_steps(3)
            .with_timeout(1500)
            .with_retry_delay(25)
            .with_validation(False)
            .with_metadata("owner", "data-team")
        )
        settings = builder.settings
        assert settings.name == "renamed"
        assert settings.description == "desc"
        assert settings.strategy == ExecutionStrategy.PARALLEL
        assert settings.max_parallel_steps == 3
        assert settings.timeout_ms == 1500
        assert settings.retry_delay_ms == 25
        assert settings.validate_before_run is False
        assert settings.metadata == {"owner": "data-team"}

    def test_timedelta_timeout(self, builder):
        builder.with_timeout(timedelta(seconds=2, milliseconds=500))
        assert builder.settings.timeout_ms == 2500

    def test_zero_timeout_allowed(self, builder):
        assert builder.with_timeout(0).build().timeout_ms == 0

    @pytest.mark.parametrize(
        ("method", "value", "field"),
        [
            ("with_max_parallel_steps", 0, "max_parallel_steps"),
            ("with_timeout", -5, "timeout_ms"),
            ("with_retry_delay", -1, "retry_delay_ms"),
            ("with_strategy", "sideways", "strategy"),
            ("with_name", "", "name"),
        ],
    )
    def test_invalid_values(self, builder, method, value, field):
        with pytest.raises(ValidationError) as exc_info:
            getattr(builder, method)(value)
        assert exc_info.value.field == field
        assert exc_info.value.value == value

    def test_invalid_value_leaves_settings_untouched(self, builder):
        builder.with_max_parallel_steps(2)
        with pytest.raises(ValidationError):
            builder.with_max_parallel_steps(-1)
        assert builder.settings.max_parallel_steps == 2

    def test_empty_name_at_construction(self):
        with pytest.raises(ValidationError) as exc_info:
            PipelineBuilder("")
        assert exc_info.value.field == "name"

    def test_empty_metadata_key(self, builder):
        with pytest.raises(ValidationError):
            builder.with_metadata("", 1)

    def test_observer_must_be_callable(self, builder):
        with pytest.raises(ValidationError):
            builder.with_observer(42)


class TestBuild:
    """build() creates independent pipelines."""

    def test_build_applies_settings(self, builder):
        pipeline = (
            builder.add_step(Append("a"))
            .with_strategy(ExecutionStrategy.HYBRID)
            .with_max_parallel_steps(2)
            .with_timeout(100)
            .with_retry_delay(0)
            .with_metadata("k", "v")
            .build()
        )
        assert pipeline.name == "etl"
        assert pipeline.description == "nightly load"
        assert pipeline.strategy == ExecutionStrategy.HYBRID
        assert pipeline.max_parallel_steps == 2
        assert pipeline.timeout_ms == 100
        assert pipeline.retry_delay_ms == 0
        assert pipeline.metadata == {"k": "v"}
        assert [e.name for e in pipeline.steps] == ["a"]

    def test_unset_values_come_from_defaults(self):
        defaults = PipelineDefaults(max_parallel_steps=5, timeout_ms=77, retry_delay_ms=3)
        pipeline = PipelineBuilder("p", defaults=defaults).build()
        assert pipeline.max_parallel_steps == 5
        assert pipeline.timeout_ms == 77
        assert pipeline.retry_delay_ms == 3

    def test_builds_are_independent(self, builder):
        builder.add_step(Append("a")).with_metadata("nested", {"n": 1})
        first = builder.build()
        second = builder.build()

        assert first is not second
        assert first.id != second.id
        first.metadata["nested"]["n"] = 2
        assert second.metadata["nested"]["n"] == 1
        builder.add_step(Append("b"))
        assert len(first.steps) == 1

    @pytest.mark.asyncio
    async def test_observers_registered_on_build(self, builder, recorder):
        builder.add_step(Append("a")).with_retry_delay(0)
        builder.with_observer(recorder, event_types=[PipelineCompleted])
        calls = []
        builder.with_observer(lambda event: calls.append(event))

        result = await builder.build().execute([])

        assert result.is_success
        assert recorder.names() == ["PipelineCompleted"]
        assert any(isinstance(event, StepStarted) for event in calls)

    @pytest.mark.asyncio
    async def test_built_pipeline_runs(self):
        pipeline = (
            create_sequential("chain")
            .add_steps(Append("a"), Other("b"))
            .with_retry_delay(0)
            .build()
        )
        result = await pipeline.execute([])
        assert result.payload == ["a", "b"]


class TestResetAndClone:
    def test_reset(self, builder, recorder):
        builder.add_step(Append()).with_timeout(10).with_metadata("k", 1)
        builder.with_observer(recorder)
        builder.reset()

        assert builder.steps == ()
        assert builder.settings.name == "etl"
        assert builder.settings.description == "nightly load"
        assert builder.settings.timeout_ms is None
        assert builder.settings.metadata == {}
        assert len(builder.build().observers) == 0

    def test_clone_is_independent(self, builder):
        step = Append("a")
        builder.add_step(step).with_metadata("k", [1])
        clone = builder.clone()
        clone.add_step(Append("b")).with_timeout(5)
        clone.settings.metadata["k"].append(2)

        assert len(builder.steps) == 1
        assert len(clone.steps) == 2
        assert clone.steps[0].step is step
        assert builder.settings.timeout_ms is None
        assert builder.settings.metadata == {"k": [1]}
        assert clone.settings.name == "etl"

    def test_repr(self, builder):
        builder.add_step(Append())
        assert repr(builder) == "PipelineBuilder(name='etl', strategy=sequential, steps=1)"


class TestPresets:
    @pytest.mark.parametrize(
        ("factory", "strategy"),
        [
            (create, ExecutionStrategy.SEQUENTIAL),
            (create_sequential, ExecutionStrategy.SEQUENTIAL),
            (create_parallel, ExecutionStrategy.PARALLEL),
            (create_conditional, ExecutionStrategy.CONDITIONAL),
            (create_hybrid, ExecutionStrategy.HYBRID),
        ],
    )
    def test_strategy(self, factory, strategy):
        builder = factory("p", "d")
        assert builder.settings.strategy == strategy
        assert builder.settings.name == "p"
        assert builder.settings.description == "d"

    def test_parallel_bound(self):
        assert create_parallel("p", max_parallel_steps=4).settings.max_parallel_steps == 4
        assert create_parallel("p").settings.max_parallel_steps is None
