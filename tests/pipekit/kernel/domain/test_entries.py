"""Tests for tagged step entries."""

from __future__ import annotations

import pytest

from pipekit.kernel.context import ExecutionContext
from pipekit.kernel.domain import (
    ConditionalEntry,
    ParallelEntry,
    PlainEntry,
    Step,
    StepOutcome,
    as_entry,
    conditional,
    parallel,
)
from pipekit.kernel.exceptions import ValidationError


class Noop(Step):
    async def execute(self, ctx):
        return StepOutcome.SUCCESS


class TestAsEntry:
    """Bare steps are wrapped, entries pass through."""

    def test_wraps_step(self) -> None:
        step = Noop("a")
        entry = as_entry(step)
        assert isinstance(entry, PlainEntry)
        assert entry.step is step
        assert entry.name == "a"

    @pytest.mark.parametrize(
        "entry",
        [
            PlainEntry(Noop()),
            ConditionalEntry(Noop(), lambda ctx: True),
            ParallelEntry(Noop()),
        ],
    )
    def test_passes_entries_through(self, entry) -> None:
        assert as_entry(entry) is entry

    def test_rejects_other_objects(self) -> None:
        with pytest.raises(ValidationError):
            as_entry("step")  # type: ignore[arg-type]


class TestConditionalEntry:
    """Predicates may be sync or async."""

    def test_predicate_must_be_callable(self) -> None:
        with pytest.raises(ValidationError):
            ConditionalEntry(Noop(), True)  # type: ignore[arg-type]

    @pytest.mark.asyncio
    async def test_sync_predicate(self) -> None:
        entry = conditional(Noop(), lambda ctx: ctx.get_metadata("go", False))
        ctx = ExecutionContext()
        assert await entry.evaluate(ctx) is False
        ctx.set_metadata("go", True)
        assert await entry.evaluate(ctx) is True

    @pytest.mark.asyncio
    async def test_async_predicate(self) -> None:
        async def is_list(ctx):
            return isinstance(ctx.payload, list)

        entry = conditional(Noop(), is_list)
        assert await entry.evaluate(ExecutionContext(payload=[])) is True
        assert await entry.evaluate(ExecutionContext(payload=1)) is False

    @pytest.mark.asyncio
    async def test_truthiness_is_coerced(self) -> None:
        entry = conditional(Noop(), lambda ctx: ctx.payload)
        assert await entry.evaluate(ExecutionContext(payload=[1])) is True


class TestParallelEntry:
    """Parallel entries carry dependency names."""

    def test_dependencies_default_empty(self) -> None:
        assert ParallelEntry(Noop()).dependencies == frozenset()

    def test_helper_freezes_dependencies(self) -> None:
        entry = parallel(Noop("c"), ["a", "b", "a"])
        assert entry.dependencies == frozenset({"a", "b"})
        assert entry.name == "c"

    def test_entries_are_immutable(self) -> None:
        entry = parallel(Noop())
        with pytest.raises(AttributeError):
            entry.step = Noop()  # type: ignore[misc]
