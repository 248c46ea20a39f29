"""Tagged step entries.

A pipeline stores each step wrapped in one of three variants. Strategy code
matches on the variant instead of inspecting step classes:

- :class:`PlainEntry`: run as declared
- :class:`ConditionalEntry`: gated by a predicate over the context
- :class:`ParallelEntry`: eligible for the parallel phase, with optional
  names of sibling steps it must wait for
"""

from __future__ import annotations

import inspect
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from pipekit.kernel.domain.step import Step
from pipekit.kernel.exceptions import ValidationError

if TYPE_CHECKING:
    from pipekit.kernel.context import ExecutionContext

Predicate = Callable[["ExecutionContext"], bool | Awaitable[bool]]


@dataclass(frozen=True, slots=True)
class PlainEntry:
    step: Step

    @property
    def name(self) -> str:
        return self.step.name


@dataclass(frozen=True, slots=True)
class ConditionalEntry:
    step: Step
    predicate: Predicate

    def __post_init__(self) -> None:
        if not callable(self.predicate):
            raise ValidationError("predicate", "must be callable", self.predicate)

    @property
    def name(self) -> str:
        return self.step.name

    async def evaluate(self, ctx: ExecutionContext) -> bool:
        """Evaluate the predicate, awaiting it when it is async."""
        result = self.predicate(ctx)
        if inspect.isawaitable(result):
            result = await result
        return bool(result)


@dataclass(frozen=True, slots=True)
class ParallelEntry:
    step: Step
    dependencies: frozenset[str] = field(default_factory=frozenset)

    @property
    def name(self) -> str:
        return self.step.name


StepEntry = PlainEntry | ConditionalEntry | ParallelEntry


def as_entry(item: Step | StepEntry) -> StepEntry:
    """Wrap a bare step in a PlainEntry; pass entries through."""
    match item:
        case PlainEntry() | ConditionalEntry() | ParallelEntry():
            return item
        case Step():
            return PlainEntry(item)
        case _:
            raise ValidationError("step", "must be a Step or a step entry", item)


def parallel(step: Step, dependencies: Iterable[str] = ()) -> ParallelEntry:
    return ParallelEntry(step, frozenset(dependencies))


def conditional(step: Step, predicate: Predicate) -> ConditionalEntry:
    return ConditionalEntry(step, predicate)
