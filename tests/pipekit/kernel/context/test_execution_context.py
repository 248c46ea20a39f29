"""Tests for ExecutionContext and the current-context variable."""

from __future__ import annotations

import asyncio

import pytest

from pipekit.kernel.context import (
    CancellationToken,
    ExecutionContext,
    get_current_context,
    reset_current_context,
    set_current_context,
)


class TestMetadata:
    """Metadata accessors never raise."""

    def test_missing_key_returns_default(self) -> None:
        ctx = ExecutionContext()
        assert ctx.get_metadata("missing") is None
        assert ctx.get_metadata("missing", 5) == 5

    def test_type_mismatch_returns_default(self) -> None:
        ctx = ExecutionContext()
        ctx.set_metadata("flag", "yes")
        assert ctx.get_metadata("flag", False, expected_type=bool) is False
        assert ctx.get_metadata("flag", expected_type=str) == "yes"

    def test_stored_none_is_not_missing(self) -> None:
        ctx = ExecutionContext()
        ctx.set_metadata("key", None)
        assert ctx.has_metadata("key")
        assert ctx.get_metadata("key", "default") is None

    def test_remove(self) -> None:
        ctx = ExecutionContext(metadata={"a": 1})
        assert ctx.remove_metadata("a") == 1
        assert ctx.remove_metadata("a") is None
        assert not ctx.has_metadata("a")

    def test_initial_metadata_is_copied(self) -> None:
        initial = {"a": 1}
        ctx = ExecutionContext(metadata=initial)
        ctx.set_metadata("b", 2)
        assert initial == {"a": 1}


class TestPayloadAndErrors:
    """Payload access and error bookkeeping."""

    def test_get_payload_checks_type(self) -> None:
        ctx = ExecutionContext(payload=[1, 2])
        assert ctx.get_payload(list) == [1, 2]
        assert ctx.get_payload(dict, default={}) == {}
        ctx.set_payload("text")
        assert ctx.get_payload() == "text"

    def test_string_error_is_wrapped(self) -> None:
        ctx = ExecutionContext()
        ctx.set_error("bad input")
        assert isinstance(ctx.last_error, RuntimeError)
        assert ctx.error == "bad input"
        assert ctx.has_error()

    def test_clear_error(self) -> None:
        ctx = ExecutionContext()
        ctx.set_error(ValueError("x"))
        ctx.clear_error()
        assert not ctx.has_error()
        assert ctx.error is None

    def test_fresh_token_when_none_given(self) -> None:
        ctx = ExecutionContext()
        assert isinstance(ctx.cancellation, CancellationToken)
        assert not ctx.cancellation.cancelled

    def test_elapsed_is_non_negative(self) -> None:
        assert ExecutionContext().elapsed_ms >= 0


class TestClone:
    """Clones deep-copy metadata and share payload and token."""

    @pytest.fixture
    def ctx(self) -> ExecutionContext:
        ctx = ExecutionContext(payload={"rows": []}, metadata={"nested": {"count": 1}})
        ctx.current_step_index = 2
        ctx.total_steps = 5
        ctx.retry_count = 3
        return ctx

    def test_metadata_is_deep_copied(self, ctx: ExecutionContext) -> None:
        clone = ctx.clone()
        clone.metadata["nested"]["count"] = 99
        clone.set_metadata("extra", True)
        assert ctx.metadata == {"nested": {"count": 1}}

    def test_payload_and_token_are_shared(self, ctx: ExecutionContext) -> None:
        clone = ctx.clone()
        assert clone.payload is ctx.payload
        assert clone.cancellation is ctx.cancellation

    def test_bookkeeping_is_carried_over(self, ctx: ExecutionContext) -> None:
        clone = ctx.clone()
        assert clone.start_time == ctx.start_time
        assert clone.current_step_index == 2
        assert clone.total_steps == 5
        assert clone.retry_count == 0


class TestCurrentContext:
    """The running step's context is visible through a context variable."""

    def test_set_and_reset(self) -> None:
        ctx = ExecutionContext()
        assert get_current_context() is None
        token = set_current_context(ctx)
        assert get_current_context() is ctx
        reset_current_context(token)
        assert get_current_context() is None

    @pytest.mark.asyncio
    async def test_isolated_between_tasks(self) -> None:
        seen: list[ExecutionContext | None] = []

        async def worker(ctx: ExecutionContext) -> None:
            set_current_context(ctx)
            await asyncio.sleep(0.01)
            seen.append(get_current_context())

        first, second = ExecutionContext(payload=1), ExecutionContext(payload=2)
        await asyncio.gather(worker(first), worker(second))
        assert seen[0] is not seen[1]
        assert {c.payload for c in seen if c is not None} == {1, 2}
        assert get_current_context() is None
