"""Execution context carried through a pipeline run.

The context is the single mutable object steps share during a run: the
payload flowing between steps, a metadata map for cross-step signalling,
the cancellation token for the run, and bookkeeping (step index, retries,
last error).

Parallel branches each get a :meth:`ExecutionContext.clone`: the metadata
map is deep-copied, while payload and cancellation token are shared by
reference. Payload sharing across branches is intentional; steps that
mutate a shared payload concurrently must synchronize on their own.

The context of the step currently running is also published through a
context variable so helpers deep in a call stack can reach it without
parameter drilling (see :func:`get_current_context`).
"""

from __future__ import annotations

import copy
from contextvars import ContextVar, Token
from datetime import UTC, datetime
from typing import Any, TypeVar

from pipekit.kernel.context.cancellation import CancellationToken

T = TypeVar("T")

_MISSING: Any = object()

_current_context: ContextVar[ExecutionContext | None] = ContextVar(
    "pipekit_execution_context", default=None
)


class ExecutionContext:
    """Mutable payload/metadata/cancellation carrier for one run.

    Accessors never raise on a missing key or a type mismatch; they return
    the supplied default instead.

    Parameters
    ----------
    payload : Any, optional
        Initial payload
    cancellation : CancellationToken | None, optional
        Token observed by steps; a fresh token is created when omitted
    metadata : dict[str, Any] | None, optional
        Initial metadata (copied)

    Examples
    --------
    Example usage::

        ctx = ExecutionContext(payload={"rows": []})
        ctx.set_metadata("needs_cleaning", True)
        if ctx.get_metadata("needs_cleaning", False, expected_type=bool):
            ...
    """

    def __init__(
        self,
        payload: Any = None,
        cancellation: CancellationToken | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        self.payload = payload
        self.metadata: dict[str, Any] = dict(metadata) if metadata else {}
        self.cancellation = cancellation if cancellation is not None else CancellationToken()
        self.start_time: datetime = datetime.now(UTC)
        self.current_step_index = 0
        self.total_steps = 0
        self.retry_count = 0
        self.last_error: BaseException | None = None

    # ------------------------------------------------------------------
    # Metadata
    # ------------------------------------------------------------------

    def set_metadata(self, key: str, value: Any) -> None:
        self.metadata[key] = value

    def get_metadata(
        self, key: str, default: Any = None, *, expected_type: type | None = None
    ) -> Any:
        """Return the value stored under ``key``.

        Parameters
        ----------
        key : str
            Metadata key
        default : Any
            Returned when the key is missing or the value has the wrong type
        expected_type : type | None
            When given, values that are not instances of this type are
            treated as missing
        """
        value = self.metadata.get(key, _MISSING)
        if value is _MISSING:
            return default
        if expected_type is not None and not isinstance(value, expected_type):
            return default
        return value

    def has_metadata(self, key: str) -> bool:
        return key in self.metadata

    def remove_metadata(self, key: str) -> Any:
        return self.metadata.pop(key, None)

    # ------------------------------------------------------------------
    # Payload
    # ------------------------------------------------------------------

    def set_payload(self, payload: Any) -> None:
        self.payload = payload

    def get_payload(self, expected_type: type[T] | None = None, default: Any = None) -> Any:
        """Return the payload, or ``default`` if it is not an ``expected_type``."""
        if expected_type is not None and not isinstance(self.payload, expected_type):
            return default
        return self.payload

    # ------------------------------------------------------------------
    # Errors
    # ------------------------------------------------------------------

    def set_error(self, error: str | BaseException) -> None:
        """Record the last error; strings are wrapped in RuntimeError."""
        self.last_error = RuntimeError(error) if isinstance(error, str) else error

    def clear_error(self) -> None:
        self.last_error = None

    def has_error(self) -> bool:
        return self.last_error is not None

    @property
    def error(self) -> str | None:
        """Message of the last error, if any."""
        return str(self.last_error) if self.last_error is not None else None

    # ------------------------------------------------------------------
    # Timing and copying
    # ------------------------------------------------------------------

    @property
    def elapsed_ms(self) -> float:
        return (datetime.now(UTC) - self.start_time).total_seconds() * 1000

    def clone(self) -> ExecutionContext:
        """Copy for a parallel branch.

        Metadata is deep-copied; payload and cancellation token are shared.
        Start time, step index, totals and last error are carried over;
        the retry counter starts from zero.
        """
        clone = ExecutionContext(payload=self.payload, cancellation=self.cancellation)
        clone.metadata = copy.deepcopy(self.metadata)
        clone.start_time = self.start_time
        clone.current_step_index = self.current_step_index
        clone.total_steps = self.total_steps
        clone.last_error = self.last_error
        return clone

    def __repr__(self) -> str:
        return (
            f"ExecutionContext(step={self.current_step_index}/{self.total_steps}, "
            f"metadata_keys={sorted(self.metadata)}, error={self.error!r})"
        )


# ============================================================================
# Current context (async-safe)
# ============================================================================


def set_current_context(ctx: ExecutionContext | None) -> Token[ExecutionContext | None]:
    """Publish ``ctx`` as the context of the running step.

    Returns the ``contextvars`` token for :func:`reset_current_context`.
    """
    return _current_context.set(ctx)


def reset_current_context(token: Token[ExecutionContext | None]) -> None:
    _current_context.reset(token)


def get_current_context() -> ExecutionContext | None:
    """Context of the step currently executing in this task, if any.

    Examples
    --------
    Example usage::

        def load_rows(payload):
            ctx = get_current_context()
            if ctx is not None and ctx.cancellation.cancelled:
                return payload
            ...
    """
    return _current_context.get()
