"""Cancellation tokens with linking and deadlines.

A token is a one-shot, thread-safe flag. Tokens can be linked into a tree:
cancelling a parent cancels every child, while cancelling a child leaves
the parent untouched. A token can also carry a deadline, after which it
cancels itself with reason ``"timeout"``.

The pipeline composes its own token (global timeout, ``Pipeline.cancel``)
with the caller's token, and the step runner derives a narrower child per
step for ``timeout_ms``.

Examples
--------
Link a caller token with a run deadline::

    caller = CancellationToken()
    run = CancellationToken.linked(caller)
    run.cancel_after(5.0)

    result = await run.guard(do_work())  # raises OperationCancelledError
"""

from __future__ import annotations

import asyncio
import inspect
import itertools
import threading
import time
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from pipekit.kernel.exceptions import OperationCancelledError

T = TypeVar("T")

CancelCallback = Callable[["CancellationToken"], None]

TIMEOUT_REASON = "timeout"


def _running_loop() -> asyncio.AbstractEventLoop | None:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None


class CancellationToken:
    """Thread-safe, idempotent cancellation signal.

    Parameters
    ----------
    name : str | None
        Optional label used in ``repr`` and logs.
    """

    def __init__(self, name: str | None = None) -> None:
        self.name = name
        self._lock = threading.Lock()
        self._cancelled = False
        self._expired = False
        self._reason: str | None = None
        self._callbacks: dict[int, tuple[CancelCallback, asyncio.AbstractEventLoop | None]] = {}
        self._ids = itertools.count()
        self._deadline: float | None = None
        self._timer: asyncio.TimerHandle | None = None
        self._parents: list[tuple[CancellationToken, int]] = []

    # ------------------------------------------------------------------
    # Construction helpers
    # ------------------------------------------------------------------

    @classmethod
    def linked(
        cls, *parents: CancellationToken | None, name: str | None = None
    ) -> CancellationToken:
        """Create a token that is cancelled as soon as any parent is.

        ``None`` parents are ignored, so an optional caller token can be
        passed through unchanged.
        """
        token = cls(name=name)
        for parent in parents:
            if parent is not None:
                token._attach(parent)
        return token

    def link(self, name: str | None = None) -> CancellationToken:
        """Create a child token of this one."""
        return CancellationToken.linked(self, name=name)

    def _attach(self, parent: CancellationToken) -> None:
        def _propagate(source: CancellationToken) -> None:
            self.cancel(source.reason)

        handle = parent.add_callback(_propagate)
        self._parents.append((parent, handle))

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def cancelled(self) -> bool:
        """True once this token or any ancestor has been cancelled."""
        if self._cancelled:
            return True
        return any(parent.cancelled for parent, _ in self._parents)

    @property
    def reason(self) -> str | None:
        """Why the token was cancelled (``"timeout"`` for deadlines)."""
        if self._cancelled:
            return self._reason
        for parent, _ in self._parents:
            if parent.cancelled:
                return parent.reason
        return None

    @property
    def expired(self) -> bool:
        """True when this token's own deadline fired (not an ancestor's)."""
        return self._expired

    @property
    def remaining(self) -> float | None:
        """Seconds until the nearest deadline in the chain, None if unbounded."""
        candidates: list[float] = []
        if self._deadline is not None:
            candidates.append(max(0.0, self._deadline - time.monotonic()))
        for parent, _ in self._parents:
            parent_remaining = parent.remaining
            if parent_remaining is not None:
                candidates.append(parent_remaining)
        return min(candidates) if candidates else None

    def raise_if_cancelled(self) -> None:
        """Raise OperationCancelledError if the token has fired."""
        if self.cancelled:
            raise OperationCancelledError(self.reason)

    # ------------------------------------------------------------------
    # Cancelling
    # ------------------------------------------------------------------

    def cancel(self, reason: str | None = "cancelled") -> bool:
        """Cancel the token and every linked child.

        Safe to call from any thread and any number of times; only the first
        call has an effect.

        Returns
        -------
        bool
            True if this call performed the cancellation.
        """
        with self._lock:
            if self._cancelled:
                return False
            self._cancelled = True
            self._reason = reason
            callbacks = list(self._callbacks.values())
            self._callbacks.clear()
            timer, self._timer = self._timer, None

        if timer is not None:
            timer.cancel()
        for callback, loop in callbacks:
            self._dispatch(callback, loop)
        return True

    def cancel_after(self, seconds: float) -> None:
        """Schedule cancellation with reason ``"timeout"`` after ``seconds``.

        Must be called from within a running event loop.
        """
        if seconds <= 0:
            self._expire()
            return
        loop = asyncio.get_running_loop()
        with self._lock:
            if self._cancelled:
                return
            if self._timer is not None:
                self._timer.cancel()
            self._deadline = time.monotonic() + seconds
            self._timer = loop.call_later(seconds, self._expire)

    def _expire(self) -> None:
        if not self.cancelled:
            self._expired = True
        self.cancel(TIMEOUT_REASON)

    # ------------------------------------------------------------------
    # Callbacks
    # ------------------------------------------------------------------

    def add_callback(self, callback: CancelCallback) -> int:
        """Register ``callback(token)`` to run on cancellation.

        Callbacks registered from inside an event loop always run on that
        loop, even when ``cancel`` is called from another thread. If the
        token is already cancelled the callback runs immediately.

        Returns
        -------
        int
            Handle for :meth:`remove_callback`.
        """
        loop = _running_loop()
        with self._lock:
            handle = next(self._ids)
            if not self._cancelled:
                self._callbacks[handle] = (callback, loop)
                return handle
        self._dispatch(callback, loop)
        return handle

    def remove_callback(self, handle: int) -> bool:
        with self._lock:
            return self._callbacks.pop(handle, None) is not None

    def _dispatch(self, callback: CancelCallback, loop: asyncio.AbstractEventLoop | None) -> None:
        if loop is not None and loop is not _running_loop():
            if not loop.is_closed():
                loop.call_soon_threadsafe(callback, self)
            return
        callback(self)

    # ------------------------------------------------------------------
    # Awaiting
    # ------------------------------------------------------------------

    async def guard(self, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable``, aborting it when the token fires.

        The awaitable runs as its own task; on cancellation the task is
        cancelled and OperationCancelledError is raised in its place.
        Cancellation of the *calling* task is propagated unchanged.
        """
        if self.cancelled:
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            raise OperationCancelledError(self.reason)

        task: asyncio.Future[T] = asyncio.ensure_future(awaitable)
        handle = self.add_callback(lambda _token: task.cancel())
        try:
            return await task
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if self.cancelled and (current is None or current.cancelling() == 0):
                raise OperationCancelledError(self.reason) from None
            raise
        finally:
            self.remove_callback(handle)

    async def wait(self) -> str | None:
        """Suspend until the token is cancelled; return the reason."""
        if self.cancelled:
            return self.reason
        future: asyncio.Future[str | None] = asyncio.get_running_loop().create_future()

        def _resolve(token: CancellationToken) -> None:
            if not future.done():
                future.set_result(token.reason)

        handle = self.add_callback(_resolve)
        try:
            return await future
        finally:
            self.remove_callback(handle)

    async def sleep(self, seconds: float) -> None:
        """``asyncio.sleep`` that aborts with OperationCancelledError on cancel."""
        await self.guard(asyncio.sleep(seconds))

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Stop the deadline timer and detach from parents.

        Does not cancel the token. Idempotent.
        """
        with self._lock:
            timer, self._timer = self._timer, None
            parents, self._parents = self._parents, []
        if timer is not None:
            timer.cancel()
        for parent, handle in parents:
            parent.remove_callback(handle)

    def __enter__(self) -> CancellationToken:
        return self

    def __exit__(self, *_exc: Any) -> None:
        self.close()

    def __repr__(self) -> str:
        state = f"cancelled reason={self.reason!r}" if self.cancelled else "active"
        label = f" {self.name!r}" if self.name else ""
        return f"<CancellationToken{label} {state}>"
