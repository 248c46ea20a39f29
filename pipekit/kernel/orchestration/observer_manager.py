"""Observer manager: ordered, fault-isolated event fan-out.

Events are delivered to observers one at a time, in registration order, on
the task that emitted them; ``notify`` returns only after every interested
observer has handled the event. Observer failures are reported to an error
handler and never reach the pipeline.
"""

from __future__ import annotations

import asyncio
import inspect
import uuid
from collections.abc import Awaitable, Callable, Iterable
from typing import Any, Protocol, runtime_checkable

from pipekit.kernel.logging import get_logger
from pipekit.kernel.orchestration.events.events import Event

ObserverFunc = Callable[[Event], None] | Callable[[Event], Awaitable[None]]


@runtime_checkable
class Observer(Protocol):
    """Anything with a ``handle(event)`` method, sync or async."""

    def handle(self, event: Event) -> Any: ...


class ErrorHandler(Protocol):
    """Protocol for handling errors raised by observers."""

    def handle_error(self, error: Exception, context: dict[str, Any]) -> None: ...


class LoggingErrorHandler:
    """Default error handler that logs errors."""

    def __init__(self, logger: Any | None = None) -> None:
        self.logger: Any = logger if logger is not None else get_logger(__name__)

    def handle_error(self, error: Exception, context: dict[str, Any]) -> None:
        handler_name = context.get("handler_name", "unknown")
        event_type = context.get("event_type", "unknown")
        self.logger.opt(exception=error).warning(
            "Observer {handler} failed for {event_type}: {error}",
            handler=handler_name,
            event_type=event_type,
            error=error,
        )


class _Registration:
    __slots__ = ("event_types", "handler", "name")

    def __init__(
        self, handler: Callable[[Event], Any], name: str, event_types: frozenset[type] | None
    ) -> None:
        self.handler = handler
        self.name = name
        self.event_types = event_types

    def wants(self, event: Event) -> bool:
        return self.event_types is None or isinstance(event, tuple(self.event_types))


class ObserverManager:
    """Registry of observers for one pipeline (or registry).

    Parameters
    ----------
    error_handler : ErrorHandler | None
        Receives observer exceptions, defaults to LoggingErrorHandler
    observer_timeout : float | None
        Optional per-observer time limit in seconds for async observers

    Examples
    --------
    Example usage::

        manager = ObserverManager()
        manager.register(SimpleLoggingObserver(), event_types=STEP_EVENTS)
        manager.register(lambda event: seen.append(event))
    """

    def __init__(
        self,
        error_handler: ErrorHandler | None = None,
        observer_timeout: float | None = None,
    ) -> None:
        self._error_handler = error_handler or LoggingErrorHandler()
        self._timeout = observer_timeout
        self._observers: dict[str, _Registration] = {}

    def register(
        self,
        handler: Observer | ObserverFunc,
        *,
        observer_id: str | None = None,
        event_types: Iterable[type[Event]] | None = None,
    ) -> str:
        """Register an observer, optionally filtered by event type.

        Parameters
        ----------
        handler : Observer | ObserverFunc
            Object with a ``handle`` method, or a (sync or async) callable
        observer_id : str | None
            Id to register under; a uuid is generated when omitted
        event_types : Iterable[type[Event]] | None
            Event classes to receive (subclasses included), None for all

        Returns
        -------
        str
            The observer id, for :meth:`unregister`

        Raises
        ------
        TypeError
            If ``handler`` is neither callable nor an Observer
        """
        if isinstance(handler, Observer):
            func = handler.handle
            name = type(handler).__name__
        elif callable(handler):
            func = handler
            name = getattr(handler, "__name__", "anonymous_observer")
        else:
            raise TypeError(
                f"Observer must be callable or implement Observer protocol, got {type(handler)}"
            )

        obs_id = observer_id or str(uuid.uuid4())
        filters = frozenset(event_types) if event_types is not None else None
        self._observers[obs_id] = _Registration(func, name, filters)
        return obs_id

    def unregister(self, observer_id: str) -> bool:
        return self._observers.pop(observer_id, None) is not None

    def clear(self) -> None:
        self._observers.clear()

    def __len__(self) -> int:
        return len(self._observers)

    def __contains__(self, observer_id: object) -> bool:
        return observer_id in self._observers

    async def notify(self, event: Event) -> None:
        """Deliver ``event`` to every interested observer, in order."""
        for registration in list(self._observers.values()):
            if registration.wants(event):
                await self._safe_invoke(registration, event)

    async def _safe_invoke(self, registration: _Registration, event: Event) -> None:
        try:
            result = registration.handler(event)
            if inspect.isawaitable(result):
                if self._timeout is not None:
                    async with asyncio.timeout(self._timeout):
                        await result
                else:
                    await result
        except Exception as e:
            self._error_handler.handle_error(
                e,
                {"handler_name": registration.name, "event_type": type(event).__name__},
            )
