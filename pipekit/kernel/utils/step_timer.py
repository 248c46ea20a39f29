"""Monotonic stopwatch for step and pipeline durations."""

import time


class Timer:
    """Stopwatch measuring milliseconds on ``time.perf_counter``.

    Starts when created. :meth:`stop` freezes the reading, so a result built
    after the run reports the run's duration rather than the time of the read.

    Examples
    --------
    >>> t = Timer()
    >>> elapsed = t.stop()
    >>> t.duration_ms == elapsed
    True
    """

    __slots__ = ("_start", "_end")

    def __init__(self) -> None:
        self._start = time.perf_counter()
        self._end: float | None = None

    @property
    def running(self) -> bool:
        return self._end is None

    @property
    def duration_ms(self) -> float:
        """Milliseconds since start, or until :meth:`stop` if stopped."""
        end = self._end if self._end is not None else time.perf_counter()
        return (end - self._start) * 1000

    def stop(self) -> float:
        """Freeze the reading and return it; later calls keep the first value."""
        if self._end is None:
            self._end = time.perf_counter()
        return self.duration_ms
