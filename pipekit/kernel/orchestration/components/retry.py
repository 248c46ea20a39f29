"""Linear retry back-off."""

from __future__ import annotations

from dataclasses import dataclass

from pipekit.kernel.config.models import DEFAULT_RETRY_DELAY_MS
from pipekit.kernel.exceptions import ValidationError


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Delay before retry ``n`` is ``delay_ms * n``.

    The attempt bound itself belongs to each step (``Step.max_retries``).

    Examples
    --------
    >>> RetryPolicy(delay_ms=100).delay_ms_for(3)
    300
    """

    delay_ms: int = DEFAULT_RETRY_DELAY_MS

    def __post_init__(self) -> None:
        if self.delay_ms < 0:
            raise ValidationError("retry_delay_ms", "must be >= 0", self.delay_ms)

    def delay_ms_for(self, attempt: int) -> int:
        return self.delay_ms * attempt

    def delay_for(self, attempt: int) -> float:
        """Delay in seconds before retry number ``attempt`` (1-based)."""
        return self.delay_ms_for(attempt) / 1000

    @staticmethod
    def can_retry(retry_count: int, max_retries: int) -> bool:
        return retry_count < max_retries
