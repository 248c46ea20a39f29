"""Execution context and cancellation primitives."""

from pipekit.kernel.context.cancellation import TIMEOUT_REASON, CancellationToken
from pipekit.kernel.context.execution_context import (
    ExecutionContext,
    get_current_context,
    reset_current_context,
    set_current_context,
)

__all__ = [
    "TIMEOUT_REASON",
    "CancellationToken",
    "ExecutionContext",
    "get_current_context",
    "reset_current_context",
    "set_current_context",
]
