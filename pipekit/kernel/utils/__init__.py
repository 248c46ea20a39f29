"""Small shared utilities."""

from pipekit.kernel.utils.step_timer import Timer

__all__ = ["Timer"]
