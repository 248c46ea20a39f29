"""pipekit - async pipeline execution engine.

Runs ordered collections of retryable, cancellable steps under sequential,
parallel, conditional or hybrid strategies, and aggregates per-step outcomes
into one execution result.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("pipekit")
except PackageNotFoundError:
    __version__ = "0.0.0.dev0"  # Fallback for source checkouts

from pipekit.kernel import *  # noqa: F403, E402
from pipekit.kernel import __all__ as _kernel_all  # noqa: E402

__all__ = ["__version__", *_kernel_all]
