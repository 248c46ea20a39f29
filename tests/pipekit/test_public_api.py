"""The top-level package re-exports the kernel API."""

import pipekit
import pipekit.kernel


def test_version() -> None:
    assert isinstance(pipekit.__version__, str)
    assert pipekit.__version__


def test_all_names_resolve() -> None:
    for name in pipekit.kernel.__all__:
        assert getattr(pipekit.kernel, name) is getattr(pipekit, name)


def test_all_includes_version() -> None:
    assert "__version__" in pipekit.__all__
    assert set(pipekit.kernel.__all__) <= set(pipekit.__all__)


def test_core_names_exported() -> None:
    for name in ("Pipeline", "PipelineBuilder", "PipelineRegistry", "Step", "StepOutcome"):
        assert name in pipekit.__all__
