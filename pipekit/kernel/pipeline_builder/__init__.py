"""Fluent pipeline construction and preset builders."""

from pipekit.kernel.pipeline_builder.builder import (
    PipelineBuilder,
    StepFactory,
    create,
    create_conditional,
    create_hybrid,
    create_parallel,
    create_sequential,
)
from pipekit.kernel.pipeline_builder.settings import PipelineSettings

__all__ = [
    "PipelineBuilder",
    "PipelineSettings",
    "StepFactory",
    "create",
    "create_conditional",
    "create_hybrid",
    "create_parallel",
    "create_sequential",
]
