"""Pydantic model for the settings a :class:`PipelineBuilder` accumulates."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from pipekit.kernel.domain.pipeline_run import ExecutionStrategy


class PipelineSettings(BaseModel):
    """Pipeline-level settings collected by the builder.

    Unset numeric fields (``None``) fall back to the configured
    :class:`~pipekit.kernel.config.models.PipelineDefaults` at build time.
    Assignments are validated, so an out-of-range value is rejected where it
    is set rather than when the pipeline is built.

    Attributes
    ----------
    name : str
        Pipeline name
    description : str
        Free-form description
    strategy : ExecutionStrategy
        Dispatch strategy
    max_parallel_steps : int | None
        Concurrency cap for parallel phases
    timeout_ms : int | None
        Global run deadline in milliseconds, 0 disables it
    retry_delay_ms : int | None
        Base of the linear retry back-off
    validate_before_run : bool | None
        Validate every step at the start of each run
    metadata : dict[str, Any]
        Seeded into the context metadata of every run
    """

    model_config = ConfigDict(extra="forbid", validate_assignment=True)

    name: str = Field(default="pipeline", min_length=1, description="Pipeline name")
    description: str = Field(default="", description="Free-form description")
    strategy: ExecutionStrategy = Field(
        default=ExecutionStrategy.SEQUENTIAL, description="Dispatch strategy"
    )
    max_parallel_steps: int | None = Field(
        default=None, ge=1, description="Concurrency cap for parallel phases"
    )
    timeout_ms: int | None = Field(
        default=None, ge=0, description="Global run deadline in milliseconds (0 disables)"
    )
    retry_delay_ms: int | None = Field(
        default=None, ge=0, description="Base of the linear retry back-off in milliseconds"
    )
    validate_before_run: bool | None = Field(
        default=None, description="Validate every step at the start of each run"
    )
    metadata: dict[str, Any] = Field(
        default_factory=dict, description="Seeded into the context metadata of every run"
    )
