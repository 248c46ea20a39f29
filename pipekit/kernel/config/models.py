"""Configuration data models for pipekit."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Any, Literal

from pipekit.kernel.exceptions import ValidationError

DEFAULT_PIPELINE_TIMEOUT_MS = 300_000
DEFAULT_RETRY_DELAY_MS = 1_000
DEFAULT_MAX_CONCURRENT_PIPELINES = 5
DEFAULT_MAX_HISTORY = 100


@dataclass(frozen=True, slots=True)
class LoggingConfig:
    """Logging configuration for pipekit.

    Attributes
    ----------
    level : str, default="INFO"
        Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    format : str, default="structured"
        Output format (console, json, structured, dual, rich)
    output_file : str | None, default=None
        Optional file path to write logs to
    use_color : bool, default=True
        Use ANSI color codes (auto-disabled for non-TTY)
    include_timestamp : bool, default=True
        Include timestamp in log output
    use_rich : bool, default=False
        Use the Rich handler for console output
    dual_sink : bool, default=False
        Rich console plus structured JSON to stdout
    enable_stdlib_bridge : bool, default=False
        Intercept stdlib logging from third-party libraries
    backtrace : bool, default=True
        Enable backtrace for debugging
    diagnose : bool, default=True
        Show variable values in tracebacks (disable in production)

    Examples
    --------
    TOML configuration:

    ```toml
    [tool.pipekit.logging]
    level = "DEBUG"
    format = "rich"
    ```

    Environment variable overrides:

    ```bash
    export PIPEKIT_LOG_LEVEL=DEBUG
    export PIPEKIT_LOG_FORMAT=json
    ```
    """

    level: Literal["TRACE", "DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    format: Literal["console", "json", "structured", "dual", "rich"] = "structured"
    output_file: str | None = None
    use_color: bool = True
    include_timestamp: bool = True
    use_rich: bool = False
    dual_sink: bool = False
    enable_stdlib_bridge: bool = False
    backtrace: bool = True
    diagnose: bool = True


@dataclass(frozen=True, slots=True)
class PipelineDefaults:
    """Defaults applied to pipelines and builders that do not set their own.

    Attributes
    ----------
    max_parallel_steps : int | None
        Concurrency cap for parallel phases; None means the CPU count
    timeout_ms : int
        Global run deadline in milliseconds, 0 disables it
    retry_delay_ms : int
        Base of the linear retry back-off (``retry_delay_ms * attempt``)
    validate_before_run : bool
        Run ``Pipeline.validate`` at the start of every ``execute``
    """

    max_parallel_steps: int | None = None
    timeout_ms: int = DEFAULT_PIPELINE_TIMEOUT_MS
    retry_delay_ms: int = DEFAULT_RETRY_DELAY_MS
    validate_before_run: bool = True

    def __post_init__(self) -> None:
        if self.max_parallel_steps is not None and self.max_parallel_steps < 1:
            raise ValidationError("max_parallel_steps", "must be >= 1", self.max_parallel_steps)
        if self.timeout_ms < 0:
            raise ValidationError("timeout_ms", "must be >= 0", self.timeout_ms)
        if self.retry_delay_ms < 0:
            raise ValidationError("retry_delay_ms", "must be >= 0", self.retry_delay_ms)

    @property
    def resolved_max_parallel_steps(self) -> int:
        return self.max_parallel_steps or os.cpu_count() or 1


@dataclass(frozen=True, slots=True)
class RegistryConfig:
    """Limits for :class:`~pipekit.kernel.registry.PipelineRegistry`."""

    max_concurrent_pipelines: int = DEFAULT_MAX_CONCURRENT_PIPELINES
    max_history: int = DEFAULT_MAX_HISTORY

    def __post_init__(self) -> None:
        if self.max_concurrent_pipelines < 1:
            raise ValidationError(
                "max_concurrent_pipelines", "must be >= 1", self.max_concurrent_pipelines
            )
        if self.max_history < 0:
            raise ValidationError("max_history", "must be >= 0", self.max_history)


@dataclass(slots=True)
class PipekitConfig:
    """Complete pipekit configuration.

    Examples
    --------
    TOML configuration in pyproject.toml:

    ```toml
    [tool.pipekit.logging]
    level = "INFO"

    [tool.pipekit.pipeline]
    max_parallel_steps = 4
    timeout_ms = 60000

    [tool.pipekit.registry]
    max_concurrent_pipelines = 2
    ```
    """

    logging: LoggingConfig = field(default_factory=LoggingConfig)
    pipeline: PipelineDefaults = field(default_factory=PipelineDefaults)
    registry: RegistryConfig = field(default_factory=RegistryConfig)
    settings: dict[str, Any] = field(default_factory=dict)
