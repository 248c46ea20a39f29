"""Configuration loading and management for pipekit."""

from pipekit.kernel.config.loader import (
    ConfigLoader,
    apply_logging_config,
    clear_config_cache,
    get_default_config,
    load_config,
)
from pipekit.kernel.config.models import (
    LoggingConfig,
    PipekitConfig,
    PipelineDefaults,
    RegistryConfig,
)

__all__ = [
    "ConfigLoader",
    "LoggingConfig",
    "PipekitConfig",
    "PipelineDefaults",
    "RegistryConfig",
    "apply_logging_config",
    "clear_config_cache",
    "get_default_config",
    "load_config",
]
