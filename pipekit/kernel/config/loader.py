"""TOML configuration loader for pipekit."""

from __future__ import annotations

import os
import re
import tomllib
from collections.abc import Callable
from dataclasses import asdict
from functools import lru_cache
from pathlib import Path
from typing import Any

from pipekit.kernel.config.models import (
    LoggingConfig,
    PipekitConfig,
    PipelineDefaults,
    RegistryConfig,
)
from pipekit.kernel.exceptions import ConfigurationError, ValidationError
from pipekit.kernel.logging import configure_logging, get_logger

CONFIG_PATH_ENV = "PIPEKIT_CONFIG_PATH"
SEARCH_PATHS = ("pipekit.toml", "pyproject.toml", ".pipekit.toml")

_TRUTHY_VALUES = frozenset({"true", "1", "yes", "on", "enabled"})
_FALSY_VALUES = frozenset({"false", "0", "no", "off", "disabled"})

logger = get_logger(__name__)


def _parse_bool_env(value: str) -> bool:
    """Parse a boolean environment variable value.

    Raises
    ------
    ValueError
        If value is not a recognized boolean string
    """
    normalized = value.lower().strip()
    if normalized in _TRUTHY_VALUES:
        return True
    if normalized in _FALSY_VALUES:
        return False
    expected = sorted(_TRUTHY_VALUES | _FALSY_VALUES)
    raise ValueError(f"Invalid boolean value: {value!r}. Expected one of: {expected}")


def _parse_int_env(value: str) -> int:
    try:
        return int(value.strip())
    except ValueError:
        raise ValueError(f"Invalid integer value: {value!r}") from None


# env var -> (field, parser)
_LOGGING_ENV: dict[str, tuple[str, Callable[[str], Any]]] = {
    "PIPEKIT_LOG_LEVEL": ("level", str.upper),
    "PIPEKIT_LOG_FORMAT": ("format", str.lower),
    "PIPEKIT_LOG_FILE": ("output_file", str),
    "PIPEKIT_LOG_COLOR": ("use_color", _parse_bool_env),
    "PIPEKIT_LOG_TIMESTAMP": ("include_timestamp", _parse_bool_env),
    "PIPEKIT_LOG_RICH": ("use_rich", _parse_bool_env),
    "PIPEKIT_LOG_DUAL_SINK": ("dual_sink", _parse_bool_env),
    "PIPEKIT_LOG_STDLIB_BRIDGE": ("enable_stdlib_bridge", _parse_bool_env),
    "PIPEKIT_LOG_BACKTRACE": ("backtrace", _parse_bool_env),
    "PIPEKIT_LOG_DIAGNOSE": ("diagnose", _parse_bool_env),
}

_PIPELINE_ENV: dict[str, tuple[str, Callable[[str], Any]]] = {
    "PIPEKIT_MAX_PARALLEL_STEPS": ("max_parallel_steps", _parse_int_env),
    "PIPEKIT_TIMEOUT_MS": ("timeout_ms", _parse_int_env),
    "PIPEKIT_RETRY_DELAY_MS": ("retry_delay_ms", _parse_int_env),
    "PIPEKIT_VALIDATE_BEFORE_RUN": ("validate_before_run", _parse_bool_env),
}


class ConfigLoader:
    """Loads and processes pipekit configuration from TOML files."""

    ENV_VAR_PATTERN = re.compile(r"\$\{([^}]+)\}")

    def load_from_toml(self, path: str | Path | None = None) -> PipekitConfig:
        """Load configuration from a TOML file.

        Parameters
        ----------
        path : str | Path | None
            Path to TOML file. If None, searches the working directory (and
            parents, for pyproject.toml) for a config file

        Raises
        ------
        FileNotFoundError
            If ``path`` does not exist or nothing was found by the search
        """
        config_path = self._find_config_file(path)
        return self._load_and_parse(config_path)

    def _load_and_parse(self, config_path: Path) -> PipekitConfig:
        logger.info("Loading configuration from {path}", path=config_path)

        with config_path.open("rb") as f:
            data = tomllib.load(f)

        if config_path.name == "pyproject.toml":
            section = data.get("tool", {}).get("pipekit", {})
            if not section:
                logger.debug("No [tool.pipekit] section in pyproject.toml, using defaults")
        elif "tool" in data and "pipekit" in data.get("tool", {}):
            section = data["tool"]["pipekit"]
        else:
            # Flat format (top-level keys)
            section = data

        return self.parse(self._substitute_env_vars(section))

    def _find_config_file(self, path: str | Path | None) -> Path:
        if path:
            config_path = Path(path)
            if not config_path.exists():
                raise FileNotFoundError(f"Configuration file not found: {config_path}")
            return config_path

        if env_path := os.getenv(CONFIG_PATH_ENV):
            config_path = Path(env_path)
            if config_path.exists():
                logger.debug(
                    "Using config from {var}: {path}", var=CONFIG_PATH_ENV, path=config_path
                )
                return config_path
            logger.warning(
                "{var} set but file not found: {path}", var=CONFIG_PATH_ENV, path=config_path
            )

        for candidate in SEARCH_PATHS:
            search_path = Path(candidate)
            if search_path.exists():
                return search_path

        current = Path.cwd()
        while current != current.parent:
            pyproject = current / "pyproject.toml"
            if pyproject.exists():
                with pyproject.open("rb") as f:
                    if "pipekit" in tomllib.load(f).get("tool", {}):
                        return pyproject
            current = current.parent

        raise FileNotFoundError(
            f"No configuration file found. Searched for: {', '.join(SEARCH_PATHS)}"
        )

    def _substitute_env_vars(self, data: Any) -> Any:
        """Recursively replace ``${VAR}`` with environment values.

        Unknown variables keep their placeholder.
        """
        if isinstance(data, str):

            def replacer(match: re.Match[str]) -> str:
                value = os.environ.get(match.group(1))
                if value is None:
                    logger.debug("Environment variable ${{{name}}} not found", name=match.group(1))
                    return match.group(0)
                return value

            return self.ENV_VAR_PATTERN.sub(replacer, data)

        if isinstance(data, dict):
            return {key: self._substitute_env_vars(value) for key, value in data.items()}

        if isinstance(data, list):
            return [self._substitute_env_vars(item) for item in data]

        return data

    def parse(self, data: dict[str, Any]) -> PipekitConfig:
        """Build a PipekitConfig from raw data, applying environment overrides.

        Raises
        ------
        ConfigurationError
            If a section contains unknown keys or invalid values
        """
        return PipekitConfig(
            logging=self._build_section(
                "logging", LoggingConfig, data.get("logging", {}), _LOGGING_ENV
            ),
            pipeline=self._build_section(
                "pipeline", PipelineDefaults, data.get("pipeline", {}), _PIPELINE_ENV
            ),
            registry=self._build_section("registry", RegistryConfig, data.get("registry", {}), {}),
            settings=dict(data.get("settings", {})),
        )

    def _build_section(
        self,
        name: str,
        model: type[Any],
        values: dict[str, Any],
        env_overrides: dict[str, tuple[str, Callable[[str], Any]]],
    ) -> Any:
        merged = dict(values)
        for env_name, (field_name, parse) in env_overrides.items():
            raw = os.getenv(env_name)
            if not raw:
                continue
            try:
                merged[field_name] = parse(raw)
            except ValueError as e:
                logger.warning("Ignoring {var}: {error}", var=env_name, error=e)
                continue
            logger.debug("Overriding {section}.{field} from env", section=name, field=field_name)

        try:
            return model(**merged)
        except TypeError as e:
            raise ConfigurationError(name, f"unknown option ({e})") from e
        except ValidationError as e:
            raise ConfigurationError(name, str(e)) from e


@lru_cache(maxsize=32)
def _cached_load_config(path_str: str | None) -> PipekitConfig:
    loader = ConfigLoader()
    try:
        return loader.load_from_toml(Path(path_str) if path_str else None)
    except FileNotFoundError:
        if path_str:
            raise
        logger.debug("No configuration file found, using defaults")
        return loader.parse({})


def load_config(path: str | Path | None = None) -> PipekitConfig:
    """Load configuration from a TOML file, or defaults if none is found.

    Results are cached per path; see :func:`clear_config_cache`. Environment
    overrides are applied in both cases.

    Raises
    ------
    FileNotFoundError
        If an explicit ``path`` does not exist
    ConfigurationError
        If the file contains invalid values
    """
    return _cached_load_config(str(Path(path).absolute()) if path else None)


def clear_config_cache() -> None:
    """Forget cached configurations so the next load re-reads files and env."""
    _cached_load_config.cache_clear()


def get_default_config() -> PipekitConfig:
    """Built-in defaults, ignoring files and environment."""
    return PipekitConfig()


def apply_logging_config(config: LoggingConfig, force_reconfigure: bool = False) -> None:
    """Configure the global logger from a LoggingConfig.

    Examples
    --------
    Example usage::

        apply_logging_config(load_config().logging)
    """
    configure_logging(**asdict(config), force_reconfigure=force_reconfigure)
