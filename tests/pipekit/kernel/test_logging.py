"""Tests for the loguru-based logging setup."""

from __future__ import annotations

import json
import logging as stdlib_logging

import pytest
from loguru import logger

from pipekit.kernel import logging as pipekit_logging
from pipekit.kernel.config import LoggingConfig, apply_logging_config
from pipekit.kernel.logging import (
    clear_correlation_id,
    configure_logging,
    get_correlation_id,
    get_logger,
    reset_correlation_id,
    set_correlation_id,
)


@pytest.fixture(autouse=True)
def restore_logging():
    """Put the default configuration and stdlib root handlers back after each test."""
    root = stdlib_logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    configure_logging(force_reconfigure=True)
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def captured():
    records: list[dict] = []
    handler_id = logger.add(lambda message: records.append(message.record), level="DEBUG")
    yield records
    logger.remove(handler_id)


class TestCorrelationId:
    """Correlation ids are scoped with contextvars tokens."""

    def test_default(self) -> None:
        assert get_correlation_id() == "-"

    def test_set_and_reset(self) -> None:
        token = set_correlation_id("run-1")
        assert get_correlation_id() == "run-1"
        reset_correlation_id(token)
        assert get_correlation_id() == "-"

    def test_clear(self) -> None:
        token = set_correlation_id("run-2")
        clear_correlation_id()
        assert get_correlation_id() == "-"
        reset_correlation_id(token)

    def test_records_carry_correlation_id(self, captured) -> None:
        configure_logging(force_reconfigure=True)
        token = set_correlation_id("run-3")
        try:
            get_logger("tests").info("hello")
        finally:
            reset_correlation_id(token)
        assert captured[-1]["extra"]["cid"] == "run-3"
        assert captured[-1]["extra"]["module"] == "tests"


class TestConfigureLogging:
    """Handlers are managed idempotently."""

    def test_same_config_is_noop(self) -> None:
        configure_logging(level="INFO", format="console", force_reconfigure=True)
        handlers = list(pipekit_logging._HANDLER_IDS)
        configure_logging(level="INFO", format="console")
        assert pipekit_logging._HANDLER_IDS == handlers

    def test_force_reconfigure_replaces_handlers(self) -> None:
        configure_logging(level="INFO", format="console", force_reconfigure=True)
        handlers = list(pipekit_logging._HANDLER_IDS)
        configure_logging(level="INFO", format="console", force_reconfigure=True)
        assert pipekit_logging._HANDLER_IDS != handlers
        assert len(pipekit_logging._HANDLER_IDS) == len(handlers)

    @pytest.mark.parametrize(
        ("fmt", "count"),
        [("console", 1), ("json", 1), ("structured", 1), ("rich", 1), ("dual", 2)],
    )
    def test_handler_count_per_format(self, fmt: str, count: int) -> None:
        configure_logging(format=fmt, force_reconfigure=True)  # type: ignore[arg-type]
        assert len(pipekit_logging._HANDLER_IDS) == count

    def test_output_file_is_json(self, tmp_path) -> None:
        path = tmp_path / "logs" / "pipekit.log"
        configure_logging(format="console", output_file=path, force_reconfigure=True)
        get_logger("tests.file").info("to file {value}", value=1)
        logger.complete()
        line = path.read_text().strip().splitlines()[-1]
        assert json.loads(line)["record"]["message"] == "to file 1"

    def test_stdlib_bridge(self, captured) -> None:
        configure_logging(enable_stdlib_bridge=True, force_reconfigure=True)
        stdlib_logging.getLogger("third.party").warning("from stdlib")
        assert any(r["message"] == "from stdlib" for r in captured)

    def test_apply_logging_config(self) -> None:
        apply_logging_config(LoggingConfig(level="DEBUG", format="json"), force_reconfigure=True)
        assert pipekit_logging._CURRENT_CONFIG is not None
        assert pipekit_logging._CURRENT_CONFIG["level"] == "DEBUG"
        assert pipekit_logging._CURRENT_CONFIG["format"] == "json"


class TestGetLogger:
    def test_cached_per_name(self) -> None:
        assert get_logger("a.b") is get_logger("a.b")
        assert get_logger("a.b") is not get_logger("a.c")

    def test_brace_formatting(self, captured) -> None:
        get_logger("tests").info("Step '{step}' done", step="load")
        assert captured[-1]["message"] == "Step 'load' done"
