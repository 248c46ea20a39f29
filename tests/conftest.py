"""Configuration file for pytest containing fixtures and configuration.

This module provides fixtures that can be used across multiple test files:
- isolated_config: autouse; clears PIPEKIT_* env vars and the config cache and
  runs each test from an empty working directory
- recorder: an observer that records every event it receives
"""

from __future__ import annotations

import os
from collections.abc import Iterator
from typing import Any

import pytest

from pipekit.kernel.config import clear_config_cache


class EventRecorder:
    """Observer that records events in delivery order."""

    def __init__(self) -> None:
        self.events: list[Any] = []

    async def handle(self, event: Any) -> None:
        self.events.append(event)

    def of_type(self, *types: type) -> list[Any]:
        return [e for e in self.events if isinstance(e, types)]

    def names(self) -> list[str]:
        return [type(e).__name__ for e in self.events]


@pytest.fixture(autouse=True)
def isolated_config(monkeypatch: pytest.MonkeyPatch, tmp_path: Any) -> Iterator[None]:
    """Run every test without ambient pipekit configuration."""
    for key in list(os.environ):
        if key.startswith("PIPEKIT_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(tmp_path)
    clear_config_cache()
    yield
    clear_config_cache()


@pytest.fixture
def recorder() -> EventRecorder:
    """Fresh event recorder."""
    return EventRecorder()
