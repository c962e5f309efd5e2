"""Shared fixtures and helpers for the graphiti-memory test suite."""

from __future__ import annotations

import os
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

import graphiti_memory.config as config_mod
from graphiti_memory.bridge import BridgeClient
from graphiti_memory.config import BridgeSettings


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeHost:
    """Records ``api.on`` registrations and serves plugin configuration."""

    def __init__(self, plugin_config: dict[str, Any] | None = None) -> None:
        self.config: dict[str, Any] = {}
        self.set_plugin_config(plugin_config or {})
        self.registrations: list[tuple[str, Any, int]] = []

    def set_plugin_config(self, plugin_config: dict[str, Any]) -> None:
        self.config = {
            "plugins": {"entries": {"graphiti-memory": {"config": plugin_config}}},
        }

    def on(self, event_name: str, handler: Any, priority: int = 0) -> None:
        self.registrations.append((event_name, handler, priority))

    def handler(self, event_name: str) -> Any:
        for name, handler, _ in self.registrations:
            if name == event_name:
                return handler
        raise KeyError(event_name)


def nodes_result(*pairs: tuple[str, str]) -> dict[str, Any]:
    """Build a ``search_nodes`` answer from ``(name, summary)`` pairs."""
    return {"nodes": [{"name": name, "summary": summary} for name, summary in pairs]}


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _fresh_bridge_settings(monkeypatch: pytest.MonkeyPatch) -> None:
    """Never let cached env settings leak between tests."""
    monkeypatch.setattr(config_mod, "_cached_settings", None)
    for key in list(os.environ):
        if key.startswith("GRAPHITI_MEMORY_"):
            monkeypatch.delenv(key)


@pytest.fixture
def settings() -> BridgeSettings:
    """Bridge settings pointing at an executable that is never on PATH."""
    return BridgeSettings(
        executable="graphiti-test-bridge-not-installed",
        fallback_home="/home/fallback",
        extra_path="/opt/test/bin",
        timeout_seconds=5.0,
    )


@pytest.fixture
def fake_bridge(settings: BridgeSettings) -> MagicMock:
    """A BridgeClient stand-in whose calls succeed with no data by default."""
    bridge = MagicMock(spec=BridgeClient)
    bridge.settings = settings
    bridge.call = AsyncMock(return_value=None)
    bridge.call_checked = AsyncMock(return_value={})
    return bridge


@pytest.fixture
def host() -> FakeHost:
    return FakeHost()
