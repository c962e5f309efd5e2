"""Configuration for the graphiti-memory plugin.

Two layers live here:

* :class:`PluginConfig` -- behaviour switches supplied by the host under
  ``plugins.entries["graphiti-memory"].config``.  Rebuilt on every hook
  invocation so edits take effect on the next event without a restart.
* :class:`BridgeSettings` -- how to reach the memory service.  Read from
  environment variables prefixed with ``GRAPHITI_MEMORY_`` (e.g.
  ``GRAPHITI_MEMORY_TIMEOUT_SECONDS=10``) and cached per process.

Usage::

    from graphiti_memory.config import get_bridge_settings, load_plugin_config

    cfg = load_plugin_config(api)
    if cfg.enabled:
        print(cfg.search_limit)

    settings = get_bridge_settings()
    print(settings.executable, settings.namespace)
"""

from __future__ import annotations

import logging
import os
import sys
from collections.abc import Mapping
from dataclasses import MISSING, dataclass, field, fields, replace
from pathlib import Path
from typing import Any, TypeVar, get_type_hints

log = logging.getLogger(__name__)

T = TypeVar("T")

PLUGIN_CONFIG_KEY = "graphiti-memory"
"""Entry name the host uses for this plugin's configuration."""

# ---------------------------------------------------------------------------
# Plugin behaviour (host-provided)
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class PluginConfig:
    """Per-invocation plugin switches.

    ``min_score`` is carried for compatibility with existing host configs
    but no relevance threshold is applied to search results.
    """

    enabled: bool = True
    search_limit: int = 5
    min_score: float = 0.5
    auto_extract: bool = True
    group_id: str = "main"
    user_label: str = "User"
    assistant_label: str = "Assistant"


# Host configs use camelCase keys.
_CAMEL_KEYS: dict[str, str] = {
    "enabled": "enabled",
    "searchLimit": "search_limit",
    "minScore": "min_score",
    "autoExtract": "auto_extract",
    "groupId": "group_id",
    "userLabel": "user_label",
    "assistantLabel": "assistant_label",
}


def _lookup(node: Any, key: str) -> Any:
    """Read *key* from a mapping or an attribute object, ``None`` if absent."""
    if node is None:
        return None
    if isinstance(node, Mapping):
        return node.get(key)
    return getattr(node, key, None)


def plugin_overrides(api: Any) -> Mapping[str, Any]:
    """Return the raw override mapping the host holds for this plugin.

    Walks ``api.config.plugins.entries["graphiti-memory"].config``; any
    missing level yields an empty mapping.
    """
    node = _lookup(api, "config")
    for key in ("plugins", "entries", PLUGIN_CONFIG_KEY, "config"):
        node = _lookup(node, key)
        if node is None:
            return {}
    if isinstance(node, Mapping):
        return node
    return {}


def _coerce(value: Any, target_type: type[T]) -> T:
    """Cast a config or env-var value to the target field type."""
    if target_type is bool:
        if isinstance(value, str):
            return target_type(value.strip().lower() in ("1", "true", "yes", "on"))  # type: ignore[return-value]
        return target_type(value)  # type: ignore[return-value]
    return target_type(value)  # type: ignore[return-value]


def merge_plugin_config(overrides: Mapping[str, Any] | None) -> PluginConfig:
    """Merge host *overrides* over :class:`PluginConfig` defaults.

    Accepts both camelCase and snake_case keys.  Unknown keys are ignored;
    a value that cannot be coerced keeps the default.
    """
    if not overrides:
        return PluginConfig()

    hints = _resolve_type_hints(PluginConfig)
    kwargs: dict[str, Any] = {}
    for raw_key, value in overrides.items():
        name = _CAMEL_KEYS.get(raw_key, raw_key)
        if name not in hints or value is None:
            continue
        try:
            kwargs[name] = _coerce(value, hints[name])
        except (TypeError, ValueError):
            log.warning(
                "Ignoring invalid value %r for %s; using default", value, raw_key,
            )
    return replace(PluginConfig(), **kwargs)


def load_plugin_config(api: Any) -> PluginConfig:
    """Build a fresh :class:`PluginConfig` from the host *api*."""
    return merge_plugin_config(plugin_overrides(api))


# ---------------------------------------------------------------------------
# Bridge settings (environment)
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class BridgeSettings:
    """How the plugin reaches the Graphiti memory service."""

    executable: str = "mcporter"
    namespace: str = "graphiti"
    timeout_seconds: float = 30.0
    fallback_home: str = field(default_factory=lambda: str(Path.home()))
    extra_path: str = "/opt/homebrew/bin"
    """Directories prepended to ``PATH`` for the bridge, ``os.pathsep``-separated."""

    transport: str = "cli"
    """``cli`` spawns the bridge executable; ``mcp`` talks to the server directly."""

    server_url: str = "http://localhost:8000/mcp"
    max_concurrent_calls: int = 0
    """Cap on in-flight bridge calls.  ``0`` leaves them uncapped."""

    def __post_init__(self) -> None:
        if self.transport not in ("cli", "mcp"):
            raise ValueError(f"Unknown bridge transport: {self.transport!r}")
        if self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive")
        if self.max_concurrent_calls < 0:
            raise ValueError("max_concurrent_calls must be >= 0")


_ENV_PREFIX = "GRAPHITI_MEMORY_"


def _resolve_type_hints(dc_type: type) -> dict[str, type]:
    """Resolve stringified annotations back to real types.

    ``from __future__ import annotations`` turns all annotations into
    strings.  :func:`typing.get_type_hints` evaluates them in the correct
    module namespace so we get the actual :class:`type` objects.
    """
    module = sys.modules.get(dc_type.__module__, None)
    globalns = getattr(module, "__dict__", {}) if module else {}
    return get_type_hints(dc_type, globalns=globalns)


def _load_dataclass(dc_type: type[T], prefix: str) -> T:
    """Build a dataclass from env-var overrides + defaults.

    Each override is checked against the dataclass's own validation on its
    own, so one bad value falls back to its default without discarding the
    others.
    """
    hints = _resolve_type_hints(dc_type)
    kwargs: dict[str, object] = {}

    for f in fields(dc_type):  # type: ignore[arg-type]
        env_key = f"{prefix}{f.name}".upper()
        raw = os.environ.get(env_key)
        if raw is None:
            continue
        try:
            value = _coerce(raw, hints[f.name])
            dc_type(**{f.name: value})
        except (TypeError, ValueError) as exc:
            default = f.default if f.default is not MISSING else "<factory>"
            log.warning("Ignoring invalid %s=%r (%s); using %r", env_key, raw, exc, default)
            continue
        kwargs[f.name] = value

    return dc_type(**kwargs)  # type: ignore[return-value]


_cached_settings: BridgeSettings | None = None


def get_bridge_settings(*, reload: bool = False) -> BridgeSettings:
    """Return the current :class:`BridgeSettings`.

    On the first call the settings are built by merging defaults with any
    ``GRAPHITI_MEMORY_*`` environment variables.  The result is cached for
    the lifetime of the process unless *reload* is ``True``.
    """
    global _cached_settings  # noqa: PLW0603
    if _cached_settings is None or reload:
        _cached_settings = _load_dataclass(BridgeSettings, _ENV_PREFIX)
    return _cached_settings
