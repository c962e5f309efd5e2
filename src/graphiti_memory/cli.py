"""CLI entry points for hooks and diagnostics.

Hosts that cannot load the plugin in-process can run a hook as a shell
command: the event JSON is read from stdin and the handler's result is
written to stdout as JSON.

Usage::

    # Hook commands (read JSON from stdin):
    python -m graphiti_memory hook before-agent-start
    python -m graphiti_memory hook message-received
    python -m graphiti_memory hook message-sent

    # Utility commands:
    python -m graphiti_memory search "what did we decide about redis" --limit 3
    python -m graphiti_memory health

The stdin payload is either a bare event (``{"prompt": "..."}``) or an
envelope carrying plugin configuration as well::

    {"event": {"content": "..."}, "config": {"groupId": "work"}}
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import sys
from collections.abc import Mapping
from typing import Any, TextIO

from graphiti_memory import PLUGIN_ID
from graphiti_memory.bridge import BridgeClient, BridgeError, create_bridge
from graphiti_memory.hooks import (
    BEFORE_AGENT_START,
    MESSAGE_RECEIVED,
    MESSAGE_SENT,
    register,
)
from graphiti_memory.search import search_context

log = logging.getLogger(__name__)

_HOOK_EVENTS: dict[str, str] = {
    "before-agent-start": BEFORE_AGENT_START,
    "message-received": MESSAGE_RECEIVED,
    "message-sent": MESSAGE_SENT,
}

_STATUS_METHOD = "get_status"


def _configure_logging() -> None:
    """Send log records to stderr when ``GRAPHITI_MEMORY_LOG_LEVEL`` is set."""
    level = os.environ.get("GRAPHITI_MEMORY_LOG_LEVEL")
    if not level:
        return
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(f"[{PLUGIN_ID}] %(levelname)s %(name)s: %(message)s"))
    root = logging.getLogger("graphiti_memory")
    root.addHandler(handler)
    root.setLevel(level.upper())


def _read_stdin_json(stream: TextIO | None = None) -> dict[str, Any]:
    """Read and parse a JSON object from stdin."""
    stream = stream or sys.stdin
    raw: str = ""
    try:
        raw = stream.read()
        if not raw or not raw.strip():
            return {}
        data = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        log.warning(
            "Failed to parse stdin JSON (%s). Input preview: %r. "
            "Hook will proceed with empty data.",
            exc,
            raw[:200] if raw else "<unread>",
        )
        return {}
    return data if isinstance(data, dict) else {}


class StaticHost:
    """Just enough of the host plugin API to run handlers from a shell."""

    def __init__(self, plugin_config: Mapping[str, Any] | None = None) -> None:
        self.config = {
            "plugins": {"entries": {PLUGIN_ID: {"config": dict(plugin_config or {})}}},
        }
        self.handlers: dict[str, Any] = {}

    def on(self, event_name: str, handler: Any, priority: int = 0) -> None:
        self.handlers[event_name] = handler


def _split_payload(data: dict[str, Any]) -> tuple[Any, Mapping[str, Any]]:
    event = data.get("event")
    if isinstance(event, Mapping):
        config = data.get("config")
        return event, config if isinstance(config, Mapping) else {}
    return data, {}


async def _run_hook(event_name: str, data: dict[str, Any], bridge: BridgeClient | None) -> Any:
    event, plugin_config = _split_payload(data)
    host = StaticHost(plugin_config)
    register(host, bridge=bridge)
    return await host.handlers[event_name](event, None)


def run_hook(
    subcommand: str,
    stdin: TextIO | None = None,
    bridge: BridgeClient | None = None,
) -> int:
    """Dispatch a hook subcommand.  Reads JSON from stdin."""
    event_name = _HOOK_EVENTS.get(subcommand)
    if event_name is None:
        print(f"Unknown hook subcommand: {subcommand}", file=sys.stderr)
        return 1

    data = _read_stdin_json(stdin)
    result = asyncio.run(_run_hook(event_name, data, bridge))
    if result:
        print(json.dumps(result, ensure_ascii=False))
    return 0


def run_search(args: list[str], bridge: BridgeClient | None = None) -> int:
    """Print the context block Graphiti would inject for a query."""
    limit = 5
    words: list[str] = []
    it = iter(args)
    for arg in it:
        if arg in ("--limit", "-n"):
            value = next(it, None)
            try:
                limit = int(value) if value is not None else limit
            except ValueError:
                print(f"Error: limit must be an integer, got {value!r}", file=sys.stderr)
                return 1
        else:
            words.append(arg)

    query = " ".join(words).strip()
    if not query:
        print('Usage: graphiti_memory search "<query>" [--limit N]', file=sys.stderr)
        return 1

    context = asyncio.run(search_context(bridge or create_bridge(), query, limit))
    print(context or "No relevant context")
    return 0


async def _health(bridge: BridgeClient) -> tuple[bool, str]:
    try:
        status = await bridge.call_checked(_STATUS_METHOD)
    except BridgeError as exc:
        return False, f"error: {type(exc).__name__}: {exc.detail}"
    if isinstance(status, Mapping):
        detail = status.get("message") or status.get("status") or json.dumps(status)
    else:
        detail = json.dumps(status)
    return True, f"ok: {detail}"


def run_health(bridge: BridgeClient | None = None) -> int:
    """Check that the memory service answers through the bridge."""
    bridge = bridge or create_bridge()
    ok, message = asyncio.run(_health(bridge))
    print(f"{PLUGIN_ID} via {bridge.settings.transport}: {message}")
    return 0 if ok else 1


def dispatch(args: list[str]) -> int:
    """Main CLI dispatcher.

    Parameters
    ----------
    args:
        Command-line arguments after ``python -m graphiti_memory``,
        e.g. ``["hook", "message-sent"]`` or ``["search", "redis"]``.
    """
    _configure_logging()

    if not args:
        print("Usage: python -m graphiti_memory hook|search|health ...", file=sys.stderr)
        return 1

    command = args[0]

    if command == "hook":
        if len(args) < 2:
            print("Usage: python -m graphiti_memory hook <subcommand>", file=sys.stderr)
            return 1
        return run_hook(args[1])

    elif command == "search":
        return run_search(args[1:])

    elif command == "health":
        return run_health()

    print(f"Unknown command: {command}", file=sys.stderr)
    return 1
