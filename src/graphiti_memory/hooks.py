"""Host hook wiring for the graphiti-memory plugin.

Three lifecycle events are handled:

``before_agent_start`` (priority 100)
    Searches Graphiti with the incoming user message and returns
    ``{"prependContext": ...}`` for the host to place ahead of the prompt.
``message_received`` (priority 50)
    Stores every inbound user message as an episode.
``message_sent`` (priority 50)
    Stores every outbound assistant message as an episode.

Configuration is re-read on every event.  No handler ever raises into the
host: failures are logged and the turn continues without memory.

Usage::

    from graphiti_memory import register

    def setup(api):
        register(api)
"""

from __future__ import annotations

import logging
from typing import Any

from graphiti_memory import PLUGIN_ID, __version__
from graphiti_memory.bridge import BridgeClient, create_bridge
from graphiti_memory.config import PluginConfig, load_plugin_config
from graphiti_memory.content import (
    extract_content,
    extract_search_query,
    get_field,
    is_searchable,
    is_system_message,
)
from graphiti_memory.search import search_context
from graphiti_memory.writer import Role, role_label, save_to_memory

log = logging.getLogger(__name__)

BEFORE_AGENT_START = "before_agent_start"
MESSAGE_RECEIVED = "message_received"
MESSAGE_SENT = "message_sent"

SEARCH_PRIORITY = 100
CAPTURE_PRIORITY = 50


def _incoming_message(event: Any) -> Any:
    """First message's content, else the raw prompt, else ``""``."""
    messages = get_field(event, "messages")
    if isinstance(messages, (list, tuple)) and messages:
        content = get_field(messages[0], "content")
        if content:
            return content
    return get_field(event, "prompt") or ""


class MemoryHooks:
    """Handlers bound to one host *api* and one bridge."""

    def __init__(self, api: Any, bridge: BridgeClient) -> None:
        self.api = api
        self.bridge = bridge

    def config(self) -> PluginConfig:
        return load_plugin_config(self.api)

    async def before_agent_start(self, event: Any, ctx: Any = None) -> dict[str, str] | None:
        try:
            config = self.config()
            if not config.enabled:
                return None

            message = extract_content(_incoming_message(event))
            if not message or is_system_message(message):
                return None

            query = extract_search_query(message)
            if not is_searchable(query):
                return None

            log.info("Searching for context: %r", query[:50])
            context = await search_context(self.bridge, query, config.search_limit)
            if not context:
                log.info("No relevant context found")
                return None

            log.info("Injecting context into prompt")
            return {"prependContext": context}
        except Exception as exc:
            log.error("%s hook failed: %s", BEFORE_AGENT_START, exc, exc_info=True)
            return None

    async def on_message_received(self, event: Any, ctx: Any = None) -> None:
        await self._capture(MESSAGE_RECEIVED, "user", event)

    async def on_message_sent(self, event: Any, ctx: Any = None) -> None:
        await self._capture(MESSAGE_SENT, "assistant", event)

    async def _capture(self, hook: str, role: Role, event: Any) -> None:
        try:
            config = self.config()
            if not config.enabled or not config.auto_extract:
                return

            content = extract_content(get_field(event, "content") or "")
            await save_to_memory(
                self.bridge,
                role,
                content,
                config.group_id,
                label=role_label(role, config),
            )
        except Exception as exc:
            log.error("%s hook failed: %s", hook, exc, exc_info=True)


def register(api: Any, bridge: BridgeClient | None = None) -> MemoryHooks:
    """Bind the memory handlers to the host's lifecycle events.

    Parameters
    ----------
    api:
        Host plugin API exposing ``on(event_name, handler, priority=...)``
        and a ``config`` tree.
    bridge:
        Client used for memory-service calls.  Defaults to the transport
        selected by the ``GRAPHITI_MEMORY_*`` environment.
    """
    hooks = MemoryHooks(api, bridge or create_bridge())
    api.on(BEFORE_AGENT_START, hooks.before_agent_start, priority=SEARCH_PRIORITY)
    api.on(MESSAGE_RECEIVED, hooks.on_message_received, priority=CAPTURE_PRIORITY)
    api.on(MESSAGE_SENT, hooks.on_message_sent, priority=CAPTURE_PRIORITY)
    log.info("%s v%s registered", PLUGIN_ID, __version__)
    return hooks
