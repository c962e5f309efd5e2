"""Direct MCP transport to the Graphiti server.

Instead of spawning ``mcporter`` for every call, :class:`McpBridgeClient`
opens a streamable-HTTP MCP session against the Graphiti MCP server and
invokes the tool itself.  It keeps the :class:`~graphiti_memory.bridge.BridgeClient`
contract: :meth:`call` returns ``None`` on failure, :meth:`call_checked`
raises a :class:`~graphiti_memory.bridge.BridgeError` subclass.

Enable with ``GRAPHITI_MEMORY_TRANSPORT=mcp`` and point
``GRAPHITI_MEMORY_SERVER_URL`` at the server's ``/mcp`` endpoint.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from typing import Any

import httpx
from mcp import ClientSession
from mcp.client.streamable_http import streamablehttp_client
from mcp.shared.exceptions import McpError

from graphiti_memory.bridge import (
    BridgeCallError,
    BridgeClient,
    BridgeTimeoutError,
    BridgeUnavailableError,
    decode_output,
)

log = logging.getLogger(__name__)


def _is_connection_failure(exc: BaseException) -> bool:
    """True when *exc* (or any exception grouped inside it) is a transport failure.

    The MCP client runs inside an anyio task group, so a refused connection
    can arrive wrapped in an exception group.
    """
    if isinstance(exc, (httpx.TransportError, OSError)):
        return True
    nested = getattr(exc, "exceptions", None)
    if nested:
        return any(_is_connection_failure(e) for e in nested)
    return False


def tool_payload(method: str, result: Any) -> Any:
    """Extract the JSON value from an MCP ``CallToolResult``."""
    text = "".join(
        getattr(block, "text", "")
        for block in (result.content or [])
        if getattr(block, "type", None) == "text"
    )
    if result.isError:
        raise BridgeCallError(method, text or "tool reported an error")
    structured = getattr(result, "structuredContent", None)
    if structured is not None:
        return structured
    return decode_output(method, text)


class McpBridgeClient(BridgeClient):
    """Call Graphiti tools over a short-lived MCP session per call."""

    def render_command(self, method: str, params: Mapping[str, Any] | None = None) -> str:
        args = ", ".join(f"{k}={v!r}" for k, v in (params or {}).items())
        return f"{self.settings.server_url} {self.settings.namespace}.{method}({args})"

    async def call_checked(self, method: str, params: Mapping[str, Any] | None = None) -> Any:
        """Invoke *method* on the MCP server and return its decoded result."""
        arguments = dict(params or {})
        log.debug("Calling MCP tool: %s", self.render_command(method, arguments))
        async with self._limit():
            try:
                result = await asyncio.wait_for(
                    self._call_tool(method, arguments),
                    timeout=self.settings.timeout_seconds,
                )
            except asyncio.TimeoutError as exc:
                raise BridgeTimeoutError(
                    method, f"no answer after {self.settings.timeout_seconds:g}s",
                ) from exc
            except McpError as exc:
                raise BridgeCallError(method, str(exc)) from exc
            except Exception as exc:
                if _is_connection_failure(exc):
                    raise BridgeUnavailableError(
                        method, f"cannot reach {self.settings.server_url}: {exc}",
                    ) from exc
                raise
        return tool_payload(method, result)

    async def _call_tool(self, method: str, arguments: dict[str, Any]) -> Any:
        async with streamablehttp_client(self.settings.server_url) as (read, write, _):
            async with ClientSession(read, write) as session:
                await session.initialize()
                return await session.call_tool(method, arguments)
