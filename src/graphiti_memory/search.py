"""Context search: turn memory-service nodes into a prompt block."""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Any

from graphiti_memory.bridge import BridgeClient

log = logging.getLogger(__name__)

SEARCH_METHOD = "search_nodes"
CONTEXT_HEADING = "## Relevant Memory Context"


def format_node_line(index: int, node: Mapping[str, Any]) -> str:
    """Render one node as ``"{index}. **{name}**: {summary}"``."""
    return f"{index}. **{node.get('name', '')}**: {node.get('summary', '')}"


def format_context(nodes: Sequence[Mapping[str, Any]]) -> str:
    lines = [format_node_line(i, node) for i, node in enumerate(nodes, start=1)]
    return CONTEXT_HEADING + "\n" + "\n".join(lines)


def _nodes_of(result: Any) -> list[Mapping[str, Any]]:
    if not isinstance(result, Mapping):
        return []
    nodes = result.get("nodes")
    if not isinstance(nodes, list):
        return []
    return [node for node in nodes if isinstance(node, Mapping)]


async def search_context(bridge: BridgeClient, query: str, limit: int) -> str | None:
    """Search the memory service for *query*.

    Returns the formatted context block with at most *limit* entries, or
    ``None`` when the query is blank, the call fails, or nothing matched.
    """
    if not query or not query.strip():
        return None

    result = await bridge.call(SEARCH_METHOD, {"query": query, "limit": limit})
    nodes = _nodes_of(result)
    if not nodes:
        return None
    if limit > 0:
        nodes = nodes[:limit]
    log.debug("Search returned %d nodes", len(nodes))
    return format_context(nodes)
