"""graphiti-memory -- long-term memory for agents, backed by Graphiti.

Before each agent turn the plugin searches the Graphiti knowledge graph
for context related to the user's message and hands it back for prompt
injection.  Every user and assistant message is forwarded to Graphiti as
an episode so its extractor can mine entities and relations.

Quick start::

    from graphiti_memory import register

    def setup(api):
        register(api)

For lower-level access, import from submodules::

    from graphiti_memory.bridge import BridgeClient
    from graphiti_memory.search import search_context
    from graphiti_memory.writer import save_to_memory
"""

from __future__ import annotations

__version__ = "2.0.0"

PLUGIN_ID = "graphiti-memory"
PLUGIN_NAME = "Graphiti Auto-Memory"

# Public API exports
from graphiti_memory.bridge import BridgeClient, BridgeError, create_bridge
from graphiti_memory.config import BridgeSettings, PluginConfig
from graphiti_memory.content import extract_content
from graphiti_memory.hooks import MemoryHooks, register

__all__ = [
    "__version__",
    "PLUGIN_ID",
    "PLUGIN_NAME",
    "BridgeClient",
    "BridgeError",
    "BridgeSettings",
    "MemoryHooks",
    "PluginConfig",
    "create_bridge",
    "extract_content",
    "register",
]
