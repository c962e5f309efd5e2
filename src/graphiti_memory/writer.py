"""Persist conversation messages as Graphiti episodes.

The memory service decides what is worth extracting, so every message is
forwarded except empty ones and agent control replies.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Literal

from graphiti_memory.bridge import BridgeClient
from graphiti_memory.config import PluginConfig
from graphiti_memory.content import is_system_message

log = logging.getLogger(__name__)

ADD_METHOD = "add_memory"
MAX_EPISODE_CHARS = 2000
EPISODE_SOURCE = "text"

Role = Literal["user", "assistant"]


def episode_name(label: str, now: datetime | None = None) -> str:
    """``"<label> YYYY-MM-DD HH:MM"`` in UTC."""
    now = (now or datetime.now(timezone.utc)).astimezone(timezone.utc)
    return f"{label} {now:%Y-%m-%d} {now:%H:%M}"


def role_label(role: Role, config: PluginConfig) -> str:
    return config.user_label if role == "user" else config.assistant_label


async def save_to_memory(
    bridge: BridgeClient,
    role: Role,
    content: str,
    group_id: str,
    *,
    label: str | None = None,
    now: datetime | None = None,
) -> bool:
    """Send *content* to the memory service as a new episode.

    Returns ``False`` when the message was skipped (blank or a system
    marker) and ``True`` once the write was issued.  The outcome of the
    write itself is not reported.
    """
    if not content or not content.strip():
        log.debug("Skipping empty %s message", role)
        return False
    if is_system_message(content):
        log.debug("Skipping %s system message", role)
        return False

    if label is None:
        label = role_label(role, PluginConfig())

    await bridge.call(ADD_METHOD, {
        "name": episode_name(label, now),
        "episode_body": content[:MAX_EPISODE_CHARS],
        "source": EPISODE_SOURCE,
        "group_id": group_id,
    })
    log.info("Saved %s message to Graphiti", role)
    return True
