"""Message text helpers: normalization, system-marker checks, search queries.

Hosts hand over messages in several shapes -- a plain string, a list of
content parts, or a wrapper object carrying ``content`` or ``text``.
:func:`extract_content` flattens all of them to a single string and never
raises; anything it does not recognise becomes ``""``.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any

# Control replies the agent emits that carry nothing worth remembering.
SYSTEM_MESSAGES: tuple[str, ...] = (
    "NO_REPLY",
    "HEARTBEAT_OK",
    "HEARTBEAT",
)

MAX_QUERY_SOURCE_CHARS = 300
MIN_QUERY_LENGTH = 3

# Word characters, whitespace and Cyrillic survive; everything else is a separator.
_QUERY_STRIP_RE = re.compile(r"[^\w\sа-яА-ЯёЁ]", re.ASCII)
_WHITESPACE_RE = re.compile(r"\s+")


def get_field(item: Any, name: str) -> Any:
    """Read *name* from a mapping key or an attribute, ``None`` if absent."""
    try:
        if isinstance(item, Mapping):
            return item.get(name)
        return getattr(item, name, None)
    except Exception:
        return None


def _part_text(item: Any) -> str:
    """Text payload of one element of a parts list."""
    if isinstance(item, str):
        return item
    content = get_field(item, "content")
    if content:
        return extract_content(content)
    text = get_field(item, "text")
    if text:
        return str(text)
    return ""


def extract_content(value: Any) -> str:
    """Flatten a message of unknown shape into a string.

    >>> extract_content([{"text": "a"}, {"content": "b"}, "c"])
    'a b c'
    >>> extract_content(None)
    ''
    """
    if isinstance(value, str):
        return value
    if isinstance(value, (list, tuple)):
        return " ".join(part for part in map(_part_text, value) if part)
    if value is None or isinstance(value, (bytes, int, float, bool)):
        return ""
    content = get_field(value, "content")
    if content:
        return extract_content(content)
    text = get_field(value, "text")
    if text:
        return str(text)
    return ""


def is_system_message(content: Any) -> bool:
    """Return ``True`` for agent control replies such as ``HEARTBEAT_OK``."""
    if not isinstance(content, str):
        return False
    trimmed = content.strip()
    return any(trimmed == marker or trimmed.startswith(marker) for marker in SYSTEM_MESSAGES)


def extract_search_query(content: str) -> str:
    """Derive a search phrase from the head of a message.

    Punctuation and symbols become spaces and whitespace runs collapse, so
    ``"Hi!!  what's up?"`` turns into ``"Hi what s up"``.
    """
    head = content[:MAX_QUERY_SOURCE_CHARS]
    return _WHITESPACE_RE.sub(" ", _QUERY_STRIP_RE.sub(" ", head)).strip()


def is_searchable(query: str) -> bool:
    """Whether *query* is long enough to be worth a round trip."""
    return len(query) >= MIN_QUERY_LENGTH
