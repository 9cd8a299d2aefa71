"""Derive a stable key that ties HTTP requests to one logical conversation."""

from __future__ import annotations

import hashlib
import json
from typing import Any, Mapping, Optional, Sequence

from agent_bridge.services.prompt_builder import system_text


# Checked in this order; the first non-empty value wins
CONVERSATION_HEADERS = (
    "x-conversation-id",
    "x-openclaw-conversation-id",
    "x-session-id",
)

FINGERPRINT_CONTENT_CHARS = 500
FINGERPRINT_HEX_CHARS = 16


def fingerprint(system: Any, messages: Sequence[Any]) -> str:
    """Hash of the system prompt and the first message's serialized content."""
    first = ""
    if messages:
        content = _content_of(messages[0])
        first = json.dumps(content, separators=(",", ":"), ensure_ascii=False)[:FINGERPRINT_CONTENT_CHARS]
    digest = hashlib.sha256((system_text(system) + first).encode("utf-8")).hexdigest()
    return digest[:FINGERPRINT_HEX_CHARS]


def conversation_key(headers: Mapping[str, str], system: Any, messages: Sequence[Any]) -> str:
    header = header_conversation_id(headers)
    if header:
        return f"hdr:{header}"
    return f"hash:{fingerprint(system, messages)}"


def header_conversation_id(headers: Mapping[str, str]) -> Optional[str]:
    for name in CONVERSATION_HEADERS:
        value = headers.get(name)
        if value:
            return value
    return None


def _content_of(message: Any) -> Any:
    if isinstance(message, Mapping):
        return message.get("content")
    return getattr(message, "content", None)
