"""Turn a Messages API history into the single text payload the CLI reads.

A fresh session gets the whole conversation replayed as a transcript; a
resumed session already holds that context, so only the latest user turn
is sent.
"""

from __future__ import annotations

from typing import Any, Mapping, Optional, Sequence


def extract_text_content(content: Any) -> str:
    """Plain text of a message's content (string or list of blocks).

    Image, tool_use and tool_result blocks are skipped.
    """
    if isinstance(content, str):
        return content
    if not isinstance(content, list):
        return ""
    parts = []
    for block in content:
        if isinstance(block, str):
            parts.append(block)
        elif isinstance(block, Mapping) and block.get("type") == "text":
            parts.append(str(block.get("text") or ""))
    return "\n".join(parts)


def system_text(system: Any) -> str:
    """The system prompt as text; accepts a string or a list of text blocks."""
    if system is None:
        return ""
    return extract_text_content(system)


def build_prompt(messages: Sequence[Any], is_resume: bool = False) -> str:
    if not messages:
        return ""
    if is_resume:
        return latest_user_text(messages)
    if len(messages) == 1:
        return extract_text_content(_field(messages[0], "content"))

    parts = []
    for msg in messages:
        text = extract_text_content(_field(msg, "content"))
        if not text:
            continue
        role = _field(msg, "role")
        if role == "user":
            parts.append(f"User: {text}")
        elif role == "assistant":
            parts.append(f"Assistant: {text}")
    return "\n\n".join(parts)


def latest_user_text(messages: Sequence[Any]) -> str:
    last = _find_last_user(messages)
    return extract_text_content(_field(last, "content")) if last is not None else ""


def _find_last_user(messages: Sequence[Any]) -> Optional[Any]:
    for msg in reversed(messages):
        if _field(msg, "role") == "user":
            return msg
    return None


def _field(message: Any, name: str) -> Any:
    # Accepts plain dicts and the pydantic ``Message`` model alike
    if isinstance(message, Mapping):
        return message.get(name)
    return getattr(message, name, None)
