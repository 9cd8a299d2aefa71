"""Typed view of the records the agent CLI prints in stream-json mode.

The CLI emits conversation-level records, one JSON object per line:

- ``{"type": "system", "subtype": "init", "session_id": ...}``
- ``{"type": "assistant", "message": {"content": [...]}}`` - a full assistant turn
- ``{"type": "user", "message": {...}}`` - tool results echoed back
- ``{"type": "result", "result": "...", "session_id": ..., "cost_usd": ...}``
- ``{"type": "error", ...}``

``parse_event`` turns each record into exactly one variant of
``SubprocessEvent`` so the translator can match on a closed set of types.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union


# Frame names that some CLI versions emit directly; forwarded untouched.
PASSTHROUGH_TYPES = frozenset({
    "message_start",
    "content_block_start",
    "content_block_delta",
    "content_block_stop",
    "message_delta",
    "message_stop",
    "ping",
})


@dataclass
class TextBlock:
    text: str


@dataclass
class ThinkingBlock:
    thinking: str


@dataclass
class OtherBlock:
    """tool_use, tool_result and anything else not representable downstream."""

    type: str
    data: Dict[str, Any] = field(default_factory=dict)


ContentBlock = Union[TextBlock, ThinkingBlock, OtherBlock]


@dataclass
class SystemEvent:
    subtype: Optional[str] = None
    session_id: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass
class AssistantEvent:
    # None when the record carried no content list at all
    content: Optional[List[ContentBlock]] = None
    session_id: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass
class UserEvent:
    session_id: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ResultEvent:
    result: Optional[str] = None
    cost_usd: Optional[float] = None
    duration_ms: Optional[float] = None
    is_error: bool = False
    # The record's own ``session_id`` field, kept apart from the extracted handle
    reported_session_id: Optional[str] = None
    session_id: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ErrorEvent:
    message: str = ""
    session_id: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass
class PassthroughEvent:
    type: str
    session_id: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass
class UnknownEvent:
    type: Optional[str] = None
    session_id: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)


SubprocessEvent = Union[
    SystemEvent,
    AssistantEvent,
    UserEvent,
    ResultEvent,
    ErrorEvent,
    PassthroughEvent,
    UnknownEvent,
]


def extract_session_id(raw: Any) -> Optional[str]:
    """Find the resumable session handle in a raw record.

    Probes, in order: ``session_id``, ``sessionId``, ``session.id`` and
    ``result.session_id``. The first non-blank string wins, trimmed.
    """
    if not isinstance(raw, dict):
        return None
    session = raw.get("session")
    result = raw.get("result")
    candidates = (
        raw.get("session_id"),
        raw.get("sessionId"),
        session.get("id") if isinstance(session, dict) else None,
        result.get("session_id") if isinstance(result, dict) else None,
    )
    for candidate in candidates:
        if isinstance(candidate, str) and candidate.strip():
            return candidate.strip()
    return None


def _parse_block(block: Any) -> ContentBlock:
    if not isinstance(block, dict):
        return OtherBlock(type="unknown", data={"value": block})
    btype = block.get("type")
    if btype == "text" and isinstance(block.get("text"), str):
        return TextBlock(text=block["text"])
    if btype == "thinking" and isinstance(block.get("thinking"), str):
        return ThinkingBlock(thinking=block["thinking"])
    return OtherBlock(type=str(btype), data=block)


def _number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return value


def parse_event(raw: Dict[str, Any]) -> SubprocessEvent:
    """Map one decoded stream-json record to its ``SubprocessEvent`` variant."""
    etype = raw.get("type")
    sid = extract_session_id(raw)

    if etype == "system":
        subtype = raw.get("subtype")
        return SystemEvent(subtype=subtype if isinstance(subtype, str) else None, session_id=sid, raw=raw)

    if etype == "assistant":
        message = raw.get("message")
        content = message.get("content") if isinstance(message, dict) else None
        blocks = [_parse_block(b) for b in content] if isinstance(content, list) else None
        return AssistantEvent(content=blocks, session_id=sid, raw=raw)

    if etype == "user":
        return UserEvent(session_id=sid, raw=raw)

    if etype == "result":
        result = raw.get("result")
        reported = raw.get("session_id")
        return ResultEvent(
            result=result if isinstance(result, str) else None,
            cost_usd=_number(raw.get("cost_usd", raw.get("total_cost_usd"))),
            duration_ms=_number(raw.get("duration_ms")),
            is_error=bool(raw.get("is_error", False)),
            reported_session_id=reported if isinstance(reported, str) and reported else None,
            session_id=sid,
            raw=raw,
        )

    if etype == "error":
        err = raw.get("error")
        if isinstance(err, dict):
            message = str(err.get("message") or "")
        else:
            message = str(err or raw.get("message") or "")
        return ErrorEvent(message=message, session_id=sid, raw=raw)

    if isinstance(etype, str) and etype in PASSTHROUGH_TYPES:
        return PassthroughEvent(type=etype, session_id=sid, raw=raw)

    return UnknownEvent(type=etype if isinstance(etype, str) else None, session_id=sid, raw=raw)
