"""Translate agent CLI events into Messages API frames.

Streaming callers keep one ``StreamState`` per response and feed every
event through ``translate_event``; the frames come out in event arrival
order and always follow the shape::

    message_start
    (content_block_start, content_block_delta, content_block_stop)*
    message_delta
    message_stop

Blocks are not incremental: the CLI hands over a whole assistant turn at a
time, so each block's full text travels in a single delta.

Non-streaming callers buffer the events and call ``build_aggregate_response``.
"""

from __future__ import annotations

import json
import math
import uuid
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple

from agent_bridge.models.events import (
    AssistantEvent,
    ErrorEvent,
    PassthroughEvent,
    ResultEvent,
    SubprocessEvent,
    SystemEvent,
    TextBlock,
    ThinkingBlock,
    UnknownEvent,
    UserEvent,
)


DEFAULT_MODEL = "claude-code"


@dataclass
class ProtocolFrame:
    """One named unit of the streaming protocol."""

    event: str
    data: Dict[str, Any]

    def encode(self) -> str:
        return f"event: {self.event}\ndata: {json.dumps(self.data, ensure_ascii=False)}\n\n"


@dataclass
class StreamState:
    """Per-response accumulator. Never shared between requests."""

    message_id: str
    model: str = DEFAULT_MODEL
    message_started: bool = False
    block_index: int = 0
    output_text: str = ""
    session_id: Optional[str] = None
    cost_usd: Optional[float] = None
    duration_ms: Optional[float] = None
    # Set by the terminal result; later events produce nothing
    finished: bool = False


def new_message_id() -> str:
    return f"msg_{uuid.uuid4().hex[:24]}"


def create_stream_state(model: str = DEFAULT_MODEL) -> StreamState:
    return StreamState(message_id=new_message_id(), model=model)


def estimate_tokens(text: Optional[str]) -> int:
    """Rough output token count: one token per four characters, rounded up.

    This is an approximation, not a tokenizer; it only has to be stable.
    """
    if not text:
        return 0
    return math.ceil(len(text) / 4)


def error_frame(message: str, kind: str = "api_error") -> ProtocolFrame:
    return ProtocolFrame("error", {"type": "error", "error": {"type": kind, "message": message}})


def _message_start(state: StreamState) -> ProtocolFrame:
    state.message_started = True
    return ProtocolFrame("message_start", {
        "type": "message_start",
        "message": {
            "id": state.message_id,
            "type": "message",
            "role": "assistant",
            "content": [],
            "model": state.model,
            "stop_reason": None,
            "stop_sequence": None,
            "usage": {"input_tokens": 0, "output_tokens": 0},
        },
    })


def _block_triad(state: StreamState, kind: str, text: str) -> Iterator[ProtocolFrame]:
    idx = state.block_index
    state.block_index += 1
    yield ProtocolFrame("content_block_start", {
        "type": "content_block_start",
        "index": idx,
        "content_block": {"type": kind, kind: ""},
    })
    yield ProtocolFrame("content_block_delta", {
        "type": "content_block_delta",
        "index": idx,
        "delta": {"type": f"{kind}_delta", kind: text},
    })
    yield ProtocolFrame("content_block_stop", {"type": "content_block_stop", "index": idx})


def _capture_session(state: StreamState, session_id: Optional[str]) -> None:
    if session_id:
        state.session_id = session_id


def translate_event(event: SubprocessEvent, state: StreamState) -> Iterator[ProtocolFrame]:
    """Yield the frames produced by one event, updating ``state`` in place."""
    if state.finished:
        return

    if isinstance(event, AssistantEvent):
        _capture_session(state, event.session_id)
        if event.content is None:
            return
        if not state.message_started:
            yield _message_start(state)
        for block in event.content:
            if isinstance(block, TextBlock) and block.text:
                yield from _block_triad(state, "text", block.text)
                state.output_text += block.text
            elif isinstance(block, ThinkingBlock) and block.thinking:
                yield from _block_triad(state, "thinking", block.thinking)
            # tool_use / tool_result belong to the CLI's own agent loop

    elif isinstance(event, ResultEvent):
        if not state.message_started:
            yield _message_start(state)
            if event.result and not state.output_text:
                yield from _block_triad(state, "text", event.result)
                state.output_text = event.result

        state.session_id = event.session_id or event.reported_session_id or state.session_id
        state.cost_usd = event.cost_usd
        state.duration_ms = event.duration_ms
        state.finished = True

        yield ProtocolFrame("message_delta", {
            "type": "message_delta",
            "delta": {"stop_reason": "end_turn", "stop_sequence": None},
            "usage": {"output_tokens": estimate_tokens(state.output_text)},
        })
        yield ProtocolFrame("message_stop", {"type": "message_stop"})

    elif isinstance(event, (SystemEvent, UserEvent, ErrorEvent, UnknownEvent)):
        _capture_session(state, event.session_id)

    elif isinstance(event, PassthroughEvent):
        yield ProtocolFrame(event.type, event.raw)
        if event.type == "message_start":
            state.message_started = True

    else:
        raise TypeError(f"Unhandled event variant: {type(event).__name__}")


def build_aggregate_response(
    events: Iterable[SubprocessEvent], model: str = DEFAULT_MODEL
) -> Tuple[Dict[str, Any], Optional[str]]:
    """Fold a buffered event sequence into one Messages API response.

    Returns ``(message, session_id)``. The message always carries at least
    one text block.
    """
    blocks: List[Dict[str, Any]] = []
    session_id: Optional[str] = None
    result_text: Optional[str] = None

    for event in events:
        if event.session_id:
            session_id = event.session_id
        if isinstance(event, AssistantEvent):
            for block in event.content or []:
                if isinstance(block, TextBlock) and block.text:
                    blocks.append({"type": "text", "text": block.text})
        elif isinstance(event, ResultEvent):
            session_id = event.session_id or event.reported_session_id or session_id
            if event.result is not None:
                result_text = event.result
            break

    if not blocks and result_text:
        blocks.append({"type": "text", "text": result_text})
    if not blocks:
        blocks.append({"type": "text", "text": ""})

    full_text = "".join(b["text"] for b in blocks)
    message = {
        "id": new_message_id(),
        "type": "message",
        "role": "assistant",
        "content": blocks,
        "model": model,
        "stop_reason": "end_turn",
        "stop_sequence": None,
        "usage": {"input_tokens": 0, "output_tokens": estimate_tokens(full_text)},
    }
    return message, session_id
