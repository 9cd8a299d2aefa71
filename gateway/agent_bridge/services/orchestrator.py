"""Request orchestration: session lookup, CLI run, translation, persistence.

One request flows through::

    ConversationQueue slot -> SessionStore.get -> prompt -> CLI run
        -> translator -> frames / message -> SessionStore.set -> slot released

A stored session that the CLI rejects (non-zero exit while resuming) is
dropped and the request is replayed once from scratch with the full
transcript. A streaming request can only be replayed while nothing has
been sent to the client yet.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import aclosing
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Mapping, Optional, TypeVar

from agent_bridge.errors import RequestShapeError, is_resume_rejection
from agent_bridge.models.api import MessagesRequest
from agent_bridge.models.events import ResultEvent
from agent_bridge.services.cli_runner import EventSource
from agent_bridge.services.conversation_key import conversation_key
from agent_bridge.services.conversation_queue import ConversationQueue
from agent_bridge.services.prompt_builder import build_prompt, latest_user_text, system_text
from agent_bridge.services.session_store import SessionStore
from agent_bridge.services.translator import (
    ProtocolFrame,
    build_aggregate_response,
    create_stream_state,
    error_frame,
    translate_event,
)


logger = logging.getLogger(__name__)

T = TypeVar("T")

STREAM_BUFFER = 64

Runner = Callable[[str, Optional[str]], Awaitable[T]]


@dataclass
class BridgeRequest:
    key: str
    messages: List[Dict[str, Any]]
    model: str
    system_prompt: Optional[str] = None
    stream: bool = False


@dataclass
class _Done:
    error: Optional[BaseException] = None


class StreamHandle:
    """Frames of one streaming request, produced in the background.

    ``first()`` waits for the first frame so the caller can still answer
    with a plain error response when the run fails before producing
    anything. ``frames()`` then yields the encoded SSE text; a failure after
    that point is reported with one trailing ``error`` frame.
    """

    def __init__(self, max_pending: int = STREAM_BUFFER) -> None:
        # Bounded so a slow reader holds back the CLI instead of buffering its output
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max_pending)
        self.cancel = asyncio.Event()
        self.started = False
        self._task: Optional[asyncio.Task] = None
        self._first: Optional[ProtocolFrame] = None

    def start(self, coro: Awaitable[None]) -> None:
        self._task = asyncio.create_task(self._produce(coro), name="bridge-stream")

    async def _produce(self, coro: Awaitable[None]) -> None:
        try:
            await coro
        except Exception as e:  # reported through the frame queue
            await self._queue.put(_Done(error=e))
        else:
            await self._queue.put(_Done())

    async def emit(self, frame: ProtocolFrame) -> None:
        self.started = True
        await self._queue.put(frame)

    async def first(self) -> Optional[ProtocolFrame]:
        """Return the first frame, ``None`` for an empty stream, or raise the run's error."""
        item = await self._queue.get()
        if isinstance(item, _Done):
            if item.error is not None:
                raise item.error
            self._queue.put_nowait(item)
            return None
        self._first = item
        return item

    async def frames(self) -> AsyncIterator[str]:
        try:
            if self._first is not None:
                yield self._first.encode()
            while True:
                item = await self._queue.get()
                if isinstance(item, _Done):
                    if item.error is not None:
                        logger.error("Stream failed after output began: %s", item.error)
                        yield error_frame(str(item.error)).encode()
                    return
                yield item.encode()
        finally:
            # Client gone or stream over; either way the CLI must not outlive it
            self.cancel.set()
            if self._task is not None and not self._task.done():
                # Nobody drains the queue any more; a blocked emit would hold the conversation slot
                self._task.cancel()


class Orchestrator:
    def __init__(
        self,
        store: SessionStore,
        queue: ConversationQueue,
        source: EventSource,
        default_model: str = "claude-code",
    ) -> None:
        self.store = store
        self.queue = queue
        self.source = source
        self.default_model = default_model

    def prepare(self, body: MessagesRequest, headers: Mapping[str, str]) -> BridgeRequest:
        """Validate and normalise a request before it is queued."""
        messages = [m.model_dump() for m in body.messages]
        if not build_prompt(messages):
            raise RequestShapeError("Could not extract prompt from messages")
        system = system_text(body.system) or None
        return BridgeRequest(
            key=conversation_key(headers, body.system, messages),
            messages=messages,
            model=body.model or self.default_model,
            system_prompt=system,
            stream=body.stream is True,
        )

    # ---- entry points ----
    async def complete(self, req: BridgeRequest, cancel: Optional[asyncio.Event] = None) -> Dict[str, Any]:
        """Run the request to completion and return one Messages API response.

        Setting ``cancel`` (caller disconnected) stops the CLI run.
        """

        async def run(prompt: str, session_id: Optional[str]) -> Dict[str, Any]:
            source = self.source.run(prompt, session_id=session_id, system_prompt=req.system_prompt, cancel=cancel)
            async with aclosing(source) as events:
                buffered = [event async for event in events]
            message, new_session = build_aggregate_response(buffered, req.model)
            self._remember(req.key, new_session)
            return message

        return await self.queue.enqueue(req.key, lambda: self._with_resume_fallback(req, run))

    def open_stream(self, req: BridgeRequest) -> StreamHandle:
        """Start a streaming request in the background and return its handle."""
        handle = StreamHandle()

        async def run(prompt: str, session_id: Optional[str]) -> None:
            state = create_stream_state(req.model)
            source = self.source.run(prompt, session_id=session_id, system_prompt=req.system_prompt, cancel=handle.cancel)
            async with aclosing(source) as events:
                async for event in events:
                    for frame in translate_event(event, state):
                        await handle.emit(frame)
            if not state.finished:
                # Clean exit without a result record: close the message anyway
                for frame in translate_event(ResultEvent(result=""), state):
                    await handle.emit(frame)
            self._remember(req.key, state.session_id)

        handle.start(
            self.queue.enqueue(
                req.key,
                lambda: self._with_resume_fallback(req, run, can_retry=lambda: not handle.started),
            )
        )
        return handle

    # ---- internals ----
    async def _with_resume_fallback(
        self,
        req: BridgeRequest,
        run: Runner,
        can_retry: Callable[[], bool] = lambda: True,
    ) -> T:
        session_id = self.store.get(req.key)
        is_resume = bool(session_id)
        prompt = latest_user_text(req.messages) if is_resume else build_prompt(req.messages)
        if not prompt:
            raise RequestShapeError("Could not extract prompt from messages")

        logger.info(
            "%s request, conversation=%s, resume=%s, prompt=%s...",
            "streaming" if req.stream else "non-streaming",
            req.key,
            is_resume,
            prompt[:80],
        )

        try:
            return await run(prompt, session_id)
        except Exception as exc:
            logger.error("Request failed: %s", exc)
            if not (is_resume and is_resume_rejection(exc)):
                raise
            logger.info("Resume of session %s failed for %s; dropping it", session_id, req.key)
            self.store.remove(req.key)
            if not can_retry():
                raise

        logger.info("Retrying %s without session", req.key)
        try:
            return await run(build_prompt(req.messages), None)
        except Exception as retry_exc:
            logger.error("Retry also failed: %s", retry_exc)
            raise

    def _remember(self, key: str, session_id: Optional[str]) -> None:
        if session_id:
            self.store.set(key, session_id)
            logger.info("Saved session %s for %s", session_id, key)
