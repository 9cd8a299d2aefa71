"""Messages API endpoint: ``POST /v1/messages``."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse, StreamingResponse

from agent_bridge.errors import RequestShapeError, error_payload
from agent_bridge.models import MessagesRequest
from agent_bridge.routers.deps import get_orchestrator
from agent_bridge.services.orchestrator import Orchestrator


router = APIRouter()
logger = logging.getLogger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
}

DISCONNECT_POLL_S = 0.5


def _bad_request(message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=error_payload("invalid_request_error", message),
    )


def _server_error(exc: Exception) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_payload("api_error", str(exc)),
    )


async def _watch_disconnect(request: Request, cancel: asyncio.Event, interval: float) -> None:
    while not cancel.is_set():
        if await request.is_disconnected():
            logger.info("Client disconnected; cancelling CLI run")
            cancel.set()
            return
        await asyncio.sleep(interval)


@asynccontextmanager
async def cancel_on_disconnect(
    request: Request,
    cancel: asyncio.Event,
    interval: float = DISCONNECT_POLL_S,
) -> AsyncIterator[asyncio.Event]:
    """Set ``cancel`` if the client goes away while the block is running.

    Only for the part of a request that runs before a response exists; once
    a ``StreamingResponse`` is sending, Starlette closes the body iterator on
    disconnect itself.
    """
    watcher = asyncio.create_task(_watch_disconnect(request, cancel, interval), name="disconnect-watch")
    try:
        yield cancel
    finally:
        watcher.cancel()
        try:
            await watcher
        except asyncio.CancelledError:
            pass


@router.post("/messages")
async def create_message(
    body: MessagesRequest,
    request: Request,
    orchestrator: Orchestrator = Depends(get_orchestrator),
):
    """Run the agent CLI for one conversation turn.

    Returns a Messages API response, or an SSE stream when ``stream`` is true.
    """
    try:
        req = orchestrator.prepare(body, request.headers)
    except RequestShapeError as e:
        return _bad_request(str(e))

    if not req.stream:
        try:
            async with cancel_on_disconnect(request, asyncio.Event()) as cancel:
                message = await orchestrator.complete(req, cancel=cancel)
        except RequestShapeError as e:
            return _bad_request(str(e))
        except Exception as e:
            logger.error("Request failed for %s: %s", req.key, e)
            return _server_error(e)
        return JSONResponse(status_code=status.HTTP_200_OK, content=message)

    handle = orchestrator.open_stream(req)
    try:
        # Headers are only committed once there is something to send
        async with cancel_on_disconnect(request, handle.cancel):
            await handle.first()
    except RequestShapeError as e:
        return _bad_request(str(e))
    except Exception as e:
        logger.error("Stream failed before output for %s: %s", req.key, e)
        return _server_error(e)

    return StreamingResponse(
        handle.frames(),
        status_code=status.HTTP_200_OK,
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )
