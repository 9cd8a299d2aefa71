"""Main FastAPI application for the agent bridge."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from agent_bridge import __version__
from agent_bridge.config import Settings, settings as default_settings
from agent_bridge.errors import error_payload
from agent_bridge.routers import messages_router, models_router
from agent_bridge.services.cli_runner import CliRunner, EventSource
from agent_bridge.services.conversation_queue import ConversationQueue
from agent_bridge.services.orchestrator import Orchestrator
from agent_bridge.services.session_store import SessionStore

# Configure logging
try:
    from agent_bridge.logging_config import setup_logging
    setup_logging(default_settings.logging.level)
except Exception:
    logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def create_app(
    settings: Settings = default_settings,
    store: Optional[SessionStore] = None,
    source: Optional[EventSource] = None,
) -> FastAPI:
    """Build the application.

    ``store`` and ``source`` default to the file-backed registry and the real
    CLI runner; tests pass in-memory fakes instead.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        logger.info("Agent bridge starting up...")
        session_store = store or SessionStore(settings.sessions.file_path, settings.sessions.max_age_ms)
        session_store.open()
        app.state.store = session_store
        app.state.orchestrator = Orchestrator(
            store=session_store,
            queue=ConversationQueue(),
            source=source or CliRunner(settings.cli),
            default_model=settings.default_model,
        )
        logger.info("Listening config: %s:%s", settings.server.host, settings.server.port)
        logger.info("CLI: %s", settings.cli.script if settings.cli.uses_node_entry else settings.cli.path)
        yield
        session_store.close()
        logger.info("Agent bridge shutting down...")

    app = FastAPI(
        title="Agent Bridge",
        description="Messages API on top of a local agent CLI",
        version=__version__,
        lifespan=lifespan,
    )

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = exc.errors()
        if any("messages" in [str(p) for p in e.get("loc", ())] for e in errors):
            message = "messages array is required"
        else:
            message = errors[0].get("msg", "Invalid request") if errors else "Invalid request"
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=error_payload("invalid_request_error", message),
        )

    @app.get("/health")
    async def health_check() -> JSONResponse:
        return JSONResponse(
            status_code=200,
            content={"status": "ok", "bridge": "claude-code-cli", "port": settings.server.port},
        )

    @app.get("/")
    async def root() -> JSONResponse:
        return JSONResponse(
            status_code=200,
            content={
                "service": "agent-bridge",
                "version": __version__,
                "messages": "/v1/messages",
                "health": "/health",
            },
        )

    app.include_router(messages_router, prefix="/v1", tags=["messages"])
    app.include_router(models_router, prefix="/v1", tags=["models"])
    return app


app = create_app()
