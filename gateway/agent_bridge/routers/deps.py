"""FastAPI dependencies resolving the components created at startup."""

from fastapi import Request

from agent_bridge.services.orchestrator import Orchestrator


def get_orchestrator(request: Request) -> Orchestrator:
    return request.app.state.orchestrator
