import json
from typing import Any, Dict, Generator, List

import pytest
from fastapi.testclient import TestClient

from agent_bridge.config import Settings
from agent_bridge.main import create_app
from agent_bridge.models.events import parse_event
from agent_bridge.services.session_store import InMemorySessionStore


DAY_MS = 24 * 60 * 60 * 1000


class FakeClock:
    def __init__(self, now: int = 1_700_000_000_000) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now


class FakeEventSource:
    """Stands in for the CLI runner.

    Each ``run`` call consumes the next script: a list of raw records, where
    an exception instance is raised at that point instead of yielded.
    """

    def __init__(self, *scripts: List[Any]) -> None:
        self.scripts = list(scripts)
        self.calls: List[Dict[str, Any]] = []

    async def run(self, prompt, session_id=None, system_prompt=None, cancel=None):
        self.calls.append({"prompt": prompt, "session_id": session_id, "system_prompt": system_prompt})
        script = self.scripts.pop(0) if self.scripts else []
        for item in script:
            if isinstance(item, BaseException):
                raise item
            yield parse_event(item)


def assistant(*blocks: Dict[str, Any], session_id: str | None = None) -> Dict[str, Any]:
    raw: Dict[str, Any] = {"type": "assistant", "message": {"content": list(blocks)}}
    if session_id:
        raw["session_id"] = session_id
    return raw


def text(value: str) -> Dict[str, Any]:
    return {"type": "text", "text": value}


def result(value: str = "", session_id: str | None = None, **extra: Any) -> Dict[str, Any]:
    raw: Dict[str, Any] = {"type": "result", "result": value, **extra}
    if session_id:
        raw["session_id"] = session_id
    return raw


def parse_sse(body: str) -> List[tuple]:
    """Split an SSE body into ``(event, data)`` pairs."""
    frames = []
    for chunk in body.split("\n\n"):
        if not chunk.strip():
            continue
        lines = dict(line.split(": ", 1) for line in chunk.split("\n"))
        frames.append((lines["event"], json.loads(lines["data"])))
    return frames


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock: FakeClock) -> InMemorySessionStore:
    s = InMemorySessionStore(max_age_ms=DAY_MS, clock=clock)
    s.open()
    return s


@pytest.fixture
def source() -> FakeEventSource:
    return FakeEventSource()


@pytest.fixture
def client(store: InMemorySessionStore, source: FakeEventSource) -> Generator[TestClient, None, None]:
    """Test client wired to the in-memory store and the fake event source."""
    app = create_app(Settings(), store=store, source=source)
    with TestClient(app) as c:
        yield c
