"""Tests for the session registry."""

import json
from pathlib import Path

from agent_bridge.services.session_store import InMemorySessionStore, SessionStore

from conftest import DAY_MS, FakeClock


def test_set_get_remove(store) -> None:
    assert store.get("k") is None
    store.set("k", "s1")
    assert store.get("k") == "s1"
    store.set("k", "s2")
    assert store.get("k") == "s2"
    store.remove("k")
    assert store.get("k") is None


def test_expiry_boundary(store, clock) -> None:
    start = clock.now
    store.set("k", "s1")

    clock.now = start + DAY_MS - 1
    assert store.get("k") == "s1"

    clock.now = start + DAY_MS + 1
    assert store.get("k") is None
    # Evicted on read, not just hidden
    assert "k" not in json.loads(store.data)


def test_every_mutation_persists_whole_table(store) -> None:
    store.set("a", "s1")
    store.set("b", "s2")
    persisted = json.loads(store.data)
    assert set(persisted) == {"a", "b"}
    assert persisted["a"]["sessionId"] == "s1"
    assert isinstance(persisted["a"]["updatedAt"], int)


def test_reads_reload_from_durable_copy(store) -> None:
    store.set("a", "s1")
    # Another worker rewrote the file
    store.data = json.dumps({"b": {"sessionId": "s2", "updatedAt": store._clock()}})
    assert store.get("a") is None
    assert store.get("b") == "s2"


def test_open_prunes_and_repersists() -> None:
    clock = FakeClock()
    s = InMemorySessionStore(max_age_ms=1000, clock=clock)
    s.data = json.dumps({
        "old": {"sessionId": "s-old", "updatedAt": clock.now - 5000},
        "new": {"sessionId": "s-new", "updatedAt": clock.now},
    })
    s.open()
    assert json.loads(s.data) == {"new": {"sessionId": "s-new", "updatedAt": clock.now}}


def test_corrupt_or_malformed_store_reads_as_empty() -> None:
    s = InMemorySessionStore()
    s.data = "{not json"
    s.open()
    assert s.get("k") is None

    s.data = json.dumps({"k": {"sessionId": 7}, "j": "x"})
    assert s.get("k") is None
    assert s.get("j") is None


def test_file_backed_roundtrip(tmp_path: Path) -> None:
    path = tmp_path / "data" / "sessions.json"
    s = SessionStore(path, max_age_ms=DAY_MS)
    s.open()
    s.set("hdr:abc", "s1")

    assert path.exists()
    assert not path.with_suffix(".json.tmp").exists()
    other = SessionStore(path, max_age_ms=DAY_MS)
    other.open()
    assert other.get("hdr:abc") == "s1"


def test_missing_file_is_empty(tmp_path: Path) -> None:
    s = SessionStore(tmp_path / "absent.json", max_age_ms=DAY_MS)
    s.open()
    assert s.snapshot() == {}


class FailingStore(InMemorySessionStore):
    fail = True

    def _write_raw(self, data: str) -> None:
        if self.fail:
            raise OSError("disk full")
        super()._write_raw(data)


def test_write_failures_are_swallowed_and_memory_stays_authoritative() -> None:
    s = FailingStore()
    s.open()
    s.set("k", "s1")  # must not raise
    assert s.data is None
    assert s.get("k") == "s1"

    s.fail = False
    s.set("j", "s2")
    assert set(json.loads(s.data)) == {"k", "j"}
