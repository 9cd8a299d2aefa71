"""Conversation key -> resumable CLI session registry.

The whole table is written on every mutation and re-read before every
operation, so several worker processes can share one file without any
shared memory. Concurrent writers touching different keys can still
overwrite each other's changes (load, modify, save is not a transaction);
that race is accepted.

Persisted layout::

    {"<conversation key>": {"sessionId": "...", "updatedAt": <epoch millis>}}
"""

from __future__ import annotations

import json
import logging
import time
from pathlib import Path
from typing import Callable, Dict, Optional


logger = logging.getLogger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


class SessionStore:
    """File-backed session registry with lazy expiry."""

    def __init__(
        self,
        path: Path | str,
        max_age_ms: int,
        clock: Callable[[], int] = _now_ms,
    ) -> None:
        self._path = Path(path)
        self._max_age_ms = int(max_age_ms)
        self._clock = clock
        self._table: Dict[str, dict] = {}
        # While writes fail the in-memory table is the only up-to-date copy
        self._persist_failed = False

    @property
    def path(self) -> Path:
        return self._path

    # ---- lifecycle ----
    def open(self) -> None:
        """Load the table and drop expired entries."""
        self._load()
        logger.info("Session store opened: %d entries (%s)", len(self._table), self._path)

    def close(self) -> None:
        """Flush the current table to durable storage."""
        self._save()

    # ---- registry ----
    def get(self, key: str) -> Optional[str]:
        self._load()
        entry = self._table.get(key)
        if not entry:
            return None
        if self._expired(entry):
            del self._table[key]
            self._save()
            return None
        return entry["sessionId"]

    def set(self, key: str, session_id: str) -> None:
        self._load()
        self._table[key] = {"sessionId": session_id, "updatedAt": self._clock()}
        self._save()

    def remove(self, key: str) -> None:
        self._load()
        if self._table.pop(key, None) is not None:
            logger.info("Removed session for %s", key)
        self._save()

    def snapshot(self) -> Dict[str, dict]:
        return {k: dict(v) for k, v in self._table.items()}

    # ---- storage ----
    def _read_raw(self) -> Optional[str]:
        if not self._path.exists():
            return None
        return self._path.read_text(encoding="utf-8")

    def _write_raw(self, data: str) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp.write_text(data, encoding="utf-8")
        tmp.replace(self._path)

    def _load(self) -> None:
        if self._persist_failed:
            return
        try:
            raw = self._read_raw()
            data = json.loads(raw) if raw else {}
        except (OSError, ValueError) as e:
            logger.warning("Session store unreadable, starting empty: %s", e)
            data = {}
        if not isinstance(data, dict):
            data = {}
        self._table = {
            str(k): {"sessionId": v["sessionId"], "updatedAt": v["updatedAt"]}
            for k, v in data.items()
            if isinstance(v, dict)
            and isinstance(v.get("sessionId"), str)
            and isinstance(v.get("updatedAt"), (int, float))
        }
        self._prune()

    def _prune(self) -> None:
        stale = [k for k, v in self._table.items() if self._expired(v)]
        for k in stale:
            del self._table[k]
        if stale:
            logger.info("Pruned %d stale sessions", len(stale))
            self._save()

    def _save(self) -> None:
        try:
            self._write_raw(json.dumps(self._table, indent=2))
        except OSError as e:
            logger.error("Failed to save sessions to %s: %s", self._path, e)
            self._persist_failed = True
            return
        self._persist_failed = False

    def _expired(self, entry: dict) -> bool:
        return self._clock() - entry["updatedAt"] > self._max_age_ms


class InMemorySessionStore(SessionStore):
    """Same semantics as ``SessionStore`` with the durable copy kept in a string."""

    def __init__(self, max_age_ms: int = 24 * 60 * 60 * 1000, clock: Callable[[], int] = _now_ms) -> None:
        super().__init__(Path("<memory>"), max_age_ms, clock=clock)
        self.data: Optional[str] = None

    def _read_raw(self) -> Optional[str]:
        return self.data

    def _write_raw(self, data: str) -> None:
        self.data = data
