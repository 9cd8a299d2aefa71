"""Per-conversation serialization of CLI runs.

Only one CLI process may work on a conversation at a time, otherwise two
runs would try to resume the same session. Each key keeps a reference to
the tail of its chain: a future that settles when the most recently queued
task finishes. A new task waits for the current tail, whatever its
outcome, then runs. The key is forgotten once its last task settles, so
idle conversations cost nothing.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Dict, TypeVar


logger = logging.getLogger(__name__)

T = TypeVar("T")


class ConversationQueue:
    def __init__(self) -> None:
        self._tails: Dict[str, asyncio.Future] = {}

    def __len__(self) -> int:
        return len(self._tails)

    def is_busy(self, key: str) -> bool:
        return key in self._tails

    async def enqueue(self, key: str, task: Callable[[], Awaitable[T]]) -> T:
        """Run ``task`` after every task queued earlier for ``key`` has settled.

        The task's result is returned and its exception propagated; neither
        affects the tasks queued behind it.
        """
        prev = self._tails.get(key)
        done: asyncio.Future = asyncio.get_running_loop().create_future()
        self._tails[key] = done
        if prev is not None:
            logger.debug("Conversation %s busy; request queued", key)
        try:
            if prev is not None:
                await asyncio.wait({prev})
            return await task()
        finally:
            if prev is not None and not prev.done():
                # Cancelled while still queued: the slot passes on only after
                # the predecessor settles
                prev.add_done_callback(lambda _f: self._release(key, done))
            else:
                self._release(key, done)

    def _release(self, key: str, done: asyncio.Future) -> None:
        if not done.done():
            done.set_result(None)
        if self._tails.get(key) is done:
            del self._tails[key]
