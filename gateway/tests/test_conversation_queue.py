"""Tests for per-conversation serialization."""

import asyncio

import pytest

from agent_bridge.services.conversation_queue import ConversationQueue


def recorder(log, name, delay=0.01, fail=False):
    async def task():
        log.append(f"{name}:start")
        await asyncio.sleep(delay)
        log.append(f"{name}:end")
        if fail:
            raise RuntimeError(name)
        return name
    return task


@pytest.mark.asyncio
async def test_same_key_runs_in_arrival_order_without_overlap():
    queue = ConversationQueue()
    log = []

    results = await asyncio.gather(
        queue.enqueue("k", recorder(log, "a", delay=0.03)),
        queue.enqueue("k", recorder(log, "b", delay=0.01)),
        queue.enqueue("k", recorder(log, "c", delay=0.0)),
    )

    assert results == ["a", "b", "c"]
    assert log == ["a:start", "a:end", "b:start", "b:end", "c:start", "c:end"]
    assert len(queue) == 0


@pytest.mark.asyncio
async def test_distinct_keys_overlap():
    queue = ConversationQueue()
    log = []

    await asyncio.gather(
        queue.enqueue("k1", recorder(log, "a", delay=0.03)),
        queue.enqueue("k2", recorder(log, "b", delay=0.01)),
    )

    assert log.index("b:start") < log.index("a:end")


@pytest.mark.asyncio
async def test_failure_does_not_block_followers():
    queue = ConversationQueue()
    log = []

    first = asyncio.ensure_future(queue.enqueue("k", recorder(log, "a", fail=True)))
    second = asyncio.ensure_future(queue.enqueue("k", recorder(log, "b")))

    with pytest.raises(RuntimeError, match="a"):
        await first
    assert await second == "b"
    assert log == ["a:start", "a:end", "b:start", "b:end"]
    assert len(queue) == 0


@pytest.mark.asyncio
async def test_busy_flag_and_cleanup():
    queue = ConversationQueue()
    gate = asyncio.Event()

    async def blocked():
        await gate.wait()
        return 1

    pending = asyncio.ensure_future(queue.enqueue("k", blocked))
    await asyncio.sleep(0)
    assert queue.is_busy("k")
    assert not queue.is_busy("other")

    gate.set()
    assert await pending == 1
    assert not queue.is_busy("k")
    assert len(queue) == 0


@pytest.mark.asyncio
async def test_cancelled_waiter_does_not_let_later_task_jump_ahead():
    queue = ConversationQueue()
    log = []
    gate = asyncio.Event()

    async def head():
        log.append("head:start")
        await gate.wait()
        log.append("head:end")

    first = asyncio.ensure_future(queue.enqueue("k", head))
    await asyncio.sleep(0)
    waiting = asyncio.ensure_future(queue.enqueue("k", recorder(log, "cancelled")))
    await asyncio.sleep(0)
    third = asyncio.ensure_future(queue.enqueue("k", recorder(log, "third")))
    await asyncio.sleep(0)

    waiting.cancel()
    with pytest.raises(asyncio.CancelledError):
        await waiting
    await asyncio.sleep(0.01)
    assert log == ["head:start"]

    gate.set()
    await first
    await third
    assert log == ["head:start", "head:end", "third:start", "third:end"]
    assert len(queue) == 0
