import asyncio

import pytest

from layer_agent.domain.streaming.abort import AbortHandle


async def _stalled(first: bytes, closed: list):
    try:
        yield first
        await asyncio.Event().wait()
        yield b"never"
    finally:
        closed.append(True)


@pytest.mark.asyncio
async def test_guard_passes_chunks_through_until_exhausted():
    async def chunks():
        for chunk in (b"a", b"b"):
            yield chunk

    handle = AbortHandle()

    assert [chunk async for chunk in handle.guard(chunks())] == [b"a", b"b"]
    assert not handle.aborted


@pytest.mark.asyncio
async def test_abort_interrupts_a_pending_read():
    handle = AbortHandle()
    closed: list = []
    received = []

    async def consume():
        async for chunk in handle.guard(_stalled(b"first", closed)):
            received.append(chunk)

    task = asyncio.create_task(consume())
    await asyncio.sleep(0.01)
    handle.abort("user cancelled")
    await asyncio.wait_for(task, 1.0)

    assert received == [b"first"]
    assert handle.aborted
    assert handle.reason == "user cancelled"
    assert closed == [True]


@pytest.mark.asyncio
async def test_guard_yields_nothing_once_aborted():
    handle = AbortHandle()
    handle.abort()

    async def chunks():
        yield b"x"

    assert [chunk async for chunk in handle.guard(chunks())] == []


@pytest.mark.asyncio
async def test_first_abort_reason_wins():
    handle = AbortHandle()
    handle.abort("first")
    handle.abort("second")

    await asyncio.wait_for(handle.wait(), 1.0)
    assert handle.reason == "first"
