"""Unit tests for the request coalescer and bounded fan-out."""

from __future__ import annotations

import asyncio

import pytest

from mailbox_sync.utils import RequestCoalescer, gather_bounded


@pytest.mark.asyncio
async def test_concurrent_requests_for_a_key_share_one_run() -> None:
    coalescer = RequestCoalescer()
    runs = 0
    release = asyncio.Event()

    async def fetch() -> str:
        nonlocal runs
        runs += 1
        await release.wait()
        return "done"

    waiters = [asyncio.ensure_future(coalescer.run("mailbox", fetch)) for _ in range(3)]
    await asyncio.sleep(0)
    assert coalescer.is_running("mailbox")

    release.set()
    assert await asyncio.gather(*waiters) == ["done", "done", "done"]
    assert runs == 1
    assert not coalescer.is_running("mailbox")


@pytest.mark.asyncio
async def test_distinct_keys_run_independently() -> None:
    coalescer = RequestCoalescer()
    calls: list[str] = []

    async def fetch(key: str) -> str:
        calls.append(key)
        await asyncio.sleep(0)
        return key

    results = await asyncio.gather(
        coalescer.run(("mail", "a"), lambda: fetch("a")),
        coalescer.run(("mail", "b"), lambda: fetch("b")),
    )

    assert results == ["a", "b"]
    assert sorted(calls) == ["a", "b"]


@pytest.mark.asyncio
async def test_failure_reaches_every_waiter_and_key_is_released() -> None:
    coalescer = RequestCoalescer()

    async def fail() -> None:
        await asyncio.sleep(0)
        raise ValueError("boom")

    results = await asyncio.gather(
        coalescer.run("k", fail), coalescer.run("k", fail), return_exceptions=True
    )

    assert all(isinstance(r, ValueError) for r in results)
    assert not coalescer.is_running("k")


@pytest.mark.asyncio
async def test_cancelled_waiter_does_not_cancel_shared_run() -> None:
    coalescer = RequestCoalescer()
    release = asyncio.Event()

    async def fetch() -> int:
        await release.wait()
        return 7

    first = asyncio.ensure_future(coalescer.run("k", fetch))
    second = asyncio.ensure_future(coalescer.run("k", fetch))
    await asyncio.sleep(0)

    first.cancel()
    release.set()

    assert await second == 7
    assert first.cancelled()


@pytest.mark.asyncio
async def test_gather_bounded_limits_concurrency_and_keeps_order() -> None:
    running = 0
    peak = 0

    async def work(item: int) -> int:
        nonlocal running, peak
        running += 1
        peak = max(peak, running)
        await asyncio.sleep(0.01)
        running -= 1
        return item * 2

    results = await gather_bounded(range(12), work, max_concurrent=5)

    assert results == [i * 2 for i in range(12)]
    assert peak == 5
