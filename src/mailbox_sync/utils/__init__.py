"""Utility functions for Mailbox Sync."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Hashable, Iterable
from typing import Any, TypeVar

import structlog

logger = structlog.get_logger()

T = TypeVar("T")
R = TypeVar("R")


class RequestCoalescer:
    """Runs at most one operation per key at a time.

    Callers asking for a key that already has an operation in flight await the
    same task instead of starting a new one. The shared task is shielded, so a
    caller that gets cancelled does not cancel it for everybody else.
    """

    def __init__(self) -> None:
        self._inflight: dict[Hashable, asyncio.Task[Any]] = {}

    def is_running(self, key: Hashable) -> bool:
        return key in self._inflight

    async def run(self, key: Hashable, factory: Callable[[], Awaitable[T]]) -> T:
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(factory())
            self._inflight[key] = task
            task.add_done_callback(lambda done, key=key: self._finish(key, done))
        else:
            logger.debug("request_coalesced", key=str(key))
        return await asyncio.shield(task)

    def _finish(self, key: Hashable, task: asyncio.Task[Any]) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        # Mark the exception as retrieved; every waiter gets it through shield.
        if not task.cancelled():
            task.exception()


async def gather_bounded(
    items: Iterable[T],
    worker: Callable[[T], Awaitable[R]],
    max_concurrent: int,
) -> list[R]:
    """Run ``worker`` over ``items`` with at most ``max_concurrent`` running at once.

    Results are returned in input order once every worker has finished.
    """

    semaphore = asyncio.Semaphore(max_concurrent)

    async def run_one(item: T) -> R:
        async with semaphore:
            return await worker(item)

    return list(await asyncio.gather(*(run_one(item) for item in items)))
