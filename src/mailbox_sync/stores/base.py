"""Read-through streaming shared by the cache stores.

A cached stream follows a live query over the local store. Each snapshot is
turned into a ``Reading``: a value to emit, and whether local data is missing
and a fetch is needed. A fetch runs at most once per subscription. Its outcome
reaches the subscriber either through the store (the live query re-emits after
the fetched data is committed) or as a failed ``Result``.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

import structlog

from mailbox_sync.models import Result
from mailbox_sync.store.live import LiveQuery

logger = structlog.get_logger()

S = TypeVar("S")
V = TypeVar("V")

_SNAPSHOT = "snapshot"
_FETCH_DONE = "fetch_done"
_FETCH_FAILED = "fetch_failed"

_UNSET: Any = object()


@dataclass(frozen=True)
class Reading(Generic[V]):
    """Interpretation of a local snapshot.

    Attributes:
        value: What to emit, or None to emit nothing.
        stale: Local data is incomplete and should be fetched.
    """

    value: V | None = None
    stale: bool = False


async def stream_cached(
    live: LiveQuery[S],
    read: Callable[[S, bool], Reading[V]],
    fetch: Callable[[], Awaitable[None]],
    *,
    refresh: bool,
    name: str,
) -> AsyncIterator[Result[V]]:
    """Stream a cached value, fetching when local data is missing or on request.

    Args:
        live: Live query over the local data backing the value.
        read: Maps a snapshot to a reading. The flag tells whether this
            subscription's fetch has completed, so readers can settle for
            what is stored instead of waiting for more.
        fetch: Fetches remote data and writes it to the local store.
        refresh: Fetch once up front even if local data is complete.
        name: Store name used in logs.
    """

    queue: asyncio.Queue[tuple[str, Any]] = asyncio.Queue()
    fetch_task: asyncio.Task[None] | None = None
    fetched = False

    async def run_fetch() -> None:
        try:
            await fetch()
        except Exception as exc:  # noqa: BLE001
            logger.error("cached_fetch_failed", store=name, error=str(exc))
            queue.put_nowait((_FETCH_FAILED, exc))
        else:
            queue.put_nowait((_FETCH_DONE, None))

    def start_fetch() -> None:
        nonlocal fetch_task
        if fetch_task is None:
            logger.debug("cached_fetch_started", store=name)
            fetch_task = asyncio.ensure_future(run_fetch())

    unsubscribe = live.subscribe(lambda snapshot: queue.put_nowait((_SNAPSHOT, snapshot)))
    if refresh:
        start_fetch()

    last: Any = _UNSET
    try:
        while True:
            kind, payload = await queue.get()
            if kind == _FETCH_FAILED:
                yield Result.failure(payload)
                continue

            if kind == _FETCH_DONE:
                fetched = True
            snapshot = payload if kind == _SNAPSHOT else live.current()
            reading = read(snapshot, fetched)
            if reading.stale:
                start_fetch()
            if reading.value is None or reading.value == last:
                continue
            last = reading.value
            yield Result.success(reading.value)
    finally:
        unsubscribe()
