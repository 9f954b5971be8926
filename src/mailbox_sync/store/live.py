"""Live queries over the local store.

A live query re-runs its query once after every committed transaction that
touches one of its tables and hands the snapshot to every subscriber. New
subscribers get the current snapshot immediately.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable
from typing import TYPE_CHECKING, Generic, TypeVar

import structlog

if TYPE_CHECKING:
    from mailbox_sync.store.local import LocalStore

logger = structlog.get_logger()

T = TypeVar("T")


class LiveQuery(Generic[T]):
    """A multicast, restartable view of a query result."""

    def __init__(
        self,
        store: LocalStore,
        query: Callable[[], T],
        tables: frozenset[str],
        name: str,
    ) -> None:
        self._store = store
        self._query = query
        self._tables = tables
        self.name = name
        self._subscribers: list[Callable[[T], None]] = []
        self.on_idle: Callable[[], None] | None = None

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def current(self) -> T:
        return self._query()

    def subscribe(self, callback: Callable[[T], None]) -> Callable[[], None]:
        """Register ``callback`` and deliver the current snapshot to it.

        Returns:
            A function that removes the subscription.
        """

        snapshot = self._query()
        if not self._subscribers:
            self._store.add_listener(self._on_change)
        self._subscribers.append(callback)
        callback(snapshot)

        def unsubscribe() -> None:
            self._unsubscribe(callback)

        return unsubscribe

    async def stream(self) -> AsyncIterator[T]:
        """Yield the current snapshot, then one snapshot per relevant commit."""

        queue: asyncio.Queue[T] = asyncio.Queue()
        unsubscribe = self.subscribe(queue.put_nowait)
        try:
            while True:
                yield await queue.get()
        finally:
            unsubscribe()

    def _unsubscribe(self, callback: Callable[[T], None]) -> None:
        if callback in self._subscribers:
            self._subscribers.remove(callback)
        if not self._subscribers:
            self._store.remove_listener(self._on_change)
            logger.debug("live_query_detached", query=self.name)
            if self.on_idle is not None:
                self.on_idle()

    def _on_change(self, tables: frozenset[str]) -> None:
        if self._tables.isdisjoint(tables) or not self._subscribers:
            return
        snapshot = self._query()
        for callback in list(self._subscribers):
            callback(snapshot)
