"""Aggregate view of the unread mails whose bodies are stored locally."""

from __future__ import annotations

from collections.abc import AsyncIterator

import structlog

from mailbox_sync.models import Mail, Result
from mailbox_sync.store.local import LocalStore, MailRecord
from mailbox_sync.stores.base import Reading, stream_cached
from mailbox_sync.stores.mails import MailsStore
from mailbox_sync.sync.actions import Added
from mailbox_sync.sync.converters import network_actions_to_local, record_to_mail
from mailbox_sync.sync.refresh import RefreshEngine
from mailbox_sync.utils import RequestCoalescer

logger = structlog.get_logger()

UNREAD_KEY = "unread"


class FullMailsStore:
    def __init__(
        self,
        store: LocalStore,
        engine: RefreshEngine,
        mails_store: MailsStore,
        coalescer: RequestCoalescer | None = None,
    ) -> None:
        self.store = store
        self.engine = engine
        self.mails_store = mails_store
        self._coalescer = coalescer or RequestCoalescer()

    def stream(self, refresh: bool = True) -> AsyncIterator[Result[list[Mail]]]:
        """Stream the hydrated unread mails, newest first.

        Args:
            refresh: Hydrate unread mails from Gmail once up front.
        """

        return stream_cached(
            self.store.watch_unread(),
            self._read,
            self.fetch,
            refresh=refresh,
            name="full_mails",
        )

    async def fetch(self) -> None:
        """Hydrate unread inbox mails; a never-synced mailbox is refreshed first."""

        await self._coalescer.run(("full_mails", UNREAD_KEY), self._hydrate)

    def _read(self, records: list[MailRecord], fetched: bool) -> Reading[list[Mail]]:
        if not records:
            if self.store.get_cursor() is None:
                return Reading(None, stale=True)
            if self.mails_store.refreshing or self._coalescer.is_running(("full_mails", UNREAD_KEY)):
                return Reading(None)
            return Reading([])

        mails = [mail for mail in (record_to_mail(record) for record in records) if mail is not None]
        stale = len(mails) < len(records)
        if fetched:
            # Mails that could not be hydrated are left out.
            return Reading(mails, stale=stale)
        return Reading(mails or None, stale=stale)

    async def _hydrate(self) -> None:
        if self.store.get_cursor() is None:
            await self.mails_store.refresh()

        messages = await self.engine.hydrate_unread()
        self.store.apply(network_actions_to_local([Added(messages)]))
        logger.info("unread_mails_hydrated", count=len(messages))
