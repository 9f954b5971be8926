"""Listing cache for the mailbox.

Serves the mail summaries from the local store, refreshes them through the
refresh engine, and turns caller intents (toggle read, delete) into an
optimistic local write followed by the matching Gmail call.

A remote failure after an optimistic write is reported to the caller; the
local change is kept.
"""

from __future__ import annotations

from collections.abc import AsyncIterator

import structlog

from mailbox_sync.exceptions import MailboxSyncError, MailNotFoundError
from mailbox_sync.gmail.client import GmailClient
from mailbox_sync.gmail.parsing import LABEL_UNREAD
from mailbox_sync.models import MailSummary, Result
from mailbox_sync.store.local import LocalStore, MailRecord
from mailbox_sync.stores.base import Reading, stream_cached
from mailbox_sync.sync.actions import Added, Delete, Deleted, MailsAction, ToggleReadStatus
from mailbox_sync.sync.converters import (
    network_actions_to_local,
    output_actions_to_local,
    record_to_summary,
)
from mailbox_sync.sync.refresh import RefreshEngine
from mailbox_sync.utils import RequestCoalescer

logger = structlog.get_logger()

MAILBOX_KEY = "mailbox"


class MailsStore:
    """Read-through/write-through cache of the mailbox listing."""

    def __init__(
        self,
        client: GmailClient,
        store: LocalStore,
        engine: RefreshEngine,
        coalescer: RequestCoalescer | None = None,
    ) -> None:
        self.client = client
        self.store = store
        self.engine = engine
        self._coalescer = coalescer or RequestCoalescer()

    def stream(self, refresh: bool = False) -> AsyncIterator[Result[list[MailSummary]]]:
        """Stream the listing, newest first.

        Args:
            refresh: Refresh from Gmail once, even if the local listing is usable.
        """

        return stream_cached(
            self.store.watch_all(),
            self._read,
            self.refresh,
            refresh=refresh,
            name="mails",
        )

    async def refresh(self) -> None:
        """Refresh the mailbox and apply the result.

        Concurrent calls share a single refresh.
        """

        await self._coalescer.run(("mails", MAILBOX_KEY), self._refresh_and_apply)

    async def fresh(self) -> list[MailSummary]:
        """Refresh, then return the current listing."""

        await self.refresh()
        return [record_to_summary(record) for record in self.store.scan_all()]

    async def write(self, actions: list[MailsAction[MailSummary]]) -> Result[bool]:
        """Apply caller intents locally, then post them to Gmail.

        Returns:
            Success once Gmail accepted every intent, or the first failure.
        """

        missing = self.store.apply(output_actions_to_local(actions))
        if missing:
            logger.warning("local_write_target_missing", mail_ids=missing)
            return Result.failure(MailNotFoundError(f"Mail not found in local store: {', '.join(missing)}"))

        try:
            await self._post(actions)
        except MailboxSyncError as exc:
            logger.error("remote_write_failed", error=str(exc))
            return Result.failure(exc)
        return Result.success(True)

    def _read(self, records: list[MailRecord], fetched: bool) -> Reading[list[MailSummary]]:
        if records:
            return Reading([record_to_summary(record) for record in records])
        # An empty mailbox is only trusted once a sync has been recorded.
        if self.store.get_cursor() is None:
            return Reading(None, stale=True)
        # The cursor is written before the refreshed batch lands.
        if self.refreshing:
            return Reading(None)
        return Reading([])

    @property
    def refreshing(self) -> bool:
        return self._coalescer.is_running(("mails", MAILBOX_KEY))

    async def _refresh_and_apply(self) -> None:
        batch = await self.engine.refresh()
        self.store.apply(network_actions_to_local(batch))
        logger.info("mailbox_refresh_applied", actions=len(batch))

    async def _post(self, actions: list[MailsAction[MailSummary]]) -> None:
        for action in actions:
            match action:
                case ToggleReadStatus(mail_id=mail_id):
                    # The local row already carries the toggled state.
                    current = self.store.get_by_id(mail_id)
                    if current is None:
                        raise MailNotFoundError(f"Mail not found in local store: {mail_id}")
                    if current.is_read:
                        await self.client.modify_labels(mail_id, remove_label_ids=[LABEL_UNREAD])
                    else:
                        await self.client.modify_labels(mail_id, add_label_ids=[LABEL_UNREAD])
                case Delete(mail_id=mail_id):
                    await self.client.trash_message(mail_id)
                case Added() | Deleted():
                    logger.debug("remote_post_skipped", action=type(action).__name__)
                case _:
                    raise TypeError(f"Unknown mail action: {action!r}")
