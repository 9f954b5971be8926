"""Mailbox refresh: full listing or incremental history replay.

The engine decides how to bring the local store up to date and returns the
resulting mutation batch; applying it is left to the caller so a batch lands
in the store as a single transaction.

Rules:
- Without a sync cursor, list the inbox and fetch every message in full.
- With a cursor, replay the history pages since it. If the history call
  fails (for example because the cursor expired), fall back to a full refresh.
- A message that fails to fetch is logged and left out of the batch.
- The cursor only ever moves forward.
"""

from __future__ import annotations

from collections.abc import Iterable

import structlog

from mailbox_sync.config import Settings
from mailbox_sync.exceptions import MailboxSyncError
from mailbox_sync.gmail.client import GmailClient
from mailbox_sync.gmail.models import NetworkMail
from mailbox_sync.gmail.parsing import LABEL_INBOX, LABEL_SPAM, LABEL_UNREAD, parse_int
from mailbox_sync.store.local import LocalStore
from mailbox_sync.sync.actions import Added, Deleted, MailsAction

logger = structlog.get_logger()


def _unique(ids: Iterable[str]) -> list[str]:
    return list(dict.fromkeys(ids))


class RefreshEngine:
    """Computes the mutation batch that brings the local store up to date."""

    def __init__(self, client: GmailClient, store: LocalStore, settings: Settings | None = None) -> None:
        from mailbox_sync.config import get_settings

        self.client = client
        self.store = store
        self.settings = settings or get_settings()

    async def refresh(self) -> list[MailsAction[NetworkMail]]:
        """Fetch remote changes since the last sync.

        Returns:
            The batch to apply to the local store.

        Raises:
            MailboxSyncError: If a full refresh cannot list the mailbox.
        """

        cursor = self.store.get_cursor()
        logger.info("refresh_started", cursor=cursor)
        if cursor is None:
            return await self._full_refresh()
        return await self._partial_fetch(cursor)

    async def hydrate_unread(self) -> list[NetworkMail]:
        """Fetch full bodies of unread inbox messages that are not hydrated locally.

        Messages whose body is already stored are skipped. The sync cursor is
        left untouched.
        """

        refs = await self.client.list_message_refs(
            label_ids=[LABEL_UNREAD, LABEL_INBOX],
            max_results=self.settings.full_refresh_max_results,
        )

        to_fetch: list[str] = []
        for ref in refs:
            local = self.store.get_by_id(ref.id)
            if local is None or not local.is_hydrated:
                to_fetch.append(ref.id)

        messages = await self._fetch_messages(_unique(to_fetch))
        messages = [m for m in messages if not m.has_label(LABEL_SPAM)]
        logger.info(
            "unread_hydration_completed",
            unread=len(refs),
            fetched=len(messages),
            skipped=len(refs) - len(to_fetch),
        )
        return messages

    async def _full_refresh(self) -> list[MailsAction[NetworkMail]]:
        logger.info("full_refresh_started", max_results=self.settings.full_refresh_max_results)

        refs = await self.client.list_message_refs(
            label_ids=[LABEL_INBOX],
            max_results=self.settings.full_refresh_max_results,
        )
        messages = await self._fetch_messages(_unique(ref.id for ref in refs))

        history_ids = [h for h in (parse_int(m.history_id) for m in messages) if h is not None and h > 0]
        if history_ids:
            self._advance_cursor(max(history_ids))
        else:
            logger.warning(
                "full_refresh_missing_history_id",
                message_count=len(messages),
                ref_count=len(refs),
            )

        logger.info("full_refresh_completed", fetched=len(messages), listed=len(refs))
        return [Added(messages)]

    async def _partial_fetch(self, cursor: int) -> list[MailsAction[NetworkMail]]:
        logger.info("partial_refresh_started", cursor=cursor)

        touched: list[str] = []
        to_delete: list[str] = []
        history_ids: list[int] = []
        page_token: str | None = None
        pages = 0

        while True:
            try:
                page = await self.client.get_history(cursor, page_token=page_token)
            except MailboxSyncError as exc:
                logger.warning("history_unavailable_falling_back", cursor=cursor, error=str(exc))
                return await self._full_refresh()
            pages += 1

            for record in page.history or []:
                for added in record.messages_added:
                    # Changes to mails we already hold arrive through the label lists.
                    if self.store.get_by_id(added.message.id) is not None:
                        continue
                    touched.append(added.message.id)

                for deleted in record.messages_deleted:
                    to_delete.append(deleted.message.id)

                for labelled in record.labels_added:
                    if LABEL_SPAM in labelled.label_ids:
                        to_delete.append(labelled.message.id)
                    else:
                        touched.append(labelled.message.id)

                for unlabelled in record.labels_removed:
                    if LABEL_INBOX in unlabelled.label_ids:
                        to_delete.append(unlabelled.message.id)
                    else:
                        touched.append(unlabelled.message.id)

                history_id = parse_int(record.id)
                if history_id is not None:
                    history_ids.append(history_id)

            page_token = page.next_page_token
            if not page_token:
                terminal_id = parse_int(page.history_id)
                if terminal_id is not None:
                    history_ids.append(terminal_id)
                break

        if history_ids:
            self._advance_cursor(max(history_ids))

        fetched = await self._fetch_messages(_unique(touched))
        # A mail can be moved to spam between reading history and fetching it.
        added = [m for m in fetched if not m.has_label(LABEL_SPAM)]
        deleted_ids = _unique(to_delete)

        logger.info(
            "partial_refresh_completed",
            pages=pages,
            touched=len(set(touched)),
            added=len(added),
            deleted=len(deleted_ids),
        )
        return [Added(added), Deleted(deleted_ids)]

    async def _fetch_messages(self, message_ids: list[str]) -> list[NetworkMail]:
        messages: list[NetworkMail] = []
        for message_id in message_ids:
            try:
                messages.append(await self.client.get_message(message_id))
            except MailboxSyncError as exc:
                logger.error("message_fetch_failed", message_id=message_id, error=str(exc))
        return messages

    def _advance_cursor(self, candidate: int) -> None:
        current = self.store.get_cursor()
        if current is not None and candidate < current:
            logger.warning("sync_cursor_not_advanced", current=current, candidate=candidate)
            return
        self.store.set_cursor(candidate)
