"""Item cache: one fully hydrated mail, attachments included."""

from __future__ import annotations

from collections.abc import AsyncIterator

import structlog

from mailbox_sync.config import Settings
from mailbox_sync.exceptions import MailboxSyncError, MailNotFoundError, MailParseError
from mailbox_sync.gmail.client import GmailClient
from mailbox_sync.gmail.parsing import LABEL_UNREAD, message_to_mail
from mailbox_sync.models import Mail, Result
from mailbox_sync.store.local import LocalStore, MailRecord
from mailbox_sync.stores.base import Reading, stream_cached
from mailbox_sync.sync.actions import Add, MailAction, UpdateRead
from mailbox_sync.sync.converters import mail_to_record, record_to_mail
from mailbox_sync.utils import RequestCoalescer, gather_bounded

logger = structlog.get_logger()


class MailStore:
    """Read-through/write-through cache of single mails."""

    def __init__(
        self,
        client: GmailClient,
        store: LocalStore,
        coalescer: RequestCoalescer | None = None,
        settings: Settings | None = None,
    ) -> None:
        from mailbox_sync.config import get_settings

        self.client = client
        self.store = store
        self.settings = settings or get_settings()
        self._coalescer = coalescer or RequestCoalescer()

    def stream(self, mail_id: str, refresh: bool = False) -> AsyncIterator[Result[Mail]]:
        """Stream one mail; nothing is emitted until its body is stored locally."""

        return stream_cached(
            self.store.watch_mail(mail_id),
            self._read,
            lambda: self.fetch(mail_id),
            refresh=refresh,
            name="mail",
        )

    async def fetch(self, mail_id: str) -> Mail:
        """Fetch a mail with its attachments and store it.

        Concurrent fetches of the same id share one request.

        Raises:
            MailParseError: If Gmail returns a message that cannot be mapped.
            MailboxSyncError: If the message itself cannot be fetched.
        """

        return await self._coalescer.run(("mail", mail_id), lambda: self._fetch_and_store(mail_id))

    async def update_read_status(self, mail_id: str, is_read: bool) -> Result[bool]:
        """Set the read flag locally, then on Gmail.

        A remote failure is returned as a failed result; the local change stays.
        """

        current = self.store.get_by_id(mail_id)
        if current is None:
            return Result.failure(MailNotFoundError(f"Mail not found in local store: {mail_id}"))
        if current.is_read == is_read:
            return Result.success(True)

        self._write(mail_id, UpdateRead(is_read))
        try:
            if is_read:
                await self.client.modify_labels(mail_id, remove_label_ids=[LABEL_UNREAD])
            else:
                await self.client.modify_labels(mail_id, add_label_ids=[LABEL_UNREAD])
        except MailboxSyncError as exc:
            logger.error("remote_read_status_failed", mail_id=mail_id, is_read=is_read, error=str(exc))
            return Result.failure(exc)
        return Result.success(True)

    def _read(self, record: MailRecord | None, fetched: bool) -> Reading[Mail]:
        if record is None or not record.is_hydrated:
            return Reading(None, stale=True)
        mail = record_to_mail(record)
        if mail is None:
            return Reading(None, stale=True)
        # Listing syncs store bodies without attachment data; only fetch downloads it.
        if mail.part.attachment_ids() and not fetched:
            return Reading(None, stale=True)
        return Reading(mail)

    def _write(self, mail_id: str, action: MailAction[Mail]) -> None:
        match action:
            case Add(mail=mail):
                self.store.upsert(mail_to_record(mail))
            case UpdateRead(is_read=is_read):
                self.store.set_read_status(mail_id, is_read)
            case _:
                raise TypeError(f"Unknown mail action: {action!r}")

    async def _fetch_and_store(self, mail_id: str) -> Mail:
        message = await self.client.get_message(mail_id)
        mail = message_to_mail(message)
        if mail is None:
            logger.error("mail_unparseable", mail_id=mail_id)
            raise MailParseError(f"Mail {mail_id} could not be parsed")

        attachment_ids = list(dict.fromkeys(mail.part.attachment_ids()))
        if attachment_ids:
            payloads = await self._fetch_attachments(mail_id, attachment_ids)
            mail = mail.model_copy(update={"part": mail.part.merge_attachments(payloads)})

        self._write(mail_id, Add(mail))
        logger.info("mail_hydrated", mail_id=mail_id, attachments=len(attachment_ids))
        return mail

    async def _fetch_attachments(self, mail_id: str, attachment_ids: list[str]) -> dict[str, str]:
        async def fetch_one(attachment_id: str) -> tuple[str, str | None]:
            try:
                body = await self.client.get_attachment(mail_id, attachment_id)
            except MailboxSyncError as exc:
                logger.error(
                    "attachment_fetch_failed",
                    mail_id=mail_id,
                    attachment_id=attachment_id,
                    error=str(exc),
                )
                return attachment_id, None
            return attachment_id, body.data

        results = await gather_bounded(attachment_ids, fetch_one, self.settings.attachment_concurrency)
        return {attachment_id: data for attachment_id, data in results if data is not None}
