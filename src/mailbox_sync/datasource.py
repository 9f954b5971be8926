"""Data source facade over the cache stores.

Every public method returns a ``Result`` or an async iterator of ``Result``s;
exceptions raised underneath are converted to failed results. Streams are
cold: each call starts a new subscription that first delivers the cached state
and then follows live updates.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, AsyncIterator, Awaitable, Callable
from typing import TypeVar

import structlog

from mailbox_sync.config import Settings
from mailbox_sync.models import Mail, MailSummary, Result
from mailbox_sync.stores import FullMailsStore, MailsStore, MailStore
from mailbox_sync.sync.actions import Delete, ToggleReadStatus

logger = structlog.get_logger()

T = TypeVar("T")
U = TypeVar("U")


class MailRemoteLocalDataSource:
    """Entry point for callers: listing, unread mails, single mails and writes."""

    def __init__(
        self,
        mails_store: MailsStore,
        mail_store: MailStore,
        full_mails_store: FullMailsStore,
        settings: Settings | None = None,
    ) -> None:
        from mailbox_sync.config import get_settings

        self.mails_store = mails_store
        self.mail_store = mail_store
        self.full_mails_store = full_mails_store
        self.settings = settings or get_settings()

    def get_emails(self, page: int = 0) -> AsyncIterator[Result[list[MailSummary]]]:
        """Stream one page of the mailbox listing, newest first.

        Args:
            page: Zero-based page index; pages hold ``settings.listing_page_size`` summaries.
        """

        size = self.settings.listing_page_size
        start = max(page, 0) * size
        return _guarded(
            self.mails_store.stream(),
            lambda summaries: summaries[start : start + size],
            "get_emails",
        )

    def get_full_unread_mails(self) -> AsyncIterator[Result[list[Mail]]]:
        return _guarded(self.full_mails_store.stream(refresh=True), None, "get_full_unread_mails")

    def get_mail(self, mail_id: str) -> AsyncIterator[Result[Mail]]:
        return _guarded(self.mail_store.stream(mail_id), None, "get_mail")

    async def refresh_mails(self) -> Result[list[MailSummary]]:
        """Refresh the mailbox from Gmail and return the updated listing."""

        try:
            return Result.success(await self.mails_store.fresh())
        except Exception as exc:  # noqa: BLE001
            logger.error("refresh_mails_failed", error=str(exc))
            return Result.failure(exc)

    async def toggle_read_status(self, mail_id: str) -> Result[bool]:
        return await self._write("toggle_read_status", lambda: self.mails_store.write([ToggleReadStatus(mail_id)]))

    async def update_read_status(self, mail_id: str, is_read: bool) -> Result[bool]:
        return await self._write(
            "update_read_status", lambda: self.mail_store.update_read_status(mail_id, is_read)
        )

    async def delete(self, mail_id: str) -> Result[bool]:
        return await self._write("delete", lambda: self.mails_store.write([Delete(mail_id)]))

    async def _write(self, operation: str, write: Callable[[], Awaitable[Result[bool]]]) -> Result[bool]:
        try:
            return await write()
        except Exception as exc:  # noqa: BLE001
            logger.error("mail_write_failed", operation=operation, error=str(exc))
            return Result.failure(exc)


async def _guarded(
    source: AsyncGenerator[Result[T], None],
    transform: Callable[[T], U] | None,
    operation: str,
) -> AsyncIterator[Result[U]]:
    """Map successful values and turn an exception from ``source`` into a final failure."""

    last: Result[U] | None = None
    try:
        async for result in source:
            if result.is_success and transform is not None:
                mapped: Result[U] = Result.success(transform(result.value))
                # A change outside the page leaves the page itself unchanged.
                if last is not None and last.is_success and mapped.value == last.value:
                    continue
            else:
                mapped = result
            last = mapped
            yield mapped
    except Exception as exc:  # noqa: BLE001
        logger.error("mail_stream_failed", operation=operation, error=str(exc))
        yield Result.failure(exc)
    finally:
        await source.aclose()
