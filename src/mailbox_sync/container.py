"""Wiring of the sync engine components.

Components are built explicitly, once, and share one request coalescer so the
listing, single-mail and unread views never run the same fetch twice at a time.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import structlog

from mailbox_sync.config import Settings
from mailbox_sync.datasource import MailRemoteLocalDataSource
from mailbox_sync.gmail.client import GmailClient
from mailbox_sync.store.local import LocalStore
from mailbox_sync.stores import FullMailsStore, MailsStore, MailStore
from mailbox_sync.sync.refresh import RefreshEngine
from mailbox_sync.utils import RequestCoalescer

logger = structlog.get_logger()


@dataclass
class Container:
    settings: Settings
    client: GmailClient
    store: LocalStore
    engine: RefreshEngine
    mails_store: MailsStore
    mail_store: MailStore
    full_mails_store: FullMailsStore
    data_source: MailRemoteLocalDataSource


def build_container(
    settings: Settings | None = None,
    client: GmailClient | None = None,
    db_path: Path | None = None,
) -> Container:
    """Build and wire every component.

    The local store schema is created here. The Gmail client is not
    authenticated; callers do that before the first remote call.

    Args:
        settings: Application settings. If None, uses default settings.
        client: Gmail client to use instead of one built from settings.
        db_path: Local store path overriding ``settings.store_db_path``.
    """
    from mailbox_sync.config import get_settings

    settings = settings or get_settings()
    client = client or GmailClient(settings)

    store = LocalStore(db_path or settings.store_db_path)
    store.initialize()

    coalescer = RequestCoalescer()
    engine = RefreshEngine(client, store, settings)
    mails_store = MailsStore(client, store, engine, coalescer)
    mail_store = MailStore(client, store, coalescer, settings)
    full_mails_store = FullMailsStore(store, engine, mails_store, coalescer)
    data_source = MailRemoteLocalDataSource(mails_store, mail_store, full_mails_store, settings)

    logger.info("container_built", db_path=str(db_path or settings.store_db_path))
    return Container(
        settings=settings,
        client=client,
        store=store,
        engine=engine,
        mails_store=mails_store,
        mail_store=mail_store,
        full_mails_store=full_mails_store,
        data_source=data_source,
    )


def build_data_source(
    settings: Settings | None = None,
    client: GmailClient | None = None,
    db_path: Path | None = None,
) -> MailRemoteLocalDataSource:
    return build_container(settings, client, db_path).data_source
