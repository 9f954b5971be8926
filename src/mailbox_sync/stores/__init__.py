"""Read-through/write-through caches serving callers from the local store."""

from mailbox_sync.stores.base import Reading, stream_cached
from mailbox_sync.stores.full_mails import FullMailsStore
from mailbox_sync.stores.mail import MailStore
from mailbox_sync.stores.mails import MAILBOX_KEY, MailsStore

__all__ = [
    "MAILBOX_KEY",
    "FullMailsStore",
    "MailStore",
    "MailsStore",
    "Reading",
    "stream_cached",
]
