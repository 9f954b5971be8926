"""Mailbox Sync - offline cache and synchronization engine for a Gmail mailbox.

This package keeps a local SQLite copy of a Gmail mailbox up to date through
history deltas, and serves live listing, unread and single-mail views with
optimistic read/unread and delete writes.
"""

__version__ = "0.1.0"
__author__ = "Trickl"

from mailbox_sync.config import Settings, get_settings

__all__ = ["Settings", "get_settings", "__version__", "__author__"]
