"""Local persistence for the mailbox.

This package contains the SQLite store holding mail records and the sync
cursor, and the live queries that re-emit after every committed change.
"""

from .live import LiveQuery
from .local import LocalStore, MailRecord

__all__ = ["LiveQuery", "LocalStore", "MailRecord"]
