"""Mutation actions exchanged between the network, the local store and callers.

Each action is generic over the representation of a mail it carries
(``NetworkMail`` from Gmail, ``MailRecord`` for the local store,
``MailSummary``/``Mail`` for callers). Converters in
``mailbox_sync.sync.converters`` map batches between representations.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Generic, TypeVar, Union

T = TypeVar("T")


@dataclass(frozen=True)
class Added(Generic[T]):
    """Mails to insert or replace."""

    mails: list[T] = field(default_factory=list)


@dataclass(frozen=True)
class Deleted:
    """Mails removed remotely."""

    ids: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class ToggleReadStatus:
    """Caller intent: flip the read flag of one mail."""

    mail_id: str


@dataclass(frozen=True)
class Delete:
    """Caller intent: delete one mail."""

    mail_id: str


MailsAction = Union[Added[T], Deleted, ToggleReadStatus, Delete]


@dataclass(frozen=True)
class Add(Generic[T]):
    """A single mail to insert or replace."""

    mail: T


@dataclass(frozen=True)
class UpdateRead:
    """Caller intent: set the read flag of one mail."""

    is_read: bool


MailAction = Union[Add[T], UpdateRead]
