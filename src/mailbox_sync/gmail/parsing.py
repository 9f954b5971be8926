"""Helpers for parsing Gmail message payloads into domain models."""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any

from mailbox_sync.gmail.models import MessagePart, NetworkMail
from mailbox_sync.models import Mail, MailPart, MailPartBody, MailSummary, MimeType, decode_base64url

LABEL_INBOX = "INBOX"
LABEL_UNREAD = "UNREAD"
LABEL_SPAM = "SPAM"

_SENDER_PATTERN = re.compile(r"^(.*?)\s*<([^>]+)>$")


def split_sender(value: str | None) -> tuple[str, str] | None:
    """Split a ``Name <address>`` header value into its display name and address.

    Returns:
        ``(name, address)``, or None when the value does not have that shape.
    """

    if not value:
        return None
    match = _SENDER_PATTERN.fullmatch(value)
    if match is None:
        return None
    return match.group(1), match.group(2)


def parse_int(value: Any) -> int | None:
    """Parse a numeric id or timestamp; anything unparseable is treated as absent."""

    if value is None or isinstance(value, bool):
        return None
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return None


def _parse_internal_date(value: str | None) -> datetime | None:
    millis = parse_int(value)
    if millis is None:
        return None
    try:
        return datetime.fromtimestamp(millis / 1000.0, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


def message_to_summary(message: NetworkMail) -> MailSummary | None:
    """Convert a Gmail message to a MailSummary.

    Messages without a parseable sender, a subject or a numeric internal date
    yield None rather than a partially populated summary.
    """

    sender = split_sender(message.header("From"))
    if sender is None:
        return None

    title = message.header("Subject")
    if title is None:
        return None

    received_at = _parse_internal_date(message.internal_date)
    if received_at is None:
        return None

    name, address = sender
    return MailSummary(
        id=message.id,
        title=title,
        sender=name,
        sender_email=address,
        summary=message.snippet,
        received_at=received_at,
        is_read=not message.has_label(LABEL_UNREAD),
    )


def message_part_to_model(part: MessagePart) -> MailPart:
    mime_type = MimeType.parse(part.mime_type)

    body: MailPartBody | None = None
    if part.body is not None:
        data = part.body.data
        if data is not None and mime_type.is_text:
            try:
                data = decode_base64url(data).decode("utf-8", errors="replace")
            except ValueError:
                data = None
        body = MailPartBody(
            attachment_id=part.body.attachment_id,
            size=part.body.size,
            data=data,
        )

    return MailPart(
        mime_type=mime_type,
        body=body,
        file_name=part.file_name or None,
        parts=[message_part_to_model(child) for child in part.parts],
    )


def message_to_mail(message: NetworkMail) -> Mail | None:
    """Convert a Gmail message fetched with format=full to a Mail."""

    summary = message_to_summary(message)
    if summary is None or message.payload is None:
        return None
    return Mail(summary=summary, part=message_part_to_model(message.payload))
