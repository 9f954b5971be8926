"""Pure mappings between network, local and output representations."""

from __future__ import annotations

from datetime import datetime, timezone

import structlog
from pydantic import ValidationError

from mailbox_sync.gmail.models import NetworkMail
from mailbox_sync.gmail.parsing import message_to_mail, message_to_summary
from mailbox_sync.models import Mail, MailPart, MailSummary
from mailbox_sync.store.local import MailRecord
from mailbox_sync.sync.actions import Added, Delete, Deleted, MailsAction, ToggleReadStatus

logger = structlog.get_logger()


def summary_to_record(summary: MailSummary, raw: bytes | None = None) -> MailRecord:
    return MailRecord(
        id=summary.id,
        title=summary.title,
        sender=summary.sender,
        sender_email=summary.sender_email,
        summary=summary.summary,
        received_at_ms=round(summary.received_at.timestamp() * 1000),
        is_read=summary.is_read,
        raw=raw,
    )


def mail_to_record(mail: Mail) -> MailRecord:
    return summary_to_record(mail.summary, raw=mail.part.model_dump_json().encode("utf-8"))


def record_to_summary(record: MailRecord) -> MailSummary:
    return MailSummary(
        id=record.id,
        title=record.title,
        sender=record.sender,
        sender_email=record.sender_email,
        summary=record.summary,
        received_at=datetime.fromtimestamp(record.received_at_ms / 1000.0, tz=timezone.utc),
        is_read=record.is_read,
    )


def record_to_mail(record: MailRecord) -> Mail | None:
    """Rebuild a Mail from a hydrated record; summary-only records give None."""

    if record.raw is None:
        return None
    try:
        part = MailPart.model_validate_json(record.raw)
    except ValidationError as exc:
        logger.error("local_mail_body_unreadable", mail_id=record.id, error=str(exc))
        return None
    return Mail(summary=record_to_summary(record), part=part)


def network_to_record(message: NetworkMail) -> MailRecord | None:
    """Map a fetched message to a local record, hydrated when it has a payload."""

    mail = message_to_mail(message)
    if mail is not None:
        return mail_to_record(mail)

    summary = message_to_summary(message)
    return summary_to_record(summary) if summary is not None else None


def network_actions_to_local(actions: list[MailsAction[NetworkMail]]) -> list[MailsAction[MailRecord]]:
    local: list[MailsAction[MailRecord]] = []
    for action in actions:
        match action:
            case Added(mails=messages):
                records = (network_to_record(message) for message in messages)
                local.append(Added([record for record in records if record is not None]))
            case Deleted(ids=ids):
                local.append(Deleted(list(ids)))
            case ToggleReadStatus(mail_id=mail_id):
                local.append(ToggleReadStatus(mail_id))
            case Delete(mail_id=mail_id):
                local.append(Delete(mail_id))
            case _:
                raise TypeError(f"Unknown mail action: {action!r}")
    return local


def output_actions_to_local(actions: list[MailsAction[MailSummary]]) -> list[MailsAction[MailRecord]]:
    local: list[MailsAction[MailRecord]] = []
    for action in actions:
        match action:
            case Added(mails=summaries):
                local.append(Added([summary_to_record(summary) for summary in summaries]))
            case Deleted(ids=ids):
                local.append(Deleted(list(ids)))
            case ToggleReadStatus(mail_id=mail_id):
                local.append(ToggleReadStatus(mail_id))
            case Delete(mail_id=mail_id):
                local.append(Delete(mail_id))
            case _:
                raise TypeError(f"Unknown mail action: {action!r}")
    return local
