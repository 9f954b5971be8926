"""Command-line interface for Mailbox Sync.

This module provides the main entry point for the CLI application.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from collections.abc import AsyncIterator
from contextlib import aclosing
from pathlib import Path
from typing import TypeVar

import structlog

from mailbox_sync import __version__
from mailbox_sync.config import get_settings
from mailbox_sync.container import Container, build_container
from mailbox_sync.models import Result

logger = structlog.get_logger()

T = TypeVar("T")

# Streams stay open for live updates; the CLI only waits for the first reading.
_FIRST_RESULT_TIMEOUT = 120.0


def _add_db_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--db",
        type=Path,
        default=None,
        help="Path to the local SQLite store (default: settings store_db_path)",
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="mailbox-sync", description="Gmail mailbox sync and offline cache")
    subparsers = parser.add_subparsers(dest="command", required=True)

    sync_parser = subparsers.add_parser("sync", help="Bring the local store up to date with Gmail")
    _add_db_argument(sync_parser)

    list_parser = subparsers.add_parser("list", help="List cached mail summaries, newest first")
    list_parser.add_argument("--page", type=int, default=0, help="Zero-based page index")
    _add_db_argument(list_parser)

    unread_parser = subparsers.add_parser("unread", help="Show unread mails with their content")
    _add_db_argument(unread_parser)

    show_parser = subparsers.add_parser("show", help="Show one mail")
    show_parser.add_argument("mail_id", help="Gmail message id")
    _add_db_argument(show_parser)

    toggle_parser = subparsers.add_parser("toggle-read", help="Flip the read flag of a mail")
    toggle_parser.add_argument("mail_id", help="Gmail message id")
    _add_db_argument(toggle_parser)

    mark_parser = subparsers.add_parser("mark-read", help="Mark a mail as read")
    mark_parser.add_argument("mail_id", help="Gmail message id")
    mark_parser.add_argument("--unread", action="store_true", help="Mark as unread instead")
    _add_db_argument(mark_parser)

    delete_parser = subparsers.add_parser("delete", help="Move a mail to the trash")
    delete_parser.add_argument("mail_id", help="Gmail message id")
    _add_db_argument(delete_parser)

    return parser


async def _first(stream: AsyncIterator[Result[T]]) -> Result[T]:
    async with aclosing(stream) as results:
        try:
            return await asyncio.wait_for(anext(results), timeout=_FIRST_RESULT_TIMEOUT)
        except asyncio.TimeoutError:
            return Result.failure(TimeoutError("No data received from the local store or Gmail"))


def _report_failure(result: Result[object]) -> int:
    print(f"Error: {result.error}", file=sys.stderr)
    return 1


async def _cmd_sync(container: Container, args: argparse.Namespace) -> int:
    result = await container.data_source.refresh_mails()
    if not result.is_success:
        return _report_failure(result)

    summaries = result.value or []
    unread = sum(1 for s in summaries if not s.is_read)
    print(f"Synced {len(summaries)} mails ({unread} unread), cursor {container.store.get_cursor()}")
    return 0


async def _cmd_list(container: Container, args: argparse.Namespace) -> int:
    result = await _first(container.data_source.get_emails(args.page))
    if not result.is_success:
        return _report_failure(result)

    for s in result.value or []:
        status = "READ" if s.is_read else "UNREAD"
        print(f"{s.id}\t{status}\t{s.received_at.isoformat()}\t{s.sender_email}\t{s.title}")
    return 0


async def _cmd_unread(container: Container, args: argparse.Namespace) -> int:
    result = await _first(container.data_source.get_full_unread_mails())
    if not result.is_success:
        return _report_failure(result)

    mails = result.value or []
    for mail in mails:
        print(f"== {mail.summary.title} ({mail.summary.sender} <{mail.summary.sender_email}>)")
        print(mail.part.text_content())
        print()
    print(f"{len(mails)} unread mails")
    return 0


async def _cmd_show(container: Container, args: argparse.Namespace) -> int:
    result = await _first(container.data_source.get_mail(args.mail_id))
    if not result.is_success:
        return _report_failure(result)

    mail = result.get_or_raise()
    print(f"From: {mail.summary.sender} <{mail.summary.sender_email}>")
    print(f"Subject: {mail.summary.title}")
    print(f"Date: {mail.summary.received_at.isoformat()}")
    print()
    print(mail.part.text_content())
    return 0


async def _cmd_toggle_read(container: Container, args: argparse.Namespace) -> int:
    result = await container.data_source.toggle_read_status(args.mail_id)
    if not result.is_success:
        return _report_failure(result)
    print(f"Toggled read status of {args.mail_id}")
    return 0


async def _cmd_mark_read(container: Container, args: argparse.Namespace) -> int:
    is_read = not args.unread
    result = await container.data_source.update_read_status(args.mail_id, is_read)
    if not result.is_success:
        return _report_failure(result)
    print(f"Marked {args.mail_id} as {'read' if is_read else 'unread'}")
    return 0


async def _cmd_delete(container: Container, args: argparse.Namespace) -> int:
    result = await container.data_source.delete(args.mail_id)
    if not result.is_success:
        return _report_failure(result)
    print(f"Moved {args.mail_id} to the trash")
    return 0


_COMMANDS = {
    "sync": _cmd_sync,
    "list": _cmd_list,
    "unread": _cmd_unread,
    "show": _cmd_show,
    "toggle-read": _cmd_toggle_read,
    "mark-read": _cmd_mark_read,
    "delete": _cmd_delete,
}


async def _run(args: argparse.Namespace) -> int:
    container = build_container(db_path=args.db)
    try:
        await container.client.authenticate()
    except Exception as exc:  # noqa: BLE001
        logger.error("gmail_authentication_unavailable", error=str(exc))
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    return await _COMMANDS[args.command](container, args)


def main(args: list[str] | None = None) -> int:
    """Main entry point for the Mailbox Sync CLI.

    Args:
        args: Command-line arguments. If None, uses sys.argv.

    Returns:
        Exit code (0 for success, non-zero for failure).
    """
    if args is None:
        args = sys.argv[1:]

    settings = get_settings()

    # Configure logging
    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, settings.log_level.upper(), logging.INFO)
        ),
    )

    logger.info("mailbox_sync_started", version=__version__, debug=settings.debug)

    parser = _build_parser()
    parsed = parser.parse_args(args)

    if parsed.command not in _COMMANDS:
        logger.error("unknown_command", command=parsed.command)
        return 2

    return asyncio.run(_run(parsed))


if __name__ == "__main__":
    sys.exit(main())
