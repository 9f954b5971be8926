"""SQLite-backed local store for the mailbox.

The store is the single source of truth for mail rows and the sync cursor.
Every write runs in one transaction and listeners are notified after commit,
so observers never see half of a batch.
"""

from __future__ import annotations

import sqlite3
from collections.abc import Callable, Hashable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import structlog
from pydantic import ValidationError

from mailbox_sync.models import MailPart
from mailbox_sync.store.live import LiveQuery
from mailbox_sync.sync.actions import Added, Delete, Deleted, MailsAction, ToggleReadStatus

logger = structlog.get_logger()


_SCHEMA_VERSION = 1

TABLE_MAILS = "mails"
TABLE_SYNC_STATE = "sync_state"

KEY_LAST_HISTORY_ID = "last_history_id"

ChangeListener = Callable[[frozenset[str]], None]


@dataclass(frozen=True)
class MailRecord:
    """A persisted mail row.

    ``raw`` holds the serialized MIME tree; None means only the summary is known.
    """

    id: str
    title: str
    sender: str
    sender_email: str
    summary: str
    received_at_ms: int
    is_read: bool
    raw: bytes | None = None

    @property
    def is_hydrated(self) -> bool:
        return self.raw is not None

    def with_read_status(self, is_read: bool) -> MailRecord:
        return replace(self, is_read=is_read)


class LocalStore:
    """Repository for mail records, the sync cursor and live queries over them."""

    def __init__(self, db_path: Path) -> None:
        """Create a store.

        Args:
            db_path: Path to the SQLite database file.
        """

        self._db_path = Path(db_path)
        self._listeners: list[ChangeListener] = []
        self._watches: dict[Hashable, LiveQuery[Any]] = {}

    def initialize(self) -> None:
        """Create or upgrade the store schema."""

        self._db_path.parent.mkdir(parents=True, exist_ok=True)

        with self._connect() as conn:
            conn.execute("PRAGMA journal_mode=WAL;")

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS _schema_meta (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                );
                """
            )

            current_version = self._get_schema_version(conn)
            if current_version is None:
                self._create_schema_v1(conn)
                self._set_schema_version(conn, _SCHEMA_VERSION)
                conn.commit()
                logger.info("local_store_schema_created", version=_SCHEMA_VERSION)
                return

            if current_version != _SCHEMA_VERSION:
                raise RuntimeError(
                    f"Unsupported schema version {current_version}; expected {_SCHEMA_VERSION}"
                )

    # Listeners and live queries

    def add_listener(self, listener: ChangeListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: ChangeListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def watch_all(self) -> LiveQuery[list[MailRecord]]:
        """Live view of every mail, newest first.

        The sync cursor table is watched too, so readers that interpret an empty
        mailbox through the cursor are re-evaluated when it changes.
        """

        return self._watch(
            "all",
            lambda: LiveQuery(self, self.scan_all, frozenset({TABLE_MAILS, TABLE_SYNC_STATE}), "all"),
        )

    def watch_unread(self) -> LiveQuery[list[MailRecord]]:
        return self._watch(
            "unread",
            lambda: LiveQuery(
                self, self.scan_unread, frozenset({TABLE_MAILS, TABLE_SYNC_STATE}), "unread"
            ),
        )

    def watch_mail(self, mail_id: str) -> LiveQuery[MailRecord | None]:
        return self._watch(
            ("mail", mail_id),
            lambda: LiveQuery(
                self, lambda: self.get_by_id(mail_id), frozenset({TABLE_MAILS}), f"mail:{mail_id}"
            ),
        )

    # Reads

    def get_by_id(self, mail_id: str) -> MailRecord | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM mails WHERE id = ?;", (mail_id,)).fetchone()
        return None if row is None else self._row_to_record(row)

    def scan_all(self) -> list[MailRecord]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM mails ORDER BY received_at_ms DESC, id;"
            ).fetchall()
        return [self._row_to_record(row) for row in rows]

    def scan_unread(self) -> list[MailRecord]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM mails WHERE is_read = 0 ORDER BY received_at_ms DESC, id;"
            ).fetchall()
        return [self._row_to_record(row) for row in rows]

    def get_cursor(self) -> int | None:
        """Return the last fully applied history id, or None if never synced."""

        with self._connect() as conn:
            row = conn.execute(
                "SELECT value FROM sync_state WHERE key = ?;", (KEY_LAST_HISTORY_ID,)
            ).fetchone()
        if row is None:
            return None
        try:
            return int(row[0])
        except (TypeError, ValueError):
            logger.warning("sync_cursor_unparseable", value=row[0])
            return None

    # Writes

    def set_cursor(self, history_id: int) -> None:
        with self._transaction() as (conn, touched):
            conn.execute(
                """
                INSERT INTO sync_state (key, value, updated_at_iso)
                VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    value=excluded.value,
                    updated_at_iso=excluded.updated_at_iso
                """,
                (KEY_LAST_HISTORY_ID, str(int(history_id)), _now_iso()),
            )
            touched.add(TABLE_SYNC_STATE)
        logger.info("sync_cursor_updated", history_id=history_id)

    def upsert(self, record: MailRecord) -> None:
        self.upsert_many([record])

    def upsert_many(self, records: list[MailRecord]) -> None:
        """Upsert a batch of mail records in a single transaction."""

        if not records:
            return

        with self._transaction() as (conn, touched):
            self._upsert_rows(conn, records)
            touched.add(TABLE_MAILS)

    def delete(self, mail_id: str) -> None:
        self.delete_many([mail_id])

    def delete_many(self, mail_ids: list[str]) -> None:
        if not mail_ids:
            return

        with self._transaction() as (conn, touched):
            conn.executemany("DELETE FROM mails WHERE id = ?;", [(i,) for i in mail_ids])
            touched.add(TABLE_MAILS)

    def set_read_status(self, mail_id: str, is_read: bool) -> bool:
        """Set the read flag of one mail.

        Returns:
            False if the mail is not stored locally.
        """

        with self._transaction() as (conn, touched):
            cursor = conn.execute(
                "UPDATE mails SET is_read = ?, updated_at_iso = ? WHERE id = ?;",
                (1 if is_read else 0, _now_iso(), mail_id),
            )
            if cursor.rowcount:
                touched.add(TABLE_MAILS)
            return cursor.rowcount > 0

    def apply(self, actions: list[MailsAction[MailRecord]]) -> list[str]:
        """Apply a batch of actions atomically.

        Returns:
            Ids targeted by a ToggleReadStatus or Delete action that are not
            stored locally.
        """

        missing: list[str] = []
        if not actions:
            return missing

        with self._transaction() as (conn, touched):
            for action in actions:
                match action:
                    case Added(mails=records):
                        self._upsert_rows(conn, records)
                    case Deleted(ids=ids):
                        conn.executemany("DELETE FROM mails WHERE id = ?;", [(i,) for i in ids])
                    case ToggleReadStatus(mail_id=mail_id):
                        cursor = conn.execute(
                            """
                            UPDATE mails
                            SET is_read = 1 - is_read, updated_at_iso = ?
                            WHERE id = ?;
                            """,
                            (_now_iso(), mail_id),
                        )
                        if cursor.rowcount == 0:
                            missing.append(mail_id)
                    case Delete(mail_id=mail_id):
                        cursor = conn.execute("DELETE FROM mails WHERE id = ?;", (mail_id,))
                        if cursor.rowcount == 0:
                            missing.append(mail_id)
                    case _:
                        raise TypeError(f"Unknown mail action: {action!r}")
            touched.add(TABLE_MAILS)

        logger.debug("local_actions_applied", action_count=len(actions), missing=missing)
        return missing

    def _watch(self, key: Hashable, factory: Callable[[], LiveQuery[Any]]) -> LiveQuery[Any]:
        watch = self._watches.get(key)
        if watch is None:
            watch = factory()
            watch.on_idle = lambda: self._release(key, watch)
            self._watches[key] = watch
        return watch

    def _release(self, key: Hashable, watch: LiveQuery[Any]) -> None:
        if self._watches.get(key) is watch:
            del self._watches[key]

    def _notify(self, tables: frozenset[str]) -> None:
        for listener in list(self._listeners):
            try:
                listener(tables)
            except Exception as exc:  # noqa: BLE001
                logger.exception("local_store_listener_failed", error=str(exc))

    @contextmanager
    def _transaction(self) -> Iterator[tuple[sqlite3.Connection, set[str]]]:
        touched: set[str] = set()
        with self._connect() as conn:
            try:
                yield conn, touched
                conn.commit()
            except BaseException:
                conn.rollback()
                raise
        if touched:
            self._notify(frozenset(touched))

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self._db_path)
        try:
            conn.row_factory = sqlite3.Row
            yield conn
        finally:
            conn.close()

    def _upsert_rows(self, conn: sqlite3.Connection, records: list[MailRecord]) -> None:
        now_iso = _now_iso()
        records = [self._keep_downloaded_attachments(conn, r) for r in records]
        conn.executemany(
            """
            INSERT INTO mails (
                id,
                title,
                sender,
                sender_email,
                summary,
                received_at_ms,
                is_read,
                raw,
                updated_at_iso
            )
            VALUES (
                :id,
                :title,
                :sender,
                :sender_email,
                :summary,
                :received_at_ms,
                :is_read,
                :raw,
                :updated_at_iso
            )
            ON CONFLICT(id) DO UPDATE SET
                title=excluded.title,
                sender=excluded.sender,
                sender_email=excluded.sender_email,
                summary=excluded.summary,
                received_at_ms=excluded.received_at_ms,
                is_read=excluded.is_read,
                raw=COALESCE(excluded.raw, mails.raw),
                updated_at_iso=excluded.updated_at_iso
            """,
            [
                {
                    "id": r.id,
                    "title": r.title,
                    "sender": r.sender,
                    "sender_email": r.sender_email,
                    "summary": r.summary,
                    "received_at_ms": r.received_at_ms,
                    "is_read": 1 if r.is_read else 0,
                    "raw": r.raw,
                    "updated_at_iso": now_iso,
                }
                for r in records
            ],
        )

    def _keep_downloaded_attachments(self, conn: sqlite3.Connection, record: MailRecord) -> MailRecord:
        """Carry attachment data already stored for a mail over to its re-fetched body."""

        if record.raw is None:
            return record
        row = conn.execute("SELECT raw FROM mails WHERE id = ?;", (record.id,)).fetchone()
        if row is None or row["raw"] is None:
            return record

        try:
            incoming = MailPart.model_validate_json(record.raw)
            if not incoming.attachment_ids():
                return record
            stored = MailPart.model_validate_json(bytes(row["raw"]))
        except ValidationError as exc:
            logger.warning("stored_attachments_unreadable", mail_id=record.id, error=str(exc))
            return record

        bodies = stored.downloaded_attachments()
        if not bodies:
            return record
        merged = incoming.with_attachment_bodies(bodies)
        return replace(record, raw=merged.model_dump_json().encode("utf-8"))

    def _get_schema_version(self, conn: sqlite3.Connection) -> int | None:
        row = conn.execute(
            "SELECT value FROM _schema_meta WHERE key = 'schema_version'"
        ).fetchone()
        if row is None:
            return None
        return int(row[0])

    def _set_schema_version(self, conn: sqlite3.Connection, version: int) -> None:
        conn.execute(
            "INSERT OR REPLACE INTO _schema_meta(key, value) VALUES('schema_version', ?) ",
            (str(version),),
        )

    def _create_schema_v1(self, conn: sqlite3.Connection) -> None:
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS mails (
                id TEXT PRIMARY KEY,
                title TEXT NOT NULL,
                sender TEXT NOT NULL,
                sender_email TEXT NOT NULL,
                summary TEXT NOT NULL,
                received_at_ms INTEGER NOT NULL,
                is_read INTEGER NOT NULL,
                raw BLOB,
                updated_at_iso TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_mails_received_at
                ON mails(received_at_ms);

            CREATE INDEX IF NOT EXISTS idx_mails_is_read
                ON mails(is_read);

            CREATE TABLE IF NOT EXISTS sync_state (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                updated_at_iso TEXT NOT NULL
            );
            """
        )

    def _row_to_record(self, row: sqlite3.Row) -> MailRecord:
        raw = row["raw"]
        return MailRecord(
            id=row["id"],
            title=row["title"],
            sender=row["sender"],
            sender_email=row["sender_email"],
            summary=row["summary"],
            received_at_ms=int(row["received_at_ms"]),
            is_read=bool(row["is_read"]),
            raw=bytes(raw) if raw is not None else None,
        )


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()
