"""Unit tests for the SQLite local store and its live queries."""

from __future__ import annotations

import sqlite3

import pytest

from mailbox_sync.models import MailPart, MailPartBody
from mailbox_sync.store import LocalStore, MailRecord
from mailbox_sync.store.local import TABLE_MAILS, TABLE_SYNC_STATE
from mailbox_sync.sync.actions import Added, Delete, Deleted, ToggleReadStatus


def record(mail_id: str, received_at_ms: int = 1_700_000_000_000, is_read: bool = False, raw: bytes | None = None):
    return MailRecord(
        id=mail_id,
        title=f"Subject {mail_id}",
        sender="Alice",
        sender_email="alice@example.com",
        summary="snippet",
        received_at_ms=received_at_ms,
        is_read=is_read,
        raw=raw,
    )


def test_initialize_is_idempotent(tmp_path) -> None:
    store = LocalStore(tmp_path / "nested" / "mailbox.sqlite3")
    store.initialize()
    store.upsert(record("m1"))

    store.initialize()

    assert store.get_by_id("m1") == record("m1")


def test_initialize_rejects_unknown_schema_version(tmp_path) -> None:
    db_path = tmp_path / "mailbox.sqlite3"
    LocalStore(db_path).initialize()
    with sqlite3.connect(db_path) as conn:
        conn.execute("UPDATE _schema_meta SET value = '99' WHERE key = 'schema_version'")

    with pytest.raises(RuntimeError):
        LocalStore(db_path).initialize()


def test_scan_orders_newest_first(store) -> None:
    store.upsert_many([record("old", 1_000), record("new", 3_000), record("mid", 2_000, is_read=True)])

    assert [r.id for r in store.scan_all()] == ["new", "mid", "old"]
    assert [r.id for r in store.scan_unread()] == ["new", "old"]


def test_upsert_keeps_hydrated_body_when_summary_is_reapplied(store) -> None:
    store.upsert(record("m1", raw=b"{}"))

    store.upsert(record("m1", is_read=True))

    stored = store.get_by_id("m1")
    assert stored.is_read is True
    assert stored.raw == b"{}"


def attachment_tree(data: str | None) -> bytes:
    part = MailPart(
        mime_type="multipart/mixed",
        parts=[
            MailPart(mime_type="text/plain", body=MailPartBody(size=2, data="Hi")),
            MailPart(
                mime_type="image/png",
                file_name="a.png",
                body=MailPartBody(attachment_id="att-1", size=4, data=data),
            ),
        ],
    )
    return part.model_dump_json().encode("utf-8")


def test_refetched_body_keeps_downloaded_attachment_data(store) -> None:
    store.upsert(record("m1", raw=attachment_tree("UE5HMQ")))

    store.apply([Added([record("m1", is_read=True, raw=attachment_tree(None))])])

    stored = store.get_by_id("m1")
    assert stored.is_read is True
    assert MailPart.model_validate_json(stored.raw).parts[1].body.data == "UE5HMQ"


def test_reapplying_the_same_batch_is_idempotent(store) -> None:
    batch = [Added([record("a"), record("b", 2_000)]), Deleted(["c"])]
    store.upsert(record("c"))

    store.apply(batch)
    first = store.scan_all()
    store.apply(batch)

    assert store.scan_all() == first
    assert [r.id for r in first] == ["a", "b"]


def test_apply_toggle_and_delete(store) -> None:
    store.upsert_many([record("a"), record("b")])

    missing = store.apply(
        [ToggleReadStatus("a"), Delete("b"), ToggleReadStatus("ghost"), Delete("gone"), Deleted(["also-gone"])]
    )

    assert missing == ["ghost", "gone"]
    assert store.get_by_id("a").is_read is True
    assert store.get_by_id("b") is None


def test_apply_rolls_back_the_whole_batch_on_error(store) -> None:
    store.upsert(record("a"))

    with pytest.raises(TypeError):
        store.apply([Delete("a"), object()])

    assert store.get_by_id("a") is not None


def test_set_read_status_reports_missing_rows(store) -> None:
    store.upsert(record("a"))

    assert store.set_read_status("a", True) is True
    assert store.set_read_status("ghost", True) is False
    assert store.get_by_id("a").is_read is True


def test_cursor_round_trip(store) -> None:
    assert store.get_cursor() is None

    store.set_cursor(105)

    assert store.get_cursor() == 105


def test_listeners_are_notified_once_per_transaction_with_touched_tables(store) -> None:
    seen: list[frozenset[str]] = []
    store.add_listener(seen.append)

    store.apply([Added([record("a"), record("b")]), ToggleReadStatus("a")])
    store.set_cursor(1)
    store.set_read_status("ghost", True)

    assert seen == [frozenset({TABLE_MAILS}), frozenset({TABLE_SYNC_STATE})]

    store.remove_listener(seen.append)
    store.delete("a")
    assert len(seen) == 2


def test_live_query_multicasts_and_detaches(store) -> None:
    live = store.watch_unread()
    first: list[list[str]] = []
    second: list[list[str]] = []

    unsubscribe_first = live.subscribe(lambda rows: first.append([r.id for r in rows]))
    store.upsert(record("a"))
    unsubscribe_second = live.subscribe(lambda rows: second.append([r.id for r in rows]))
    store.upsert(record("b", 1_800_000_000_000))

    assert first == [[], ["a"], ["b", "a"]]
    assert second == [["a"], ["b", "a"]]
    assert store.watch_unread() is live

    unsubscribe_first()
    unsubscribe_second()
    assert live.subscriber_count == 0
    store.upsert(record("c"))
    assert first == [[], ["a"], ["b", "a"]]


def test_watch_mail_ignores_cursor_changes(store) -> None:
    store.upsert(record("a"))
    seen: list[MailRecord | None] = []
    unsubscribe = store.watch_mail("a").subscribe(seen.append)

    store.set_cursor(10)
    store.set_read_status("a", True)
    unsubscribe()

    assert len(seen) == 2
    assert seen[-1].is_read is True


def test_idle_watches_are_released(store) -> None:
    live = store.watch_mail("m0")
    unsubscribe = live.subscribe(lambda _: None)
    assert store.watch_mail("m0") is live

    unsubscribe()
    for i in range(1, 50):
        store.watch_mail(f"m{i}").subscribe(lambda _: None)()

    assert store.watch_mail("m0") is not live
    assert len(store._watches) == 1
