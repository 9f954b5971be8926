"""Unit tests for the command-line interface."""

from __future__ import annotations

import pytest

from conftest import make_message
from mailbox_sync import cli
from mailbox_sync.container import build_container


@pytest.fixture
def run_cli(monkeypatch, mock_settings, fake_client):
    def factory(db_path=None):
        return build_container(mock_settings, client=fake_client, db_path=db_path)

    monkeypatch.setattr(cli, "build_container", factory)
    return cli.main


def test_sync_then_list(run_cli, fake_client, capsys) -> None:
    fake_client.add(make_message("a", subject="First", history_id="5"))
    fake_client.add(make_message("b", subject="Second", labels=("INBOX",), history_id="6"))

    assert run_cli(["sync"]) == 0
    assert "Synced 2 mails (1 unread), cursor 6" in capsys.readouterr().out

    assert run_cli(["list"]) == 0
    out = capsys.readouterr().out
    assert "a\tUNREAD" in out
    assert "b\tREAD" in out


def test_show_prints_text_content(run_cli, fake_client, capsys) -> None:
    fake_client.add(make_message("a", subject="Greetings", body="Hello from Gmail"))

    assert run_cli(["show", "a"]) == 0

    out = capsys.readouterr().out
    assert "Subject: Greetings" in out
    assert "Hello from Gmail" in out


def test_write_commands(run_cli, fake_client, capsys) -> None:
    fake_client.add(make_message("a"))
    run_cli(["sync"])

    assert run_cli(["mark-read", "a"]) == 0
    assert run_cli(["mark-read", "a", "--unread"]) == 0
    assert run_cli(["toggle-read", "a"]) == 0
    assert run_cli(["delete", "a"]) == 0
    assert ("trash_message", "a") in fake_client.calls


def test_error_result_exits_with_one(run_cli, fake_client, capsys) -> None:
    assert run_cli(["toggle-read", "ghost"]) == 1
    assert "Mail not found" in capsys.readouterr().err


def test_db_argument_selects_store(run_cli, fake_client, tmp_path) -> None:
    fake_client.add(make_message("a"))
    db_path = tmp_path / "other.sqlite3"

    assert run_cli(["sync", "--db", str(db_path)]) == 0
    assert db_path.exists()


def test_missing_credentials_exit_with_one(monkeypatch, mock_settings, capsys) -> None:
    monkeypatch.setattr(cli, "build_container", lambda db_path=None: build_container(mock_settings, db_path=db_path))

    assert cli.main(["list"]) == 1
    assert "credentials" in capsys.readouterr().err
