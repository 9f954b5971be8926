"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import asyncio
import base64
from collections.abc import AsyncIterator, Callable
from contextlib import aclosing
from typing import Any

import pytest

from mailbox_sync.exceptions import GmailAPIError
from mailbox_sync.gmail.models import HistoryList, MessagePartBody, MessageRef, NetworkMail


def encode(text: str | bytes) -> str:
    """Encode a payload the way Gmail does (unpadded base64url)."""
    data = text.encode("utf-8") if isinstance(text, str) else text
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def make_message(
    message_id: str,
    subject: str | None = "Hello",
    sender: str = "Alice <alice@example.com>",
    labels: tuple[str, ...] = ("INBOX", "UNREAD"),
    history_id: str | None = "100",
    internal_date: str | None = "1700000000000",
    body: str = "Hi there",
    attachments: dict[str, str] | None = None,
) -> dict[str, Any]:
    """Build a Gmail ``messages.get`` payload (format=full).

    Args:
        attachments: File names keyed by attachment id; each becomes an image
            part whose data must be downloaded separately.
    """
    headers = [{"name": "From", "value": sender}]
    if subject is not None:
        headers.append({"name": "Subject", "value": subject})

    text_part = {"partId": "0", "mimeType": "text/plain", "body": {"size": len(body), "data": encode(body)}}
    if attachments:
        payload = {
            "mimeType": "multipart/mixed",
            "headers": headers,
            "parts": [text_part]
            + [
                {
                    "partId": str(i + 1),
                    "mimeType": "image/png",
                    "filename": file_name,
                    "body": {"attachmentId": attachment_id, "size": 3},
                }
                for i, (attachment_id, file_name) in enumerate(attachments.items())
            ],
        }
    else:
        payload = {**text_part, "headers": headers}

    message: dict[str, Any] = {
        "id": message_id,
        "threadId": f"t-{message_id}",
        "labelIds": list(labels),
        "snippet": f"Snippet of {message_id}",
        "payload": payload,
    }
    if history_id is not None:
        message["historyId"] = history_id
    if internal_date is not None:
        message["internalDate"] = internal_date
    return message


class FakeGmailClient:
    """In-memory stand-in for GmailClient.

    Messages are listed in insertion order (newest first, as Gmail does).
    """

    def __init__(self) -> None:
        self.messages: dict[str, dict[str, Any]] = {}
        self.attachments: dict[str, str] = {}
        self.history_pages: dict[str | None, dict[str, Any]] = {}
        self.history_error: Exception | None = None
        self.failing_message_ids: set[str] = set()
        self.failing_attachment_ids: set[str] = set()
        self.offline = False
        self.calls: list[tuple[Any, ...]] = []
        self.get_message_delay = 0.0

    def add(self, message: dict[str, Any]) -> None:
        self.messages[message["id"]] = message

    def count(self, name: str) -> int:
        return sum(1 for call in self.calls if call[0] == name)

    def _check_online(self) -> None:
        if self.offline:
            raise GmailAPIError("network unreachable")

    async def authenticate(self) -> None:
        self.calls.append(("authenticate",))

    async def list_message_refs(
        self, label_ids: list[str] | None = None, max_results: int | None = None
    ) -> list[MessageRef]:
        self.calls.append(("list_message_refs", tuple(label_ids or ()), max_results))
        self._check_online()
        refs = [
            MessageRef(id=m["id"], thread_id=m.get("threadId"))
            for m in self.messages.values()
            if all(label in m["labelIds"] for label in label_ids or [])
        ]
        return refs if max_results is None else refs[:max_results]

    async def get_message(self, message_id: str) -> NetworkMail:
        self.calls.append(("get_message", message_id))
        if self.get_message_delay:
            await asyncio.sleep(self.get_message_delay)
        self._check_online()
        if message_id in self.failing_message_ids or message_id not in self.messages:
            raise GmailAPIError(f"cannot fetch {message_id}")
        return NetworkMail.model_validate(self.messages[message_id])

    async def get_history(self, start_history_id: int, page_token: str | None = None) -> HistoryList:
        self.calls.append(("get_history", start_history_id, page_token))
        self._check_online()
        if self.history_error is not None:
            raise self.history_error
        return HistoryList.model_validate(self.history_pages.get(page_token, {}))

    async def modify_labels(
        self,
        message_id: str,
        add_label_ids: list[str] | None = None,
        remove_label_ids: list[str] | None = None,
    ) -> MessageRef:
        self.calls.append(("modify_labels", message_id, tuple(add_label_ids or ()), tuple(remove_label_ids or ())))
        self._check_online()
        message = self.messages.get(message_id)
        if message is not None:
            labels = [label for label in message["labelIds"] if label not in (remove_label_ids or [])]
            labels.extend(label for label in add_label_ids or [] if label not in labels)
            message["labelIds"] = labels
        return MessageRef(id=message_id)

    async def trash_message(self, message_id: str) -> MessageRef:
        self.calls.append(("trash_message", message_id))
        self._check_online()
        self.messages.pop(message_id, None)
        return MessageRef(id=message_id)

    async def get_attachment(self, message_id: str, attachment_id: str) -> MessagePartBody:
        self.calls.append(("get_attachment", message_id, attachment_id))
        self._check_online()
        if attachment_id in self.failing_attachment_ids:
            raise GmailAPIError(f"cannot fetch attachment {attachment_id}")
        data = self.attachments[attachment_id]
        return MessagePartBody(attachment_id=attachment_id, size=len(data), data=data)


async def first_result(stream: AsyncIterator[Any], timeout: float = 2.0) -> Any:
    """Return the first item of a stream and close it."""
    async with aclosing(stream) as items:
        return await asyncio.wait_for(anext(items), timeout=timeout)


async def collect(stream: AsyncIterator[Any], count: int, timeout: float = 2.0) -> list[Any]:
    """Return the first ``count`` items of a stream and close it."""
    items: list[Any] = []
    async with aclosing(stream) as source:
        for _ in range(count):
            items.append(await asyncio.wait_for(anext(source), timeout=timeout))
    return items


@pytest.fixture
def mock_settings(tmp_path):
    """Provide settings pointing at a temporary store."""
    from mailbox_sync.config import Settings

    return Settings(
        gmail_credentials_path=tmp_path / "credentials.json",
        gmail_token_path=tmp_path / "token.json",
        store_db_path=tmp_path / "mailbox.sqlite3",
        log_level="DEBUG",
        debug=True,
    )


@pytest.fixture
def store(mock_settings):
    """Provide an initialized local store."""
    from mailbox_sync.store import LocalStore

    local = LocalStore(mock_settings.store_db_path)
    local.initialize()
    return local


@pytest.fixture
def fake_client() -> FakeGmailClient:
    return FakeGmailClient()


@pytest.fixture
def message_factory() -> Callable[..., dict[str, Any]]:
    return make_message


@pytest.fixture
def container(mock_settings, fake_client):
    """Provide fully wired components backed by the fake client."""
    from mailbox_sync.container import build_container

    return build_container(mock_settings, client=fake_client)
