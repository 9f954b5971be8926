"""Unit tests for the data source facade."""

from __future__ import annotations

import asyncio
from contextlib import aclosing

import pytest

from conftest import collect, first_result, make_message
from mailbox_sync.exceptions import GmailAPIError, MailNotFoundError
from mailbox_sync.gmail.models import NetworkMail
from mailbox_sync.gmail.parsing import message_to_summary
from mailbox_sync.sync.converters import summary_to_record


@pytest.fixture
def data_source(container):
    return container.data_source


def seed(container, count: int) -> None:
    container.store.set_cursor(100)
    for i in range(count):
        message = make_message(f"m{i}", internal_date=str(1_700_000_000_000 - i * 1000))
        container.store.upsert(summary_to_record(message_to_summary(NetworkMail.model_validate(message))))


@pytest.mark.asyncio
async def test_get_emails_pages_the_listing(container, data_source, mock_settings) -> None:
    seed(container, 3)
    data_source.settings = mock_settings.model_copy(update={"listing_page_size": 2})

    first_page = await first_result(data_source.get_emails(0))
    second_page = await first_result(data_source.get_emails(1))
    past_end = await first_result(data_source.get_emails(5))

    assert [s.id for s in first_page.value] == ["m0", "m1"]
    assert [s.id for s in second_page.value] == ["m2"]
    assert past_end.value == []


@pytest.mark.asyncio
async def test_get_emails_skips_updates_outside_the_page(container, data_source, mock_settings) -> None:
    seed(container, 3)
    data_source.settings = mock_settings.model_copy(update={"listing_page_size": 1})

    async with aclosing(data_source.get_emails(0)) as results:
        first = await asyncio.wait_for(anext(results), timeout=2)
        container.store.set_read_status("m2", True)
        container.store.set_read_status("m0", True)
        second = await asyncio.wait_for(anext(results), timeout=2)

    assert first.value[0].is_read is False
    assert second.value[0].is_read is True


@pytest.mark.asyncio
async def test_streams_report_fetch_failures_as_results(data_source, fake_client) -> None:
    fake_client.offline = True

    listing = await first_result(data_source.get_emails())
    mail = await first_result(data_source.get_mail("m1"))
    unread = await first_result(data_source.get_full_unread_mails())

    for result in (listing, mail, unread):
        assert not result.is_success
        assert isinstance(result.error, GmailAPIError)


@pytest.mark.asyncio
async def test_refresh_mails_returns_listing(data_source, fake_client) -> None:
    fake_client.add(make_message("a"))

    result = await data_source.refresh_mails()

    assert [s.id for s in result.value] == ["a"]


@pytest.mark.asyncio
async def test_refresh_mails_failure_is_a_result(data_source, fake_client) -> None:
    fake_client.offline = True

    result = await data_source.refresh_mails()

    assert isinstance(result.error, GmailAPIError)


@pytest.mark.asyncio
async def test_writes_return_results(container, data_source, fake_client) -> None:
    seed(container, 2)

    assert (await data_source.toggle_read_status("m0")).is_success
    assert (await data_source.update_read_status("m1", True)).is_success
    assert (await data_source.delete("m0")).is_success
    assert isinstance((await data_source.toggle_read_status("ghost")).error, MailNotFoundError)
    assert isinstance((await data_source.delete("ghost")).error, MailNotFoundError)
    assert fake_client.count("trash_message") == 1

    assert container.store.get_by_id("m0") is None
    assert container.store.get_by_id("m1").is_read is True


@pytest.mark.asyncio
async def test_unexpected_errors_do_not_escape(container, data_source) -> None:
    def broken(*args, **kwargs):
        raise RuntimeError("disk on fire")

    container.store.apply = broken
    container.store.scan_all = broken

    write = await data_source.delete("m0")
    listing = await collect(data_source.get_emails(), 1)

    assert isinstance(write.error, RuntimeError)
    assert isinstance(listing[0].error, RuntimeError)
