"""Gmail API client implementation.

This module provides the remote side of the sync engine: message listing,
full message retrieval, history deltas, label changes, trashing and
attachment downloads.

Notes:
    The Google API client is synchronous. Calls are wrapped with
    `asyncio.to_thread` so the rest of the codebase can remain async-friendly.
    A 401 response triggers one re-authentication shared by every request that
    hit it, followed by a single retry.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any, TypeVar

import structlog
from googleapiclient.errors import HttpError
from pydantic import BaseModel, ValidationError

from mailbox_sync.config import Settings
from mailbox_sync.exceptions import AuthenticationError, ConfigurationError, GmailAPIError
from mailbox_sync.gmail.auth import Authenticator, InstalledAppAuthenticator, build_gmail_service
from mailbox_sync.gmail.models import (
    HistoryList,
    LabelModifyRequestBody,
    MessagePartBody,
    MessageRef,
    MessagesRefs,
    NetworkMail,
)
from mailbox_sync.utils import RequestCoalescer

logger = structlog.get_logger()

M = TypeVar("M", bound=BaseModel)

_USER_ID = "me"
_MAX_PAGE_SIZE = 500
_UNAUTHORIZED = 401


def _http_status(exc: HttpError) -> int | None:
    resp = getattr(exc, "resp", None)
    status = getattr(resp, "status", None)
    try:
        return int(status) if status is not None else None
    except (TypeError, ValueError):
        return None


class GmailClient:
    """Gmail API client for mailbox synchronization.

    This client handles authentication, token refresh and every remote call
    the sync engine makes.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        authenticator: Authenticator | None = None,
        service_factory: Callable[[Any], Any] | None = None,
    ) -> None:
        """Initialize Gmail client.

        Args:
            settings: Application settings. If None, uses default settings.
            authenticator: Credentials provider. If None, uses the installed-app
                OAuth flow configured in settings.
            service_factory: Builds an API service from credentials. If None,
                uses the Gmail discovery client.
        """
        from mailbox_sync.config import get_settings

        self.settings = settings or get_settings()
        self._authenticator = authenticator or InstalledAppAuthenticator(
            credentials_path=self.settings.gmail_credentials_path,
            token_path=self.settings.gmail_token_path,
            scopes=[self.settings.gmail_scope],
        )
        self._service_factory = service_factory or build_gmail_service
        self._service: Any | None = None
        self._credentials_generation = 0
        self._reauth = RequestCoalescer()
        logger.info("gmail_client_initialized")

    async def authenticate(self) -> None:
        """Authenticate with Gmail API using OAuth2.

        Raises:
            ConfigurationError: If the credentials file is missing.
            AuthenticationError: If authentication fails.
        """

        if self._service is not None:
            return

        logger.info("gmail_authentication_started", scope=self.settings.gmail_scope)
        await self._connect(force=False)
        logger.info("gmail_authentication_completed")

    async def list_message_refs(
        self,
        label_ids: list[str] | None = None,
        max_results: int | None = None,
    ) -> list[MessageRef]:
        """List message references, following pagination.

        Args:
            label_ids: Only return messages carrying all of these labels.
            max_results: Maximum number of references to return (default: all).

        Returns:
            Message references in the order Gmail returns them (newest first).

        Raises:
            GmailAPIError: If the API request fails.
        """

        logger.info(
            "listing_messages",
            label_ids=label_ids,
            max_results="all" if max_results is None else max_results,
        )

        refs: list[MessageRef] = []
        page_token: str | None = None
        while max_results is None or len(refs) < max_results:
            per_page = _MAX_PAGE_SIZE if max_results is None else min(_MAX_PAGE_SIZE, max_results - len(refs))

            response = await self._execute(
                "list_messages",
                lambda service, per_page=per_page, page_token=page_token: service.users()
                .messages()
                .list(userId=_USER_ID, maxResults=per_page, labelIds=label_ids, pageToken=page_token),
            )
            page = self._parse(MessagesRefs, response, "list_messages")
            refs.extend(page.messages)
            page_token = page.next_page_token
            if page_token is None:
                break

        return refs if max_results is None else refs[:max_results]

    async def get_message(self, message_id: str) -> NetworkMail:
        """Get a specific message by ID with format=full.

        Args:
            message_id: The Gmail message ID.

        Returns:
            The full message including its MIME payload.

        Raises:
            GmailAPIError: If the API request fails.
        """

        logger.debug("getting_message", message_id=message_id)
        response = await self._execute(
            "get_message",
            lambda service: service.users()
            .messages()
            .get(userId=_USER_ID, id=message_id, format="full"),
            message_id=message_id,
        )
        return self._parse(NetworkMail, response, "get_message")

    async def get_history(self, start_history_id: int, page_token: str | None = None) -> HistoryList:
        """Get one page of mailbox history newer than ``start_history_id``.

        Raises:
            GmailAPIError: If the API request fails, including when the start
                history id is too old for the server to serve.
        """

        logger.debug("getting_history", start_history_id=start_history_id, page_token=page_token)
        response = await self._execute(
            "get_history",
            lambda service: service.users()
            .history()
            .list(userId=_USER_ID, startHistoryId=str(start_history_id), pageToken=page_token),
            start_history_id=start_history_id,
        )
        return self._parse(HistoryList, response, "get_history")

    async def modify_labels(
        self,
        message_id: str,
        add_label_ids: list[str] | None = None,
        remove_label_ids: list[str] | None = None,
    ) -> MessageRef:
        body = LabelModifyRequestBody(
            add_label_ids=add_label_ids or [],
            remove_label_ids=remove_label_ids or [],
        ).model_dump(by_alias=True)

        logger.info("modifying_labels", message_id=message_id, **body)
        response = await self._execute(
            "modify_labels",
            lambda service: service.users()
            .messages()
            .modify(userId=_USER_ID, id=message_id, body=body),
            message_id=message_id,
        )
        return self._parse(MessageRef, response, "modify_labels")

    async def trash_message(self, message_id: str) -> MessageRef:
        logger.info("trashing_message", message_id=message_id)
        response = await self._execute(
            "trash_message",
            lambda service: service.users().messages().trash(userId=_USER_ID, id=message_id),
            message_id=message_id,
        )
        return self._parse(MessageRef, response, "trash_message")

    async def get_attachment(self, message_id: str, attachment_id: str) -> MessagePartBody:
        logger.debug("getting_attachment", message_id=message_id, attachment_id=attachment_id)
        response = await self._execute(
            "get_attachment",
            lambda service: service.users()
            .messages()
            .attachments()
            .get(userId=_USER_ID, messageId=message_id, id=attachment_id),
            message_id=message_id,
            attachment_id=attachment_id,
        )
        return self._parse(MessagePartBody, response, "get_attachment")

    async def _ensure_authenticated(self) -> None:
        if self._service is None:
            raise AuthenticationError(
                "Gmail client is not authenticated. Call await GmailClient.authenticate() first."
            )

    async def _connect(self, force: bool) -> None:
        try:
            credentials = await asyncio.to_thread(self._authenticator.authenticate, force)
            self._service = self._service_factory(credentials)
        except ConfigurationError:
            raise
        except Exception as exc:  # noqa: BLE001
            logger.exception("gmail_authentication_failed", force=force, error=str(exc))
            raise AuthenticationError(str(exc)) from exc
        self._credentials_generation += 1

    async def _reauthenticate(self, generation: int) -> None:
        if generation != self._credentials_generation:
            # Another request already replaced the rejected credentials.
            return
        await self._reauth.run("credentials", lambda: self._connect(force=True))

    async def _execute(
        self,
        operation: str,
        build_request: Callable[[Any], Any],
        **context: Any,
    ) -> dict[str, Any]:
        await self._ensure_authenticated()

        generation = self._credentials_generation
        try:
            return await asyncio.to_thread(self._execute_sync, build_request)
        except HttpError as exc:
            if _http_status(exc) != _UNAUTHORIZED:
                logger.error(
                    "gmail_request_failed",
                    operation=operation,
                    status=_http_status(exc),
                    error=str(exc),
                    **context,
                )
                raise GmailAPIError(str(exc)) from exc
            logger.warning("gmail_request_unauthorized", operation=operation, **context)
        except AuthenticationError:
            raise
        except Exception as exc:  # noqa: BLE001
            logger.exception("gmail_request_failed", operation=operation, error=str(exc), **context)
            raise GmailAPIError(str(exc)) from exc

        await self._reauthenticate(generation)

        try:
            return await asyncio.to_thread(self._execute_sync, build_request)
        except HttpError as exc:
            if _http_status(exc) == _UNAUTHORIZED:
                logger.error("gmail_request_unauthorized_after_refresh", operation=operation, **context)
                raise AuthenticationError(str(exc)) from exc
            logger.error(
                "gmail_request_failed",
                operation=operation,
                status=_http_status(exc),
                error=str(exc),
                **context,
            )
            raise GmailAPIError(str(exc)) from exc
        except AuthenticationError:
            raise
        except Exception as exc:  # noqa: BLE001
            logger.exception("gmail_request_failed", operation=operation, error=str(exc), **context)
            raise GmailAPIError(str(exc)) from exc

    def _execute_sync(self, build_request: Callable[[Any], Any]) -> dict[str, Any]:
        if self._service is None:
            raise AuthenticationError("Gmail client lost its service before the request ran.")
        return build_request(self._service).execute() or {}

    @staticmethod
    def _parse(model: type[M], payload: dict[str, Any], operation: str) -> M:
        try:
            return model.model_validate(payload)
        except ValidationError as exc:
            logger.error("gmail_response_invalid", operation=operation, error=str(exc))
            raise GmailAPIError(f"Unexpected {operation} response: {exc}") from exc
