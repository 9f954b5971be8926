"""Credential providers for the Gmail client.

The client treats authentication as opaque: it asks an authenticator for
credentials and, after a 401, asks again with ``force=True``.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Protocol

import structlog

from mailbox_sync.exceptions import ConfigurationError

logger = structlog.get_logger()


class Authenticator(Protocol):
    """Provides Google OAuth credentials."""

    def authenticate(self, force: bool = False) -> Any:
        """Return valid credentials.

        Args:
            force: The current credentials were rejected; refresh or re-authorize
                even if they look valid locally.
        """
        ...


class InstalledAppAuthenticator:
    """File-backed installed-app OAuth flow.

    Reuses the token file when possible, refreshes it with the refresh token and
    falls back to the interactive local-server flow.
    """

    def __init__(self, credentials_path: Path, token_path: Path, scopes: list[str]) -> None:
        self.credentials_path = Path(credentials_path)
        self.token_path = Path(token_path)
        self.scopes = scopes

    def authenticate(self, force: bool = False) -> Any:
        # Imported lazily to keep import-time cost low and tests fast.
        from google.auth.exceptions import RefreshError
        from google.auth.transport.requests import Request
        from google.oauth2.credentials import Credentials

        creds: Credentials | None = None
        if self.token_path.exists():
            creds = Credentials.from_authorized_user_file(str(self.token_path), scopes=self.scopes)

        if creds is not None and force and not creds.refresh_token:
            creds = None

        if creds is not None and creds.refresh_token and (force or creds.expired):
            try:
                creds.refresh(Request())
                logger.info("gmail_token_refreshed", token_path=str(self.token_path))
            except RefreshError as exc:
                logger.warning("gmail_token_refresh_failed", error=str(exc))
                creds = None

        if creds is None or not creds.valid:
            creds = self._run_flow()

        self.token_path.parent.mkdir(parents=True, exist_ok=True)
        self.token_path.write_text(creds.to_json(), encoding="utf-8")
        return creds

    def _run_flow(self) -> Any:
        from google_auth_oauthlib.flow import InstalledAppFlow

        if not self.credentials_path.exists():
            raise ConfigurationError(
                f"Gmail credentials file not found: {self.credentials_path}. "
                "See README.md -> Gmail API Setup."
            )

        logger.info(
            "gmail_oauth_flow_started",
            credentials_path=str(self.credentials_path),
            scopes=self.scopes,
        )
        flow = InstalledAppFlow.from_client_secrets_file(str(self.credentials_path), scopes=self.scopes)
        return flow.run_local_server(port=0)


def build_gmail_service(credentials: Any) -> Any:
    from googleapiclient.discovery import build

    # cache_discovery=False prevents writing discovery docs to disk.
    return build("gmail", "v1", credentials=credentials, cache_discovery=False)
