"""Configuration management for Mailbox Sync.

This module handles application configuration using Pydantic settings.
Configuration can be loaded from environment variables or .env files.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with environment variable support.

    All settings can be overridden via environment variables with
    the MAILBOX_SYNC_ prefix (e.g., MAILBOX_SYNC_STORE_DB_PATH).
    """

    model_config = SettingsConfigDict(
        env_prefix="MAILBOX_SYNC_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Gmail Configuration
    gmail_credentials_path: Path = Field(
        default=Path("credentials.json"),
        description="Path to Gmail API credentials file",
    )
    gmail_token_path: Path = Field(
        default=Path("token.json"),
        description="Path to Gmail API token file",
    )
    gmail_scope: str = Field(
        default="https://www.googleapis.com/auth/gmail.modify",
        description=(
            "OAuth scope used for Gmail access. Read status changes and trashing "
            "messages need gmail.modify."
        ),
    )

    # Local store configuration
    store_db_path: Path = Field(
        default=Path("mailbox.sqlite3"),
        description="Path to the local SQLite database caching the mailbox",
    )

    # Sync configuration
    full_refresh_max_results: int = Field(
        default=100,
        ge=1,
        description="Maximum number of inbox messages fetched by a full refresh",
    )
    attachment_concurrency: int = Field(
        default=5,
        ge=1,
        description="Maximum number of attachment downloads running at once",
    )

    listing_page_size: int = Field(
        default=50,
        ge=1,
        description="Number of summaries per page served by the data source",
    )

    # Application Configuration
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    debug: bool = Field(
        default=False,
        description="Enable debug mode",
    )


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings.

    Returns:
        Settings: Application settings instance.
    """
    return Settings()
