"""Gmail remote access: REST client, payload models and parsing helpers."""

from .client import GmailClient

__all__ = ["GmailClient"]
