"""Custom exceptions for Mailbox Sync."""


class MailboxSyncError(Exception):
    """Base exception for all Mailbox Sync errors."""


class GmailAPIError(MailboxSyncError):
    """Exception raised for Gmail API related errors."""


class ConfigurationError(MailboxSyncError):
    """Exception raised for configuration related errors."""


class AuthenticationError(MailboxSyncError):
    """Exception raised for authentication failures."""


class MailParseError(MailboxSyncError):
    """Exception raised when a fetched message cannot be mapped to a mail."""


class MailNotFoundError(MailboxSyncError):
    """Exception raised when a targeted write finds no local record."""
