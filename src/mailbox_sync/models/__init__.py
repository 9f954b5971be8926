"""Data models for Mailbox Sync.

This module contains the Pydantic domain models served to callers: mail
summaries, the recursive MIME part tree and the full mail.
"""

from __future__ import annotations

import base64
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator

from mailbox_sync.models.result import Result

__all__ = [
    "Mail",
    "MailPart",
    "MailPartBody",
    "MailSummary",
    "MimeType",
    "Result",
    "decode_base64url",
]


def decode_base64url(data: str) -> bytes:
    """Decode Gmail's unpadded base64url payloads."""
    padded = data + "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(padded.encode("ascii"))


class MimeType(str, Enum):
    """MIME types the engine understands; anything else is unsupported."""

    TEXT_PLAIN = "text/plain"
    TEXT_HTML = "text/html"
    MULTIPART_ALTERNATIVE = "multipart/alternative"
    MULTIPART_MIXED = "multipart/mixed"
    MULTIPART_RELATED = "multipart/related"
    IMAGE_PNG = "image/png"
    IMAGE_JPEG = "image/jpeg"
    IMAGE_GIF = "image/gif"
    UNSUPPORTED = "unsupported"

    @classmethod
    def parse(cls, value: Any) -> MimeType:
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            return cls.UNSUPPORTED
        # Drop parameters such as "; charset=utf-8".
        normalized = value.split(";", 1)[0].strip().lower()
        try:
            return cls(normalized)
        except ValueError:
            return cls.UNSUPPORTED

    @property
    def is_text(self) -> bool:
        return self in (MimeType.TEXT_PLAIN, MimeType.TEXT_HTML)

    @property
    def is_image(self) -> bool:
        return self.value.startswith("image/")

    @property
    def is_multipart(self) -> bool:
        return self.value.startswith("multipart/")


class MailPartBody(BaseModel):
    """Body of a single MIME part."""

    attachment_id: Optional[str] = Field(default=None, description="Remote attachment ID")
    size: int = Field(default=0, description="Body size in bytes")
    data: Optional[str] = Field(
        default=None,
        description="Decoded text for textual parts, base64url payload otherwise",
    )


class MailPart(BaseModel):
    """A node of the MIME tree: either a body or child parts."""

    mime_type: MimeType = Field(description="Part MIME type")
    body: Optional[MailPartBody] = Field(default=None, description="Part body")
    file_name: Optional[str] = Field(default=None, description="Attachment file name")
    parts: list[MailPart] = Field(default_factory=list, description="Child parts")

    @field_validator("mime_type", mode="before")
    @classmethod
    def _coerce_mime_type(cls, value: Any) -> MimeType:
        return MimeType.parse(value)

    def attachment_ids(self) -> list[str]:
        """Collect attachment ids of parts whose data has not been downloaded yet."""

        ids: list[str] = []
        if self.body is not None and self.body.data is None and self.body.attachment_id:
            ids.append(self.body.attachment_id)
        for part in self.parts:
            ids.extend(part.attachment_ids())
        return ids

    def merge_attachments(self, payloads: dict[str, str]) -> MailPart:
        """Return a copy of the tree with downloaded attachment payloads filled in.

        Args:
            payloads: Base64url attachment payloads keyed by attachment id.
        """

        body = self.body
        if body is not None and body.data is None and body.attachment_id in payloads:
            data: str | None = payloads[body.attachment_id]
            if self.mime_type.is_text and data is not None:
                try:
                    data = decode_base64url(data).decode("utf-8", errors="replace")
                except ValueError:
                    data = None
            body = body.model_copy(update={"data": data})

        return self.model_copy(
            update={
                "body": body,
                "parts": [part.merge_attachments(payloads) for part in self.parts],
            }
        )

    def downloaded_attachments(self) -> dict[str, MailPartBody]:
        """Bodies of attachment parts whose data is present, keyed by attachment id."""

        bodies: dict[str, MailPartBody] = {}
        if self.body is not None and self.body.data is not None and self.body.attachment_id:
            bodies[self.body.attachment_id] = self.body
        for part in self.parts:
            bodies.update(part.downloaded_attachments())
        return bodies

    def with_attachment_bodies(self, bodies: dict[str, MailPartBody]) -> MailPart:
        """Return a copy with data-less attachment bodies taken from ``bodies``."""

        body = self.body
        if body is not None and body.data is None and body.attachment_id in bodies:
            body = bodies[body.attachment_id]
        return self.model_copy(
            update={
                "body": body,
                "parts": [part.with_attachment_bodies(bodies) for part in self.parts],
            }
        )

    def content_bytes(self) -> bytes:
        if self.body is None or self.body.data is None:
            return b""
        if self.mime_type.is_text:
            return self.body.data.encode("utf-8")
        return decode_base64url(self.body.data)

    def text_content(self) -> str:
        """Render the best textual representation of this part."""

        match self.mime_type:
            case MimeType.MULTIPART_ALTERNATIVE:
                preferred = (
                    self._first_child(MimeType.TEXT_HTML)
                    or self._first_child(MimeType.TEXT_PLAIN)
                    or (self.parts[-1] if self.parts else None)
                )
                return preferred.text_content() if preferred is not None else ""
            case MimeType.MULTIPART_MIXED | MimeType.MULTIPART_RELATED:
                rendered = (part.text_content() for part in self.parts)
                return "\n\n".join(text for text in rendered if text)
            case MimeType.TEXT_PLAIN | MimeType.TEXT_HTML:
                if self.body is None or self.body.data is None:
                    return ""
                return self.body.data
            case MimeType.IMAGE_PNG | MimeType.IMAGE_JPEG | MimeType.IMAGE_GIF:
                return f"[image: {self.file_name or self.mime_type.value}]"
            case _:
                return f"[unsupported content: {self.file_name or 'unnamed part'}]"

    def _first_child(self, mime_type: MimeType) -> MailPart | None:
        return next((part for part in self.parts if part.mime_type == mime_type), None)


class MailSummary(BaseModel):
    """Listing-level view of a message."""

    id: str = Field(description="Stable remote message ID")
    title: str = Field(description="Subject header")
    sender: str = Field(description="Sender display name")
    sender_email: str = Field(description="Sender email address")
    summary: str = Field(default="", description="Snippet text")
    received_at: datetime = Field(description="Received timestamp (UTC, millisecond precision)")
    is_read: bool = Field(default=False, description="Whether the message has been read")


class Mail(BaseModel):
    """A summary together with its hydrated MIME tree."""

    summary: MailSummary = Field(description="Message summary")
    part: MailPart = Field(description="Root MIME part")

    @property
    def id(self) -> str:
        return self.summary.id
