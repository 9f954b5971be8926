"""Pydantic models for the Gmail REST payloads the engine consumes.

Field names follow Python conventions; the camelCase wire names are accepted
through aliases and unknown fields are ignored.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class GmailModel(BaseModel):
    """Base model for Gmail API payloads."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class MessageRef(GmailModel):
    id: str
    thread_id: str | None = None


class MessagesRefs(GmailModel):
    messages: list[MessageRef] = Field(default_factory=list)
    next_page_token: str | None = None
    result_size_estimate: int = 0


class Header(GmailModel):
    name: str
    value: str


class MessagePartBody(GmailModel):
    attachment_id: str | None = None
    size: int = 0
    data: str | None = None


class MessagePart(GmailModel):
    part_id: str | None = None
    mime_type: str = ""
    # Gmail spells this one "filename".
    file_name: str | None = Field(default=None, alias="filename")
    headers: list[Header] = Field(default_factory=list)
    body: MessagePartBody | None = None
    parts: list[MessagePart] = Field(default_factory=list)


class NetworkMail(GmailModel):
    """A message fetched with format=full."""

    id: str
    thread_id: str | None = None
    label_ids: list[str] = Field(default_factory=list)
    snippet: str = ""
    history_id: str | None = None
    internal_date: str | None = None
    payload: MessagePart | None = None
    size_estimate: int = 0

    def header(self, name: str) -> str | None:
        if self.payload is None:
            return None
        return next((h.value for h in self.payload.headers if h.name == name), None)

    def has_label(self, label_id: str) -> bool:
        return label_id in self.label_ids


class MessageAdded(GmailModel):
    message: MessageRef


class MessageDeleted(GmailModel):
    message: MessageRef


class LabelModified(GmailModel):
    message: MessageRef
    label_ids: list[str] = Field(default_factory=list)


class History(GmailModel):
    id: str
    messages: list[MessageRef] = Field(default_factory=list)
    messages_added: list[MessageAdded] = Field(default_factory=list)
    messages_deleted: list[MessageDeleted] = Field(default_factory=list)
    labels_added: list[LabelModified] = Field(default_factory=list)
    labels_removed: list[LabelModified] = Field(default_factory=list)


class HistoryList(GmailModel):
    history: list[History] | None = None
    next_page_token: str | None = None
    history_id: str | None = None


class LabelModifyRequestBody(GmailModel):
    add_label_ids: list[str] = Field(default_factory=list)
    remove_label_ids: list[str] = Field(default_factory=list)
