"""Request bodies for the REST API.

Validated with pydantic so a bad body is rejected before any streaming
starts.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from cadence.agent.attachments import MAX_ATTACHMENTS, Attachment


class AttachmentInput(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str
    media_type: str = Field(alias="mediaType")
    data: str  # base64

    def to_attachment(self) -> Attachment:
        return Attachment(name=self.name, media_type=self.media_type, data=self.data)


class SendMessageRequest(BaseModel):
    """POST /conversations/{id}/send body."""

    content: str
    attachments: list[AttachmentInput] = Field(default_factory=list, max_length=MAX_ATTACHMENTS)

    @field_validator("content")
    @classmethod
    def _strip_content(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("content is required")
        return value


class CreateConversationRequest(BaseModel):
    title: str | None = None

    @field_validator("title")
    @classmethod
    def _clip_title(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return value.strip()[:120] or None


def validation_message(error: ValidationError) -> str:
    """First validation problem as a short human-readable string."""
    first = error.errors()[0]
    field = ".".join(str(part) for part in first.get("loc", ()))
    message = first.get("msg", "invalid value").removeprefix("Value error, ")
    if first.get("type") == "missing":
        return f"{field} is required"
    return f"{field}: {message}" if field and field not in message else message
