from datetime import datetime

from pydantic import BaseModel, Field

from inbox.domain.enums import MessageType


class InboundMessageRequest(BaseModel):
    contact_ref: str = Field(min_length=3, max_length=120)
    content: str = Field(default="", max_length=4000)
    is_group: bool = False
    display_name: str | None = Field(default=None, max_length=200)
    avatar_url: str | None = None
    message_type: MessageType = MessageType.TEXT
    media_url: str | None = None
    media_mime_type: str | None = Field(default=None, max_length=120)
    media_filename: str | None = Field(default=None, max_length=255)
    media_duration_seconds: int | None = Field(default=None, ge=0)
    external_id: str | None = Field(default=None, max_length=64)
    sent_at: datetime | None = None


class InboundMessageResponse(BaseModel):
    conversation_id: str
    message_id: str
    assignment_id: str | None
    created: bool
