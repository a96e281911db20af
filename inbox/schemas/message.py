from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from inbox.domain.enums import MessageDirection, MessageType


class SendMessageRequest(BaseModel):
    content: str = Field(min_length=1, max_length=4000)
    client_ref: str | None = Field(default=None, min_length=1, max_length=64)


class MessageResponse(BaseModel):
    id: UUID
    conversation_id: UUID
    direction: MessageDirection
    message_type: MessageType
    content: str
    media_url: str | None
    media_mime_type: str | None
    media_filename: str | None
    media_duration_seconds: int | None
    sender_agent_id: UUID | None
    client_ref: str | None
    position: int
    sent_at: datetime

    model_config = ConfigDict(from_attributes=True)
