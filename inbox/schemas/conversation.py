from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from inbox.schemas.message import MessageResponse


class ConversationResponse(BaseModel):
    id: UUID
    contact_ref: str
    is_group: bool
    display_name: str | None
    avatar_url: str | None
    client_id: UUID | None
    last_message_at: datetime | None
    last_message_preview: str | None
    unread_count: int
    archived: bool
    muted: bool
    pinned: bool
    favorite: bool
    blocked: bool
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ConversationMessagesResponse(BaseModel):
    conversation: ConversationResponse
    messages: list[MessageResponse]


class MessageExchangeResponse(BaseModel):
    conversation: ConversationResponse
    message: MessageResponse
    created: bool = True


class SetConversationFlagsRequest(BaseModel):
    archived: bool | None = None
    muted: bool | None = None
    pinned: bool | None = None
    favorite: bool | None = None
    blocked: bool | None = None


class SetConversationProductsRequest(BaseModel):
    product_ids: list[UUID] = Field(default_factory=list, max_length=100)


class ConversationProductsResponse(BaseModel):
    conversation_id: UUID
    product_ids: list[UUID]
