from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict

from inbox.domain.enums import AssignmentStatus


class InboxItemResponse(BaseModel):
    assignment_id: UUID
    conversation_id: UUID
    agent_id: UUID | None
    status: AssignmentStatus
    contact_ref: str
    contact_name: str | None
    is_group: bool
    unread_count: int
    last_message_at: datetime | None
    last_message_preview: str | None
    department_id: UUID | None
    archived: bool
    pinned: bool
    muted: bool
    favorite: bool
    blocked: bool
    tag_ids: list[UUID]
    product_ids: list[UUID]

    model_config = ConfigDict(from_attributes=True)


class InboxListResponse(BaseModel):
    items: list[InboxItemResponse]


class InboxCountersResponse(BaseModel):
    mine: int
    mine_unread: int
    queue: int
    queue_unread: int
    online_agents: int

    model_config = ConfigDict(from_attributes=True)
