from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from inbox.domain.enums import AssignmentStatus


class TagResponse(BaseModel):
    id: UUID
    name: str
    color: str
    display_order: int

    model_config = ConfigDict(from_attributes=True)


class AssignmentResponse(BaseModel):
    id: UUID
    conversation_id: UUID
    agent_id: UUID | None
    department_id: UUID | None
    status: AssignmentStatus
    closed_at: datetime | None
    created_at: datetime
    updated_at: datetime
    tags: list[TagResponse] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)


class TransferAssignmentRequest(BaseModel):
    target_agent_id: UUID
    department_id: UUID | None = None


class SetAssignmentStatusRequest(BaseModel):
    status: AssignmentStatus


class SetAssignmentTagsRequest(BaseModel):
    tag_ids: list[UUID] = Field(default_factory=list, max_length=50)


class ReopenConversationRequest(BaseModel):
    department_id: UUID | None = None


class RoutingSettingsResponse(BaseModel):
    distribution_enabled: bool
    enforce_capacity: bool

    model_config = ConfigDict(from_attributes=True)


class UpdateRoutingSettingsRequest(BaseModel):
    distribution_enabled: bool | None = None
    enforce_capacity: bool | None = None
