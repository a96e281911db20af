from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class AgentResponse(BaseModel):
    id: UUID
    user_id: UUID
    display_name: str
    department_id: UUID | None
    max_concurrent_chats: int
    is_online: bool
    is_active: bool
    last_activity_at: datetime | None
    last_assigned_at: datetime | None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AgentLoadResponse(BaseModel):
    agent: AgentResponse
    open_conversations: int
    available_slots: int


class RegisterAgentRequest(BaseModel):
    user_id: UUID
    display_name: str = Field(min_length=2, max_length=120)
    max_concurrent_chats: int = Field(default=5, ge=1, le=100)
    department_id: UUID | None = None
    start_online: bool = False
    is_admin: bool = False


class AgentSessionResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_at: datetime
    agent: AgentResponse


class SetAgentPresenceRequest(BaseModel):
    is_online: bool


class UpdateAgentRequest(BaseModel):
    display_name: str | None = Field(default=None, min_length=2, max_length=120)
    max_concurrent_chats: int | None = Field(default=None, ge=1, le=100)
    department_id: UUID | None = None
    clear_department: bool = False
    is_active: bool | None = None
