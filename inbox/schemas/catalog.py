from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class CreateCatalogEntryRequest(BaseModel):
    name: str = Field(min_length=1, max_length=80)
    color: str = Field(default="#6366f1", pattern=r"^#[0-9a-fA-F]{6}$")
    display_order: int = Field(default=0, ge=0)


class DepartmentResponse(BaseModel):
    id: UUID
    name: str
    color: str
    display_order: int
    is_active: bool

    model_config = ConfigDict(from_attributes=True)
