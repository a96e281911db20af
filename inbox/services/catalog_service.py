import re

from sqlalchemy.ext.asyncio import AsyncSession

from inbox.infra.db.models import Department, Tag
from inbox.infra.db.repositories import DepartmentRepository, TagRepository

_HEX_COLOR = re.compile(r"^#[0-9a-fA-F]{6}$")


def _clean_name(name: str, label: str) -> str:
    cleaned = name.strip()
    if not cleaned:
        raise ValueError(f"{label} name cannot be empty.")
    return cleaned


def _clean_color(color: str) -> str:
    if not _HEX_COLOR.match(color):
        raise ValueError("Color must be a hex value like '#6366f1'.")
    return color.lower()


class CatalogService:
    """Tags and departments used to label and route assignments."""

    def __init__(
        self,
        session: AsyncSession,
        tags: TagRepository | None = None,
        departments: DepartmentRepository | None = None,
    ) -> None:
        self.session = session
        self.tags = tags or TagRepository(session)
        self.departments = departments or DepartmentRepository(session)

    async def list_tags(self) -> list[Tag]:
        return await self.tags.list_active()

    async def create_tag(self, name: str, color: str, display_order: int = 0) -> Tag:
        tag = await self.tags.create(
            name=_clean_name(name, "Tag"),
            color=_clean_color(color),
            display_order=display_order,
        )
        await self.session.commit()
        return tag

    async def list_departments(self) -> list[Department]:
        return await self.departments.list_active()

    async def create_department(
        self, name: str, color: str, display_order: int = 0
    ) -> Department:
        department = await self.departments.create(
            name=_clean_name(name, "Department"),
            color=_clean_color(color),
            display_order=display_order,
        )
        await self.session.commit()
        return department
