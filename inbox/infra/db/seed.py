from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from inbox.core.config import get_settings
from inbox.infra.db.models import Agent, Department, RoutingSettings, Tag

BOOTSTRAP_ADMIN_NAME = "Administrator"

DEFAULT_DEPARTMENTS: list[dict[str, str | int]] = [
    {"name": "Support", "color": "#10b981", "display_order": 1},
    {"name": "Sales", "color": "#3b82f6", "display_order": 2},
    {"name": "Billing", "color": "#f59e0b", "display_order": 3},
]

DEFAULT_TAGS: list[dict[str, str | int]] = [
    {"name": "Urgent", "color": "#ef4444", "display_order": 1},
    {"name": "Follow-up", "color": "#8b5cf6", "display_order": 2},
    {"name": "VIP", "color": "#eab308", "display_order": 3},
]


async def seed_default_routing_settings(session: AsyncSession) -> RoutingSettings:
    existing = await session.get(RoutingSettings, 1)
    if existing is not None:
        return existing

    settings = get_settings()
    routing_settings = RoutingSettings(
        id=1,
        distribution_enabled=settings.distribution_enabled_default,
        enforce_capacity=settings.enforce_capacity_default,
    )
    session.add(routing_settings)
    await session.flush()
    return routing_settings


async def seed_default_departments(session: AsyncSession) -> None:
    result = await session.execute(select(Department.name))
    existing_names = {name.lower() for name in result.scalars().all()}
    for entry in DEFAULT_DEPARTMENTS:
        if str(entry["name"]).lower() in existing_names:
            continue
        session.add(Department(**entry))
    await session.flush()


async def seed_default_tags(session: AsyncSession) -> None:
    result = await session.execute(select(Tag.name))
    existing_names = {name.lower() for name in result.scalars().all()}
    for entry in DEFAULT_TAGS:
        if str(entry["name"]).lower() in existing_names:
            continue
        session.add(Tag(**entry))
    await session.flush()


async def seed_bootstrap_admin(session: AsyncSession) -> Agent | None:
    """Create the first agent when the table is empty; returns it, or None if agents exist."""
    result = await session.execute(select(Agent.id).limit(1))
    if result.scalar_one_or_none() is not None:
        return None

    agent = Agent(
        user_id=uuid4(),
        display_name=BOOTSTRAP_ADMIN_NAME,
        max_concurrent_chats=5,
        is_online=False,
        is_active=True,
    )
    session.add(agent)
    await session.flush()
    return agent
