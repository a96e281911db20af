from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from inbox.domain.filters import (
    InboxCounters,
    InboxFilter,
    InboxItem,
    apply_inbox_filter,
    count_inbox,
)
from inbox.infra.db.repositories import AgentRepository, AssignmentRepository


class InboxService:
    """Read side of the inbox: filtered listings and counters."""

    def __init__(
        self,
        session: AsyncSession,
        assignments: AssignmentRepository | None = None,
        agents: AgentRepository | None = None,
    ) -> None:
        self.session = session
        self.assignments = assignments or AssignmentRepository(session)
        self.agents = agents or AgentRepository(session)

    async def list_inbox(
        self,
        inbox_filter: InboxFilter,
        current_agent_id: UUID | None,
        limit: int = 100,
    ) -> list[InboxItem]:
        items = await self.assignments.list_inbox_items()
        return apply_inbox_filter(items, inbox_filter, current_agent_id)[:limit]

    async def counters(self, current_agent_id: UUID | None) -> InboxCounters:
        items = await self.assignments.list_inbox_items()
        online_agents = await self.agents.count_online()
        return count_inbox(items, current_agent_id, online_agents)
