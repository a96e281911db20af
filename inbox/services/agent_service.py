import logging
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from inbox.infra.db.models import Agent
from inbox.infra.db.repositories import (
    AgentRepository,
    AssignmentRepository,
    DepartmentRepository,
)
from inbox.infra.realtime.channels import AGENT_PRESENCE_CHANNEL, agent_queue_channel
from inbox.infra.realtime.events import RealtimeEvent
from inbox.infra.realtime.publisher import (
    NoopRealtimePublisher,
    RealtimePublisher,
    safe_publish,
)
from inbox.services.errors import AgentNotFoundError, DepartmentNotFoundError
from inbox.services.payloads import agent_payload

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class AgentLoad:
    agent: Agent
    open_conversations: int

    @property
    def available_slots(self) -> int:
        return max(self.agent.max_concurrent_chats - self.open_conversations, 0)


class AgentService:
    def __init__(
        self,
        session: AsyncSession,
        agents: AgentRepository | None = None,
        assignments: AssignmentRepository | None = None,
        departments: DepartmentRepository | None = None,
        realtime: RealtimePublisher | None = None,
    ) -> None:
        self.session = session
        self.agents = agents or AgentRepository(session)
        self.assignments = assignments or AssignmentRepository(session)
        self.departments = departments or DepartmentRepository(session)
        self.realtime = realtime or NoopRealtimePublisher()

    async def register_agent(
        self,
        user_id: UUID,
        display_name: str,
        max_concurrent_chats: int = 5,
        department_id: UUID | None = None,
        start_online: bool = False,
    ) -> Agent:
        cleaned_display_name = display_name.strip()
        if not cleaned_display_name:
            raise ValueError("Agent display name cannot be empty.")
        if max_concurrent_chats < 1:
            raise ValueError("An agent must be able to hold at least one conversation.")
        if await self.agents.get_by_user_id(user_id) is not None:
            raise ValueError("This user is already registered as an agent.")
        if department_id is not None:
            await self._assert_department_exists(department_id)

        agent = await self.agents.create(
            user_id=user_id,
            display_name=cleaned_display_name,
            max_concurrent_chats=max_concurrent_chats,
            department_id=department_id,
            is_online=start_online,
        )
        await self.session.commit()
        await self.session.refresh(agent)
        logger.info("registered agent %s (capacity %s)", agent.id, agent.max_concurrent_chats)
        await self._emit_presence_changed(agent)
        return agent

    async def get_agent(self, agent_id: UUID) -> Agent:
        return await self._get_agent_or_raise(agent_id)

    async def list_agents(self) -> list[AgentLoad]:
        agents = await self.agents.list_all()
        counts = await self.assignments.count_owned_by_agents(agent.id for agent in agents)
        return [
            AgentLoad(agent=agent, open_conversations=counts.get(agent.id, 0))
            for agent in agents
        ]

    async def set_presence(self, agent_id: UUID, is_online: bool) -> Agent:
        agent = await self._get_agent_or_raise(agent_id)
        if agent.is_online == is_online:
            await self.agents.touch_activity(agent)
            await self.session.commit()
            return agent

        await self.agents.update_presence(agent, is_online)
        await self.session.commit()
        await self.session.refresh(agent)
        logger.info("agent %s is now %s", agent.id, "online" if is_online else "offline")
        await self._emit_presence_changed(agent)
        return agent

    async def touch_activity(self, agent_id: UUID) -> Agent:
        agent = await self._get_agent_or_raise(agent_id)
        await self.agents.touch_activity(agent)
        await self.session.commit()
        return agent

    async def update_agent(
        self,
        agent_id: UUID,
        *,
        display_name: str | None = None,
        max_concurrent_chats: int | None = None,
        department_id: UUID | None = None,
        clear_department: bool = False,
        is_active: bool | None = None,
    ) -> Agent:
        agent = await self._get_agent_or_raise(agent_id)

        if display_name is not None:
            cleaned = display_name.strip()
            if not cleaned:
                raise ValueError("Agent display name cannot be empty.")
            agent.display_name = cleaned
        if max_concurrent_chats is not None:
            if max_concurrent_chats < 1:
                raise ValueError("An agent must be able to hold at least one conversation.")
            # Lowering capacity never evicts conversations already owned; it only
            # blocks new claims until the agent drops below the new limit.
            agent.max_concurrent_chats = max_concurrent_chats
        if clear_department:
            agent.department_id = None
        elif department_id is not None:
            await self._assert_department_exists(department_id)
            agent.department_id = department_id
        if is_active is not None:
            agent.is_active = is_active
            if not is_active:
                agent.is_online = False

        await self.session.commit()
        await self.session.refresh(agent)
        await self._emit_presence_changed(agent)
        return agent

    async def _get_agent_or_raise(self, agent_id: UUID) -> Agent:
        agent = await self.agents.get_by_id(agent_id)
        if agent is None:
            raise AgentNotFoundError(agent_id)
        return agent

    async def _assert_department_exists(self, department_id: UUID) -> None:
        if await self.departments.get_by_id(department_id) is None:
            raise DepartmentNotFoundError(department_id)

    async def _emit_presence_changed(self, agent: Agent) -> None:
        await safe_publish(
            self.realtime,
            [AGENT_PRESENCE_CHANNEL, agent_queue_channel(agent.id)],
            RealtimeEvent.AGENT_PRESENCE_CHANGED,
            {"agent": agent_payload(agent)},
        )
