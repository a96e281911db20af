from uuid import uuid4

import pytest

from inbox.domain.enums import AssignmentStatus
from inbox.infra.realtime.channels import AGENT_PRESENCE_CHANNEL
from inbox.infra.realtime.events import RealtimeEvent
from inbox.services.agent_service import AgentService
from inbox.services.errors import AgentNotFoundError, DepartmentNotFoundError
from tests.unit.fakes import (
    FakeAgentRepository,
    FakeAssignmentRepository,
    FakeDepartmentRepository,
    FakeSession,
    InMemoryStore,
    RecordingPublisher,
)


def make_agent_service(
    store: InMemoryStore, realtime: RecordingPublisher | None = None
) -> AgentService:
    session = FakeSession(store)
    return AgentService(
        session=session,
        agents=FakeAgentRepository(store, session),
        assignments=FakeAssignmentRepository(store, session),
        departments=FakeDepartmentRepository(store),
        realtime=realtime or RecordingPublisher(),
    )


@pytest.mark.asyncio
async def test_register_agent_starts_offline_and_announces_presence() -> None:
    store = InMemoryStore()
    realtime = RecordingPublisher()
    department = store.add_department("Billing")

    agent = await make_agent_service(store, realtime).register_agent(
        uuid4(), "  Maya  ", max_concurrent_chats=3, department_id=department.id
    )

    assert agent.display_name == "Maya"
    assert agent.max_concurrent_chats == 3
    assert agent.department_id == department.id
    assert agent.is_online is False
    [published] = realtime.of(RealtimeEvent.AGENT_PRESENCE_CHANGED)
    assert AGENT_PRESENCE_CHANNEL in published.channels


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("display_name", "capacity"),
    [("   ", 5), ("Maya", 0)],
)
async def test_register_agent_validates_input(display_name: str, capacity: int) -> None:
    with pytest.raises(ValueError):
        await make_agent_service(InMemoryStore()).register_agent(
            uuid4(), display_name, max_concurrent_chats=capacity
        )


@pytest.mark.asyncio
async def test_register_agent_rejects_duplicate_user() -> None:
    store = InMemoryStore()
    service = make_agent_service(store)
    user_id = uuid4()
    await service.register_agent(user_id, "Maya")

    with pytest.raises(ValueError):
        await service.register_agent(user_id, "Maya again")

    assert len(store.agents) == 1


@pytest.mark.asyncio
async def test_register_agent_with_unknown_department_fails() -> None:
    with pytest.raises(DepartmentNotFoundError):
        await make_agent_service(InMemoryStore()).register_agent(
            uuid4(), "Maya", department_id=uuid4()
        )


@pytest.mark.asyncio
async def test_presence_change_is_published_once() -> None:
    store = InMemoryStore()
    agent = store.add_agent("Maya", is_online=False)
    realtime = RecordingPublisher()
    service = make_agent_service(store, realtime)

    await service.set_presence(agent.id, True)
    await service.set_presence(agent.id, True)

    assert agent.is_online is True
    assert len(realtime.of(RealtimeEvent.AGENT_PRESENCE_CHANGED)) == 1
    assert agent.last_activity_at is not None


@pytest.mark.asyncio
async def test_unknown_agent_is_not_found() -> None:
    with pytest.raises(AgentNotFoundError):
        await make_agent_service(InMemoryStore()).set_presence(uuid4(), True)


@pytest.mark.asyncio
async def test_lowering_capacity_keeps_owned_conversations() -> None:
    store = InMemoryStore()
    agent = store.add_agent("Maya", max_concurrent_chats=3)
    for contact_ref in ("1", "2", "3"):
        store.add_assignment(store.add_conversation(contact_ref), AssignmentStatus.ACTIVE, agent)

    updated = await make_agent_service(store).update_agent(agent.id, max_concurrent_chats=1)

    assert updated.max_concurrent_chats == 1
    assert store.owned_count(agent.id) == 3


@pytest.mark.asyncio
async def test_deactivating_agent_takes_them_offline() -> None:
    store = InMemoryStore()
    agent = store.add_agent("Maya")

    updated = await make_agent_service(store).update_agent(agent.id, is_active=False)

    assert updated.is_active is False
    assert updated.is_online is False


@pytest.mark.asyncio
async def test_department_can_be_moved_and_cleared() -> None:
    store = InMemoryStore()
    agent = store.add_agent("Maya")
    department = store.add_department("Sales")
    service = make_agent_service(store)

    await service.update_agent(agent.id, department_id=department.id)
    assert agent.department_id == department.id

    await service.update_agent(agent.id, clear_department=True)
    assert agent.department_id is None


@pytest.mark.asyncio
async def test_list_agents_reports_open_load() -> None:
    store = InMemoryStore()
    maya = store.add_agent("Maya", max_concurrent_chats=2)
    alex = store.add_agent("Alex", max_concurrent_chats=2)
    store.add_assignment(store.add_conversation("1"), AssignmentStatus.ACTIVE, maya)
    store.add_assignment(store.add_conversation("2"), AssignmentStatus.WAITING, maya)
    store.add_assignment(store.add_conversation("3"), AssignmentStatus.CLOSED, alex)

    loads = {load.agent.display_name: load for load in await make_agent_service(store).list_agents()}

    assert loads["Maya"].open_conversations == 2
    assert loads["Maya"].available_slots == 0
    assert loads["Alex"].open_conversations == 0
    assert loads["Alex"].available_slots == 2
