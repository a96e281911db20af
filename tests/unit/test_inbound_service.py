from datetime import UTC, datetime, timedelta

import pytest

from inbox.domain.enums import AssignmentStatus, MessageDirection, MessageType
from inbox.domain.messages import IMAGE_PREVIEW
from inbox.infra.realtime.events import RealtimeEvent
from inbox.services.inbound_service import InboundMessage, InboundService
from tests.unit.fakes import (
    FakeConversationRepository,
    FakeMessageRepository,
    InMemoryStore,
    RecordingPublisher,
    make_routing_service,
)


def make_inbound_service(
    store: InMemoryStore, realtime: RecordingPublisher | None = None
) -> InboundService:
    realtime = realtime or RecordingPublisher()
    routing = make_routing_service(store, realtime)
    session = routing.session
    return InboundService(
        session=session,
        routing=routing,
        conversations=FakeConversationRepository(store, session),
        messages=FakeMessageRepository(store, session),
        realtime=realtime,
    )


@pytest.mark.asyncio
async def test_first_message_opens_conversation_and_queues_it() -> None:
    store = InMemoryStore()
    realtime = RecordingPublisher()

    result = await make_inbound_service(store, realtime).receive(
        InboundMessage(contact_ref="5511988887777", content="Where is my order?", display_name="Ana")
    )

    assert result.created is True
    assert result.conversation.display_name == "Ana"
    assert result.conversation.unread_count == 1
    assert result.conversation.last_message_preview == "Where is my order?"
    assert result.message.direction == MessageDirection.INBOUND
    assert result.assignment.status == AssignmentStatus.PENDING
    assert result.assignment.agent_id is None
    assert {event.event for event in realtime.events} == {
        RealtimeEvent.MESSAGE_CREATED,
        RealtimeEvent.CONVERSATION_UPDATED,
        RealtimeEvent.ASSIGNMENT_UPDATED,
    }


@pytest.mark.asyncio
async def test_follow_up_message_reuses_open_assignment() -> None:
    store = InMemoryStore()
    service = make_inbound_service(store)

    first = await service.receive(InboundMessage(contact_ref="5511988887777", content="Hi"))
    second = await service.receive(InboundMessage(contact_ref="5511988887777", content="Anyone?"))

    assert second.conversation.id == first.conversation.id
    assert second.assignment.id == first.assignment.id
    assert second.conversation.unread_count == 2
    assert len(store.assignments) == 1


@pytest.mark.asyncio
async def test_redelivered_webhook_is_ignored() -> None:
    store = InMemoryStore()
    service = make_inbound_service(store)
    inbound = InboundMessage(contact_ref="5511988887777", content="Hi", external_id="wamid.1")

    first = await service.receive(inbound)
    again = await service.receive(inbound)

    assert again.created is False
    assert again.message.id == first.message.id
    assert again.conversation.unread_count == 1
    assert len(store.messages) == 1


@pytest.mark.asyncio
async def test_inbound_is_distributed_when_enabled() -> None:
    store = InMemoryStore()
    store.routing.distribution_enabled = True
    agent = store.add_agent("Maya")

    result = await make_inbound_service(store).receive(
        InboundMessage(contact_ref="5511988887777", content="Hi")
    )

    assert result.assignment.agent_id == agent.id
    assert result.assignment.status == AssignmentStatus.ACTIVE


@pytest.mark.asyncio
async def test_message_after_close_starts_new_episode() -> None:
    store = InMemoryStore()
    service = make_inbound_service(store)
    first = await service.receive(InboundMessage(contact_ref="5511988887777", content="Hi"))
    first.assignment.status = AssignmentStatus.CLOSED

    second = await service.receive(InboundMessage(contact_ref="5511988887777", content="Me again"))

    assert second.assignment.id != first.assignment.id
    assert second.assignment.status == AssignmentStatus.PENDING


@pytest.mark.asyncio
async def test_blocked_contact_is_recorded_but_not_queued() -> None:
    store = InMemoryStore()
    store.add_conversation("5511988887777", blocked=True)

    result = await make_inbound_service(store).receive(
        InboundMessage(contact_ref="5511988887777", content="spam")
    )

    assert result.assignment is None
    assert result.conversation.unread_count == 0
    assert len(store.messages) == 1
    assert store.assignments == {}


@pytest.mark.asyncio
async def test_inbound_unarchives_conversation() -> None:
    store = InMemoryStore()
    store.add_conversation("5511988887777", archived=True, archived_at=datetime.now(UTC))

    result = await make_inbound_service(store).receive(
        InboundMessage(contact_ref="5511988887777", content="Back again")
    )

    assert result.conversation.archived is False
    assert result.conversation.archived_at is None


@pytest.mark.asyncio
async def test_older_message_does_not_overwrite_preview() -> None:
    store = InMemoryStore()
    now = datetime.now(UTC)
    service = make_inbound_service(store)

    await service.receive(InboundMessage(contact_ref="1", content="latest", sent_at=now))
    result = await service.receive(
        InboundMessage(contact_ref="1", content="late arrival", sent_at=now - timedelta(minutes=1))
    )

    assert result.conversation.last_message_preview == "latest"
    assert result.conversation.last_message_at == now


@pytest.mark.asyncio
async def test_inbound_media_uses_media_preview() -> None:
    store = InMemoryStore()

    result = await make_inbound_service(store).receive(
        InboundMessage(
            contact_ref="5511988887777",
            message_type=MessageType.IMAGE,
            media_url="https://cdn.example.test/photo.jpg",
            media_mime_type="image/jpeg",
        )
    )

    assert result.conversation.last_message_preview == IMAGE_PREVIEW
    assert result.message.media_url == "https://cdn.example.test/photo.jpg"


@pytest.mark.asyncio
async def test_empty_inbound_text_is_rejected() -> None:
    with pytest.raises(ValueError):
        await make_inbound_service(InMemoryStore()).receive(
            InboundMessage(contact_ref="5511988887777", content="  ")
        )
