import asyncio
from datetime import UTC, datetime, timedelta
from uuid import uuid4

import pytest

from inbox.domain.enums import MessageDirection, MessageType
from inbox.domain.exceptions import (
    GatewayFailureError,
    MediaTooLargeError,
    UploadFailureError,
)
from inbox.domain.messages import AUDIO_PREVIEW, IMAGE_PREVIEW
from inbox.infra.realtime.channels import INBOX_QUEUE_CHANNEL, conversation_channel
from inbox.infra.realtime.events import RealtimeEvent
from inbox.services.delivery_service import DeliveryService
from inbox.services.errors import ConversationBlockedError, ConversationNotFoundError
from tests.unit.fakes import (
    FakeConversationRepository,
    FakeGateway,
    FakeMessageRepository,
    FakeSession,
    FakeStorage,
    InMemoryStore,
    RecordingPublisher,
)


def make_delivery_service(
    store: InMemoryStore,
    gateway: FakeGateway,
    storage: FakeStorage | None = None,
    realtime: RecordingPublisher | None = None,
    max_media_bytes: int = 1024,
) -> DeliveryService:
    session = FakeSession(store)
    return DeliveryService(
        session=session,
        gateway=gateway,
        storage=storage,
        conversations=FakeConversationRepository(store, session),
        messages=FakeMessageRepository(store, session),
        realtime=realtime or RecordingPublisher(),
        gateway_timeout_seconds=0.05,
        storage_timeout_seconds=0.05,
        max_media_bytes=max_media_bytes,
    )


@pytest.mark.asyncio
async def test_send_text_dispatches_then_persists() -> None:
    store = InMemoryStore()
    conversation = store.add_conversation("+55 11 99999-0000", unread_count=3)
    gateway = FakeGateway()
    realtime = RecordingPublisher()
    agent_id = uuid4()

    result = await make_delivery_service(store, gateway, realtime=realtime).send_text(
        conversation.id, "  Your order has shipped.  ", agent_id=agent_id, client_ref="temp-1"
    )

    assert result.created is True
    assert [call.method for call in gateway.calls] == ["send_text"]
    assert gateway.calls[0].body == "Your order has shipped."
    assert result.message.direction == MessageDirection.OUTBOUND
    assert result.message.sender_agent_id == agent_id
    assert result.message.client_ref == "temp-1"
    assert result.message.position == 1
    assert conversation.last_message_preview == "Your order has shipped."
    assert conversation.unread_count == 0

    [created] = realtime.of(RealtimeEvent.MESSAGE_CREATED)
    assert created.channels == [conversation_channel(conversation.id)]
    [updated] = realtime.of(RealtimeEvent.CONVERSATION_UPDATED)
    assert INBOX_QUEUE_CHANNEL in updated.channels


@pytest.mark.asyncio
async def test_group_conversations_use_group_dispatch() -> None:
    store = InMemoryStore()
    group = store.add_conversation("120363000000000000@g.us", is_group=True)
    gateway = FakeGateway()

    await make_delivery_service(store, gateway).send_text(group.id, "Hello team")

    assert gateway.calls[0].method == "send_group_text"
    assert gateway.calls[0].recipient == group.contact_ref


@pytest.mark.asyncio
async def test_empty_text_is_rejected_before_dispatch() -> None:
    store = InMemoryStore()
    conversation = store.add_conversation()
    gateway = FakeGateway()

    with pytest.raises(ValueError):
        await make_delivery_service(store, gateway).send_text(conversation.id, "   ")

    assert gateway.calls == []


@pytest.mark.asyncio
async def test_gateway_failure_persists_nothing() -> None:
    store = InMemoryStore()
    conversation = store.add_conversation(last_message_preview="earlier")
    realtime = RecordingPublisher()

    with pytest.raises(GatewayFailureError):
        await make_delivery_service(store, FakeGateway(fail=True), realtime=realtime).send_text(
            conversation.id, "Will this arrive?"
        )

    assert store.messages == []
    assert conversation.last_message_preview == "earlier"
    assert realtime.events == []


@pytest.mark.asyncio
async def test_gateway_timeout_is_reported_as_retryable_failure() -> None:
    store = InMemoryStore()
    conversation = store.add_conversation()

    with pytest.raises(GatewayFailureError) as excinfo:
        await make_delivery_service(store, FakeGateway(delay_seconds=1.0)).send_text(
            conversation.id, "Slow network"
        )

    assert excinfo.value.timed_out is True
    assert excinfo.value.retryable is True
    assert store.messages == []


@pytest.mark.asyncio
async def test_retry_with_same_client_ref_returns_existing_message() -> None:
    store = InMemoryStore()
    conversation = store.add_conversation()
    gateway = FakeGateway()
    service = make_delivery_service(store, gateway)

    first = await service.send_text(conversation.id, "Hi", client_ref="temp-abc")
    second = await service.send_text(conversation.id, "Hi", client_ref="temp-abc")

    assert second.created is False
    assert second.message.id == first.message.id
    assert len(gateway.calls) == 1
    assert len(store.messages) == 1


@pytest.mark.asyncio
async def test_retry_after_failure_delivers_once() -> None:
    store = InMemoryStore()
    conversation = store.add_conversation()
    gateway = FakeGateway(fail=True)
    service = make_delivery_service(store, gateway)

    with pytest.raises(GatewayFailureError):
        await service.send_text(conversation.id, "Hi", client_ref="temp-xyz")
    gateway.fail = False
    result = await service.send_text(conversation.id, "Hi", client_ref="temp-xyz")

    assert result.created is True
    assert len(store.messages) == 1


@pytest.mark.asyncio
async def test_concurrent_retries_store_a_single_message() -> None:
    store = InMemoryStore()
    conversation = store.add_conversation()
    gateway = FakeGateway()

    results = await asyncio.gather(
        make_delivery_service(store, gateway).send_text(conversation.id, "Hi", client_ref="temp-1"),
        make_delivery_service(store, gateway).send_text(conversation.id, "Hi", client_ref="temp-1"),
    )

    assert len(store.messages) == 1
    assert sorted(result.created for result in results) == [False, True]
    assert results[0].message.id == results[1].message.id


@pytest.mark.asyncio
async def test_positions_increase_within_a_conversation() -> None:
    store = InMemoryStore()
    conversation = store.add_conversation()
    service = make_delivery_service(store, FakeGateway())

    first = await service.send_text(conversation.id, "one")
    second = await service.send_text(conversation.id, "two")

    assert (first.message.position, second.message.position) == (1, 2)


@pytest.mark.asyncio
async def test_blocked_conversation_rejects_sends() -> None:
    store = InMemoryStore()
    conversation = store.add_conversation(blocked=True)
    gateway = FakeGateway()

    with pytest.raises(ConversationBlockedError):
        await make_delivery_service(store, gateway).send_text(conversation.id, "Hello?")

    assert gateway.calls == []


@pytest.mark.asyncio
async def test_unknown_conversation_is_not_found() -> None:
    with pytest.raises(ConversationNotFoundError):
        await make_delivery_service(InMemoryStore(), FakeGateway()).send_text(uuid4(), "Hi")


@pytest.mark.asyncio
async def test_send_image_uploads_then_dispatches_public_url() -> None:
    store = InMemoryStore()
    conversation = store.add_conversation()
    gateway = FakeGateway()
    storage = FakeStorage()

    result = await make_delivery_service(store, gateway, storage).send_media(
        conversation.id, b"\x89PNG....", "receipt.png", "image/png", client_ref="temp-img"
    )

    [path] = storage.uploads
    assert path.startswith(f"media/{conversation.id}/")
    assert path.endswith("-receipt.png")
    assert gateway.calls[0].method == "send_media"
    assert gateway.calls[0].media_type == MessageType.IMAGE
    assert gateway.calls[0].media_url == result.message.media_url
    assert result.message.message_type == MessageType.IMAGE
    assert result.message.content == IMAGE_PREVIEW
    assert conversation.last_message_preview == IMAGE_PREVIEW


@pytest.mark.asyncio
async def test_send_document_uses_caption_and_safe_filename() -> None:
    store = InMemoryStore()
    conversation = store.add_conversation()
    gateway = FakeGateway()

    result = await make_delivery_service(store, gateway, FakeStorage()).send_media(
        conversation.id,
        b"%PDF-1.7",
        "../../invoices/march.pdf",
        "application/pdf",
        caption="  March invoice ",
    )

    assert result.message.message_type == MessageType.DOCUMENT
    assert result.message.media_filename == "march.pdf"
    assert result.message.content == "March invoice"
    assert gateway.calls[0].caption == "March invoice"
    assert gateway.calls[0].filename == "march.pdf"


@pytest.mark.asyncio
async def test_oversized_media_is_rejected_before_upload() -> None:
    store = InMemoryStore()
    conversation = store.add_conversation()
    storage = FakeStorage()

    with pytest.raises(MediaTooLargeError):
        await make_delivery_service(store, FakeGateway(), storage, max_media_bytes=4).send_media(
            conversation.id, b"12345", "big.bin", "application/octet-stream"
        )

    assert storage.uploads == {}


@pytest.mark.asyncio
async def test_upload_failure_skips_dispatch() -> None:
    store = InMemoryStore()
    conversation = store.add_conversation()
    gateway = FakeGateway()

    with pytest.raises(UploadFailureError):
        await make_delivery_service(store, gateway, FakeStorage(fail=True)).send_media(
            conversation.id, b"data", "photo.jpg", "image/jpeg"
        )

    assert gateway.calls == []
    assert store.messages == []


@pytest.mark.asyncio
async def test_upload_timeout_is_an_upload_failure() -> None:
    store = InMemoryStore()
    conversation = store.add_conversation()

    with pytest.raises(UploadFailureError):
        await make_delivery_service(store, FakeGateway(), FakeStorage(delay_seconds=1.0)).send_audio(
            conversation.id, b"webm", duration_seconds=4
        )

    assert store.messages == []


@pytest.mark.asyncio
async def test_send_audio_stores_voice_note() -> None:
    store = InMemoryStore()
    conversation = store.add_conversation()
    gateway = FakeGateway()
    storage = FakeStorage()

    result = await make_delivery_service(store, gateway, storage).send_audio(
        conversation.id, b"OggS-webm-bytes", duration_seconds=12, client_ref="temp-voice"
    )

    [path] = storage.uploads
    assert path.startswith(f"audio/{conversation.id}/")
    assert path.endswith(".webm")
    assert gateway.calls[0].media_type == MessageType.AUDIO
    assert result.message.message_type == MessageType.AUDIO
    assert result.message.media_duration_seconds == 12
    assert result.message.content == AUDIO_PREVIEW


@pytest.mark.asyncio
async def test_mark_read_and_unread() -> None:
    store = InMemoryStore()
    conversation = store.add_conversation(unread_count=4)
    realtime = RecordingPublisher()
    service = make_delivery_service(store, FakeGateway(), realtime=realtime)

    await service.mark_read(conversation.id)
    assert conversation.unread_count == 0

    await service.mark_unread(conversation.id)
    assert conversation.unread_count == 1
    assert len(realtime.of(RealtimeEvent.CONVERSATION_UPDATED)) == 2

    await service.mark_unread(conversation.id)
    assert conversation.unread_count == 1
    assert len(realtime.of(RealtimeEvent.CONVERSATION_UPDATED)) == 2


@pytest.mark.asyncio
async def test_sent_at_is_stamped_once_the_conversation_is_locked() -> None:
    store = InMemoryStore()
    conversation = store.add_conversation()
    other_request = FakeSession(store)
    await other_request.lock("conversation", conversation.id)
    gateway = FakeGateway()

    task = asyncio.create_task(
        make_delivery_service(store, gateway).send_text(conversation.id, "Queued behind")
    )
    # Let the send dispatch and block on the row lock.
    await asyncio.sleep(0.01)
    assert len(gateway.calls) == 1 and not task.done()
    released_at = datetime.now(UTC)
    await other_request.commit()
    result = await task

    assert result.message.sent_at >= released_at
    assert conversation.last_message_at == result.message.sent_at


@pytest.mark.asyncio
async def test_outbound_never_moves_last_message_backwards() -> None:
    store = InMemoryStore()
    ahead = datetime.now(UTC) + timedelta(minutes=5)
    conversation = store.add_conversation(last_message_at=ahead, last_message_preview="inbound")

    result = await make_delivery_service(store, FakeGateway()).send_text(conversation.id, "reply")

    assert result.message.sent_at == ahead
    assert conversation.last_message_at == ahead
    assert conversation.last_message_preview == "reply"


@pytest.mark.asyncio
async def test_read_transaction_ends_before_dispatch() -> None:
    store = InMemoryStore()
    conversation = store.add_conversation()
    gateway = FakeGateway()
    service = make_delivery_service(store, gateway)
    commits_at_dispatch: list[int] = []
    gateway.on_call = lambda: commits_at_dispatch.append(service.session.commits)

    await service.send_text(conversation.id, "Hi")

    assert commits_at_dispatch == [1]
    assert service.session.commits == 2


@pytest.mark.asyncio
async def test_read_transaction_ends_before_upload() -> None:
    store = InMemoryStore()
    conversation = store.add_conversation()
    storage = FakeStorage()
    service = make_delivery_service(store, FakeGateway(), storage)
    commits_at_upload: list[int] = []
    storage.on_upload = lambda: commits_at_upload.append(service.session.commits)

    await service.send_audio(conversation.id, b"OggS", duration_seconds=3)

    assert commits_at_upload == [1]
