from datetime import UTC, datetime
from uuid import UUID, uuid4

import pytest

from inbox.client.composer import MessageComposer
from inbox.client.timeline import ConfirmedMessage, ConversationTimeline, PendingMessage
from inbox.domain.enums import MessageDirection, MessageType
from inbox.domain.exceptions import GatewayFailureError, MediaTooLargeError, UploadFailureError
from inbox.domain.messages import IMAGE_PREVIEW
from tests.unit.fakes import FakeBackend


def make_composer(backend: FakeBackend, **kwargs) -> MessageComposer:
    return MessageComposer(ConversationTimeline(uuid4()), backend, **kwargs)


def echo_pending(composer: MessageComposer) -> None:
    [pending] = composer.timeline.pending()
    composer.timeline.apply_remote(
        ConfirmedMessage(
            id=uuid4(),
            conversation_id=composer.timeline.conversation_id,
            direction=MessageDirection.OUTBOUND,
            message_type=MessageType.TEXT,
            content=pending.content,
            sent_at=datetime.now(UTC),
            position=1,
            client_ref=pending.temp_id,
        )
    )


@pytest.mark.asyncio
async def test_send_text_shows_pending_then_confirms() -> None:
    backend = FakeBackend()
    composer = make_composer(backend)
    composer.draft = "  Your refund is on its way  "
    seen_while_sending: list[PendingMessage] = []
    backend.on_dispatch = lambda: seen_while_sending.extend(composer.timeline.pending())

    message = await composer.send_text()

    assert [entry.content for entry in seen_while_sending] == ["Your refund is on its way"]
    assert composer.draft == ""
    assert composer.timeline.pending() == []
    assert composer.timeline.confirmed() == [message]
    assert message.client_ref == backend.sent[0][1]


@pytest.mark.asyncio
async def test_empty_text_is_not_staged() -> None:
    composer = make_composer(FakeBackend())

    with pytest.raises(ValueError):
        await composer.send_text("   ")

    assert len(composer.timeline) == 0


@pytest.mark.asyncio
async def test_failure_rolls_back_and_restores_draft() -> None:
    composer = make_composer(FakeBackend(error=GatewayFailureError("provider down")))
    composer.draft = "Hello there"

    with pytest.raises(GatewayFailureError):
        await composer.send_text()

    assert len(composer.timeline) == 0
    assert composer.draft == "Hello there"


@pytest.mark.asyncio
async def test_failure_keeps_newer_draft() -> None:
    backend = FakeBackend(error=GatewayFailureError("provider down"), delay_seconds=0.01)
    composer = make_composer(backend)
    composer.draft = "first"
    backend.on_dispatch = lambda: setattr(composer, "draft", "typing something else")

    with pytest.raises(GatewayFailureError):
        await composer.send_text()

    assert composer.draft == "typing something else"


@pytest.mark.asyncio
async def test_timeout_rolls_back_as_retryable_failure() -> None:
    composer = make_composer(FakeBackend(delay_seconds=1.0), timeout_seconds=0.01)

    with pytest.raises(GatewayFailureError) as excinfo:
        await composer.send_text("Are you there?")

    assert excinfo.value.timed_out is True
    assert len(composer.timeline) == 0
    assert composer.draft == "Are you there?"


@pytest.mark.asyncio
async def test_echo_before_response_leaves_single_entry() -> None:
    backend = FakeBackend()
    composer = make_composer(backend)
    original_send = backend.send_text

    async def send_with_echo(conversation_id: UUID, content: str, client_ref: str) -> ConfirmedMessage:
        message = await original_send(conversation_id, content, client_ref)
        composer.timeline.apply_remote(message)
        return message

    backend.send_text = send_with_echo

    message = await composer.send_text("Hi")

    assert composer.timeline.entries == (message,)


@pytest.mark.asyncio
async def test_send_media_stages_local_preview() -> None:
    backend = FakeBackend()
    composer = make_composer(backend)
    staged: list[PendingMessage] = []
    backend.on_dispatch = lambda: staged.extend(composer.timeline.pending())

    message = await composer.send_media(b"jpeg-bytes", "photo.jpg", "image/jpeg")

    assert staged[0].media_url.startswith("local://")
    assert staged[0].content == IMAGE_PREVIEW
    assert message.media_url == "https://cdn.example.test/photo.jpg"
    assert composer.timeline.entries == (message,)


@pytest.mark.asyncio
async def test_media_upload_failure_removes_pending_entry() -> None:
    composer = make_composer(FakeBackend(error=UploadFailureError("media/scan.pdf", "storage down")))

    with pytest.raises(UploadFailureError):
        await composer.send_media(b"bytes", "scan.pdf", "application/pdf", caption="Invoice")

    assert len(composer.timeline) == 0


@pytest.mark.asyncio
async def test_oversized_media_is_rejected_before_staging() -> None:
    composer = make_composer(FakeBackend(), max_media_bytes=3)

    with pytest.raises(MediaTooLargeError):
        await composer.send_media(b"1234", "big.png", "image/png")

    assert len(composer.timeline) == 0


@pytest.mark.asyncio
async def test_send_audio_confirms_voice_note() -> None:
    composer = make_composer(FakeBackend())

    message = await composer.send_audio(b"webm", duration_seconds=9)

    assert message.message_type == MessageType.AUDIO
    assert message.media_duration_seconds == 9
    assert composer.timeline.pending() == []


@pytest.mark.asyncio
async def test_failure_after_echo_keeps_delivered_message() -> None:
    backend = FakeBackend(error=GatewayFailureError("connection reset"))
    composer = make_composer(backend)
    composer.draft = "Order shipped"
    backend.on_dispatch = lambda: echo_pending(composer)

    message = await composer.send_text()

    assert composer.timeline.entries == (message,)
    assert message.content == "Order shipped"
    assert composer.draft == ""


@pytest.mark.asyncio
async def test_timeout_after_echo_keeps_delivered_message() -> None:
    backend = FakeBackend(delay_seconds=0.5)
    composer = make_composer(backend, timeout_seconds=0.05)
    backend.on_dispatch = lambda: echo_pending(composer)

    message = await composer.send_text("Hi")

    assert composer.timeline.entries == (message,)
