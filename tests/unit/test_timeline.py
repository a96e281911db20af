from datetime import UTC, datetime, timedelta
from uuid import UUID, uuid4

import pytest

from inbox.client.timeline import (
    TEMP_ID_PREFIX,
    ConfirmedMessage,
    ConversationTimeline,
    PendingMessage,
)
from inbox.domain.enums import MessageDirection, MessageType

CONVERSATION_ID = uuid4()
NOW = datetime(2026, 10, 19, 12, 0, tzinfo=UTC)


def confirmed(
    content: str,
    seconds: int = 0,
    position: int = 1,
    client_ref: str | None = None,
    conversation_id: UUID = CONVERSATION_ID,
    direction: MessageDirection = MessageDirection.OUTBOUND,
) -> ConfirmedMessage:
    return ConfirmedMessage(
        id=uuid4(),
        conversation_id=conversation_id,
        direction=direction,
        message_type=MessageType.TEXT,
        content=content,
        sent_at=NOW + timedelta(seconds=seconds),
        position=position,
        client_ref=client_ref,
    )


def test_stage_appends_pending_entry() -> None:
    timeline = ConversationTimeline(CONVERSATION_ID, [confirmed("earlier")])

    pending = timeline.stage("hello")

    assert pending.temp_id.startswith(TEMP_ID_PREFIX)
    assert timeline.entries[-1] is pending
    assert timeline.pending() == [pending]


def test_stage_rejects_duplicate_temp_id() -> None:
    timeline = ConversationTimeline(CONVERSATION_ID)
    timeline.stage("one", temp_id="temp-1")

    with pytest.raises(ValueError):
        timeline.stage("two", temp_id="temp-1")


def test_confirm_replaces_pending_in_place() -> None:
    timeline = ConversationTimeline(CONVERSATION_ID)
    pending = timeline.stage("first")
    timeline.stage("second")

    message = timeline.confirm(pending.temp_id, confirmed("first"))

    assert timeline.entries[0] == message
    assert isinstance(timeline.entries[1], PendingMessage)
    assert message.client_ref == pending.temp_id
    assert len(timeline) == 2


def test_confirm_after_echo_keeps_single_copy() -> None:
    timeline = ConversationTimeline(CONVERSATION_ID)
    pending = timeline.stage("hi")
    server_copy = confirmed("hi", client_ref="someone-else")
    timeline.apply_remote(server_copy)

    timeline.confirm(pending.temp_id, server_copy)

    assert timeline.pending() == []
    assert [entry.id for entry in timeline.confirmed()] == [server_copy.id]


def test_echo_with_client_ref_confirms_pending() -> None:
    timeline = ConversationTimeline(CONVERSATION_ID)
    pending = timeline.stage("hi")

    applied = timeline.apply_remote(confirmed("hi", client_ref=pending.temp_id))

    assert applied is True
    assert timeline.pending() == []
    assert len(timeline) == 1


def test_confirm_unknown_temp_id_raises() -> None:
    with pytest.raises(LookupError):
        ConversationTimeline(CONVERSATION_ID).confirm("temp-missing", confirmed("x"))


def test_rollback_removes_only_that_entry() -> None:
    timeline = ConversationTimeline(CONVERSATION_ID, [confirmed("kept")])
    failed = timeline.stage("failed")

    removed = timeline.rollback(failed.temp_id)

    assert removed == failed
    assert [entry.content for entry in timeline] == ["kept"]
    with pytest.raises(LookupError):
        timeline.rollback(failed.temp_id)


def test_apply_remote_ignores_duplicates_and_other_conversations() -> None:
    existing = confirmed("hello")
    timeline = ConversationTimeline(CONVERSATION_ID, [existing])

    assert timeline.apply_remote(existing) is False
    assert timeline.apply_remote(confirmed("elsewhere", conversation_id=uuid4())) is False
    assert len(timeline) == 1


def test_remote_messages_sort_before_pending_entries() -> None:
    timeline = ConversationTimeline(CONVERSATION_ID, [confirmed("first", seconds=0)])
    pending = timeline.stage("typing")

    inbound = confirmed("reply", seconds=5, position=2, direction=MessageDirection.INBOUND)
    timeline.apply_remote(inbound)

    assert [entry.content for entry in timeline] == ["first", "reply", "typing"]
    assert timeline.entries[-1] is pending


def test_out_of_order_remote_message_lands_by_time() -> None:
    late = confirmed("late", seconds=10, position=3)
    timeline = ConversationTimeline(CONVERSATION_ID, [confirmed("a", 0, 1), late])

    timeline.apply_remote(confirmed("b", seconds=5, position=2))

    assert [entry.content for entry in timeline] == ["a", "b", "late"]


def test_load_replaces_history_but_keeps_unconfirmed_sends() -> None:
    timeline = ConversationTimeline(CONVERSATION_ID, [confirmed("stale")])
    landed = timeline.stage("landed")
    in_flight = timeline.stage("in flight")

    timeline.load([confirmed("fresh"), confirmed("landed", seconds=1, client_ref=landed.temp_id)])

    assert [entry.content for entry in timeline] == ["fresh", "landed", "in flight"]
    assert timeline.pending() == [in_flight]


def test_from_payload_parses_server_shape() -> None:
    message_id = uuid4()
    agent_id = uuid4()

    message = ConfirmedMessage.from_payload(
        {
            "id": str(message_id),
            "conversation_id": str(CONVERSATION_ID),
            "direction": "outbound",
            "message_type": "audio",
            "content": "🎤 Audio",
            "media_url": "https://cdn.example.test/a.webm",
            "media_duration_seconds": 7,
            "sender_agent_id": str(agent_id),
            "client_ref": "temp-1",
            "position": 4,
            "sent_at": NOW.isoformat(),
        }
    )

    assert message.id == message_id
    assert message.message_type == MessageType.AUDIO
    assert message.sender_agent_id == agent_id
    assert message.sent_at == NOW
    assert message.media_duration_seconds == 7
