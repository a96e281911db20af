from typing import Any
from uuid import uuid4

import pytest

from inbox.infra.realtime.channels import (
    INBOX_QUEUE_CHANNEL,
    assignment_channels,
    conversation_channel,
)
from inbox.infra.realtime.events import RealtimeEvent
from inbox.infra.realtime.hub import InMemoryRealtimeHub, build_envelope


class FakeWebSocket:
    def __init__(self, closed: bool = False) -> None:
        self.closed = closed
        self.accepted = False
        self.sent: list[dict[str, Any]] = []

    async def accept(self) -> None:
        self.accepted = True

    async def send_json(self, data: dict[str, Any]) -> None:
        if self.closed:
            raise RuntimeError("websocket is closed")
        self.sent.append(data)


@pytest.mark.asyncio
async def test_socket_on_several_channels_receives_one_copy() -> None:
    hub = InMemoryRealtimeHub()
    socket = FakeWebSocket()
    await hub.connect(socket)
    await hub.subscribe(socket, INBOX_QUEUE_CHANNEL)
    await hub.subscribe(socket, "conversation:1")

    await hub.publish(
        [INBOX_QUEUE_CHANNEL, "conversation:1"], RealtimeEvent.ASSIGNMENT_UPDATED, {"id": "a"}
    )

    assert socket.accepted is True
    assert len(socket.sent) == 1
    assert socket.sent[0]["event"] == "assignment.updated"
    assert socket.sent[0]["channel"] == INBOX_QUEUE_CHANNEL


@pytest.mark.asyncio
async def test_sequence_numbers_are_per_socket() -> None:
    hub = InMemoryRealtimeHub()
    busy = FakeWebSocket()
    quiet = FakeWebSocket()
    await hub.subscribe(busy, INBOX_QUEUE_CHANNEL)
    await hub.subscribe(busy, "conversation:1")
    await hub.subscribe(quiet, "conversation:1")

    await hub.publish([INBOX_QUEUE_CHANNEL], RealtimeEvent.CONVERSATION_UPDATED, {})
    await hub.publish(["conversation:1"], RealtimeEvent.MESSAGE_CREATED, {})

    assert [envelope["seq"] for envelope in busy.sent] == [1, 2]
    assert [envelope["seq"] for envelope in quiet.sent] == [1]


@pytest.mark.asyncio
async def test_unsubscribed_channels_receive_nothing() -> None:
    hub = InMemoryRealtimeHub()
    socket = FakeWebSocket()
    await hub.subscribe(socket, "conversation:1")
    await hub.unsubscribe(socket, "conversation:1")

    await hub.publish(["conversation:1", ""], RealtimeEvent.MESSAGE_CREATED, {})

    assert socket.sent == []
    assert hub.subscriber_count("conversation:1") == 0
    assert hub.channels_for(socket) == set()


@pytest.mark.asyncio
async def test_closed_socket_is_dropped_on_publish() -> None:
    hub = InMemoryRealtimeHub()
    alive = FakeWebSocket()
    dead = FakeWebSocket(closed=True)
    await hub.subscribe(alive, INBOX_QUEUE_CHANNEL)
    await hub.subscribe(dead, INBOX_QUEUE_CHANNEL)

    await hub.publish([INBOX_QUEUE_CHANNEL], RealtimeEvent.AGENT_PRESENCE_CHANGED, {})

    assert len(alive.sent) == 1
    assert hub.subscriber_count(INBOX_QUEUE_CHANNEL) == 1


@pytest.mark.asyncio
async def test_disconnect_clears_subscriptions_and_sequence() -> None:
    hub = InMemoryRealtimeHub()
    socket = FakeWebSocket()
    await hub.subscribe(socket, INBOX_QUEUE_CHANNEL)
    await hub.publish([INBOX_QUEUE_CHANNEL], RealtimeEvent.AGENT_PRESENCE_CHANGED, {})

    await hub.disconnect(socket)
    await hub.subscribe(socket, INBOX_QUEUE_CHANNEL)
    await hub.publish([INBOX_QUEUE_CHANNEL], RealtimeEvent.AGENT_PRESENCE_CHANGED, {})

    assert [envelope["seq"] for envelope in socket.sent] == [1, 1]


def test_envelope_shape() -> None:
    envelope = build_envelope(RealtimeEvent.MESSAGE_CREATED, "conversation:1", {"x": 1}, seq=7)

    assert envelope["event"] == "message.created"
    assert envelope["payload"] == {"x": 1}
    assert envelope["seq"] == 7
    assert "sent_at" in envelope
    assert "seq" not in build_envelope("ping", None, {})


def test_assignment_channels_include_every_owner_once() -> None:
    conversation_id = uuid4()
    agent_id = uuid4()

    channels = assignment_channels(conversation_id, agent_id, None, agent_id)

    assert channels == [
        INBOX_QUEUE_CHANNEL,
        conversation_channel(conversation_id),
        f"agent:{agent_id}:queue",
    ]
