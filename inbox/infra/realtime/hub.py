import asyncio
import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from fastapi import WebSocket
from starlette.websockets import WebSocketDisconnect

from inbox.infra.realtime.events import RealtimeEvent

logger = logging.getLogger(__name__)


def build_envelope(
    event: RealtimeEvent | str,
    channel: str | None,
    payload: Mapping[str, Any],
    seq: int | None = None,
) -> dict[str, Any]:
    envelope: dict[str, Any] = {
        "event": event.value if isinstance(event, RealtimeEvent) else event,
        "channel": channel,
        "payload": dict(payload),
        "sent_at": datetime.now(UTC).isoformat(),
    }
    if seq is not None:
        envelope["seq"] = seq
    return envelope


@dataclass(slots=True, eq=False)
class _Subscriber:
    websocket: WebSocket
    channels: set[str] = field(default_factory=set)
    last_seq: int = 0

    def next_seq(self) -> int:
        self.last_seq += 1
        return self.last_seq


class InMemoryRealtimeHub:
    """Single-process fan-out of domain events to agent websockets.

    Each socket numbers the envelopes it receives, starting at 1 on every new
    connection. A client that sees a gap has missed something and reloads.
    """

    def __init__(self) -> None:
        self._subscribers: dict[WebSocket, _Subscriber] = {}
        self._lock = asyncio.Lock()

    async def connect(self, websocket: WebSocket) -> None:
        await websocket.accept()

    def subscriber_count(self, channel: str) -> int:
        return sum(1 for sub in self._subscribers.values() if channel in sub.channels)

    def channels_for(self, websocket: WebSocket) -> set[str]:
        subscriber = self._subscribers.get(websocket)
        return set(subscriber.channels) if subscriber else set()

    async def subscribe(self, websocket: WebSocket, channel: str) -> None:
        async with self._lock:
            subscriber = self._subscribers.get(websocket)
            if subscriber is None:
                subscriber = self._subscribers[websocket] = _Subscriber(websocket)
            subscriber.channels.add(channel)

    async def unsubscribe(self, websocket: WebSocket, channel: str) -> None:
        async with self._lock:
            subscriber = self._subscribers.get(websocket)
            if subscriber is not None:
                subscriber.channels.discard(channel)

    async def disconnect(self, websocket: WebSocket) -> None:
        async with self._lock:
            self._subscribers.pop(websocket, None)

    async def publish(
        self,
        channels: Sequence[str],
        event: RealtimeEvent,
        payload: Mapping[str, Any],
    ) -> None:
        targets = [channel for channel in dict.fromkeys(channels) if channel]
        if not targets:
            return

        outgoing: list[tuple[WebSocket, dict[str, Any]]] = []
        async with self._lock:
            for subscriber in self._subscribers.values():
                # First matching channel names the envelope; one copy per socket.
                channel = next((c for c in targets if c in subscriber.channels), None)
                if channel is None:
                    continue
                envelope = build_envelope(event, channel, payload, subscriber.next_seq())
                outgoing.append((subscriber.websocket, envelope))

        dead: list[WebSocket] = []
        for websocket, envelope in outgoing:
            try:
                await websocket.send_json(envelope)
            except (RuntimeError, WebSocketDisconnect):
                dead.append(websocket)

        if dead:
            logger.debug("dropping %d closed realtime socket(s)", len(dead))
            async with self._lock:
                for websocket in dead:
                    self._subscribers.pop(websocket, None)
