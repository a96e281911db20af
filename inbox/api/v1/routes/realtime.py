import json
import logging
from datetime import UTC, datetime
from typing import Any
from uuid import UUID

from fastapi import APIRouter, WebSocket
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from starlette.websockets import WebSocketDisconnect

from inbox.core.config import get_settings
from inbox.core.db import get_session_factory
from inbox.core.security import Principal, decode_agent_access_token
from inbox.infra.db.repositories import AgentRepository, ConversationRepository
from inbox.infra.realtime.channels import (
    AGENT_PRESENCE_CHANNEL,
    INBOX_QUEUE_CHANNEL,
    agent_queue_channel,
    conversation_channel,
)
from inbox.infra.realtime.hub import InMemoryRealtimeHub
from inbox.services.agent_service import AgentService

router = APIRouter()
logger = logging.getLogger(__name__)

POLICY_VIOLATION = 1008
INTERNAL_ERROR = 1011


class _Rejected(Exception):
    def __init__(self, code: int, reason: str) -> None:
        super().__init__(reason)
        self.code = code
        self.reason = reason


def _as_uuid(raw: Any) -> UUID | None:
    try:
        return UUID(str(raw)) if raw is not None else None
    except ValueError:
        return None


async def _reply(websocket: WebSocket, event: str, **payload: Any) -> None:
    await websocket.send_json(
        {"event": event, "payload": payload, "sent_at": datetime.now(UTC).isoformat()}
    )


async def _conversation_exists(
    sessions: async_sessionmaker[AsyncSession], conversation_id: UUID
) -> bool:
    async with sessions() as session:
        return await ConversationRepository(session).get_by_id(conversation_id) is not None


async def _authenticate(
    websocket: WebSocket, sessions: async_sessionmaker[AsyncSession]
) -> Principal:
    token = websocket.query_params.get("access_token", "").strip()
    if not token:
        raise _Rejected(POLICY_VIOLATION, "access_token query parameter is required")
    try:
        principal = decode_agent_access_token(token, get_settings().agent_auth_secret)
    except ValueError as exc:
        raise _Rejected(POLICY_VIOLATION, "Invalid or expired agent session") from exc

    async with sessions() as session:
        agent = await AgentRepository(session).get_by_id(principal.agent_id)
    if agent is None or agent.user_id != principal.user_id or not agent.is_active:
        raise _Rejected(POLICY_VIOLATION, "Invalid or expired agent session")
    return principal


async def _set_presence(
    sessions: async_sessionmaker[AsyncSession],
    hub: InMemoryRealtimeHub,
    agent_id: UUID,
    is_online: bool,
) -> None:
    async with sessions() as session:
        await AgentService(session, realtime=hub).set_presence(agent_id, is_online)


async def _handle_action(
    websocket: WebSocket,
    hub: InMemoryRealtimeHub,
    sessions: async_sessionmaker[AsyncSession],
    raw: str,
) -> None:
    if raw.strip().lower() == "ping":
        await _reply(websocket, "system.pong")
        return
    try:
        message = json.loads(raw)
    except json.JSONDecodeError:
        await _reply(websocket, "system.error", detail="Expected JSON payload")
        return
    if not isinstance(message, dict):
        await _reply(websocket, "system.error", detail="Expected JSON object")
        return

    action = message.get("action")
    if action == "ping":
        await _reply(websocket, "system.pong")
        return
    if action not in ("subscribe_conversation", "unsubscribe_conversation"):
        await _reply(websocket, "system.error", detail="Unsupported action")
        return

    conversation_id = _as_uuid(message.get("conversation_id"))
    if conversation_id is None:
        await _reply(websocket, "system.error", detail="Invalid conversation_id")
        return
    channel = conversation_channel(conversation_id)

    if action == "unsubscribe_conversation":
        await hub.unsubscribe(websocket, channel)
        await _reply(websocket, "system.unsubscribed", channel=channel)
    elif await _conversation_exists(sessions, conversation_id):
        await hub.subscribe(websocket, channel)
        await _reply(websocket, "system.subscribed", channel=channel)
    else:
        await _reply(websocket, "system.error", detail="Conversation not found")


@router.websocket("/ws")
async def realtime_ws(websocket: WebSocket) -> None:
    hub: InMemoryRealtimeHub | None = getattr(websocket.app.state, "realtime_hub", None)
    if hub is None:
        await websocket.close(code=INTERNAL_ERROR, reason="Realtime hub not initialized")
        return
    try:
        sessions = get_session_factory()
    except RuntimeError:
        await websocket.close(code=INTERNAL_ERROR, reason="Database is not initialized")
        return

    opening_conversation = _as_uuid(websocket.query_params.get("conversation_id"))
    try:
        principal = await _authenticate(websocket, sessions)
        if opening_conversation is not None and not await _conversation_exists(
            sessions, opening_conversation
        ):
            raise _Rejected(POLICY_VIOLATION, "Conversation not found")
    except _Rejected as rejected:
        await websocket.close(code=rejected.code, reason=rejected.reason)
        return

    agent_id = principal.agent_id
    own_queue = agent_queue_channel(agent_id)
    channels = [own_queue, AGENT_PRESENCE_CHANNEL, INBOX_QUEUE_CHANNEL]
    if opening_conversation is not None:
        channels.append(conversation_channel(opening_conversation))

    await hub.connect(websocket)
    for channel in channels:
        await hub.subscribe(websocket, channel)
    await _reply(websocket, "system.connected", agent_id=str(agent_id), channels=channels)
    await _set_presence(sessions, hub, agent_id, True)

    try:
        while True:
            await _handle_action(websocket, hub, sessions, await websocket.receive_text())
    except WebSocketDisconnect:
        logger.debug("agent %s socket closed", agent_id)
    finally:
        await hub.disconnect(websocket)
        # Another open tab keeps the agent online.
        if hub.subscriber_count(own_queue) == 0:
            await _set_presence(sessions, hub, agent_id, False)
