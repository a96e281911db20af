import logging
from collections.abc import Mapping
from dataclasses import replace
from datetime import datetime
from typing import Any
from uuid import UUID

from inbox.client.api_client import InboxApiClient
from inbox.client.composer import MessageComposer
from inbox.client.timeline import ConfirmedMessage, ConversationTimeline
from inbox.domain.enums import AssignmentStatus
from inbox.domain.filters import (
    InboxCounters,
    InboxFilter,
    InboxItem,
    apply_inbox_filter,
    count_inbox,
)
from inbox.infra.realtime.events import RealtimeEvent

logger = logging.getLogger(__name__)

_CONVERSATION_FIELDS = (
    "unread_count",
    "last_message_preview",
    "archived",
    "pinned",
    "muted",
    "favorite",
    "blocked",
)


class InboxSession:
    """Read-through cache of one agent's inbox, kept current by realtime events.

    The server stays authoritative: events only patch what the cache already holds,
    and anything it cannot place marks the cache stale so the next read reloads.
    """

    def __init__(
        self,
        api: InboxApiClient,
        agent_id: UUID,
        send_timeout_seconds: float = 15.0,
    ) -> None:
        self.api = api
        self.agent_id = agent_id
        self.send_timeout_seconds = send_timeout_seconds
        self._items: dict[UUID, InboxItem] = {}
        self._timelines: dict[UUID, ConversationTimeline] = {}
        self._composers: dict[UUID, MessageComposer] = {}
        self._online_agents = 0
        self._last_seq: int | None = None
        self.stale = True

    async def refresh(self) -> None:
        items = await self.api.list_inbox()
        counters = await self.api.inbox_counters()
        self._items = {item.assignment_id: item for item in items}
        self._online_agents = counters.online_agents
        self.stale = False

    async def view(self, inbox_filter: InboxFilter) -> list[InboxItem]:
        if self.stale:
            await self.refresh()
        return apply_inbox_filter(self._items.values(), inbox_filter, self.agent_id)

    async def counters(self) -> InboxCounters:
        if self.stale:
            await self.refresh()
        return count_inbox(self._items.values(), self.agent_id, self._online_agents)

    async def open_conversation(self, conversation_id: UUID) -> ConversationTimeline:
        messages = await self.api.list_messages(conversation_id)
        timeline = self._timelines.get(conversation_id)
        if timeline is None:
            timeline = ConversationTimeline(conversation_id, messages)
            self._timelines[conversation_id] = timeline
        else:
            timeline.load(messages)
        return timeline

    def composer_for(self, conversation_id: UUID) -> MessageComposer:
        composer = self._composers.get(conversation_id)
        if composer is None:
            timeline = self._timelines.setdefault(
                conversation_id, ConversationTimeline(conversation_id)
            )
            composer = MessageComposer(
                timeline, self.api, timeout_seconds=self.send_timeout_seconds
            )
            self._composers[conversation_id] = composer
        return composer

    def timeline(self, conversation_id: UUID) -> ConversationTimeline | None:
        return self._timelines.get(conversation_id)

    def apply_event(self, envelope: Mapping[str, Any]) -> None:
        seq = envelope.get("seq")
        if isinstance(seq, int):
            if self._last_seq is not None and seq > self._last_seq + 1:
                # Missed envelopes; patches alone can no longer be trusted.
                self.stale = True
            self._last_seq = seq

        event = envelope.get("event")
        payload = envelope.get("payload") or {}
        if event == RealtimeEvent.MESSAGE_CREATED.value:
            self._apply_message(payload["message"])
        elif event == RealtimeEvent.CONVERSATION_UPDATED.value:
            self._apply_conversation(payload["conversation"])
        elif event == RealtimeEvent.ASSIGNMENT_UPDATED.value:
            self._apply_assignment(payload["assignment"])
        else:
            logger.debug("ignoring realtime event %s", event)

    def _apply_message(self, payload: Mapping[str, Any]) -> None:
        message = ConfirmedMessage.from_payload(payload)
        timeline = self._timelines.get(message.conversation_id)
        if timeline is not None:
            timeline.apply_remote(message)

    def _apply_conversation(self, payload: Mapping[str, Any]) -> None:
        conversation_id = UUID(str(payload["id"]))
        changes: dict[str, Any] = {
            name: payload[name] for name in _CONVERSATION_FIELDS if name in payload
        }
        if "display_name" in payload:
            changes["contact_name"] = payload["display_name"]
        if "last_message_at" in payload:
            value = payload["last_message_at"]
            changes["last_message_at"] = datetime.fromisoformat(value) if value else None
        for assignment_id, item in list(self._items.items()):
            if item.conversation_id == conversation_id:
                self._items[assignment_id] = replace(item, **changes)

    def _apply_assignment(self, payload: Mapping[str, Any]) -> None:
        assignment_id = UUID(str(payload["id"]))
        conversation_id = UUID(str(payload["conversation_id"]))
        status = AssignmentStatus(payload["status"])
        agent_id = UUID(str(payload["agent_id"])) if payload.get("agent_id") else None
        department_id = (
            UUID(str(payload["department_id"])) if payload.get("department_id") else None
        )

        item = self._items.get(assignment_id)
        if item is not None:
            self._items[assignment_id] = replace(
                item, status=status, agent_id=agent_id, department_id=department_id
            )
            return

        # A new episode for a conversation already cached inherits its snapshot.
        sibling = next(
            (cached for cached in self._items.values() if cached.conversation_id == conversation_id),
            None,
        )
        if sibling is None:
            self.stale = True
            return
        self._items[assignment_id] = replace(
            sibling,
            assignment_id=assignment_id,
            status=status,
            agent_id=agent_id,
            department_id=department_id,
            tag_ids=frozenset(),
        )
