"""Optimistic message timeline for one conversation.

Entries are either ``PendingMessage`` (staged locally, keyed by a temporary id) or
``ConfirmedMessage`` (persisted on the server, keyed by its durable id). A pending
entry is replaced in place once the server confirms it, so the operator never sees
the message jump or appear twice.
"""

from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from typing import Any
from uuid import UUID, uuid4

from inbox.domain.enums import MessageDirection, MessageType

TEMP_ID_PREFIX = "temp-"


def new_temp_id() -> str:
    return f"{TEMP_ID_PREFIX}{uuid4()}"


def _parse_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


@dataclass(frozen=True, slots=True)
class PendingMessage:
    temp_id: str
    conversation_id: UUID
    message_type: MessageType
    content: str
    staged_at: datetime
    media_url: str | None = None
    media_filename: str | None = None
    media_mime_type: str | None = None
    media_duration_seconds: int | None = None

    @property
    def key(self) -> str:
        return self.temp_id


@dataclass(frozen=True, slots=True)
class ConfirmedMessage:
    id: UUID
    conversation_id: UUID
    direction: MessageDirection
    message_type: MessageType
    content: str
    sent_at: datetime
    position: int | None = None
    media_url: str | None = None
    media_filename: str | None = None
    media_mime_type: str | None = None
    media_duration_seconds: int | None = None
    sender_agent_id: UUID | None = None
    client_ref: str | None = None

    @property
    def key(self) -> str:
        return str(self.id)

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "ConfirmedMessage":
        sender = payload.get("sender_agent_id")
        return cls(
            id=UUID(str(payload["id"])),
            conversation_id=UUID(str(payload["conversation_id"])),
            direction=MessageDirection(payload["direction"]),
            message_type=MessageType(payload["message_type"]),
            content=payload.get("content") or "",
            sent_at=_parse_datetime(payload["sent_at"]),
            position=payload.get("position"),
            media_url=payload.get("media_url"),
            media_filename=payload.get("media_filename"),
            media_mime_type=payload.get("media_mime_type"),
            media_duration_seconds=payload.get("media_duration_seconds"),
            sender_agent_id=UUID(str(sender)) if sender else None,
            client_ref=payload.get("client_ref"),
        )


TimelineEntry = PendingMessage | ConfirmedMessage


def _sort_key(message: ConfirmedMessage) -> tuple[datetime, int]:
    return (message.sent_at, message.position if message.position is not None else 0)


class ConversationTimeline:
    def __init__(
        self,
        conversation_id: UUID,
        messages: Iterable[ConfirmedMessage] = (),
    ) -> None:
        self.conversation_id = conversation_id
        self._entries: list[TimelineEntry] = sorted(messages, key=_sort_key)

    def __iter__(self) -> Iterator[TimelineEntry]:
        return iter(list(self._entries))

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def entries(self) -> tuple[TimelineEntry, ...]:
        return tuple(self._entries)

    def pending(self) -> list[PendingMessage]:
        return [entry for entry in self._entries if isinstance(entry, PendingMessage)]

    def confirmed(self) -> list[ConfirmedMessage]:
        return [entry for entry in self._entries if isinstance(entry, ConfirmedMessage)]

    def is_pending(self, temp_id: str) -> bool:
        return self._index_of_pending(temp_id) is not None

    def find_by_client_ref(self, client_ref: str) -> ConfirmedMessage | None:
        for entry in self._entries:
            if isinstance(entry, ConfirmedMessage) and entry.client_ref == client_ref:
                return entry
        return None

    def stage(
        self,
        content: str,
        message_type: MessageType = MessageType.TEXT,
        *,
        temp_id: str | None = None,
        media_url: str | None = None,
        media_filename: str | None = None,
        media_mime_type: str | None = None,
        media_duration_seconds: int | None = None,
    ) -> PendingMessage:
        pending = PendingMessage(
            temp_id=temp_id or new_temp_id(),
            conversation_id=self.conversation_id,
            message_type=message_type,
            content=content,
            staged_at=datetime.now(UTC),
            media_url=media_url,
            media_filename=media_filename,
            media_mime_type=media_mime_type,
            media_duration_seconds=media_duration_seconds,
        )
        if self._index_of_pending(pending.temp_id) is not None:
            raise ValueError(f"Message '{pending.temp_id}' is already staged")
        self._entries.append(pending)
        return pending

    def confirm(self, temp_id: str, message: ConfirmedMessage) -> ConfirmedMessage:
        index = self._index_of_pending(temp_id)
        if index is None:
            raise LookupError(f"No pending message '{temp_id}'")

        if message.client_ref is None:
            message = replace(message, client_ref=temp_id)
        # The realtime echo may have landed before the response did.
        echoed = self._index_of_confirmed(message.id)
        if echoed is not None:
            del self._entries[index]
            return message

        self._entries[index] = message
        return message

    def rollback(self, temp_id: str) -> PendingMessage:
        index = self._index_of_pending(temp_id)
        if index is None:
            raise LookupError(f"No pending message '{temp_id}'")
        entry = self._entries.pop(index)
        assert isinstance(entry, PendingMessage)
        return entry

    def apply_remote(self, message: ConfirmedMessage) -> bool:
        """Merge a message pushed by the server. Returns False when already shown."""
        if message.conversation_id != self.conversation_id:
            return False
        if self._index_of_confirmed(message.id) is not None:
            return False
        if message.client_ref and self._index_of_pending(message.client_ref) is not None:
            self.confirm(message.client_ref, message)
            return True

        key = _sort_key(message)
        index = len(self._entries)
        while index > 0:
            previous = self._entries[index - 1]
            if isinstance(previous, PendingMessage) or _sort_key(previous) > key:
                index -= 1
                continue
            break
        self._entries.insert(index, message)
        return True

    def load(self, messages: Iterable[ConfirmedMessage]) -> None:
        """Replace confirmed history with a server snapshot, keeping staged sends."""
        pending = self.pending()
        snapshot = sorted(messages, key=_sort_key)
        refs = {message.client_ref for message in snapshot if message.client_ref}
        self._entries = [*snapshot, *(entry for entry in pending if entry.temp_id not in refs)]

    def _index_of_pending(self, temp_id: str) -> int | None:
        for index, entry in enumerate(self._entries):
            if isinstance(entry, PendingMessage) and entry.temp_id == temp_id:
                return index
        return None

    def _index_of_confirmed(self, message_id: UUID) -> int | None:
        for index, entry in enumerate(self._entries):
            if isinstance(entry, ConfirmedMessage) and entry.id == message_id:
                return index
        return None
