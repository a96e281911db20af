from datetime import datetime
from typing import Any
from uuid import UUID


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _str_or_none(value: UUID | None) -> str | None:
    return str(value) if value is not None else None


def conversation_payload(conversation: Any) -> dict[str, Any]:
    return {
        "id": str(conversation.id),
        "contact_ref": conversation.contact_ref,
        "is_group": conversation.is_group,
        "display_name": conversation.display_name,
        "avatar_url": conversation.avatar_url,
        "last_message_at": _iso(conversation.last_message_at),
        "last_message_preview": conversation.last_message_preview,
        "unread_count": conversation.unread_count,
        "archived": conversation.archived,
        "muted": conversation.muted,
        "pinned": conversation.pinned,
        "favorite": conversation.favorite,
        "blocked": conversation.blocked,
    }


def assignment_payload(assignment: Any) -> dict[str, Any]:
    return {
        "id": str(assignment.id),
        "conversation_id": str(assignment.conversation_id),
        "agent_id": _str_or_none(assignment.agent_id),
        "department_id": _str_or_none(assignment.department_id),
        "status": assignment.status.value,
        "closed_at": _iso(assignment.closed_at),
        "updated_at": _iso(assignment.updated_at),
    }


def message_payload(message: Any) -> dict[str, Any]:
    return {
        "id": str(message.id),
        "conversation_id": str(message.conversation_id),
        "direction": message.direction.value,
        "message_type": message.message_type.value,
        "content": message.content,
        "media_url": message.media_url,
        "media_mime_type": message.media_mime_type,
        "media_filename": message.media_filename,
        "media_duration_seconds": message.media_duration_seconds,
        "sender_agent_id": _str_or_none(message.sender_agent_id),
        "client_ref": message.client_ref,
        "position": message.position,
        "sent_at": message.sent_at.isoformat(),
    }


def agent_payload(agent: Any) -> dict[str, Any]:
    return {
        "id": str(agent.id),
        "display_name": agent.display_name,
        "department_id": _str_or_none(agent.department_id),
        "is_online": agent.is_online,
        "is_active": agent.is_active,
        "max_concurrent_chats": agent.max_concurrent_chats,
        "last_activity_at": _iso(agent.last_activity_at),
    }
