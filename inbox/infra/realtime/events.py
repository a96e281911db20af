from enum import Enum


class RealtimeEvent(str, Enum):
    """Event names carried in the ``event`` field of every socket envelope."""

    MESSAGE_CREATED = "message.created"
    CONVERSATION_UPDATED = "conversation.updated"
    # Claim, transfer, release, close and reopen all surface as one event.
    ASSIGNMENT_UPDATED = "assignment.updated"
    AGENT_PRESENCE_CHANGED = "agent.presence.changed"
