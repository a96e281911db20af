from uuid import UUID

AGENT_PRESENCE_CHANNEL = "agents:presence"
INBOX_QUEUE_CHANNEL = "inbox:queue"


def conversation_channel(conversation_id: UUID) -> str:
    return f"conversation:{conversation_id}"


def agent_queue_channel(agent_id: UUID) -> str:
    return f"agent:{agent_id}:queue"


def assignment_channels(conversation_id: UUID, *agent_ids: UUID | None) -> list[str]:
    channels = [INBOX_QUEUE_CHANNEL, conversation_channel(conversation_id)]
    channels.extend(
        agent_queue_channel(agent_id) for agent_id in agent_ids if agent_id is not None
    )
    return list(dict.fromkeys(channels))
