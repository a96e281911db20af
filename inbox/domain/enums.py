from enum import Enum


class AssignmentStatus(str, Enum):
    TRIAGE = "triage"
    PENDING = "pending"
    ACTIVE = "active"
    WAITING = "waiting"
    CLOSED = "closed"


class MessageDirection(str, Enum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"


class MessageType(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    DOCUMENT = "document"
    AUDIO = "audio"


class AgentPresence(str, Enum):
    ONLINE = "online"
    OFFLINE = "offline"


class ConversationFlag(str, Enum):
    ARCHIVED = "archived"
    MUTED = "muted"
    PINNED = "pinned"
    FAVORITE = "favorite"
    BLOCKED = "blocked"


class InboxView(str, Enum):
    MINE = "mine"
    QUEUE = "queue"


class RoutingAction(str, Enum):
    CLAIM = "claim"
    RELEASE = "release"
    TRANSFER = "transfer"
    SET_STATUS = "set_status"


class RecordingState(str, Enum):
    IDLE = "idle"
    RECORDING = "recording"
    STOPPED = "stopped"
    CONFIRMED = "confirmed"


OWNED_STATUSES: frozenset[AssignmentStatus] = frozenset(
    {AssignmentStatus.ACTIVE, AssignmentStatus.WAITING}
)
QUEUED_STATUSES: frozenset[AssignmentStatus] = frozenset(
    {AssignmentStatus.TRIAGE, AssignmentStatus.PENDING}
)
