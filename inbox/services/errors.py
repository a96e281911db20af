from uuid import UUID

from inbox.domain.enums import AssignmentStatus


class ConversationNotFoundError(LookupError):
    def __init__(self, conversation_id: UUID) -> None:
        super().__init__(f"Conversation '{conversation_id}' not found")
        self.conversation_id = conversation_id


class AssignmentNotFoundError(LookupError):
    def __init__(self, assignment_id: UUID) -> None:
        super().__init__(f"Assignment '{assignment_id}' not found")
        self.assignment_id = assignment_id


class AgentNotFoundError(LookupError):
    def __init__(self, agent_id: UUID) -> None:
        super().__init__(f"Agent '{agent_id}' not found")
        self.agent_id = agent_id


class DepartmentNotFoundError(LookupError):
    def __init__(self, department_id: UUID) -> None:
        super().__init__(f"Department '{department_id}' not found")
        self.department_id = department_id


class TagNotFoundError(LookupError):
    def __init__(self, tag_ids: set[UUID]) -> None:
        joined = ", ".join(sorted(str(tag_id) for tag_id in tag_ids))
        super().__init__(f"Tag(s) not found: {joined}")
        self.tag_ids = tag_ids


class AgentInactiveError(ValueError):
    def __init__(self, agent_id: UUID) -> None:
        super().__init__(f"Agent '{agent_id}' is inactive and cannot own conversations")
        self.agent_id = agent_id


class AssignmentAccessDeniedError(PermissionError):
    def __init__(self, assignment_id: UUID, agent_id: UUID) -> None:
        super().__init__(
            f"Assignment '{assignment_id}' is not owned by agent '{agent_id}'"
        )
        self.assignment_id = assignment_id
        self.agent_id = agent_id


class AssignmentClosedError(ValueError):
    def __init__(self, assignment_id: UUID) -> None:
        super().__init__(f"Assignment '{assignment_id}' is closed and read-only")
        self.assignment_id = assignment_id


class AssignmentStillOpenError(ValueError):
    def __init__(self, conversation_id: UUID, status: AssignmentStatus) -> None:
        super().__init__(
            f"Conversation '{conversation_id}' already has an open assignment "
            f"in '{status.value}' state"
        )
        self.conversation_id = conversation_id
        self.status = status


class SendRateLimitedError(RuntimeError):
    def __init__(self, retry_after: float) -> None:
        super().__init__("Too many messages sent, slow down")
        self.retry_after = retry_after


class ConversationBlockedError(ValueError):
    def __init__(self, conversation_id: UUID) -> None:
        super().__init__(f"Conversation '{conversation_id}' is blocked")
        self.conversation_id = conversation_id
