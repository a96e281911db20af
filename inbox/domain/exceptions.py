from uuid import UUID

from inbox.domain.enums import AssignmentStatus, RoutingAction


class InvalidAssignmentTransition(ValueError):
    def __init__(
        self,
        current: AssignmentStatus,
        action: RoutingAction,
        target: AssignmentStatus | None = None,
    ) -> None:
        if target is None:
            detail = f"Cannot apply action '{action.value}' from state '{current.value}'."
        else:
            detail = (
                f"Cannot apply action '{action.value}' from state "
                f"'{current.value}' to '{target.value}'."
            )
        super().__init__(detail)
        self.current = current
        self.action = action
        self.target = target


class CapacityExceededError(RuntimeError):
    def __init__(self, agent_id: UUID, capacity: int) -> None:
        super().__init__(
            f"Agent '{agent_id}' already owns {capacity} open conversation(s)"
        )
        self.agent_id = agent_id
        self.capacity = capacity


class OwnershipConflictError(RuntimeError):
    def __init__(self, assignment_id: UUID, owner_id: UUID | None = None) -> None:
        super().__init__(f"Assignment '{assignment_id}' is already owned")
        self.assignment_id = assignment_id
        self.owner_id = owner_id


class GatewayFailureError(RuntimeError):
    """Dispatch through the messaging gateway failed or timed out."""

    retryable = True

    def __init__(self, detail: str, *, timed_out: bool = False) -> None:
        super().__init__(detail)
        self.detail = detail
        self.timed_out = timed_out


class UploadFailureError(RuntimeError):
    retryable = True

    def __init__(self, path: str, detail: str) -> None:
        super().__init__(f"Upload of '{path}' failed: {detail}")
        self.path = path
        self.detail = detail


class MediaTooLargeError(ValueError):
    def __init__(self, size: int, limit: int) -> None:
        super().__init__(
            f"Media of {size} bytes exceeds the {limit // (1024 * 1024)} MB limit"
        )
        self.size = size
        self.limit = limit


class RecordingUnavailableError(RuntimeError):
    def __init__(self, detail: str = "Microphone is unavailable") -> None:
        super().__init__(detail)
        self.detail = detail


class RecordingInProgressError(RuntimeError):
    def __init__(self) -> None:
        super().__init__("A recording is already in progress for this conversation")
