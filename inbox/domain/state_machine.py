from inbox.domain.enums import (
    OWNED_STATUSES,
    QUEUED_STATUSES,
    AssignmentStatus,
    RoutingAction,
)
from inbox.domain.exceptions import InvalidAssignmentTransition


class AssignmentLifecycle:
    """State machine for assignments: triage/pending -> active/waiting -> closed."""

    _allowed_transitions: dict[tuple[AssignmentStatus, RoutingAction], AssignmentStatus] = {
        (AssignmentStatus.TRIAGE, RoutingAction.CLAIM): AssignmentStatus.ACTIVE,
        (AssignmentStatus.PENDING, RoutingAction.CLAIM): AssignmentStatus.ACTIVE,
        (AssignmentStatus.ACTIVE, RoutingAction.RELEASE): AssignmentStatus.PENDING,
        (AssignmentStatus.WAITING, RoutingAction.RELEASE): AssignmentStatus.PENDING,
        (AssignmentStatus.ACTIVE, RoutingAction.TRANSFER): AssignmentStatus.ACTIVE,
    }

    @classmethod
    def transition(
        cls,
        current: AssignmentStatus,
        action: RoutingAction,
        target: AssignmentStatus | None = None,
    ) -> AssignmentStatus:
        if action == RoutingAction.SET_STATUS:
            return cls._set_status(current, target)

        next_state = cls._allowed_transitions.get((current, action))
        if not next_state:
            raise InvalidAssignmentTransition(current=current, action=action)
        return next_state

    @staticmethod
    def _set_status(
        current: AssignmentStatus, target: AssignmentStatus | None
    ) -> AssignmentStatus:
        if target is None or current == AssignmentStatus.CLOSED:
            raise InvalidAssignmentTransition(
                current=current, action=RoutingAction.SET_STATUS, target=target
            )
        return target

    @staticmethod
    def is_terminal(status: AssignmentStatus) -> bool:
        return status == AssignmentStatus.CLOSED

    @staticmethod
    def is_claimable(status: AssignmentStatus) -> bool:
        return status in QUEUED_STATUSES

    @staticmethod
    def requires_owner(status: AssignmentStatus) -> bool:
        return status in OWNED_STATUSES
