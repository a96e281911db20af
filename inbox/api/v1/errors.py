from typing import NoReturn

from fastapi import HTTPException, status

from inbox.domain.exceptions import (
    CapacityExceededError,
    GatewayFailureError,
    InvalidAssignmentTransition,
    MediaTooLargeError,
    OwnershipConflictError,
    UploadFailureError,
)
from inbox.services.errors import (
    AgentInactiveError,
    AgentNotFoundError,
    AssignmentAccessDeniedError,
    AssignmentClosedError,
    AssignmentNotFoundError,
    AssignmentStillOpenError,
    ConversationBlockedError,
    ConversationNotFoundError,
    DepartmentNotFoundError,
    TagNotFoundError,
)


ERROR_CODE_HEADER = "X-Error-Code"

_NOT_FOUND = (
    AgentNotFoundError,
    AssignmentNotFoundError,
    ConversationNotFoundError,
    DepartmentNotFoundError,
    TagNotFoundError,
)

_CONFLICT_CODES: tuple[tuple[type[Exception], str], ...] = (
    (CapacityExceededError, "capacity_exceeded"),
    (OwnershipConflictError, "ownership_conflict"),
    (AssignmentClosedError, "assignment_closed"),
    (AssignmentStillOpenError, "assignment_open"),
    (InvalidAssignmentTransition, "invalid_transition"),
    (AgentInactiveError, "agent_inactive"),
    (ConversationBlockedError, "conversation_blocked"),
)


def _http_error(status_code: int, code: str, exc: Exception) -> HTTPException:
    return HTTPException(
        status_code=status_code,
        detail=str(exc),
        headers={ERROR_CODE_HEADER: code},
    )


def raise_for_service_error(exc: Exception) -> NoReturn:
    if isinstance(exc, _NOT_FOUND):
        raise _http_error(status.HTTP_404_NOT_FOUND, "not_found", exc) from exc
    if isinstance(exc, AssignmentAccessDeniedError):
        raise _http_error(status.HTTP_403_FORBIDDEN, "access_denied", exc) from exc
    for error_type, code in _CONFLICT_CODES:
        if isinstance(exc, error_type):
            raise _http_error(status.HTTP_409_CONFLICT, code, exc) from exc
    if isinstance(exc, GatewayFailureError):
        raise _http_error(status.HTTP_502_BAD_GATEWAY, "gateway_failure", exc) from exc
    if isinstance(exc, UploadFailureError):
        raise _http_error(status.HTTP_502_BAD_GATEWAY, "upload_failure", exc) from exc
    if isinstance(exc, MediaTooLargeError):
        raise _http_error(
            status.HTTP_413_REQUEST_ENTITY_TOO_LARGE, "media_too_large", exc
        ) from exc
    if isinstance(exc, ValueError):
        raise _http_error(status.HTTP_400_BAD_REQUEST, "invalid_request", exc) from exc
    raise exc


SERVICE_ERRORS: tuple[type[Exception], ...] = (
    LookupError,
    PermissionError,
    ValueError,
    CapacityExceededError,
    OwnershipConflictError,
    GatewayFailureError,
    UploadFailureError,
)
