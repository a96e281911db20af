from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from inbox.api.v1.deps import get_admin_principal, get_principal, get_realtime
from inbox.api.v1.errors import SERVICE_ERRORS, raise_for_service_error
from inbox.core.db import get_db_session
from inbox.core.security import Principal
from inbox.infra.realtime.publisher import RealtimePublisher
from inbox.schemas.assignment import (
    AssignmentResponse,
    ReopenConversationRequest,
    RoutingSettingsResponse,
    SetAssignmentStatusRequest,
    SetAssignmentTagsRequest,
    TransferAssignmentRequest,
    UpdateRoutingSettingsRequest,
)
from inbox.services.routing_service import RoutingService

router = APIRouter()


async def get_routing_service(
    session: AsyncSession = Depends(get_db_session),
    realtime: RealtimePublisher = Depends(get_realtime),
) -> RoutingService:
    return RoutingService(session=session, realtime=realtime)


def _to_assignment_response(assignment) -> AssignmentResponse:
    return AssignmentResponse.model_validate(assignment)


@router.get("/assignments/{assignment_id}", response_model=AssignmentResponse)
async def get_assignment(
    assignment_id: UUID,
    service: RoutingService = Depends(get_routing_service),
    _: Principal = Depends(get_principal),
) -> AssignmentResponse:
    try:
        assignment = await service.get_assignment(assignment_id)
    except SERVICE_ERRORS as exc:
        raise_for_service_error(exc)
    return _to_assignment_response(assignment)


@router.post("/assignments/{assignment_id}/claim", response_model=AssignmentResponse)
async def claim_assignment(
    assignment_id: UUID,
    service: RoutingService = Depends(get_routing_service),
    principal: Principal = Depends(get_principal),
) -> AssignmentResponse:
    try:
        assignment = await service.claim(assignment_id, principal.agent_id)
    except SERVICE_ERRORS as exc:
        raise_for_service_error(exc)
    return _to_assignment_response(assignment)


@router.post("/assignments/{assignment_id}/release", response_model=AssignmentResponse)
async def release_assignment(
    assignment_id: UUID,
    service: RoutingService = Depends(get_routing_service),
    principal: Principal = Depends(get_principal),
) -> AssignmentResponse:
    try:
        assignment = await service.release(
            assignment_id, principal.agent_id, is_admin=principal.is_admin
        )
    except SERVICE_ERRORS as exc:
        raise_for_service_error(exc)
    return _to_assignment_response(assignment)


@router.post("/assignments/{assignment_id}/transfer", response_model=AssignmentResponse)
async def transfer_assignment(
    assignment_id: UUID,
    payload: TransferAssignmentRequest,
    service: RoutingService = Depends(get_routing_service),
    principal: Principal = Depends(get_principal),
) -> AssignmentResponse:
    try:
        assignment = await service.transfer(
            assignment_id,
            principal.agent_id,
            payload.target_agent_id,
            department_id=payload.department_id,
            is_admin=principal.is_admin,
        )
    except SERVICE_ERRORS as exc:
        raise_for_service_error(exc)
    return _to_assignment_response(assignment)


@router.post("/assignments/{assignment_id}/status", response_model=AssignmentResponse)
async def set_assignment_status(
    assignment_id: UUID,
    payload: SetAssignmentStatusRequest,
    service: RoutingService = Depends(get_routing_service),
    principal: Principal = Depends(get_principal),
) -> AssignmentResponse:
    try:
        assignment = await service.set_status(
            assignment_id,
            payload.status,
            principal.agent_id,
            is_admin=principal.is_admin,
        )
    except SERVICE_ERRORS as exc:
        raise_for_service_error(exc)
    return _to_assignment_response(assignment)


@router.put("/assignments/{assignment_id}/tags", response_model=AssignmentResponse)
async def set_assignment_tags(
    assignment_id: UUID,
    payload: SetAssignmentTagsRequest,
    service: RoutingService = Depends(get_routing_service),
    _: Principal = Depends(get_principal),
) -> AssignmentResponse:
    try:
        assignment = await service.set_tags(assignment_id, payload.tag_ids)
    except SERVICE_ERRORS as exc:
        raise_for_service_error(exc)
    return _to_assignment_response(assignment)


@router.post("/conversations/{conversation_id}/reopen", response_model=AssignmentResponse)
async def reopen_conversation(
    conversation_id: UUID,
    payload: ReopenConversationRequest | None = None,
    service: RoutingService = Depends(get_routing_service),
    _: Principal = Depends(get_principal),
) -> AssignmentResponse:
    try:
        result = await service.reopen(
            conversation_id,
            department_id=payload.department_id if payload is not None else None,
        )
    except SERVICE_ERRORS as exc:
        raise_for_service_error(exc)
    return _to_assignment_response(result.assignment)


@router.get("/routing/settings", response_model=RoutingSettingsResponse)
async def get_routing_settings(
    service: RoutingService = Depends(get_routing_service),
    _: Principal = Depends(get_principal),
) -> RoutingSettingsResponse:
    routing = await service.get_routing_settings()
    return RoutingSettingsResponse.model_validate(routing)


@router.patch("/routing/settings", response_model=RoutingSettingsResponse)
async def update_routing_settings(
    payload: UpdateRoutingSettingsRequest,
    service: RoutingService = Depends(get_routing_service),
    _: Principal = Depends(get_admin_principal),
) -> RoutingSettingsResponse:
    routing = await service.update_routing_settings(
        distribution_enabled=payload.distribution_enabled,
        enforce_capacity=payload.enforce_capacity,
    )
    return RoutingSettingsResponse.model_validate(routing)
