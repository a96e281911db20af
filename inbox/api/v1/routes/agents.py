from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from inbox.api.v1.deps import (
    get_admin_principal,
    get_principal,
    get_realtime,
    settings,
)
from inbox.api.v1.errors import SERVICE_ERRORS, raise_for_service_error
from inbox.core.db import get_db_session
from inbox.core.security import Principal, create_agent_access_token
from inbox.infra.db.models import Agent
from inbox.infra.realtime.publisher import RealtimePublisher
from inbox.schemas.agent import (
    AgentLoadResponse,
    AgentResponse,
    AgentSessionResponse,
    RegisterAgentRequest,
    SetAgentPresenceRequest,
    UpdateAgentRequest,
)
from inbox.services.agent_service import AgentService

router = APIRouter()


async def agent_service(
    session: AsyncSession = Depends(get_db_session),
    realtime: RealtimePublisher = Depends(get_realtime),
) -> AgentService:
    return AgentService(session=session, realtime=realtime)


def _issue_session(agent: Agent, *, is_admin: bool) -> AgentSessionResponse:
    token, expires_at = create_agent_access_token(
        user_id=agent.user_id,
        agent_id=agent.id,
        secret=settings.agent_auth_secret,
        ttl_minutes=settings.agent_auth_token_ttl_minutes,
        is_admin=is_admin,
    )
    return AgentSessionResponse(
        access_token=token,
        expires_at=expires_at,
        agent=AgentResponse.model_validate(agent),
    )


@router.post("/register", response_model=AgentSessionResponse)
async def register(
    body: RegisterAgentRequest,
    service: AgentService = Depends(agent_service),
    _: Principal = Depends(get_admin_principal),
) -> AgentSessionResponse:
    try:
        agent = await service.register_agent(
            user_id=body.user_id,
            display_name=body.display_name,
            max_concurrent_chats=body.max_concurrent_chats,
            department_id=body.department_id,
            start_online=body.start_online,
        )
    except SERVICE_ERRORS as exc:
        raise_for_service_error(exc)
    return _issue_session(agent, is_admin=body.is_admin)


@router.post("/me/token", response_model=AgentSessionResponse)
async def renew_token(
    service: AgentService = Depends(agent_service),
    principal: Principal = Depends(get_principal),
) -> AgentSessionResponse:
    try:
        agent = await service.get_agent(principal.agent_id)
    except SERVICE_ERRORS as exc:
        raise_for_service_error(exc)
    return _issue_session(agent, is_admin=principal.is_admin)


@router.get("", response_model=list[AgentLoadResponse])
async def list_agents(
    service: AgentService = Depends(agent_service),
    _: Principal = Depends(get_principal),
) -> list[AgentLoadResponse]:
    return [
        AgentLoadResponse(
            agent=AgentResponse.model_validate(load.agent),
            open_conversations=load.open_conversations,
            available_slots=load.available_slots,
        )
        for load in await service.list_agents()
    ]


@router.get("/me", response_model=AgentResponse)
async def me(
    service: AgentService = Depends(agent_service),
    principal: Principal = Depends(get_principal),
) -> Agent:
    try:
        return await service.get_agent(principal.agent_id)
    except SERVICE_ERRORS as exc:
        raise_for_service_error(exc)


@router.post("/presence", response_model=AgentResponse)
async def update_presence(
    body: SetAgentPresenceRequest,
    service: AgentService = Depends(agent_service),
    principal: Principal = Depends(get_principal),
) -> Agent:
    try:
        return await service.set_presence(principal.agent_id, body.is_online)
    except SERVICE_ERRORS as exc:
        raise_for_service_error(exc)


@router.patch("/{agent_id}", response_model=AgentResponse)
async def update(
    agent_id: UUID,
    body: UpdateAgentRequest,
    service: AgentService = Depends(agent_service),
    _: Principal = Depends(get_admin_principal),
) -> Agent:
    try:
        return await service.update_agent(
            agent_id,
            display_name=body.display_name,
            max_concurrent_chats=body.max_concurrent_chats,
            department_id=body.department_id,
            clear_department=body.clear_department,
            is_active=body.is_active,
        )
    except SERVICE_ERRORS as exc:
        raise_for_service_error(exc)
