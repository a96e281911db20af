from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from inbox.api.v1.deps import get_principal
from inbox.core.db import get_db_session
from inbox.core.security import Principal
from inbox.domain.enums import InboxView
from inbox.domain.filters import STATUS_ALL, InboxFilter
from inbox.schemas.inbox import (
    InboxCountersResponse,
    InboxItemResponse,
    InboxListResponse,
)
from inbox.services.inbox_service import InboxService

router = APIRouter()


async def get_inbox_service(
    session: AsyncSession = Depends(get_db_session),
) -> InboxService:
    return InboxService(session=session)


@router.get("", response_model=InboxListResponse)
async def list_inbox(
    view: InboxView | None = Query(default=None),
    search: str = Query(default="", max_length=120),
    status: str = Query(default=STATUS_ALL, max_length=20),
    unread_only: bool = Query(default=False),
    groups_only: bool = Query(default=False),
    product_id: UUID | None = Query(default=None),
    tag_id: UUID | None = Query(default=None),
    agent_id: UUID | None = Query(default=None),
    limit: int = Query(default=100, ge=1, le=500),
    service: InboxService = Depends(get_inbox_service),
    principal: Principal = Depends(get_principal),
) -> InboxListResponse:
    inbox_filter = InboxFilter(
        view=view,
        search=search,
        status=status,
        unread_only=unread_only,
        groups_only=groups_only,
        product_id=product_id,
        tag_id=tag_id,
        agent_id=agent_id,
    )
    items = await service.list_inbox(inbox_filter, principal.agent_id, limit=limit)
    return InboxListResponse(
        items=[InboxItemResponse.model_validate(item) for item in items]
    )


@router.get("/counters", response_model=InboxCountersResponse)
async def inbox_counters(
    service: InboxService = Depends(get_inbox_service),
    principal: Principal = Depends(get_principal),
) -> InboxCountersResponse:
    counters = await service.counters(principal.agent_id)
    return InboxCountersResponse.model_validate(counters)
