from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from inbox.api.v1.deps import get_principal, get_realtime
from inbox.api.v1.errors import SERVICE_ERRORS, raise_for_service_error
from inbox.core.db import get_db_session
from inbox.core.security import Principal
from inbox.domain.enums import ConversationFlag
from inbox.infra.realtime.publisher import RealtimePublisher
from inbox.schemas.conversation import (
    ConversationProductsResponse,
    ConversationResponse,
    SetConversationFlagsRequest,
    SetConversationProductsRequest,
)
from inbox.services.conversation_service import ConversationService

router = APIRouter()


async def get_conversation_service(
    session: AsyncSession = Depends(get_db_session),
    realtime: RealtimePublisher = Depends(get_realtime),
) -> ConversationService:
    return ConversationService(session=session, realtime=realtime)


@router.get("/{conversation_id}", response_model=ConversationResponse)
async def get_conversation(
    conversation_id: UUID,
    service: ConversationService = Depends(get_conversation_service),
    _: Principal = Depends(get_principal),
) -> ConversationResponse:
    try:
        conversation = await service.get_conversation(conversation_id)
    except SERVICE_ERRORS as exc:
        raise_for_service_error(exc)
    return ConversationResponse.model_validate(conversation)


@router.patch("/{conversation_id}/flags", response_model=ConversationResponse)
async def set_conversation_flags(
    conversation_id: UUID,
    payload: SetConversationFlagsRequest,
    service: ConversationService = Depends(get_conversation_service),
    _: Principal = Depends(get_principal),
) -> ConversationResponse:
    flags = {
        ConversationFlag(name): value
        for name, value in payload.model_dump(exclude_none=True).items()
    }
    try:
        conversation = await service.set_flags(conversation_id, flags)
    except SERVICE_ERRORS as exc:
        raise_for_service_error(exc)
    return ConversationResponse.model_validate(conversation)


@router.put("/{conversation_id}/products", response_model=ConversationProductsResponse)
async def set_conversation_products(
    conversation_id: UUID,
    payload: SetConversationProductsRequest,
    service: ConversationService = Depends(get_conversation_service),
    _: Principal = Depends(get_principal),
) -> ConversationProductsResponse:
    try:
        product_ids = await service.set_products(conversation_id, payload.product_ids)
    except SERVICE_ERRORS as exc:
        raise_for_service_error(exc)
    return ConversationProductsResponse(
        conversation_id=conversation_id,
        product_ids=sorted(product_ids, key=str),
    )
