from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession

from inbox.api.v1.deps import (
    enforce_send_rate_limit,
    get_gateway,
    get_principal,
    get_realtime,
    get_storage,
)
from inbox.api.v1.errors import SERVICE_ERRORS, raise_for_service_error
from inbox.core.db import get_db_session
from inbox.core.security import Principal
from inbox.domain.exceptions import MediaTooLargeError
from inbox.domain.messages import AUDIO_MIME_TYPE
from inbox.infra.gateway import MessagingGateway
from inbox.infra.realtime.publisher import RealtimePublisher
from inbox.infra.storage import BlobStorage
from inbox.schemas.conversation import (
    ConversationMessagesResponse,
    ConversationResponse,
    MessageExchangeResponse,
)
from inbox.schemas.message import MessageResponse, SendMessageRequest
from inbox.services.delivery_service import (
    ConversationMessages,
    DeliveryResult,
    DeliveryService,
)

router = APIRouter()


async def get_delivery_service(
    session: AsyncSession = Depends(get_db_session),
    gateway: MessagingGateway = Depends(get_gateway),
    storage: BlobStorage | None = Depends(get_storage),
    realtime: RealtimePublisher = Depends(get_realtime),
) -> DeliveryService:
    return DeliveryService(
        session=session,
        gateway=gateway,
        storage=storage,
        realtime=realtime,
    )


async def read_bounded_upload(file: UploadFile, limit: int) -> bytes:
    """Read at most ``limit`` bytes, rejecting larger uploads without buffering them."""
    if file.size is not None and file.size > limit:
        raise MediaTooLargeError(file.size, limit)
    data = await file.read(limit + 1)
    if len(data) > limit:
        raise MediaTooLargeError(file.size or len(data), limit)
    return data


def _to_conversation_response(conversation) -> ConversationResponse:
    return ConversationResponse.model_validate(conversation)


def _to_messages_response(result: ConversationMessages) -> ConversationMessagesResponse:
    return ConversationMessagesResponse(
        conversation=_to_conversation_response(result.conversation),
        messages=[MessageResponse.model_validate(message) for message in result.messages],
    )


def _to_exchange_response(result: DeliveryResult) -> MessageExchangeResponse:
    return MessageExchangeResponse(
        conversation=_to_conversation_response(result.conversation),
        message=MessageResponse.model_validate(result.message),
        created=result.created,
    )


@router.get(
    "/conversations/{conversation_id}/messages",
    response_model=ConversationMessagesResponse,
)
async def list_messages(
    conversation_id: UUID,
    limit: int = Query(default=200, ge=1, le=1000),
    service: DeliveryService = Depends(get_delivery_service),
    _: Principal = Depends(get_principal),
) -> ConversationMessagesResponse:
    try:
        result = await service.list_messages(conversation_id, limit=limit)
    except SERVICE_ERRORS as exc:
        raise_for_service_error(exc)
    return _to_messages_response(result)


@router.post(
    "/conversations/{conversation_id}/messages",
    response_model=MessageExchangeResponse,
)
async def send_text_message(
    conversation_id: UUID,
    payload: SendMessageRequest,
    service: DeliveryService = Depends(get_delivery_service),
    principal: Principal = Depends(enforce_send_rate_limit),
) -> MessageExchangeResponse:
    try:
        result = await service.send_text(
            conversation_id,
            payload.content,
            agent_id=principal.agent_id,
            client_ref=payload.client_ref,
        )
    except SERVICE_ERRORS as exc:
        raise_for_service_error(exc)
    return _to_exchange_response(result)


@router.post(
    "/conversations/{conversation_id}/media",
    response_model=MessageExchangeResponse,
)
async def send_media_message(
    conversation_id: UUID,
    file: UploadFile = File(...),
    caption: str | None = Form(default=None, max_length=1024),
    client_ref: str | None = Form(default=None, max_length=64),
    service: DeliveryService = Depends(get_delivery_service),
    principal: Principal = Depends(enforce_send_rate_limit),
) -> MessageExchangeResponse:
    try:
        data = await read_bounded_upload(file, service.max_media_bytes)
        result = await service.send_media(
            conversation_id,
            data,
            filename=file.filename or "file",
            mime_type=file.content_type or "application/octet-stream",
            agent_id=principal.agent_id,
            caption=caption,
            client_ref=client_ref,
        )
    except SERVICE_ERRORS as exc:
        raise_for_service_error(exc)
    return _to_exchange_response(result)


@router.post(
    "/conversations/{conversation_id}/audio",
    response_model=MessageExchangeResponse,
)
async def send_audio_message(
    conversation_id: UUID,
    file: UploadFile = File(...),
    duration_seconds: int = Form(..., ge=0),
    client_ref: str | None = Form(default=None, max_length=64),
    service: DeliveryService = Depends(get_delivery_service),
    principal: Principal = Depends(enforce_send_rate_limit),
) -> MessageExchangeResponse:
    try:
        data = await read_bounded_upload(file, service.max_media_bytes)
        result = await service.send_audio(
            conversation_id,
            data,
            duration_seconds=duration_seconds,
            agent_id=principal.agent_id,
            client_ref=client_ref,
            mime_type=file.content_type or AUDIO_MIME_TYPE,
        )
    except SERVICE_ERRORS as exc:
        raise_for_service_error(exc)
    return _to_exchange_response(result)


@router.post("/conversations/{conversation_id}/read", response_model=ConversationResponse)
async def mark_conversation_read(
    conversation_id: UUID,
    service: DeliveryService = Depends(get_delivery_service),
    _: Principal = Depends(get_principal),
) -> ConversationResponse:
    try:
        conversation = await service.mark_read(conversation_id)
    except SERVICE_ERRORS as exc:
        raise_for_service_error(exc)
    return _to_conversation_response(conversation)


@router.post("/conversations/{conversation_id}/unread", response_model=ConversationResponse)
async def mark_conversation_unread(
    conversation_id: UUID,
    service: DeliveryService = Depends(get_delivery_service),
    _: Principal = Depends(get_principal),
) -> ConversationResponse:
    try:
        conversation = await service.mark_unread(conversation_id)
    except SERVICE_ERRORS as exc:
        raise_for_service_error(exc)
    return _to_conversation_response(conversation)
