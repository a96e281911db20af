import logging

from fastapi import APIRouter, Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from inbox.api.v1.deps import get_realtime, settings
from inbox.api.v1.errors import SERVICE_ERRORS, raise_for_service_error
from inbox.core.db import get_db_session
from inbox.core.security import verify_webhook_secret
from inbox.infra.realtime.publisher import RealtimePublisher
from inbox.schemas.gateway import InboundMessageRequest, InboundMessageResponse
from inbox.services.inbound_service import InboundMessage, InboundService

logger = logging.getLogger(__name__)

router = APIRouter()


async def get_inbound_service(
    session: AsyncSession = Depends(get_db_session),
    realtime: RealtimePublisher = Depends(get_realtime),
) -> InboundService:
    return InboundService(session=session, realtime=realtime)


async def verify_gateway_secret(
    x_webhook_secret: str | None = Header(default=None, alias="X-Webhook-Secret"),
) -> None:
    if not verify_webhook_secret(x_webhook_secret, settings.gateway_webhook_secret):
        logger.warning("rejected gateway webhook with invalid secret")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid webhook secret",
        )


@router.post(
    "/inbound",
    response_model=InboundMessageResponse,
    dependencies=[Depends(verify_gateway_secret)],
)
async def receive_inbound_message(
    payload: InboundMessageRequest,
    service: InboundService = Depends(get_inbound_service),
) -> InboundMessageResponse:
    try:
        result = await service.receive(InboundMessage(**payload.model_dump()))
    except SERVICE_ERRORS as exc:
        raise_for_service_error(exc)
    return InboundMessageResponse(
        conversation_id=str(result.conversation.id),
        message_id=str(result.message.id),
        assignment_id=str(result.assignment.id) if result.assignment is not None else None,
        created=result.created,
    )
