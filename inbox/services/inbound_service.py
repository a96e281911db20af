import logging
from dataclasses import dataclass
from datetime import UTC, datetime

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from inbox.domain.enums import MessageDirection, MessageType
from inbox.domain.messages import preview_for
from inbox.infra.db.models import Assignment, Conversation, Message
from inbox.infra.db.repositories import ConversationRepository, MessageRepository
from inbox.infra.realtime.channels import INBOX_QUEUE_CHANNEL, conversation_channel
from inbox.infra.realtime.events import RealtimeEvent
from inbox.infra.realtime.publisher import (
    NoopRealtimePublisher,
    RealtimePublisher,
    safe_publish,
)
from inbox.services.errors import ConversationNotFoundError
from inbox.services.payloads import conversation_payload, message_payload
from inbox.services.routing_service import RoutingService

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class InboundMessage:
    contact_ref: str
    content: str = ""
    is_group: bool = False
    display_name: str | None = None
    avatar_url: str | None = None
    message_type: MessageType = MessageType.TEXT
    media_url: str | None = None
    media_mime_type: str | None = None
    media_filename: str | None = None
    media_duration_seconds: int | None = None
    external_id: str | None = None
    sent_at: datetime | None = None


@dataclass(slots=True)
class InboundResult:
    conversation: Conversation
    message: Message
    assignment: Assignment | None
    created: bool = True


class InboundService:
    """Records messages arriving from the gateway and queues their conversation."""

    def __init__(
        self,
        session: AsyncSession,
        routing: RoutingService | None = None,
        conversations: ConversationRepository | None = None,
        messages: MessageRepository | None = None,
        realtime: RealtimePublisher | None = None,
    ) -> None:
        self.session = session
        self.realtime = realtime or NoopRealtimePublisher()
        self.conversations = conversations or ConversationRepository(session)
        self.messages = messages or MessageRepository(session)
        self.routing = routing or RoutingService(session, realtime=self.realtime)

    async def receive(self, inbound: InboundMessage) -> InboundResult:
        contact_ref = inbound.contact_ref.strip()
        if not contact_ref:
            raise ValueError("Inbound message has no contact reference.")
        if inbound.message_type == MessageType.TEXT and not inbound.content.strip():
            raise ValueError("Inbound text message is empty.")

        conversation = await self._get_or_create_conversation(contact_ref, inbound)
        conversation_id = conversation.id

        # Gateways redeliver webhooks; the external id keeps ingestion idempotent.
        if inbound.external_id:
            existing = await self.messages.get_by_client_ref(
                conversation_id, inbound.external_id
            )
            if existing is not None:
                assignment = await self.routing.assignments.get_open_for_conversation(
                    conversation_id
                )
                return InboundResult(
                    conversation=conversation,
                    message=existing,
                    assignment=assignment,
                    created=False,
                )

        sent_at = inbound.sent_at or datetime.now(UTC)
        locked = await self.conversations.get_by_id_for_update(conversation_id)
        if locked is None:
            raise ConversationNotFoundError(conversation_id)
        message = await self.messages.create(
            conversation_id=conversation_id,
            direction=MessageDirection.INBOUND,
            message_type=inbound.message_type,
            content=inbound.content.strip(),
            sent_at=sent_at,
            media_url=inbound.media_url,
            media_mime_type=inbound.media_mime_type,
            media_filename=inbound.media_filename,
            media_duration_seconds=inbound.media_duration_seconds,
            client_ref=inbound.external_id,
        )
        if locked.last_message_at is None or sent_at >= locked.last_message_at:
            locked.last_message_at = sent_at
            locked.last_message_preview = preview_for(
                inbound.message_type,
                content=inbound.content,
                filename=inbound.media_filename,
            )
        if not locked.blocked:
            locked.unread_count += 1
            if locked.archived:
                locked.archived = False
                locked.archived_at = None
        await self.session.commit()
        await self.session.refresh(locked)

        logger.info("inbound %s message %s on %s", inbound.message_type.value, message.id, conversation_id)
        await safe_publish(
            self.realtime,
            [conversation_channel(conversation_id)],
            RealtimeEvent.MESSAGE_CREATED,
            {"message": message_payload(message)},
        )
        await safe_publish(
            self.realtime,
            [INBOX_QUEUE_CHANNEL, conversation_channel(conversation_id)],
            RealtimeEvent.CONVERSATION_UPDATED,
            {"conversation": conversation_payload(locked)},
        )

        if locked.blocked:
            logger.info("conversation %s is blocked, not queueing", conversation_id)
            return InboundResult(conversation=locked, message=message, assignment=None)

        queued = await self.routing.ensure_queued(conversation_id)
        return InboundResult(conversation=locked, message=message, assignment=queued.assignment)

    async def _get_or_create_conversation(
        self, contact_ref: str, inbound: InboundMessage
    ) -> Conversation:
        conversation = await self.conversations.get_by_contact_ref(contact_ref)
        if conversation is not None:
            if inbound.display_name and conversation.display_name != inbound.display_name:
                conversation.display_name = inbound.display_name
            if inbound.avatar_url and conversation.avatar_url != inbound.avatar_url:
                conversation.avatar_url = inbound.avatar_url
            return conversation

        try:
            conversation = await self.conversations.create(
                contact_ref=contact_ref,
                is_group=inbound.is_group,
                display_name=inbound.display_name,
                avatar_url=inbound.avatar_url,
            )
            await self.session.commit()
        except IntegrityError:
            await self.session.rollback()
            conversation = await self.conversations.get_by_contact_ref(contact_ref)
            if conversation is None:
                raise
            return conversation

        await self.session.refresh(conversation)
        logger.info("opened conversation %s for %s", conversation.id, contact_ref)
        return conversation
