import logging
from collections.abc import Iterable
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from inbox.domain.enums import ConversationFlag
from inbox.infra.db.models import Conversation
from inbox.infra.db.repositories import ConversationRepository
from inbox.infra.realtime.channels import INBOX_QUEUE_CHANNEL, conversation_channel
from inbox.infra.realtime.events import RealtimeEvent
from inbox.infra.realtime.publisher import (
    NoopRealtimePublisher,
    RealtimePublisher,
    safe_publish,
)
from inbox.services.errors import ConversationNotFoundError
from inbox.services.payloads import conversation_payload

logger = logging.getLogger(__name__)


class ConversationService:
    def __init__(
        self,
        session: AsyncSession,
        conversations: ConversationRepository | None = None,
        realtime: RealtimePublisher | None = None,
    ) -> None:
        self.session = session
        self.conversations = conversations or ConversationRepository(session)
        self.realtime = realtime or NoopRealtimePublisher()

    async def get_conversation(self, conversation_id: UUID) -> Conversation:
        conversation = await self.conversations.get_by_id(conversation_id)
        if conversation is None:
            raise ConversationNotFoundError(conversation_id)
        return conversation

    async def set_flags(
        self, conversation_id: UUID, flags: dict[ConversationFlag, bool]
    ) -> Conversation:
        conversation = await self.get_conversation(conversation_id)
        changed = False
        for flag, value in flags.items():
            if getattr(conversation, flag.value) == value:
                continue
            await self.conversations.set_flag(conversation, flag, value)
            changed = True
        if not changed:
            return conversation

        await self.session.commit()
        await self.session.refresh(conversation)
        logger.info(
            "conversation %s flags set: %s",
            conversation.id,
            ", ".join(f"{flag.value}={value}" for flag, value in flags.items()),
        )
        await self._emit_conversation_updated(conversation)
        return conversation

    async def set_flag(
        self, conversation_id: UUID, flag: ConversationFlag, value: bool
    ) -> Conversation:
        return await self.set_flags(conversation_id, {flag: value})

    async def set_products(
        self, conversation_id: UUID, product_ids: Iterable[UUID]
    ) -> set[UUID]:
        conversation = await self.get_conversation(conversation_id)
        await self.conversations.set_products(conversation.id, product_ids)
        await self.session.commit()
        products = await self.conversations.product_ids_by_conversation([conversation.id])
        await self._emit_conversation_updated(conversation)
        return set(products.get(conversation.id, set()))

    async def _emit_conversation_updated(self, conversation: Conversation) -> None:
        await safe_publish(
            self.realtime,
            [INBOX_QUEUE_CHANNEL, conversation_channel(conversation.id)],
            RealtimeEvent.CONVERSATION_UPDATED,
            {"conversation": conversation_payload(conversation)},
        )
