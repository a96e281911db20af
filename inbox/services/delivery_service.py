import asyncio
import logging
from collections.abc import Awaitable
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import PurePath
from uuid import UUID, uuid4

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from inbox.core.config import get_settings
from inbox.domain.enums import MessageDirection, MessageType
from inbox.domain.exceptions import GatewayFailureError, UploadFailureError
from inbox.domain.messages import (
    AUDIO_MIME_TYPE,
    ensure_media_size,
    message_type_for_mime,
    preview_for,
)
from inbox.infra.db.models import Conversation, Message
from inbox.infra.db.repositories import ConversationRepository, MessageRepository
from inbox.infra.gateway import MessagingGateway
from inbox.infra.realtime.channels import INBOX_QUEUE_CHANNEL, conversation_channel
from inbox.infra.realtime.events import RealtimeEvent
from inbox.infra.realtime.publisher import (
    NoopRealtimePublisher,
    RealtimePublisher,
    safe_publish,
)
from inbox.infra.storage import BlobStorage
from inbox.services.errors import ConversationBlockedError, ConversationNotFoundError
from inbox.services.payloads import conversation_payload, message_payload

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class DeliveryResult:
    conversation: Conversation
    message: Message
    created: bool = True


@dataclass(slots=True)
class ConversationMessages:
    conversation: Conversation
    messages: list[Message]


def _safe_filename(filename: str) -> str:
    name = PurePath(filename.replace("\\", "/")).name.strip()
    return name or "file"


class DeliveryService:
    """Outbound sends and read-state changes for a conversation.

    Dispatch happens before anything is written: a message row exists only once the
    gateway accepted it, so a failed send leaves no trace to clean up.
    """

    def __init__(
        self,
        session: AsyncSession,
        gateway: MessagingGateway,
        storage: BlobStorage | None = None,
        conversations: ConversationRepository | None = None,
        messages: MessageRepository | None = None,
        realtime: RealtimePublisher | None = None,
        gateway_timeout_seconds: float | None = None,
        storage_timeout_seconds: float | None = None,
        max_media_bytes: int | None = None,
    ) -> None:
        settings = get_settings()
        self.session = session
        self.gateway = gateway
        self.storage = storage
        self.conversations = conversations or ConversationRepository(session)
        self.messages = messages or MessageRepository(session)
        self.realtime = realtime or NoopRealtimePublisher()
        self.gateway_timeout_seconds = (
            gateway_timeout_seconds
            if gateway_timeout_seconds is not None
            else settings.gateway_timeout_seconds
        )
        self.storage_timeout_seconds = (
            storage_timeout_seconds
            if storage_timeout_seconds is not None
            else settings.storage_timeout_seconds
        )
        self.max_media_bytes = (
            max_media_bytes if max_media_bytes is not None else settings.max_media_bytes
        )

    async def list_messages(
        self, conversation_id: UUID, limit: int = 200
    ) -> ConversationMessages:
        conversation = await self._get_conversation_or_raise(conversation_id)
        messages = await self.messages.list_by_conversation(conversation.id, limit=limit)
        return ConversationMessages(conversation=conversation, messages=messages)

    async def send_text(
        self,
        conversation_id: UUID,
        content: str,
        agent_id: UUID | None = None,
        client_ref: str | None = None,
    ) -> DeliveryResult:
        body = content.strip()
        if not body:
            raise ValueError("Message content cannot be empty.")

        conversation, duplicate = await self._prepare_send(conversation_id, client_ref)
        if duplicate is not None:
            return duplicate

        if conversation.is_group:
            dispatch = self.gateway.send_group_text(conversation.contact_ref, body)
        else:
            dispatch = self.gateway.send_text(conversation.contact_ref, body)
        await self._dispatch(conversation, dispatch)

        return await self._persist_outbound(
            conversation,
            message_type=MessageType.TEXT,
            content=body,
            agent_id=agent_id,
            client_ref=client_ref,
        )

    async def send_media(
        self,
        conversation_id: UUID,
        data: bytes,
        filename: str,
        mime_type: str,
        agent_id: UUID | None = None,
        caption: str | None = None,
        client_ref: str | None = None,
        message_type: MessageType | None = None,
    ) -> DeliveryResult:
        ensure_media_size(len(data), self.max_media_bytes)
        kind = message_type or message_type_for_mime(mime_type)
        if kind == MessageType.TEXT:
            raise ValueError("Media messages must be image, document or audio.")

        conversation, duplicate = await self._prepare_send(conversation_id, client_ref)
        if duplicate is not None:
            return duplicate

        safe_name = _safe_filename(filename)
        path = f"media/{conversation.id}/{uuid4()}-{safe_name}"
        media_url = await self._upload(data, path, mime_type)

        cleaned_caption = (caption or "").strip() or None
        await self._dispatch_media(conversation, media_url, kind, safe_name, cleaned_caption)

        return await self._persist_outbound(
            conversation,
            message_type=kind,
            content=cleaned_caption or preview_for(kind, filename=safe_name),
            agent_id=agent_id,
            client_ref=client_ref,
            media_url=media_url,
            media_mime_type=mime_type,
            media_filename=safe_name,
        )

    async def send_audio(
        self,
        conversation_id: UUID,
        data: bytes,
        duration_seconds: int,
        agent_id: UUID | None = None,
        client_ref: str | None = None,
        mime_type: str = AUDIO_MIME_TYPE,
    ) -> DeliveryResult:
        ensure_media_size(len(data), self.max_media_bytes)
        if duration_seconds < 0:
            raise ValueError("Audio duration cannot be negative.")

        conversation, duplicate = await self._prepare_send(conversation_id, client_ref)
        if duplicate is not None:
            return duplicate

        path = f"audio/{conversation.id}/{uuid4()}.webm"
        media_url = await self._upload(data, path, mime_type)
        await self._dispatch_media(conversation, media_url, MessageType.AUDIO, None, None)

        return await self._persist_outbound(
            conversation,
            message_type=MessageType.AUDIO,
            content=preview_for(MessageType.AUDIO),
            agent_id=agent_id,
            client_ref=client_ref,
            media_url=media_url,
            media_mime_type=mime_type,
            media_duration_seconds=duration_seconds,
        )

    async def mark_read(self, conversation_id: UUID) -> Conversation:
        conversation = await self._get_conversation_or_raise(conversation_id)
        if conversation.unread_count == 0:
            return conversation
        conversation.unread_count = 0
        return await self._commit_conversation(conversation)

    async def mark_unread(self, conversation_id: UUID) -> Conversation:
        conversation = await self._get_conversation_or_raise(conversation_id)
        if conversation.unread_count > 0:
            return conversation
        conversation.unread_count = 1
        return await self._commit_conversation(conversation)

    async def _commit_conversation(self, conversation: Conversation) -> Conversation:
        await self.session.commit()
        await self.session.refresh(conversation)
        await self._emit_conversation_updated(conversation)
        return conversation

    async def _get_conversation_or_raise(self, conversation_id: UUID) -> Conversation:
        conversation = await self.conversations.get_by_id(conversation_id)
        if conversation is None:
            raise ConversationNotFoundError(conversation_id)
        return conversation

    async def _get_sendable_conversation(self, conversation_id: UUID) -> Conversation:
        conversation = await self._get_conversation_or_raise(conversation_id)
        if conversation.blocked:
            raise ConversationBlockedError(conversation.id)
        return conversation

    async def _prepare_send(
        self, conversation_id: UUID, client_ref: str | None
    ) -> tuple[Conversation, DeliveryResult | None]:
        conversation = await self._get_sendable_conversation(conversation_id)
        duplicate = await self._find_duplicate(conversation, client_ref)
        # Close the read transaction; no connection is held across upload or dispatch.
        await self.session.commit()
        return conversation, duplicate

    async def _find_duplicate(
        self, conversation: Conversation, client_ref: str | None
    ) -> DeliveryResult | None:
        if not client_ref:
            return None
        existing = await self.messages.get_by_client_ref(conversation.id, client_ref)
        if existing is None:
            return None
        logger.info(
            "send with client_ref %s on %s already delivered as %s",
            client_ref,
            conversation.id,
            existing.id,
        )
        return DeliveryResult(conversation=conversation, message=existing, created=False)

    async def _dispatch(self, conversation: Conversation, dispatch: Awaitable[None]) -> None:
        try:
            await asyncio.wait_for(dispatch, timeout=self.gateway_timeout_seconds)
        except TimeoutError as exc:
            logger.warning("gateway send to %s timed out", conversation.id)
            raise GatewayFailureError("Gateway request timed out", timed_out=True) from exc
        except GatewayFailureError:
            logger.warning("gateway send to %s failed", conversation.id)
            raise

    async def _dispatch_media(
        self,
        conversation: Conversation,
        media_url: str,
        media_type: MessageType,
        filename: str | None,
        caption: str | None,
    ) -> None:
        if conversation.is_group:
            dispatch = self.gateway.send_group_media(
                conversation.contact_ref, media_url, media_type, filename, caption
            )
        else:
            dispatch = self.gateway.send_media(
                conversation.contact_ref, media_url, media_type, filename, caption
            )
        await self._dispatch(conversation, dispatch)

    async def _upload(self, data: bytes, path: str, content_type: str) -> str:
        if self.storage is None:
            raise RuntimeError("Blob storage is not configured")
        try:
            return await asyncio.wait_for(
                self.storage.upload(data, path, content_type),
                timeout=self.storage_timeout_seconds,
            )
        except TimeoutError as exc:
            logger.warning("upload of %s timed out", path)
            raise UploadFailureError(path, "timed out") from exc

    async def _persist_outbound(
        self,
        conversation: Conversation,
        *,
        message_type: MessageType,
        content: str,
        agent_id: UUID | None,
        client_ref: str | None,
        media_url: str | None = None,
        media_mime_type: str | None = None,
        media_filename: str | None = None,
        media_duration_seconds: int | None = None,
    ) -> DeliveryResult:
        conversation_id = conversation.id
        try:
            # Row lock serialises position assignment within the conversation.
            locked = await self.conversations.get_by_id_for_update(conversation_id)
            if locked is None:
                raise ConversationNotFoundError(conversation_id)
            # Stamped under the lock so sent_at follows position order.
            sent_at = datetime.now(UTC)
            if locked.last_message_at is not None and sent_at < locked.last_message_at:
                sent_at = locked.last_message_at
            message = await self.messages.create(
                conversation_id=conversation_id,
                direction=MessageDirection.OUTBOUND,
                message_type=message_type,
                content=content,
                sent_at=sent_at,
                media_url=media_url,
                media_mime_type=media_mime_type,
                media_filename=media_filename,
                media_duration_seconds=media_duration_seconds,
                sender_agent_id=agent_id,
                client_ref=client_ref,
            )
            locked.last_message_at = sent_at
            locked.last_message_preview = preview_for(
                message_type, content=content, filename=media_filename
            )
            locked.unread_count = 0
            await self.session.commit()
        except IntegrityError:
            # A concurrent retry with the same client_ref won the insert.
            await self.session.rollback()
            if not client_ref:
                raise
            existing = await self.messages.get_by_client_ref(conversation_id, client_ref)
            if existing is None:
                raise
            refreshed = await self._get_conversation_or_raise(conversation_id)
            return DeliveryResult(conversation=refreshed, message=existing, created=False)

        await self.session.refresh(locked)
        logger.info(
            "delivered %s message %s on %s", message_type.value, message.id, conversation_id
        )
        await safe_publish(
            self.realtime,
            [conversation_channel(conversation_id)],
            RealtimeEvent.MESSAGE_CREATED,
            {"message": message_payload(message)},
        )
        await self._emit_conversation_updated(locked)
        return DeliveryResult(conversation=locked, message=message)

    async def _emit_conversation_updated(self, conversation: Conversation) -> None:
        await safe_publish(
            self.realtime,
            [INBOX_QUEUE_CHANNEL, conversation_channel(conversation.id)],
            RealtimeEvent.CONVERSATION_UPDATED,
            {"conversation": conversation_payload(conversation)},
        )
