import asyncio
import logging
from collections.abc import Awaitable
from typing import Protocol
from uuid import UUID

from inbox.client.timeline import (
    ConfirmedMessage,
    ConversationTimeline,
    PendingMessage,
    new_temp_id,
)
from inbox.domain.enums import MessageType
from inbox.domain.exceptions import GatewayFailureError
from inbox.domain.messages import (
    AUDIO_MIME_TYPE,
    ensure_media_size,
    message_type_for_mime,
    preview_for,
)

logger = logging.getLogger(__name__)

DEFAULT_SEND_TIMEOUT_SECONDS = 15.0
DEFAULT_MEDIA_TIMEOUT_SECONDS = 60.0
DEFAULT_MAX_MEDIA_BYTES = 50 * 1024 * 1024


def _local_preview_ref(temp_id: str) -> str:
    # Until confirmation a media entry points at the local bytes, not storage.
    return f"local://{temp_id}"


class DeliveryBackend(Protocol):
    async def send_text(
        self, conversation_id: UUID, content: str, client_ref: str
    ) -> ConfirmedMessage: ...

    async def send_media(
        self,
        conversation_id: UUID,
        data: bytes,
        filename: str,
        mime_type: str,
        client_ref: str,
        caption: str | None = None,
    ) -> ConfirmedMessage: ...

    async def send_audio(
        self,
        conversation_id: UUID,
        data: bytes,
        duration_seconds: int,
        client_ref: str,
        mime_type: str = AUDIO_MIME_TYPE,
    ) -> ConfirmedMessage: ...


class MessageComposer:
    """Stage, dispatch and reconcile outbound messages for one conversation.

    Every send shows up in the timeline immediately as a pending entry. The entry
    becomes the confirmed message on success; on any failure it is removed and the
    operator's draft is put back so nothing typed is lost.
    """

    def __init__(
        self,
        timeline: ConversationTimeline,
        backend: DeliveryBackend,
        timeout_seconds: float = DEFAULT_SEND_TIMEOUT_SECONDS,
        media_timeout_seconds: float = DEFAULT_MEDIA_TIMEOUT_SECONDS,
        max_media_bytes: int = DEFAULT_MAX_MEDIA_BYTES,
    ) -> None:
        self.timeline = timeline
        self.backend = backend
        self.timeout_seconds = timeout_seconds
        self.media_timeout_seconds = media_timeout_seconds
        self.max_media_bytes = max_media_bytes
        self.draft = ""

    @property
    def conversation_id(self) -> UUID:
        return self.timeline.conversation_id

    async def send_text(self, content: str | None = None) -> ConfirmedMessage:
        text = (self.draft if content is None else content).strip()
        if not text:
            raise ValueError("Message content cannot be empty.")

        pending = self.timeline.stage(text, MessageType.TEXT)
        self.draft = ""
        return await self._reconcile(
            pending,
            self.backend.send_text(self.conversation_id, text, pending.temp_id),
            self.timeout_seconds,
            restore_draft=text,
        )

    async def send_media(
        self,
        data: bytes,
        filename: str,
        mime_type: str,
        caption: str | None = None,
        preview_ref: str | None = None,
    ) -> ConfirmedMessage:
        ensure_media_size(len(data), self.max_media_bytes)
        message_type = message_type_for_mime(mime_type)
        cleaned_caption = (caption or "").strip() or None

        temp_id = new_temp_id()
        pending = self.timeline.stage(
            cleaned_caption or preview_for(message_type, filename=filename),
            message_type,
            temp_id=temp_id,
            media_url=preview_ref or _local_preview_ref(temp_id),
            media_filename=filename,
            media_mime_type=mime_type,
        )
        return await self._reconcile(
            pending,
            self.backend.send_media(
                self.conversation_id,
                data,
                filename,
                mime_type,
                pending.temp_id,
                cleaned_caption,
            ),
            self.media_timeout_seconds,
        )

    async def send_audio(
        self,
        data: bytes,
        duration_seconds: int,
        mime_type: str = AUDIO_MIME_TYPE,
        preview_ref: str | None = None,
    ) -> ConfirmedMessage:
        ensure_media_size(len(data), self.max_media_bytes)
        temp_id = new_temp_id()
        pending = self.timeline.stage(
            preview_for(MessageType.AUDIO),
            MessageType.AUDIO,
            temp_id=temp_id,
            media_url=preview_ref or _local_preview_ref(temp_id),
            media_mime_type=mime_type,
            media_duration_seconds=duration_seconds,
        )
        return await self._reconcile(
            pending,
            self.backend.send_audio(
                self.conversation_id,
                data,
                duration_seconds,
                pending.temp_id,
                mime_type,
            ),
            self.media_timeout_seconds,
        )

    async def _reconcile(
        self,
        pending: PendingMessage,
        dispatch: Awaitable[ConfirmedMessage],
        timeout_seconds: float,
        restore_draft: str | None = None,
    ) -> ConfirmedMessage:
        try:
            confirmed = await asyncio.wait_for(dispatch, timeout=timeout_seconds)
        except TimeoutError as exc:
            echoed = self._echoed(pending)
            if echoed is not None:
                return echoed
            self._rollback(pending, restore_draft)
            logger.warning("send %s timed out after %ss", pending.temp_id, timeout_seconds)
            raise GatewayFailureError("Send timed out", timed_out=True) from exc
        except Exception:
            echoed = self._echoed(pending)
            if echoed is not None:
                return echoed
            self._rollback(pending, restore_draft)
            logger.warning("send %s failed, rolled back", pending.temp_id, exc_info=True)
            raise

        if not self.timeline.is_pending(pending.temp_id):
            # Already reconciled by the realtime echo or a history reload.
            return confirmed
        return self.timeline.confirm(pending.temp_id, confirmed)

    def _echoed(self, pending: PendingMessage) -> ConfirmedMessage | None:
        """The confirmed entry when the realtime echo beat a failed response."""
        if self.timeline.is_pending(pending.temp_id):
            return None
        echoed = self.timeline.find_by_client_ref(pending.temp_id)
        if echoed is not None:
            logger.info("send %s failed after its echo arrived, keeping it", pending.temp_id)
        return echoed

    def _rollback(self, pending: PendingMessage, restore_draft: str | None) -> None:
        if self.timeline.is_pending(pending.temp_id):
            self.timeline.rollback(pending.temp_id)
        if restore_draft is not None and not self.draft.strip():
            self.draft = restore_draft
