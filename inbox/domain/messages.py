from inbox.domain.enums import MessageType
from inbox.domain.exceptions import MediaTooLargeError

AUDIO_MIME_TYPE = "audio/webm"
PREVIEW_MAX_LENGTH = 120

IMAGE_PREVIEW = "📷 Image"
AUDIO_PREVIEW = "🎤 Audio"
DOCUMENT_PREVIEW_PREFIX = "📄 "


def message_type_for_mime(mime_type: str | None) -> MessageType:
    normalized = (mime_type or "").strip().lower()
    if normalized.startswith("image/"):
        return MessageType.IMAGE
    if normalized.startswith("audio/"):
        return MessageType.AUDIO
    return MessageType.DOCUMENT


def preview_for(
    message_type: MessageType,
    content: str | None = None,
    filename: str | None = None,
) -> str:
    if message_type == MessageType.IMAGE:
        return IMAGE_PREVIEW
    if message_type == MessageType.AUDIO:
        return AUDIO_PREVIEW
    if message_type == MessageType.DOCUMENT:
        return f"{DOCUMENT_PREVIEW_PREFIX}{filename or 'Document'}"
    text = (content or "").strip()
    if len(text) > PREVIEW_MAX_LENGTH:
        return text[: PREVIEW_MAX_LENGTH - 1] + "…"
    return text


def ensure_media_size(size: int, limit: int) -> None:
    if size > limit:
        raise MediaTooLargeError(size, limit)
    if size <= 0:
        raise ValueError("Media payload is empty.")
