"""Outbound adapter for the external messaging gateway.

The gateway protocol itself is opaque; this module only knows how to ask it to
send text or media to a contact or a group and whether the call succeeded.
"""

import logging
import re
from typing import Any, Protocol

import httpx

from inbox.domain.enums import MessageType
from inbox.domain.exceptions import GatewayFailureError

logger = logging.getLogger(__name__)

_NON_DIGITS = re.compile(r"\D+")


class MessagingGateway(Protocol):
    async def send_text(self, recipient: str, body: str) -> None: ...

    async def send_group_text(self, group_id: str, body: str) -> None: ...

    async def send_media(
        self,
        recipient: str,
        media_url: str,
        media_type: MessageType,
        filename: str | None = None,
        caption: str | None = None,
    ) -> None: ...

    async def send_group_media(
        self,
        group_id: str,
        media_url: str,
        media_type: MessageType,
        filename: str | None = None,
        caption: str | None = None,
    ) -> None: ...


def normalize_phone(recipient: str) -> str:
    digits = _NON_DIGITS.sub("", recipient)
    if not digits:
        raise GatewayFailureError(f"Invalid recipient '{recipient}'")
    return digits


def gateway_media_kind(media_type: MessageType) -> str:
    if media_type == MessageType.AUDIO:
        return "ptt"
    if media_type == MessageType.IMAGE:
        return "image"
    return "document"


class HttpMessagingGateway:
    def __init__(
        self,
        base_url: str,
        instance_token: str,
        timeout_seconds: float = 15.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._client = client or httpx.AsyncClient(
            base_url=base_url,
            timeout=httpx.Timeout(timeout_seconds),
        )
        self._owns_client = client is None
        self._headers = {"token": instance_token} if instance_token else {}

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def send_text(self, recipient: str, body: str) -> None:
        await self._post("/send/text", {"number": normalize_phone(recipient), "text": body})

    async def send_group_text(self, group_id: str, body: str) -> None:
        await self._post("/send/text", {"number": group_id, "text": body})

    async def send_media(
        self,
        recipient: str,
        media_url: str,
        media_type: MessageType,
        filename: str | None = None,
        caption: str | None = None,
    ) -> None:
        await self._post(
            "/send/media",
            self._media_body(normalize_phone(recipient), media_url, media_type, filename, caption),
        )

    async def send_group_media(
        self,
        group_id: str,
        media_url: str,
        media_type: MessageType,
        filename: str | None = None,
        caption: str | None = None,
    ) -> None:
        await self._post(
            "/send/media",
            self._media_body(group_id, media_url, media_type, filename, caption),
        )

    @staticmethod
    def _media_body(
        number: str,
        media_url: str,
        media_type: MessageType,
        filename: str | None,
        caption: str | None,
    ) -> dict[str, Any]:
        body: dict[str, Any] = {
            "number": number,
            "type": gateway_media_kind(media_type),
            "file": media_url,
        }
        if filename:
            body["docName"] = filename
        if caption:
            body["text"] = caption
        return body

    async def _post(self, path: str, body: dict[str, Any]) -> None:
        try:
            response = await self._client.post(path, json=body, headers=self._headers)
            response.raise_for_status()
        except httpx.TimeoutException as exc:
            logger.warning("gateway %s timed out", path)
            raise GatewayFailureError("Gateway request timed out", timed_out=True) from exc
        except httpx.HTTPStatusError as exc:
            logger.warning(
                "gateway %s rejected request with status %s",
                path,
                exc.response.status_code,
            )
            raise GatewayFailureError(
                f"Gateway rejected the message ({exc.response.status_code})"
            ) from exc
        except httpx.HTTPError as exc:
            logger.warning("gateway %s transport error: %s", path, exc)
            raise GatewayFailureError("Gateway is unreachable") from exc
