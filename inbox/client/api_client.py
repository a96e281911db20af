import logging
from collections.abc import Mapping
from datetime import datetime
from typing import Any
from uuid import UUID

import httpx

from inbox.client.timeline import ConfirmedMessage
from inbox.domain.enums import AssignmentStatus
from inbox.domain.exceptions import GatewayFailureError, UploadFailureError
from inbox.domain.filters import InboxCounters, InboxFilter, InboxItem
from inbox.domain.messages import AUDIO_MIME_TYPE

logger = logging.getLogger(__name__)

ERROR_CODE_HEADER = "X-Error-Code"
API_PREFIX = "/api/v1"


class InboxApiError(RuntimeError):
    def __init__(self, status_code: int, code: str | None, detail: str) -> None:
        super().__init__(detail)
        self.status_code = status_code
        self.code = code
        self.detail = detail


def _optional_uuid(value: Any) -> UUID | None:
    return UUID(str(value)) if value else None


def _optional_datetime(value: Any) -> datetime | None:
    return datetime.fromisoformat(str(value)) if value else None


def inbox_item_from_payload(payload: Mapping[str, Any]) -> InboxItem:
    return InboxItem(
        assignment_id=UUID(str(payload["assignment_id"])),
        conversation_id=UUID(str(payload["conversation_id"])),
        agent_id=_optional_uuid(payload.get("agent_id")),
        status=AssignmentStatus(payload["status"]),
        contact_ref=payload["contact_ref"],
        contact_name=payload.get("contact_name"),
        is_group=bool(payload.get("is_group", False)),
        unread_count=int(payload.get("unread_count", 0)),
        last_message_at=_optional_datetime(payload.get("last_message_at")),
        last_message_preview=payload.get("last_message_preview"),
        department_id=_optional_uuid(payload.get("department_id")),
        archived=bool(payload.get("archived", False)),
        pinned=bool(payload.get("pinned", False)),
        muted=bool(payload.get("muted", False)),
        favorite=bool(payload.get("favorite", False)),
        blocked=bool(payload.get("blocked", False)),
        tag_ids=frozenset(UUID(str(tag_id)) for tag_id in payload.get("tag_ids", ())),
        product_ids=frozenset(
            UUID(str(product_id)) for product_id in payload.get("product_ids", ())
        ),
    )


class InboxApiClient:
    """HTTP client for one agent session against the inbox service."""

    def __init__(
        self,
        base_url: str,
        access_token: str,
        timeout_seconds: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._client = client or httpx.AsyncClient(
            base_url=base_url,
            timeout=httpx.Timeout(timeout_seconds),
        )
        self._owns_client = client is None
        self._headers = {"Authorization": f"Bearer {access_token}"}

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def send_text(
        self, conversation_id: UUID, content: str, client_ref: str
    ) -> ConfirmedMessage:
        body = await self._request(
            "POST",
            f"/conversations/{conversation_id}/messages",
            json={"content": content, "client_ref": client_ref},
        )
        return ConfirmedMessage.from_payload(body["message"])

    async def send_media(
        self,
        conversation_id: UUID,
        data: bytes,
        filename: str,
        mime_type: str,
        client_ref: str,
        caption: str | None = None,
    ) -> ConfirmedMessage:
        form = {"client_ref": client_ref}
        if caption:
            form["caption"] = caption
        body = await self._request(
            "POST",
            f"/conversations/{conversation_id}/media",
            data=form,
            files={"file": (filename, data, mime_type)},
        )
        return ConfirmedMessage.from_payload(body["message"])

    async def send_audio(
        self,
        conversation_id: UUID,
        data: bytes,
        duration_seconds: int,
        client_ref: str,
        mime_type: str = AUDIO_MIME_TYPE,
    ) -> ConfirmedMessage:
        body = await self._request(
            "POST",
            f"/conversations/{conversation_id}/audio",
            data={"client_ref": client_ref, "duration_seconds": str(duration_seconds)},
            files={"file": ("voice-note.webm", data, mime_type)},
        )
        return ConfirmedMessage.from_payload(body["message"])

    async def list_messages(self, conversation_id: UUID) -> list[ConfirmedMessage]:
        body = await self._request("GET", f"/conversations/{conversation_id}/messages")
        return [ConfirmedMessage.from_payload(message) for message in body["messages"]]

    async def list_inbox(self, inbox_filter: InboxFilter | None = None) -> list[InboxItem]:
        params: dict[str, str] = {}
        if inbox_filter is not None:
            params = _filter_params(inbox_filter)
        body = await self._request("GET", "/inbox", params=params)
        return [inbox_item_from_payload(item) for item in body["items"]]

    async def inbox_counters(self) -> InboxCounters:
        body = await self._request("GET", "/inbox/counters")
        return InboxCounters(
            mine=body["mine"],
            mine_unread=body["mine_unread"],
            queue=body["queue"],
            queue_unread=body["queue_unread"],
            online_agents=body.get("online_agents", 0),
        )

    async def claim(self, assignment_id: UUID) -> dict[str, Any]:
        return await self._request("POST", f"/assignments/{assignment_id}/claim")

    async def release(self, assignment_id: UUID) -> dict[str, Any]:
        return await self._request("POST", f"/assignments/{assignment_id}/release")

    async def transfer(
        self,
        assignment_id: UUID,
        target_agent_id: UUID,
        department_id: UUID | None = None,
    ) -> dict[str, Any]:
        payload: dict[str, str] = {"target_agent_id": str(target_agent_id)}
        if department_id is not None:
            payload["department_id"] = str(department_id)
        return await self._request(
            "POST", f"/assignments/{assignment_id}/transfer", json=payload
        )

    async def set_status(
        self, assignment_id: UUID, status: AssignmentStatus
    ) -> dict[str, Any]:
        return await self._request(
            "POST", f"/assignments/{assignment_id}/status", json={"status": status.value}
        )

    async def mark_read(self, conversation_id: UUID) -> dict[str, Any]:
        return await self._request("POST", f"/conversations/{conversation_id}/read")

    async def mark_unread(self, conversation_id: UUID) -> dict[str, Any]:
        return await self._request("POST", f"/conversations/{conversation_id}/unread")

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        try:
            response = await self._client.request(
                method, f"{API_PREFIX}{path}", headers=self._headers, **kwargs
            )
        except httpx.TimeoutException as exc:
            raise GatewayFailureError("Inbox service timed out", timed_out=True) from exc
        except httpx.HTTPError as exc:
            raise GatewayFailureError("Inbox service is unreachable") from exc

        if response.is_success:
            return response.json()
        raise _error_for_response(response, path)


def _filter_params(inbox_filter: InboxFilter) -> dict[str, str]:
    params: dict[str, str] = {"status": inbox_filter.status}
    if inbox_filter.view is not None:
        params["view"] = inbox_filter.view.value
    if inbox_filter.search:
        params["search"] = inbox_filter.search
    if inbox_filter.unread_only:
        params["unread_only"] = "true"
    if inbox_filter.groups_only:
        params["groups_only"] = "true"
    for name in ("product_id", "tag_id", "agent_id"):
        value = getattr(inbox_filter, name)
        if value is not None:
            params[name] = str(value)
    return params


def _error_for_response(response: httpx.Response, path: str) -> Exception:
    code = response.headers.get(ERROR_CODE_HEADER)
    try:
        detail = str(response.json().get("detail", response.text))
    except ValueError:
        detail = response.text
    logger.info("%s failed with %s (%s): %s", path, response.status_code, code, detail)

    if code == "gateway_failure":
        return GatewayFailureError(detail)
    if code == "upload_failure":
        return UploadFailureError(path, detail)
    return InboxApiError(response.status_code, code, detail)
