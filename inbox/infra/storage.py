import logging
from typing import Protocol
from urllib.parse import quote

import httpx

from inbox.domain.exceptions import UploadFailureError

logger = logging.getLogger(__name__)


class BlobStorage(Protocol):
    async def upload(self, data: bytes, path: str, content_type: str) -> str: ...


class HttpBlobStorage:
    """Bucket-style object storage: PUT the bytes, hand back a public URL."""

    def __init__(
        self,
        base_url: str,
        public_url: str,
        api_key: str = "",
        timeout_seconds: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._public_url = public_url.rstrip("/")
        self._api_key = api_key
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout_seconds))
        self._owns_client = client is None

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def public_url_for(self, path: str) -> str:
        return f"{self._public_url}/{quote(path.lstrip('/'))}"

    async def upload(self, data: bytes, path: str, content_type: str) -> str:
        headers = {"Content-Type": content_type, "x-upsert": "false"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"

        url = f"{self._base_url}/{quote(path.lstrip('/'))}"
        try:
            response = await self._client.put(url, content=data, headers=headers)
            response.raise_for_status()
        except httpx.TimeoutException as exc:
            logger.warning("upload of %s timed out", path)
            raise UploadFailureError(path, "timed out") from exc
        except httpx.HTTPStatusError as exc:
            logger.warning(
                "upload of %s failed with status %s", path, exc.response.status_code
            )
            raise UploadFailureError(path, f"status {exc.response.status_code}") from exc
        except httpx.HTTPError as exc:
            logger.warning("upload of %s failed: %s", path, exc)
            raise UploadFailureError(path, "storage unreachable") from exc

        return self.public_url_for(path)
