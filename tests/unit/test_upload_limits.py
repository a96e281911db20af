import io

import pytest
from starlette.datastructures import UploadFile

from inbox.api.v1.routes.delivery import read_bounded_upload
from inbox.domain.exceptions import MediaTooLargeError


class UnreadableFile(io.BytesIO):
    def read(self, *args, **kwargs) -> bytes:
        raise AssertionError("upload body should not be read")


@pytest.mark.asyncio
async def test_declared_oversize_is_rejected_before_reading() -> None:
    upload = UploadFile(UnreadableFile(), size=2048, filename="scan.pdf")

    with pytest.raises(MediaTooLargeError) as excinfo:
        await read_bounded_upload(upload, limit=1024)

    assert excinfo.value.size == 2048


@pytest.mark.asyncio
async def test_undeclared_oversize_stops_after_limit() -> None:
    upload = UploadFile(io.BytesIO(b"x" * 5000), filename="scan.pdf")

    with pytest.raises(MediaTooLargeError):
        await read_bounded_upload(upload, limit=1024)

    assert upload.file.tell() == 1025


@pytest.mark.asyncio
async def test_upload_within_limit_is_returned_whole() -> None:
    upload = UploadFile(io.BytesIO(b"\x89PNG"), size=4, filename="receipt.png")

    assert await read_bounded_upload(upload, limit=1024) == b"\x89PNG"
