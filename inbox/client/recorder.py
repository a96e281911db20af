import asyncio
import contextlib
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

from inbox.domain.enums import RecordingState
from inbox.domain.exceptions import RecordingInProgressError, RecordingUnavailableError
from inbox.domain.messages import AUDIO_MIME_TYPE

if TYPE_CHECKING:
    from inbox.client.composer import MessageComposer
    from inbox.client.timeline import ConfirmedMessage

logger = logging.getLogger(__name__)


class CaptureDevice(Protocol):
    async def open(self, on_data: Callable[[bytes], None]) -> None: ...

    async def stop(self) -> None: ...

    async def release(self) -> None: ...


@dataclass(frozen=True, slots=True)
class AudioPreview:
    data: bytes
    duration_seconds: int
    mime_type: str = AUDIO_MIME_TYPE

    @property
    def size(self) -> int:
        return len(self.data)


class AudioRecorder:
    """Voice note capture: idle -> recording -> stopped -> idle or confirmed.

    Nothing leaves the machine until ``confirm``; stopping only builds a local
    preview the operator can listen to and then send or discard.
    """

    def __init__(
        self,
        device: CaptureDevice,
        tick_interval: float | None = 1.0,
        mime_type: str = AUDIO_MIME_TYPE,
    ) -> None:
        self._device = device
        self._tick_interval = tick_interval
        self._mime_type = mime_type
        self._state = RecordingState.IDLE
        self._chunks: list[bytes] = []
        self._duration_seconds = 0
        self._preview: AudioPreview | None = None
        self._ticker: asyncio.Task[None] | None = None

    @property
    def state(self) -> RecordingState:
        return self._state

    @property
    def duration_seconds(self) -> int:
        return self._duration_seconds

    @property
    def preview(self) -> AudioPreview | None:
        return self._preview

    async def start(self) -> None:
        if self._state != RecordingState.IDLE:
            raise RecordingInProgressError()

        self._reset()
        try:
            await self._device.open(self._on_data)
        except RecordingUnavailableError:
            self._reset()
            raise
        except OSError as exc:
            self._reset()
            logger.warning("capture device unavailable: %s", exc)
            raise RecordingUnavailableError(str(exc) or "Microphone is unavailable") from exc

        self._state = RecordingState.RECORDING
        if self._tick_interval is not None:
            self._ticker = asyncio.create_task(self._run_ticker(self._tick_interval))

    def tick(self) -> None:
        if self._state == RecordingState.RECORDING:
            self._duration_seconds += 1

    async def stop(self) -> AudioPreview:
        if self._state != RecordingState.RECORDING:
            raise ValueError("No recording in progress.")

        await self._stop_ticker()
        try:
            await self._device.stop()
        except (RecordingUnavailableError, OSError) as exc:
            await self._device.release()
            self._reset()
            raise RecordingUnavailableError(str(exc) or "Recording failed") from exc
        await self._device.release()

        self._preview = AudioPreview(
            data=b"".join(self._chunks),
            duration_seconds=self._duration_seconds,
            mime_type=self._mime_type,
        )
        self._state = RecordingState.STOPPED
        return self._preview

    async def cancel(self) -> None:
        """Abort without producing a preview; the device is released right away."""
        if self._state == RecordingState.RECORDING:
            await self._stop_ticker()
            await self._device.release()
        self._reset()

    def discard(self) -> None:
        if self._state == RecordingState.CONFIRMED:
            raise ValueError("Recording is already being sent.")
        if self._state == RecordingState.RECORDING:
            raise RecordingInProgressError()
        self._reset()

    async def confirm(self, composer: "MessageComposer") -> "ConfirmedMessage":
        if self._state != RecordingState.STOPPED or self._preview is None:
            raise ValueError("Stop the recording before sending it.")

        preview = self._preview
        self._state = RecordingState.CONFIRMED
        try:
            message = await composer.send_audio(
                preview.data,
                preview.duration_seconds,
                mime_type=preview.mime_type,
            )
        except Exception:
            # Keep the preview so the operator can retry or discard it.
            self._state = RecordingState.STOPPED
            raise

        self._reset()
        return message

    def _on_data(self, chunk: bytes) -> None:
        if self._state == RecordingState.RECORDING and chunk:
            self._chunks.append(chunk)

    async def _run_ticker(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            self.tick()

    async def _stop_ticker(self) -> None:
        ticker, self._ticker = self._ticker, None
        if ticker is None:
            return
        ticker.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await ticker

    def _reset(self) -> None:
        self._state = RecordingState.IDLE
        self._chunks = []
        self._duration_seconds = 0
        self._preview = None
