import logging
from collections.abc import Mapping, Sequence
from typing import Any, Protocol

from inbox.infra.realtime.events import RealtimeEvent

logger = logging.getLogger(__name__)


class RealtimePublisher(Protocol):
    """Fan-out target for domain events; implemented by the socket hub."""

    async def publish(
        self,
        channels: Sequence[str],
        event: RealtimeEvent,
        payload: Mapping[str, Any],
    ) -> None: ...


class NoopRealtimePublisher:
    """Publisher used when no hub is wired in, such as scripts and migrations."""

    async def publish(
        self,
        channels: Sequence[str],
        event: RealtimeEvent,
        payload: Mapping[str, Any],
    ) -> None:
        logger.debug("dropping %s for %d channel(s)", event.value, len(channels))


async def safe_publish(
    publisher: RealtimePublisher,
    channels: Sequence[str],
    event: RealtimeEvent,
    payload: Mapping[str, Any],
) -> None:
    """Publish after commit; a failed notification leaves the write in place."""
    if not channels:
        return
    try:
        await publisher.publish(channels, event, payload)
    except Exception:
        logger.debug("realtime publish of %s failed", event.value, exc_info=True)
