"""Realtime notification adapters (WebSocket fan-out)."""

from inbox.infra.realtime.hub import InMemoryRealtimeHub

__all__ = ["InMemoryRealtimeHub"]
