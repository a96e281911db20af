"""Per-agent send throttling for the delivery endpoints."""

import asyncio
from collections import deque
from dataclasses import dataclass
from time import monotonic


@dataclass(frozen=True, slots=True)
class RateLimitRule:
    limit: int
    window_seconds: int

    @classmethod
    def per_minute(cls, limit: int) -> "RateLimitRule":
        return cls(limit=max(limit, 1), window_seconds=60)


class _SendLog:
    __slots__ = ("sent_at",)

    def __init__(self) -> None:
        self.sent_at: deque[float] = deque()

    def prune(self, now: float, rule: RateLimitRule) -> None:
        cutoff = now - rule.window_seconds
        while self.sent_at and self.sent_at[0] <= cutoff:
            self.sent_at.popleft()

    def is_full(self, rule: RateLimitRule) -> bool:
        return len(self.sent_at) >= rule.limit


class SendRateLimiter:
    """Sliding window of recent sends, one log per key."""

    def __init__(self) -> None:
        self._logs: dict[str, _SendLog] = {}
        self._lock = asyncio.Lock()

    async def allow(self, key: str, rule: RateLimitRule) -> bool:
        async with self._lock:
            now = monotonic()
            log = self._logs.setdefault(key, _SendLog())
            log.prune(now, rule)
            if log.is_full(rule):
                return False
            log.sent_at.append(now)
            return True

    async def retry_after(self, key: str, rule: RateLimitRule) -> float:
        """Seconds until ``key`` may send again; zero when it already can."""
        async with self._lock:
            log = self._logs.get(key)
            if log is None:
                return 0.0
            now = monotonic()
            log.prune(now, rule)
            if not log.is_full(rule):
                return 0.0
            return max(log.sent_at[0] + rule.window_seconds - now, 0.0)
