import asyncio

import pytest

from inbox.core.rate_limit import RateLimitRule, SendRateLimiter


@pytest.mark.asyncio
async def test_send_limiter_blocks_after_limit() -> None:
    limiter = SendRateLimiter()
    rule = RateLimitRule(limit=2, window_seconds=60)

    assert await limiter.allow("agent-a", rule)
    assert await limiter.allow("agent-a", rule)
    assert not await limiter.allow("agent-a", rule)
    assert await limiter.retry_after("agent-a", rule) > 59


@pytest.mark.asyncio
async def test_send_limiter_resets_after_window() -> None:
    limiter = SendRateLimiter()
    rule = RateLimitRule(limit=1, window_seconds=1)

    assert await limiter.allow("agent-b", rule)
    assert not await limiter.allow("agent-b", rule)

    await asyncio.sleep(1.05)
    assert await limiter.allow("agent-b", rule)


@pytest.mark.asyncio
async def test_send_limiter_keys_are_independent() -> None:
    limiter = SendRateLimiter()
    rule = RateLimitRule.per_minute(1)

    assert await limiter.allow("agent-c", rule)
    assert await limiter.allow("agent-d", rule)
    assert await limiter.retry_after("agent-e", rule) == 0.0


def test_per_minute_rule_has_a_floor_of_one() -> None:
    assert RateLimitRule.per_minute(0) == RateLimitRule(limit=1, window_seconds=60)
