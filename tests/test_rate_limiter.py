from __future__ import annotations

import uuid

import pytest

from webhook_service.services.rate_limiter import Allowed, Denied, WebhookRateLimiter


@pytest.mark.asyncio
async def test_first_consumption_is_allowed(rate_limiter):
    decision = await rate_limiter.consume(uuid.uuid4())
    assert decision == Allowed(remaining=59)


@pytest.mark.asyncio
async def test_sixty_first_consumption_is_denied(rate_limiter):
    webhook_id = uuid.uuid4()
    decisions = [await rate_limiter.consume(webhook_id) for _ in range(60)]
    assert all(isinstance(d, Allowed) for d in decisions)
    assert decisions[-1].remaining == 0

    denied = await rate_limiter.consume(webhook_id)
    assert isinstance(denied, Denied)
    assert 0 < denied.retry_after <= 60


@pytest.mark.asyncio
async def test_budget_is_per_webhook(rate_limiter):
    busy, quiet = uuid.uuid4(), uuid.uuid4()
    for _ in range(61):
        await rate_limiter.consume(busy)
    assert isinstance(await rate_limiter.consume(busy), Denied)
    assert isinstance(await rate_limiter.consume(quiet), Allowed)


@pytest.mark.asyncio
async def test_window_resets_after_expiry(redis):
    limiter = WebhookRateLimiter(redis, points=2, duration_seconds=60)
    webhook_id = uuid.uuid4()
    await limiter.consume(webhook_id)
    await limiter.consume(webhook_id)
    assert isinstance(await limiter.consume(webhook_id), Denied)

    redis.advance(61)
    assert await limiter.consume(webhook_id) == Allowed(remaining=1)


@pytest.mark.asyncio
async def test_window_is_not_extended_by_later_calls(redis):
    limiter = WebhookRateLimiter(redis, points=5, duration_seconds=60)
    webhook_id = uuid.uuid4()
    await limiter.consume(webhook_id)
    redis.advance(30)
    await limiter.consume(webhook_id)
    ttl = await redis.pttl(f"webhook_limit:{webhook_id}")
    assert 0 < ttl <= 30_000


def test_limiter_rejects_non_positive_config(redis):
    with pytest.raises(ValueError):
        WebhookRateLimiter(redis, points=0)
