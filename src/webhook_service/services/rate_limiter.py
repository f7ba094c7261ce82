"""Per-webhook fixed-window rate limiter backed by Redis.

The window opens on the first consumption and lasts ``duration_seconds``;
``INCR`` + ``EXPIRE NX`` + ``PTTL`` run in one MULTI so that every service
instance shares the same budget without application-level locks.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Union
from uuid import UUID

from redis.asyncio import Redis


@dataclass(frozen=True)
class Allowed:
    remaining: int


@dataclass(frozen=True)
class Denied:
    retry_after: float  # seconds until the window resets


RateLimitDecision = Union[Allowed, Denied]


class WebhookRateLimiter:
    def __init__(
        self,
        redis: Redis,
        *,
        points: int = 60,
        duration_seconds: int = 60,
        key_prefix: str = "webhook_limit",
    ):
        if points <= 0 or duration_seconds <= 0:
            raise ValueError("points and duration_seconds must be positive")
        self._redis = redis
        self._points = points
        self._duration = duration_seconds
        self._prefix = key_prefix

    def _key(self, webhook_id: UUID) -> str:
        return f"{self._prefix}:{webhook_id}"

    async def consume(self, webhook_id: UUID) -> RateLimitDecision:
        key = self._key(webhook_id)
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.incr(key)
            pipe.expire(key, self._duration, nx=True)
            pipe.pttl(key)
            count, _, ttl_ms = await pipe.execute()

        if int(count) > self._points:
            ttl = int(ttl_ms)
            return Denied(retry_after=(ttl if ttl > 0 else self._duration * 1000) / 1000)
        return Allowed(remaining=self._points - int(count))
