"""Rolling per-webhook delivery statistics kept in Redis."""
from __future__ import annotations

from datetime import datetime, timezone
from uuid import UUID

from redis.asyncio import Redis

from webhook_service.domain.webhooks import WebhookStats


class WebhookStatsAggregator:
    """Best-effort monitoring aid: eviction of the keys simply resets the numbers.

    Counters live in a hash, successful durations in a capped list (newest
    first). Every update is a single MULTI so concurrent writers from
    different processes keep ``total_calls == successes + failures``.
    """

    def __init__(
        self,
        redis: Redis,
        *,
        window_size: int = 100,
        key_prefix: str = "webhook_stats",
    ):
        self._redis = redis
        self._window = window_size
        self._prefix = key_prefix

    def _keys(self, webhook_id: UUID) -> tuple[str, str]:
        key = f"{self._prefix}:{webhook_id}"
        return key, f"{key}:durations"

    async def record(
        self,
        webhook_id: UUID,
        success: bool,
        duration_ms: int,
        *,
        now: datetime | None = None,
    ) -> None:
        stats_key, durations_key = self._keys(webhook_id)
        called_at = now or datetime.now(timezone.utc)
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.hincrby(stats_key, "total_calls", 1)
            pipe.hincrby(stats_key, "successes" if success else "failures", 1)
            pipe.hset(
                stats_key,
                mapping={
                    "last_duration": int(duration_ms),
                    "last_call": int(called_at.timestamp() * 1000),
                },
            )
            if success:
                pipe.lpush(durations_key, int(duration_ms))
                pipe.ltrim(durations_key, 0, self._window - 1)
            await pipe.execute()

    async def read(self, webhook_id: UUID) -> WebhookStats:
        stats_key, durations_key = self._keys(webhook_id)
        async with self._redis.pipeline(transaction=False) as pipe:
            pipe.hgetall(stats_key)
            pipe.lrange(durations_key, 0, self._window - 1)
            raw, durations = await pipe.execute()

        raw = raw or {}
        values = [int(d) for d in durations or []]
        last_call_ms = int(raw.get("last_call", 0))
        return WebhookStats(
            total_calls=int(raw.get("total_calls", 0)),
            successes=int(raw.get("successes", 0)),
            failures=int(raw.get("failures", 0)),
            last_duration=int(raw.get("last_duration", 0)),
            last_call=(
                datetime.fromtimestamp(last_call_ms / 1000, tz=timezone.utc)
                if last_call_ms
                else None
            ),
            average_duration=sum(values) / len(values) if values else 0.0,
        )

    async def reset(self, webhook_id: UUID) -> None:
        await self._redis.delete(*self._keys(webhook_id))
