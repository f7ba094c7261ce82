"""Shared Redis client helpers (``redis.asyncio``).

The client is process-wide, like the asyncpg pool: counters that several
service instances must agree on (rate limits, rolling stats) live in Redis.
"""
from __future__ import annotations

from typing import Any

from redis.asyncio import Redis
from redis.asyncio.connection import ConnectionPool

_pool: ConnectionPool | None = None
client: Redis | None = None


async def init_redis(redis_url: str) -> Redis:
    """Create the global client (idempotent). Responses are decoded to ``str``."""
    global _pool, client
    if client is None:
        _pool = ConnectionPool.from_url(redis_url, decode_responses=True)
        client = Redis(connection_pool=_pool)
    return client


async def close_redis(_app: Any = None) -> None:
    """Close Redis connections on app shutdown."""
    global _pool, client
    if client is not None:
        await client.aclose()
        client = None
    if _pool is not None:
        await _pool.disconnect()
        _pool = None


async def get_redis() -> Redis:
    """Return the initialized client."""
    if client is None:
        raise RuntimeError("Redis client not initialized. Call init_redis() first.")
    return client
