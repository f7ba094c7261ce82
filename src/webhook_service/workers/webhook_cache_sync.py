"""Worker: rebuild the Redis fast-path cache from PostgreSQL."""
from __future__ import annotations

from datetime import datetime

from backend_common.db.pool import get_pool
from backend_common.redis_client import get_redis

from webhook_service.repositories.webhooks import WebhookRepository
from webhook_service.services.webhook_cache import WebhookCache
from webhook_service.settings import settings


async def webhook_cache_sync(now: datetime) -> str | None:
    """Re-cache enabled webhooks and drop index entries for removed ones."""
    pool = await get_pool()
    redis = await get_redis()
    cache = WebhookCache(redis, ttl_seconds=settings.webhook_cache_ttl_seconds)
    cached = await cache.rebuild(WebhookRepository(pool))
    return f"cached={cached}" if cached else None
