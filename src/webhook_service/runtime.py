"""Process-wide webhook runtime: HTTP session, dispatcher and event bus.

Unlike request-scoped services, the dispatcher owns in-flight delivery tasks
and must outlive any single request, so it is built once at startup and
kept on the application.
"""
from __future__ import annotations

import random
from dataclasses import dataclass

import asyncpg  # type: ignore[import-untyped]
from aiohttp import ClientSession, ClientTimeout, web
from redis.asyncio import Redis

from backend_common.db.pool import get_pool
from backend_common.redis_client import get_redis

from webhook_service.domain.enums import EventType
from webhook_service.repositories.webhooks import WebhookDeliveryRepository, WebhookRepository
from webhook_service.services.delivery import DeliveryExecutor
from webhook_service.services.dispatcher import EventDispatcher
from webhook_service.services.event_bus import EventBus
from webhook_service.services.rate_limiter import WebhookRateLimiter
from webhook_service.services.registry import WebhookRegistry
from webhook_service.services.stats import WebhookStatsAggregator
from webhook_service.services.webhook_cache import WebhookCache
from webhook_service.services.webhooks import WebhookService
from webhook_service.settings import Settings, settings as default_settings

RUNTIME_KEY = "webhook_runtime"


@dataclass
class WebhookRuntime:
    service: WebhookService
    dispatcher: EventDispatcher
    bus: EventBus
    session: ClientSession | None = None

    async def close(self) -> None:
        await self.dispatcher.close()
        if self.session is not None:
            await self.session.close()


def build_runtime(
    *,
    webhooks: WebhookRepository,
    deliveries: WebhookDeliveryRepository,
    redis: Redis,
    session: ClientSession,
    settings: Settings = default_settings,
    rng: random.Random | None = None,
) -> WebhookRuntime:
    cache = WebhookCache(redis, ttl_seconds=settings.webhook_cache_ttl_seconds)
    stats = WebhookStatsAggregator(redis, window_size=settings.webhook_stats_window_size)
    limiter = WebhookRateLimiter(
        redis,
        points=settings.webhook_rate_limit_points,
        duration_seconds=settings.webhook_rate_limit_window_seconds,
    )
    executor = DeliveryExecutor(
        session,
        limiter,
        stats,
        deliveries,
        webhooks,
        user_agent=settings.webhook_user_agent,
        timeout_seconds=settings.webhook_request_timeout_seconds,
        backoff_factor=settings.webhook_backoff_factor,
        max_multiplier=settings.webhook_backoff_max_multiplier,
        jitter_min=settings.webhook_jitter_min,
        jitter_max=settings.webhook_jitter_max,
        rng=rng,
    )
    dispatcher = EventDispatcher(cache, webhooks, executor)
    registry = WebhookRegistry(
        webhooks,
        deliveries,
        cache,
        stats,
        default_max_retries=settings.webhook_default_max_retries,
        default_retry_delay=settings.webhook_default_retry_delay_ms,
    )
    bus = EventBus()
    bus.subscribe(list(EventType), dispatcher.dispatch)
    return WebhookRuntime(
        service=WebhookService(registry, dispatcher, bus),
        dispatcher=dispatcher,
        bus=bus,
        session=session,
    )


async def start_webhook_runtime(app: web.Application) -> None:
    """Startup hook; expects the asyncpg pool and Redis client to be initialised."""
    pool: asyncpg.Pool = await get_pool()
    redis = await get_redis()
    session = ClientSession(
        timeout=ClientTimeout(total=default_settings.webhook_request_timeout_seconds)
    )
    runtime = build_runtime(
        webhooks=WebhookRepository(pool),
        deliveries=WebhookDeliveryRepository(pool),
        redis=redis,
        session=session,
    )
    await runtime.service.registry.warm_cache()
    app[RUNTIME_KEY] = runtime


async def stop_webhook_runtime(app: web.Application) -> None:
    runtime: WebhookRuntime | None = app.get(RUNTIME_KEY)
    if runtime is not None:
        await runtime.close()
