"""Webhook registry: CRUD over registrations, cache write-through, delivery history."""
from __future__ import annotations

from typing import Any, List, Tuple
from uuid import UUID

import structlog

from webhook_service.core.exceptions import WebhookValidationError
from webhook_service.domain.dto import normalize_events, normalize_url
from webhook_service.domain.webhooks import DeliveryAttempt, WebhookConfig, WebhookView
from webhook_service.repositories.webhooks import WebhookDeliveryRepository, WebhookRepository
from webhook_service.services.stats import WebhookStatsAggregator
from webhook_service.services.webhook_cache import WebhookCache

logger = structlog.get_logger(__name__)

MAX_HISTORY_LIMIT = 100


class WebhookRegistry:
    def __init__(
        self,
        repository: WebhookRepository,
        deliveries: WebhookDeliveryRepository,
        cache: WebhookCache,
        stats: WebhookStatsAggregator,
        *,
        default_max_retries: int = 3,
        default_retry_delay: int = 1000,
    ):
        self._repository = repository
        self._deliveries = deliveries
        self._cache = cache
        self._stats = stats
        self._default_max_retries = default_max_retries
        self._default_retry_delay = default_retry_delay

    async def _view(self, webhook: WebhookConfig) -> WebhookView:
        return WebhookView.build(webhook, await self._stats.read(webhook.id))

    async def register(
        self,
        *,
        url: str,
        secret: str | None = None,
        events: list[str] | None = None,
        description: str | None = None,
        max_retries: int | None = None,
    ) -> WebhookView:
        if max_retries is not None and max_retries < 0:
            raise WebhookValidationError("max_retries must be >= 0")
        webhook = await self._repository.create(
            url=normalize_url(url),
            secret=secret or None,
            events=normalize_events(events),
            description=description,
            max_retries=self._default_max_retries if max_retries is None else max_retries,
            retry_delay=self._default_retry_delay,
        )
        await self._cache.put(webhook)
        logger.info("webhook registered", webhook_id=str(webhook.id), events=webhook.events)
        return await self._view(webhook)

    async def get(self, webhook_id: UUID) -> WebhookView:
        return await self._view(await self._repository.get(webhook_id))

    async def get_config(self, webhook_id: UUID) -> WebhookConfig:
        return await self._repository.get(webhook_id)

    async def list(self, *, active: bool | None = None) -> List[WebhookView]:
        webhooks = await self._repository.list_webhooks(enabled=active)
        return [await self._view(w) for w in webhooks]

    async def update(self, webhook_id: UUID, changes: dict[str, Any]) -> WebhookView:
        cleaned = self._validate_changes(changes)
        webhook = await self._repository.update(webhook_id, cleaned)
        await self._cache.put(webhook)
        logger.info(
            "webhook updated",
            webhook_id=str(webhook_id),
            fields=sorted(cleaned),
            enabled=webhook.enabled,
        )
        return await self._view(webhook)

    async def delete(self, webhook_id: UUID) -> None:
        await self._repository.delete(webhook_id)
        await self._cache.evict(webhook_id)
        await self._stats.reset(webhook_id)
        logger.info("webhook deleted", webhook_id=str(webhook_id))

    async def delivery_history(
        self,
        webhook_id: UUID,
        *,
        limit: int = MAX_HISTORY_LIMIT,
        offset: int = 0,
    ) -> Tuple[List[DeliveryAttempt], int]:
        await self._repository.get(webhook_id)
        limit = max(1, min(limit, MAX_HISTORY_LIMIT))
        offset = max(0, offset)
        return await self._deliveries.list_by_webhook(webhook_id, limit=limit, offset=offset)

    async def get_delivery(self, webhook_id: UUID, delivery_id: UUID) -> DeliveryAttempt:
        return await self._deliveries.get(webhook_id, delivery_id)

    async def warm_cache(self) -> int:
        return await self._cache.rebuild(self._repository)

    @staticmethod
    def _validate_changes(changes: dict[str, Any]) -> dict[str, Any]:
        cleaned = dict(changes)
        if "url" in cleaned:
            cleaned["url"] = normalize_url(cleaned["url"])
        if "events" in cleaned:
            if cleaned["events"] is None:
                raise WebhookValidationError("events cannot be null")
            cleaned["events"] = normalize_events(cleaned["events"])
        if "secret" in cleaned:
            cleaned["secret"] = cleaned["secret"] or None
        if "max_retries" in cleaned and (
            cleaned["max_retries"] is None or cleaned["max_retries"] < 0
        ):
            raise WebhookValidationError("max_retries must be >= 0")
        if "retry_delay" in cleaned and (
            cleaned["retry_delay"] is None or cleaned["retry_delay"] <= 0
        ):
            raise WebhookValidationError("retry_delay must be > 0")
        if "enabled" in cleaned and cleaned["enabled"] is None:
            raise WebhookValidationError("enabled cannot be null")
        return cleaned
