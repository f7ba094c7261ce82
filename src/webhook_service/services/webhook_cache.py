"""Fast-path webhook cache in Redis.

``webhook:{id}`` holds the JSON-encoded :class:`WebhookTarget`;
``webhooks:active`` is the set of ids the dispatcher scans. Only enabled
webhooks are cached. PostgreSQL stays the source of truth: writers update
the store first, then call :meth:`put` / :meth:`evict`.
"""
from __future__ import annotations

from typing import TYPE_CHECKING, List, Tuple
from uuid import UUID

import structlog
from pydantic import ValidationError
from redis.asyncio import Redis

from webhook_service.core.exceptions import NotFoundError
from webhook_service.domain.webhooks import WebhookConfig, WebhookTarget

if TYPE_CHECKING:
    from webhook_service.repositories.webhooks import WebhookRepository

logger = structlog.get_logger(__name__)

ACTIVE_SET_KEY = "webhooks:active"
# Bound on re-reads for a row that keeps changing during a sweep.
_RECONCILE_ATTEMPTS = 3


def _entry_key(webhook_id: UUID | str) -> str:
    return f"webhook:{webhook_id}"


class WebhookCache:
    def __init__(self, redis: Redis, *, ttl_seconds: int | None = None):
        self._redis = redis
        self._ttl = ttl_seconds

    async def put(self, webhook: WebhookConfig | WebhookTarget) -> None:
        if not webhook.enabled:
            await self.evict(webhook.id)
            return
        target = webhook.to_target() if isinstance(webhook, WebhookConfig) else webhook
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.set(_entry_key(target.id), target.model_dump_json(), ex=self._ttl)
            pipe.sadd(ACTIVE_SET_KEY, str(target.id))
            await pipe.execute()

    async def evict(self, webhook_id: UUID) -> None:
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.delete(_entry_key(webhook_id))
            pipe.srem(ACTIVE_SET_KEY, str(webhook_id))
            await pipe.execute()

    async def get(self, webhook_id: UUID) -> WebhookTarget | None:
        raw = await self._redis.get(_entry_key(webhook_id))
        return self._decode(raw, webhook_id)

    async def list_active(self) -> Tuple[List[WebhookTarget], List[UUID]]:
        """Return cached targets plus ids still indexed but whose entry is gone."""
        ids = sorted(await self._redis.smembers(ACTIVE_SET_KEY))
        if not ids:
            return [], []
        raws = await self._redis.mget([_entry_key(i) for i in ids])
        targets: List[WebhookTarget] = []
        missing: List[UUID] = []
        for webhook_id, raw in zip(ids, raws):
            target = self._decode(raw, webhook_id)
            if target is None:
                missing.append(UUID(webhook_id))
            else:
                targets.append(target)
        return targets, missing

    async def rebuild(self, repository: "WebhookRepository") -> int:
        """Re-cache enabled webhooks and prune ids the store no longer enables.

        Each id is re-read from ``repository`` around its cache write, so a
        write-through that commits during the sweep is never overwritten.
        Returns the number of webhooks left cached.
        """
        snapshot = await repository.list_webhooks(enabled=True)
        candidates = {str(w.id) for w in snapshot}
        indexed = set(await self._redis.smembers(ACTIVE_SET_KEY))
        cached = 0
        pruned = 0
        for webhook_id in sorted(candidates | indexed):
            if await self._reconcile(repository, UUID(webhook_id)):
                cached += 1
            elif webhook_id in indexed:
                pruned += 1
        if pruned:
            logger.info("webhook cache pruned", stale=pruned)
        return cached

    async def _reconcile(self, repository: "WebhookRepository", webhook_id: UUID) -> bool:
        current = await _load(repository, webhook_id)
        for _ in range(_RECONCILE_ATTEMPTS):
            await self._apply(webhook_id, current)
            latest = await _load(repository, webhook_id)
            if _version(latest) == _version(current):
                break
            current = latest
        else:
            await self._apply(webhook_id, current)
        return current is not None and current.enabled

    async def _apply(self, webhook_id: UUID, config: WebhookConfig | None) -> None:
        if config is None:
            await self.evict(webhook_id)
        else:
            await self.put(config)

    @staticmethod
    def _decode(raw: str | None, webhook_id: UUID | str) -> WebhookTarget | None:
        if raw is None:
            return None
        try:
            return WebhookTarget.model_validate_json(raw)
        except ValidationError:
            logger.warning("webhook cache entry unreadable", webhook_id=str(webhook_id))
            return None


async def _load(repository: "WebhookRepository", webhook_id: UUID) -> WebhookConfig | None:
    try:
        return await repository.get(webhook_id)
    except NotFoundError:
        return None


def _version(config: WebhookConfig | None) -> tuple | None:
    if config is None:
        return None
    return config.updated_at, config.enabled
