"""Event fan-out: match cached webhooks and run one delivery task per match."""
from __future__ import annotations

import asyncio
from typing import Dict, List
from uuid import UUID, uuid4

import structlog

from webhook_service.core.exceptions import NotFoundError
from webhook_service.domain.webhooks import DomainEvent, WebhookTarget
from webhook_service.repositories.webhooks import WebhookRepository
from webhook_service.services.delivery import DeliveryExecutor
from webhook_service.services.webhook_cache import WebhookCache

logger = structlog.get_logger(__name__)


class EventDispatcher:
    """Spawns independent delivery sequences; none of them can fail the emitter.

    In-flight tasks are kept in ``_tasks`` keyed by a per-sequence id and
    removed by their completion callback.
    """

    def __init__(
        self,
        cache: WebhookCache,
        repository: WebhookRepository,
        executor: DeliveryExecutor,
    ):
        self._cache = cache
        self._repository = repository
        self._executor = executor
        self._tasks: Dict[UUID, asyncio.Task] = {}

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    async def dispatch(self, event: DomainEvent) -> List[UUID]:
        """Start deliveries for every enabled webhook subscribed to ``event.type``."""
        targets = await self._active_targets()
        matched: List[UUID] = []
        for target in targets:
            if not target.subscribes_to(event.type.value):
                continue
            self._spawn(target, event)
            matched.append(target.id)
        logger.info(
            "event dispatched",
            event_id=str(event.id),
            event_type=event.type.value,
            matched=len(matched),
        )
        return matched

    def dispatch_to(self, target: WebhookTarget, event: DomainEvent) -> bool:
        """Deliver ``event`` to one known webhook regardless of its subscriptions."""
        if not target.enabled:
            logger.info(
                "webhook disabled, delivery skipped",
                webhook_id=str(target.id),
                event_id=str(event.id),
            )
            return False
        self._spawn(target, event)
        return True

    async def wait_idle(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks.values()), return_exceptions=True)

    async def close(self) -> None:
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info("in-flight deliveries cancelled", count=len(tasks))
        self._tasks.clear()

    async def _active_targets(self) -> List[WebhookTarget]:
        targets, missing = await self._cache.list_active()
        # Entries can expire while the id stays indexed; fall back to the store.
        for webhook_id in missing:
            try:
                config = await self._repository.get(webhook_id)
            except NotFoundError:
                await self._cache.evict(webhook_id)
                continue
            await self._cache.put(config)
            if config.enabled:
                targets.append(config.to_target())
        return targets

    def _spawn(self, target: WebhookTarget, event: DomainEvent) -> None:
        sequence_id = uuid4()
        task = asyncio.create_task(
            self._executor.deliver(target, event),
            name=f"webhook-delivery-{target.id}-{event.id}",
        )
        self._tasks[sequence_id] = task

        def _done(finished: asyncio.Task) -> None:
            self._tasks.pop(sequence_id, None)
            if finished.cancelled():
                return
            exc = finished.exception()
            if exc is not None:
                logger.error(
                    "webhook delivery task crashed",
                    webhook_id=str(target.id),
                    event_id=str(event.id),
                    error=repr(exc),
                    exc_info=exc,
                )

        task.add_done_callback(_done)
