"""Webhook domain service (registry access + emitting events)."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Tuple
from uuid import UUID

import structlog

from webhook_service.core.exceptions import DeliveryStateError
from webhook_service.domain.enums import EventType
from webhook_service.domain.webhooks import DomainEvent
from webhook_service.services.dispatcher import EventDispatcher
from webhook_service.services.event_bus import EventBus
from webhook_service.services.registry import WebhookRegistry

logger = structlog.get_logger(__name__)

SYSTEM_SOURCE = "system"


class WebhookService:
    def __init__(
        self,
        registry: WebhookRegistry,
        dispatcher: EventDispatcher,
        bus: EventBus,
    ):
        self.registry = registry
        self._dispatcher = dispatcher
        self._bus = bus

    async def emit(self, event: DomainEvent) -> int:
        return await self._bus.publish(event)

    async def ping(self, webhook_id: UUID) -> Tuple[DomainEvent, bool]:
        """Send a synthetic ping; the flag is False when the webhook is disabled."""
        webhook = await self.registry.get_config(webhook_id)
        event = DomainEvent.create(
            EventType.WEBHOOK_PING,
            {"message": "ping", "timestamp": datetime.now(timezone.utc).isoformat()},
            source=SYSTEM_SOURCE,
        )
        return event, self._dispatcher.dispatch_to(webhook.to_target(), event)

    async def retry_delivery(
        self, webhook_id: UUID, delivery_id: UUID
    ) -> Tuple[DomainEvent, bool]:
        webhook = await self.registry.get_config(webhook_id)
        delivery = await self.registry.get_delivery(webhook_id, delivery_id)
        if delivery.success:
            raise DeliveryStateError("Cannot retry successful delivery")

        payload: Any = delivery.payload
        if payload is None:
            payload = delivery.response if delivery.response is not None else {}
        event = DomainEvent(
            id=delivery.event_id,
            type=EventType.WEBHOOK_RETRY,
            payload=payload,
            source=SYSTEM_SOURCE,
        )
        logger.info(
            "webhook delivery retry requested",
            webhook_id=str(webhook_id),
            delivery_id=str(delivery_id),
            event_id=str(event.id),
        )
        return event, self._dispatcher.dispatch_to(webhook.to_target(), event)
