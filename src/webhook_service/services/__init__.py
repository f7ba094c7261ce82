"""Service layer exports."""

from webhook_service.services.delivery import DeliveryExecutor
from webhook_service.services.dispatcher import EventDispatcher
from webhook_service.services.event_bus import EventBus
from webhook_service.services.rate_limiter import Allowed, Denied, WebhookRateLimiter
from webhook_service.services.registry import WebhookRegistry
from webhook_service.services.stats import WebhookStatsAggregator
from webhook_service.services.webhook_cache import WebhookCache
from webhook_service.services.webhooks import WebhookService

__all__ = [
    "Allowed",
    "DeliveryExecutor",
    "Denied",
    "EventBus",
    "EventDispatcher",
    "WebhookCache",
    "WebhookRateLimiter",
    "WebhookRegistry",
    "WebhookService",
    "WebhookStatsAggregator",
]
