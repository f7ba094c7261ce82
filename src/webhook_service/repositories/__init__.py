"""Repository exports."""

from webhook_service.repositories.webhooks import WebhookDeliveryRepository, WebhookRepository

__all__ = [
    "WebhookRepository",
    "WebhookDeliveryRepository",
]
