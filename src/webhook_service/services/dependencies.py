"""Shared dependency providers for aiohttp handlers."""
from __future__ import annotations

from aiohttp import web

from webhook_service.runtime import RUNTIME_KEY, WebhookRuntime
from webhook_service.services.webhooks import WebhookService


def _get_runtime(request: web.Request) -> WebhookRuntime:
    runtime = request.app.get(RUNTIME_KEY)
    if runtime is None:
        raise web.HTTPServiceUnavailable(text="Webhook runtime is not started")
    return runtime


async def get_webhook_service(request: web.Request) -> WebhookService:
    return _get_runtime(request).service
