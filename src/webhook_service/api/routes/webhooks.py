"""Webhook registration, history, ping and retry endpoints."""
from __future__ import annotations

from aiohttp import web
from pydantic import ValidationError

from webhook_service.api.utils import (
    paginated_response,
    pagination_params,
    parse_bool,
    parse_uuid,
    read_json,
)
from webhook_service.core.exceptions import (
    DeliveryStateError,
    NotFoundError,
    WebhookValidationError,
)
from webhook_service.domain.dto import WebhookCreateDTO, WebhookUpdateDTO
from webhook_service.domain.webhooks import DomainEvent
from webhook_service.services.dependencies import get_webhook_service

routes = web.RouteTableDef()


def _dispatch_response(event: DomainEvent, queued: bool) -> web.Response:
    # Disabled webhooks get nothing; report that instead of a queued event.
    if not queued:
        return web.json_response({"status": "skipped", "event_id": str(event.id)})
    return web.json_response({"status": "queued", "event_id": str(event.id)}, status=202)


@routes.get("/api/v1/webhooks")
async def list_webhooks(request: web.Request):
    active = parse_bool(request.rel_url.query.get("active"), "active")
    service = await get_webhook_service(request)
    items = await service.registry.list(active=active)
    return web.json_response({"webhooks": [item.model_dump(mode="json") for item in items]})


@routes.post("/api/v1/webhooks")
async def create_webhook(request: web.Request):
    body = await read_json(request)
    try:
        dto = WebhookCreateDTO.model_validate(body)
    except ValidationError as exc:
        raise web.HTTPBadRequest(text=exc.json()) from exc

    service = await get_webhook_service(request)
    try:
        webhook = await service.registry.register(
            url=dto.url,
            secret=dto.secret,
            events=dto.events,
            description=dto.description,
            max_retries=dto.max_retries,
        )
    except WebhookValidationError as exc:
        raise web.HTTPBadRequest(text=str(exc)) from exc
    return web.json_response(webhook.model_dump(mode="json"), status=201)


@routes.get("/api/v1/webhooks/{webhook_id}")
async def get_webhook(request: web.Request):
    webhook_id = parse_uuid(request.match_info["webhook_id"], "webhook_id")
    service = await get_webhook_service(request)
    try:
        webhook = await service.registry.get(webhook_id)
    except NotFoundError as exc:
        raise web.HTTPNotFound(text=str(exc)) from exc
    return web.json_response(webhook.model_dump(mode="json"))


@routes.put("/api/v1/webhooks/{webhook_id}")
@routes.patch("/api/v1/webhooks/{webhook_id}")
async def update_webhook(request: web.Request):
    webhook_id = parse_uuid(request.match_info["webhook_id"], "webhook_id")
    body = await read_json(request)
    try:
        dto = WebhookUpdateDTO.model_validate(body)
    except ValidationError as exc:
        raise web.HTTPBadRequest(text=exc.json()) from exc

    service = await get_webhook_service(request)
    try:
        webhook = await service.registry.update(webhook_id, dto.changes())
    except NotFoundError as exc:
        raise web.HTTPNotFound(text=str(exc)) from exc
    except WebhookValidationError as exc:
        raise web.HTTPBadRequest(text=str(exc)) from exc
    return web.json_response(webhook.model_dump(mode="json"))


@routes.delete("/api/v1/webhooks/{webhook_id}")
async def delete_webhook(request: web.Request):
    webhook_id = parse_uuid(request.match_info["webhook_id"], "webhook_id")
    service = await get_webhook_service(request)
    try:
        await service.registry.delete(webhook_id)
    except NotFoundError as exc:
        raise web.HTTPNotFound(text=str(exc)) from exc
    return web.Response(status=204)


@routes.get("/api/v1/webhooks/{webhook_id}/deliveries")
async def list_deliveries(request: web.Request):
    webhook_id = parse_uuid(request.match_info["webhook_id"], "webhook_id")
    limit, offset = pagination_params(request)
    service = await get_webhook_service(request)
    try:
        items, total = await service.registry.delivery_history(
            webhook_id, limit=limit, offset=offset
        )
    except NotFoundError as exc:
        raise web.HTTPNotFound(text=str(exc)) from exc
    payload = paginated_response(
        [item.model_dump(mode="json") for item in items],
        limit=limit,
        offset=offset,
        key="deliveries",
        total=total,
    )
    return web.json_response(payload)


@routes.post("/api/v1/webhooks/{webhook_id}/ping")
async def ping_webhook(request: web.Request):
    webhook_id = parse_uuid(request.match_info["webhook_id"], "webhook_id")
    service = await get_webhook_service(request)
    try:
        event, queued = await service.ping(webhook_id)
    except NotFoundError as exc:
        raise web.HTTPNotFound(text=str(exc)) from exc
    return _dispatch_response(event, queued)


@routes.post("/api/v1/webhooks/{webhook_id}/retry/{delivery_id}")
async def retry_delivery(request: web.Request):
    webhook_id = parse_uuid(request.match_info["webhook_id"], "webhook_id")
    delivery_id = parse_uuid(request.match_info["delivery_id"], "delivery_id")
    service = await get_webhook_service(request)
    try:
        event, queued = await service.retry_delivery(webhook_id, delivery_id)
    except NotFoundError as exc:
        raise web.HTTPNotFound(text=str(exc)) from exc
    except DeliveryStateError as exc:
        raise web.HTTPBadRequest(text=str(exc)) from exc
    return _dispatch_response(event, queued)
