"""Domain event ingestion endpoint."""
from __future__ import annotations

from aiohttp import web
from pydantic import ValidationError

from webhook_service.api.utils import read_json
from webhook_service.domain.dto import EventIngestDTO
from webhook_service.domain.webhooks import DomainEvent
from webhook_service.services.dependencies import get_webhook_service

routes = web.RouteTableDef()


@routes.post("/api/v1/events")
async def ingest_event(request: web.Request):
    body = await read_json(request)
    try:
        dto = EventIngestDTO.model_validate(body)
    except ValidationError as exc:
        raise web.HTTPBadRequest(text=exc.json()) from exc

    event = DomainEvent.create(dto.type, dto.payload, source=dto.source)
    overrides = dto.model_dump(include={"id", "timestamp"}, exclude_none=True)
    if overrides:
        event = event.model_copy(update=overrides)

    service = await get_webhook_service(request)
    handled = await service.emit(event)
    return web.json_response(
        {"status": "accepted", "event_id": str(event.id), "handlers": handled},
        status=202,
    )
