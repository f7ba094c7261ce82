from __future__ import annotations

import pytest

from webhook_service.domain.enums import EventType
from webhook_service.domain.webhooks import DomainEvent
from webhook_service.services.event_bus import EventBus


def make_event(event_type: EventType = EventType.UPLOAD_COMPLETED) -> DomainEvent:
    return DomainEvent.create(event_type, {"file_id": "f-1"}, source="storage")


def test_create_stamps_id_and_timestamp():
    first, second = make_event(), make_event()
    assert first.id != second.id
    assert first.timestamp.tzinfo is not None
    assert first.source == "storage"


@pytest.mark.asyncio
async def test_publish_reaches_only_matching_handlers():
    bus = EventBus()
    seen: list[str] = []

    async def on_upload(event: DomainEvent) -> None:
        seen.append(f"upload:{event.type.value}")

    async def on_delete(event: DomainEvent) -> None:
        seen.append(f"delete:{event.type.value}")

    bus.subscribe([EventType.UPLOAD_COMPLETED], on_upload)
    bus.subscribe([EventType.FILE_DELETED], on_delete)

    assert await bus.publish(make_event()) == 1
    assert seen == ["upload:file.upload.completed"]


@pytest.mark.asyncio
async def test_subscribing_twice_registers_once():
    bus = EventBus()
    calls = 0

    async def handler(event: DomainEvent) -> None:
        nonlocal calls
        calls += 1

    bus.subscribe([EventType.UPLOAD_COMPLETED], handler)
    bus.subscribe([EventType.UPLOAD_COMPLETED], handler)
    await bus.publish(make_event())
    assert calls == 1


@pytest.mark.asyncio
async def test_failing_handler_does_not_break_others():
    bus = EventBus()
    delivered: list[DomainEvent] = []

    async def broken(event: DomainEvent) -> None:
        raise RuntimeError("boom")

    async def healthy(event: DomainEvent) -> None:
        delivered.append(event)

    bus.subscribe(list(EventType), broken)
    bus.subscribe(list(EventType), healthy)

    event = make_event(EventType.FILE_DELETED)
    assert await bus.publish(event) == 1
    assert delivered == [event]


@pytest.mark.asyncio
async def test_unsubscribe():
    bus = EventBus()
    calls = 0

    async def handler(event: DomainEvent) -> None:
        nonlocal calls
        calls += 1

    bus.subscribe([EventType.UPLOAD_COMPLETED], handler)
    bus.unsubscribe([EventType.UPLOAD_COMPLETED], handler)
    assert await bus.publish(make_event()) == 0
    assert calls == 0
