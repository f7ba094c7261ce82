"""In-process typed topic bus for domain events."""
from __future__ import annotations

from collections import defaultdict
from typing import Awaitable, Callable, DefaultDict, Iterable, List

import structlog

from webhook_service.domain.enums import EventType
from webhook_service.domain.webhooks import DomainEvent

logger = structlog.get_logger(__name__)

EventHandler = Callable[[DomainEvent], Awaitable[object]]


class EventBus:
    """Handlers are awaited in subscription order; a failing handler is logged and skipped."""

    def __init__(self) -> None:
        self._handlers: DefaultDict[EventType, List[EventHandler]] = defaultdict(list)

    def subscribe(self, event_types: Iterable[EventType], handler: EventHandler) -> None:
        for event_type in event_types:
            handlers = self._handlers[EventType(event_type)]
            if handler not in handlers:
                handlers.append(handler)

    def unsubscribe(self, event_types: Iterable[EventType], handler: EventHandler) -> None:
        for event_type in event_types:
            handlers = self._handlers.get(EventType(event_type), [])
            if handler in handlers:
                handlers.remove(handler)

    def handlers_for(self, event_type: EventType) -> List[EventHandler]:
        return list(self._handlers.get(event_type, []))

    async def publish(self, event: DomainEvent) -> int:
        """Return the number of handlers that completed without raising."""
        called = 0
        for handler in self.handlers_for(event.type):
            try:
                await handler(event)
            except Exception:
                logger.exception(
                    "event handler failed",
                    event_id=str(event.id),
                    event_type=event.type.value,
                )
                continue
            called += 1
        return called
