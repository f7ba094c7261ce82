"""Webhook domain primitives."""
from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Iterable
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from webhook_service.domain.enums import WILDCARD_EVENT, EventType


def matches_event(subscribed: Iterable[str], event_type: str) -> bool:
    """Exact match or wildcard; no prefix or pattern matching."""
    subscribed = set(subscribed)
    return WILDCARD_EVENT in subscribed or event_type in subscribed


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WebhookConfig(BaseModel):
    """A registered delivery target (source of truth lives in PostgreSQL)."""

    id: UUID
    url: str
    secret: str | None = None
    events: list[str] = Field(default_factory=lambda: [WILDCARD_EVENT])
    description: str | None = None
    enabled: bool = True
    max_retries: int = Field(ge=0)
    retry_delay: int = Field(gt=0)  # milliseconds
    created_at: datetime
    updated_at: datetime
    last_called_at: datetime | None = None

    def to_target(self) -> "WebhookTarget":
        return WebhookTarget(
            id=self.id,
            url=self.url,
            secret=self.secret,
            events=list(self.events),
            enabled=self.enabled,
            max_retries=self.max_retries,
            retry_delay=self.retry_delay,
        )


class WebhookTarget(BaseModel):
    """Fast-path view of a webhook: what the dispatcher and executor need."""

    id: UUID
    url: str
    secret: str | None = None
    events: list[str]
    enabled: bool = True
    max_retries: int = Field(ge=0)
    retry_delay: int = Field(gt=0)

    def subscribes_to(self, event_type: str) -> bool:
        return self.enabled and matches_event(self.events, event_type)


class DomainEvent(BaseModel):
    """A fact to propagate to subscribers. Never persisted on its own."""

    id: UUID = Field(default_factory=uuid4)
    type: EventType
    payload: Any = None
    timestamp: datetime = Field(default_factory=_utcnow)
    source: str

    @classmethod
    def create(cls, event_type: EventType, payload: Any = None, *, source: str) -> "DomainEvent":
        """Stamp a fresh id and emission timestamp."""
        return cls(type=event_type, payload=payload, source=source)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json")

    def to_json(self) -> str:
        """Compact JSON used both for signing and as the delivery body base."""
        return json.dumps(self.to_wire(), separators=(",", ":"), ensure_ascii=False)


class DeliveryAttempt(BaseModel):
    """Persisted outcome of the concluding attempt of a delivery sequence."""

    id: UUID
    webhook_id: UUID
    event_id: UUID
    event_type: str
    payload: Any = None
    success: bool
    status_code: int | None = None
    response: Any = None
    error: str | None = None
    duration: int  # milliseconds
    attempt: int = Field(ge=1)
    created_at: datetime


class WebhookStats(BaseModel):
    """Rolling, best-effort delivery statistics (cache resident)."""

    total_calls: int = 0
    successes: int = 0
    failures: int = 0
    last_duration: int = 0
    last_call: datetime | None = None
    average_duration: float = 0.0


class WebhookView(BaseModel):
    """Webhook as exposed to API clients: no secret, enriched with stats."""

    id: UUID
    url: str
    events: list[str]
    description: str
    enabled: bool
    max_retries: int
    retry_delay: int
    has_secret: bool
    created_at: datetime
    updated_at: datetime
    last_called_at: datetime | None = None
    total_deliveries: int
    successful_deliveries: int
    stats: WebhookStats

    @classmethod
    def build(cls, webhook: WebhookConfig, stats: WebhookStats) -> "WebhookView":
        return cls(
            id=webhook.id,
            url=webhook.url,
            events=webhook.events,
            description=webhook.description or "",
            enabled=webhook.enabled,
            max_retries=webhook.max_retries,
            retry_delay=webhook.retry_delay,
            has_secret=bool(webhook.secret),
            created_at=webhook.created_at,
            updated_at=webhook.updated_at,
            last_called_at=webhook.last_called_at,
            total_deliveries=stats.total_calls,
            successful_deliveries=stats.successes,
            stats=stats,
        )
