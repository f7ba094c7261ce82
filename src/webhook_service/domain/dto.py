"""Pydantic DTOs and input normalization for webhook registration."""
from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import (
    AnyHttpUrl,
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    field_validator,
    model_validator,
)
from pydantic import ValidationError as PydanticValidationError

from webhook_service.core.exceptions import WebhookValidationError
from webhook_service.domain.enums import WILDCARD_EVENT, EventType

_URL_ADAPTER = TypeAdapter(AnyHttpUrl)
_KNOWN_EVENTS = frozenset(e.value for e in EventType) | {WILDCARD_EVENT}
_NON_NULLABLE_UPDATES = frozenset({"enabled", "max_retries", "retry_delay"})


def normalize_url(url: str) -> str:
    """Return the stripped url if it is an absolute http(s) URL."""
    candidate = (url or "").strip()
    try:
        _URL_ADAPTER.validate_python(candidate)
    except PydanticValidationError as exc:
        raise WebhookValidationError(f"Invalid webhook url: {url!r}") from exc
    return candidate


def normalize_events(events: list[str] | None) -> list[str]:
    """Default to the wildcard, reject unknown types, drop duplicates keeping order."""
    if events is None:
        return [WILDCARD_EVENT]
    cleaned = [str(e).strip() for e in events if e is not None and str(e).strip()]
    if not cleaned:
        raise WebhookValidationError("events must be a non-empty list")
    unknown = sorted(set(cleaned) - _KNOWN_EVENTS)
    if unknown:
        raise WebhookValidationError(f"Unknown event types: {', '.join(unknown)}")
    return list(dict.fromkeys(cleaned))


def _as_value_error(fn, value):
    try:
        return fn(value)
    except WebhookValidationError as exc:
        raise ValueError(str(exc)) from exc


class WebhookCreateDTO(BaseModel):
    model_config = ConfigDict(extra="forbid")

    url: str
    secret: str | None = Field(default=None, max_length=255)
    events: list[str] | None = None
    description: str | None = Field(default=None, max_length=500)
    max_retries: int | None = Field(default=None, ge=0)

    @field_validator("url")
    @classmethod
    def _check_url(cls, value: str) -> str:
        return _as_value_error(normalize_url, value)

    @field_validator("events")
    @classmethod
    def _check_events(cls, value: list[str] | None) -> list[str] | None:
        if value is None:
            return None
        return _as_value_error(normalize_events, value)


class WebhookUpdateDTO(BaseModel):
    """Partial update; only fields explicitly set are applied."""

    model_config = ConfigDict(extra="forbid")

    url: str | None = None
    secret: str | None = Field(default=None, max_length=255)
    events: list[str] | None = None
    description: str | None = Field(default=None, max_length=500)
    enabled: bool | None = None
    max_retries: int | None = Field(default=None, ge=0)
    retry_delay: int | None = Field(default=None, gt=0)

    @field_validator("url")
    @classmethod
    def _check_url(cls, value: str | None) -> str | None:
        if value is None:
            raise ValueError("url cannot be null")
        return _as_value_error(normalize_url, value)

    @field_validator("events")
    @classmethod
    def _check_events(cls, value: list[str] | None) -> list[str] | None:
        if value is None:
            raise ValueError("events cannot be null")
        return _as_value_error(normalize_events, value)

    @model_validator(mode="after")
    def _reject_nulls(self) -> "WebhookUpdateDTO":
        for name in _NON_NULLABLE_UPDATES & self.model_fields_set:
            if getattr(self, name) is None:
                raise ValueError(f"{name} cannot be null")
        return self

    def changes(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True)


class EventIngestDTO(BaseModel):
    """A domain event pushed by an external emitter."""

    model_config = ConfigDict(extra="forbid")

    id: UUID | None = None
    type: EventType
    payload: Any = None
    timestamp: datetime | None = None
    source: str = Field(min_length=1, max_length=255)
