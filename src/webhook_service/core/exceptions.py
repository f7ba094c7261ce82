"""Common exceptions for domain, repository and delivery layers."""
from __future__ import annotations

from typing import Any


class WebhookServiceError(Exception):
    """Base error for service layer."""


class RepositoryError(WebhookServiceError):
    """Raised when repository operations fail."""


class NotFoundError(RepositoryError):
    """Raised when requested entity is missing."""


class WebhookValidationError(WebhookServiceError):
    """Raised when webhook registration or update input is malformed."""


class DeliveryStateError(WebhookServiceError):
    """Raised when an operation does not apply to a delivery in its current state."""


class DeliveryError(WebhookServiceError):
    """A single delivery attempt failed.

    Carries whatever the attempt observed so the terminal log row can record it.
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        response: Any = None,
        duration_ms: int = 0,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.response = response
        self.duration_ms = duration_ms


class TransportError(DeliveryError):
    """Network failure or timeout before an HTTP response was received."""


class HttpStatusError(DeliveryError):
    """The target answered with a status outside the 2xx range."""


class RetriesExhaustedError(DeliveryError):
    """Terminal failure of a delivery sequence; recorded, never raised to the dispatcher."""

    def __init__(self, last_error: DeliveryError, attempt: int):
        super().__init__(
            str(last_error),
            status_code=last_error.status_code,
            response=last_error.response,
            duration_ms=last_error.duration_ms,
        )
        self.last_error = last_error
        self.attempt = attempt
