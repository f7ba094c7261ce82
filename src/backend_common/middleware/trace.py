"""Middleware binding trace_id / request_id to the structlog context."""
from __future__ import annotations

import time
from typing import Any, Mapping
from uuid import UUID, uuid4

import structlog
from aiohttp import web

TRACE_ID_HEADER = "X-Trace-Id"
REQUEST_ID_HEADER = "X-Request-Id"

logger = structlog.get_logger(__name__)

# Never logged: credentials and webhook signing material
SENSITIVE_HEADERS = {
    "authorization",
    "cookie",
    "set-cookie",
    "x-api-key",
    "x-auth-token",
    "x-webhook-signature",
}


def is_valid_uuid(value: str) -> bool:
    """Check if string is a valid UUID."""
    try:
        UUID(value)
        return True
    except (ValueError, AttributeError, TypeError):
        return False


def get_safe_headers(headers: Mapping[str, Any]) -> dict[str, Any]:
    """Return a plain dict of headers with sensitive entries removed."""
    return {
        key: value
        for key, value in headers.items()
        if key.lower() not in SENSITIVE_HEADERS
    }


def _elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000, 2)


def create_trace_middleware(service_name: str):
    """Create trace middleware with specified service name."""

    @web.middleware
    async def trace_middleware(request: web.Request, handler):
        start = time.perf_counter()

        trace_id = request.headers.get(TRACE_ID_HEADER)
        if not trace_id or not is_valid_uuid(trace_id):
            trace_id = str(uuid4())

        request_id = request.headers.get(REQUEST_ID_HEADER)
        if not request_id or not is_valid_uuid(request_id):
            request_id = str(uuid4())

        request["trace_id"] = trace_id
        request["request_id"] = request_id

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            trace_id=trace_id,
            request_id=request_id,
            service=service_name,
            method=request.method,
            path=request.path,
        )

        logger.info(
            "Incoming request",
            query_string=request.query_string or None,
            remote=request.remote,
            content_length=request.content_length,
            headers=get_safe_headers(request.headers),
        )

        try:
            try:
                response = await handler(request)
            except web.HTTPException as exc:
                logger.warning(
                    "Request failed with HTTP exception",
                    status_code=exc.status_code,
                    duration_ms=_elapsed_ms(start),
                    error=exc.text or exc.reason,
                )
                raise
            except Exception as exc:
                logger.error(
                    "Request failed with exception",
                    duration_ms=_elapsed_ms(start),
                    error=str(exc),
                    error_type=type(exc).__name__,
                    exc_info=True,
                )
                raise

            log = logger.warning if response.status >= 400 else logger.info
            log(
                "Request completed",
                status_code=response.status,
                duration_ms=_elapsed_ms(start),
            )

            response.headers[TRACE_ID_HEADER] = trace_id
            response.headers[REQUEST_ID_HEADER] = request_id
            return response
        finally:
            # Delivery tasks spawned by the handler copied the context already
            structlog.contextvars.clear_contextvars()

    return trace_middleware
