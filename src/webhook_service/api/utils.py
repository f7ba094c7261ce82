"""Helper utilities for API handlers."""
from __future__ import annotations

from typing import Any
from uuid import UUID

from aiohttp import web

from backend_common.aiohttp_app import read_json as read_json  # noqa: F401


def parse_uuid(value: str, label: str) -> UUID:
    try:
        return UUID(value if isinstance(value, str) else str(value))
    except (ValueError, TypeError) as exc:
        raise web.HTTPBadRequest(text=f"Invalid {label}") from exc


def parse_bool(value: str | None, label: str) -> bool | None:
    if value is None or value == "":
        return None
    lowered = value.strip().lower()
    if lowered in ("true", "1", "yes"):
        return True
    if lowered in ("false", "0", "no"):
        return False
    raise web.HTTPBadRequest(text=f"Invalid {label}")


def pagination_params(
    request: web.Request,
    *,
    default_limit: int = 100,
    max_limit: int = 100,
) -> tuple[int, int]:
    query = request.rel_url.query
    try:
        limit = int(query.get("limit", str(default_limit)))
        offset = int(query.get("offset", "0"))
    except ValueError as exc:
        raise web.HTTPBadRequest(text="limit and offset must be integers") from exc
    if limit <= 0:
        limit = default_limit
    limit = min(limit, max_limit)
    if offset < 0:
        offset = 0
    return limit, offset


def paginated_response(
    items: list[Any],
    *,
    limit: int,
    offset: int,
    key: str,
    total: int,
) -> dict[str, Any]:
    page = offset // limit + 1 if limit else 1
    return {
        key: items,
        "total": total,
        "page": page,
        "page_size": limit,
    }
