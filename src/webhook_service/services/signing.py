"""HMAC-SHA256 signatures for outbound webhook payloads.

Header format: ``t={unix_seconds},s={hex_digest}`` where the digest covers
``"{unix_seconds}.{event_json}"``. An empty header means the webhook has no
secret: receivers must treat it as "cannot verify", never as "verified".
Rejecting stale timestamps is the receiver's job; :func:`verify_signature`
offers an optional tolerance for that.
"""
from __future__ import annotations

import hmac
import time
from hashlib import sha256

from webhook_service.domain.webhooks import DomainEvent

SIGNATURE_HEADER = "X-Webhook-Signature"


def _digest(secret: str, timestamp: int, event_json: str) -> str:
    sign_string = f"{timestamp}.{event_json}"
    return hmac.new(secret.encode("utf-8"), sign_string.encode("utf-8"), sha256).hexdigest()


def sign(event: DomainEvent, secret: str | None, *, timestamp: int | None = None) -> str:
    if not secret:
        return ""
    ts = int(time.time()) if timestamp is None else timestamp
    return f"t={ts},s={_digest(secret, ts, event.to_json())}"


def parse_signature_header(value: str) -> tuple[int, str]:
    """Split a header value into ``(timestamp, hex_digest)``."""
    parts = dict(item.split("=", 1) for item in value.split(",") if "=" in item)
    try:
        return int(parts["t"]), parts["s"]
    except (KeyError, ValueError) as exc:
        raise ValueError(f"Malformed signature header: {value!r}") from exc


def verify_signature(
    header: str,
    event_json: str,
    secret: str,
    *,
    tolerance_seconds: int | None = None,
    now: int | None = None,
) -> bool:
    """Receiver-side check: constant-time digest comparison plus optional age limit."""
    if not header or not secret:
        return False
    try:
        timestamp, received = parse_signature_header(header)
    except ValueError:
        return False
    if tolerance_seconds is not None:
        current = int(time.time()) if now is None else now
        if abs(current - timestamp) > tolerance_seconds:
            return False
    return hmac.compare_digest(_digest(secret, timestamp, event_json), received)
