"""Delivery executor: rate limit, signed POST, retries, audit row, stats."""
from __future__ import annotations

import asyncio
import json
import random
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable
from uuid import uuid4

import aiohttp
import structlog
from aiohttp import ClientSession, ClientTimeout

from webhook_service.core.exceptions import HttpStatusError, RetriesExhaustedError, TransportError
from webhook_service.domain.webhooks import DeliveryAttempt, DomainEvent, WebhookTarget
from webhook_service.otel import get_tracer
from webhook_service.repositories.webhooks import WebhookDeliveryRepository, WebhookRepository
from webhook_service.services.rate_limiter import Denied, WebhookRateLimiter
from webhook_service.services.retry_policy import RetryPolicy, run_with_retry
from webhook_service.services.signing import SIGNATURE_HEADER, sign
from webhook_service.services.stats import WebhookStatsAggregator

logger = structlog.get_logger(__name__)
_tracer = get_tracer(__name__)

DEFAULT_USER_AGENT = "webhook-service/1.0"


@dataclass(frozen=True)
class _AttemptOutcome:
    status_code: int
    response: Any
    duration_ms: int


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


async def _read_response(resp: aiohttp.ClientResponse) -> Any:
    text = await resp.text(errors="replace")
    if "application/json" in resp.headers.get("Content-Type", ""):
        try:
            return json.loads(text)
        except ValueError:
            return text
    return text


class DeliveryExecutor:
    def __init__(
        self,
        session: ClientSession,
        rate_limiter: WebhookRateLimiter,
        stats: WebhookStatsAggregator,
        deliveries: WebhookDeliveryRepository,
        webhooks: WebhookRepository,
        *,
        user_agent: str = DEFAULT_USER_AGENT,
        timeout_seconds: float = 10.0,
        backoff_factor: float = 2.0,
        max_multiplier: int = 10,
        jitter_min: float = 0.5,
        jitter_max: float = 1.5,
        rng: random.Random | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._session = session
        self._rate_limiter = rate_limiter
        self._stats = stats
        self._deliveries = deliveries
        self._webhooks = webhooks
        self._user_agent = user_agent
        self._timeout = ClientTimeout(total=timeout_seconds)
        self._backoff_factor = backoff_factor
        self._max_multiplier = max_multiplier
        self._jitter = (jitter_min, jitter_max)
        self._rng = rng
        self._sleep = sleep

    def policy_for(self, target: WebhookTarget) -> RetryPolicy:
        return RetryPolicy(
            max_retries=target.max_retries,
            base_delay_ms=target.retry_delay,
            factor=self._backoff_factor,
            max_multiplier=self._max_multiplier,
            jitter_min=self._jitter[0],
            jitter_max=self._jitter[1],
        )

    async def deliver(self, target: WebhookTarget, event: DomainEvent) -> DeliveryAttempt | None:
        """Run one delivery sequence; returns the persisted row, or None when rate limited.

        Failures are recorded, never raised.
        """
        log = logger.bind(
            webhook_id=str(target.id),
            event_id=str(event.id),
            event_type=event.type.value,
        )
        decision = await self._rate_limiter.consume(target.id)
        if isinstance(decision, Denied):
            log.warning("webhook rate limit exceeded", retry_after=decision.retry_after)
            return None

        log.info("webhook delivery started", max_attempts=target.max_retries + 1)

        async def operation(attempt: int) -> _AttemptOutcome:
            return await self._attempt(target, event, attempt)

        try:
            outcome, attempt = await run_with_retry(
                self.policy_for(target),
                operation,
                rng=self._rng,
                sleep=self._sleep,
            )
        except RetriesExhaustedError as exc:
            row = await self._deliveries.create(
                webhook_id=target.id,
                event_id=event.id,
                event_type=event.type.value,
                payload=event.payload,
                success=False,
                status_code=exc.status_code,
                response=exc.response,
                error=str(exc),
                duration=exc.duration_ms,
                attempt=exc.attempt,
            )
            await self._stats.record(target.id, False, exc.duration_ms)
            log.warning(
                "webhook delivery exhausted",
                attempt=exc.attempt,
                status_code=exc.status_code,
                error=str(exc),
            )
            return row

        called_at = datetime.now(timezone.utc)
        row = await self._deliveries.create(
            webhook_id=target.id,
            event_id=event.id,
            event_type=event.type.value,
            payload=event.payload,
            success=True,
            status_code=outcome.status_code,
            response=outcome.response,
            error=None,
            duration=outcome.duration_ms,
            attempt=attempt,
        )
        await self._stats.record(target.id, True, outcome.duration_ms, now=called_at)
        await self._webhooks.touch_last_called(target.id, called_at)
        log.info(
            "webhook delivered",
            attempt=attempt,
            status_code=outcome.status_code,
            duration_ms=outcome.duration_ms,
        )
        return row

    def _headers(self, target: WebhookTarget, event: DomainEvent, delivery_id: str, attempt: int) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            SIGNATURE_HEADER: sign(event, target.secret),
            "X-Webhook-ID": str(target.id),
            "X-Delivery-ID": delivery_id,
            "X-Event-Type": event.type.value,
            "X-Attempt": str(attempt),
            "User-Agent": self._user_agent,
        }

    async def _attempt(self, target: WebhookTarget, event: DomainEvent, attempt: int) -> _AttemptOutcome:
        delivery_id = str(uuid4())
        body = {**event.to_wire(), "deliveryId": delivery_id}
        data = json.dumps(body, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
        headers = self._headers(target, event, delivery_id, attempt)

        with _tracer.start_as_current_span(
            "webhook.delivery.attempt",
            attributes={
                "webhook.id": str(target.id),
                "webhook.event_type": event.type.value,
                "webhook.attempt": attempt,
                "webhook.delivery_id": delivery_id,
            },
        ) as span:
            started = time.monotonic()
            try:
                async with self._session.post(
                    target.url,
                    data=data,
                    headers=headers,
                    timeout=self._timeout,
                ) as resp:
                    response = await _read_response(resp)
                    status = resp.status
            except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
                raise TransportError(
                    str(exc) or exc.__class__.__name__,
                    duration_ms=_elapsed_ms(started),
                ) from exc

            duration = _elapsed_ms(started)
            span.set_attribute("http.status_code", status)
            if not 200 <= status < 300:
                raise HttpStatusError(
                    f"HTTP {status}",
                    status_code=status,
                    response=response,
                    duration_ms=duration,
                )
            return _AttemptOutcome(status_code=status, response=response, duration_ms=duration)
