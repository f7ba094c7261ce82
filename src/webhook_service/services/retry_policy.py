"""Bounded exponential-backoff retries with jitter.

A delivery sequence is a small state machine::

    ATTEMPTING(1) -> SUCCEEDED
                  -> ATTEMPTING(n + 1)   if attempt n failed and n <= max_retries
                  -> EXHAUSTED           if attempt n failed and n >  max_retries

so a webhook with ``max_retries = k`` gets at most ``k + 1`` attempts.
"""
from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, TypeVar

import structlog

from webhook_service.core.exceptions import DeliveryError, RetriesExhaustedError

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class RetryState(str, Enum):
    ATTEMPTING = "attempting"
    SUCCEEDED = "succeeded"
    EXHAUSTED = "exhausted"


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int
    base_delay_ms: int
    factor: float = 2.0
    max_multiplier: int = 10
    jitter_min: float = 0.5
    jitter_max: float = 1.5

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.base_delay_ms <= 0:
            raise ValueError("base_delay_ms must be > 0")

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    @property
    def max_delay_ms(self) -> float:
        return float(self.base_delay_ms * self.max_multiplier)

    def can_retry(self, attempt: int) -> bool:
        return attempt <= self.max_retries

    def backoff_ms(self, attempt: int, rng: random.Random | None = None) -> float:
        """Delay before attempt ``attempt + 1``, capped at ``base * max_multiplier``."""
        jitter = (rng or random).uniform(self.jitter_min, self.jitter_max)
        raw = self.base_delay_ms * self.factor ** (attempt - 1) * jitter
        return min(raw, self.max_delay_ms)


class RetrySequence:
    """Mutable state of one delivery sequence."""

    def __init__(self, policy: RetryPolicy, rng: random.Random | None = None):
        self.policy = policy
        self.attempt = 1
        self.state = RetryState.ATTEMPTING
        self.last_error: DeliveryError | None = None
        self._rng = rng

    @property
    def finished(self) -> bool:
        return self.state is not RetryState.ATTEMPTING

    def record_success(self) -> None:
        self._ensure_attempting()
        self.state = RetryState.SUCCEEDED

    def record_failure(self, error: DeliveryError) -> float | None:
        """Return the backoff (seconds) before the next attempt, or None when exhausted."""
        self._ensure_attempting()
        self.last_error = error
        if not self.policy.can_retry(self.attempt):
            self.state = RetryState.EXHAUSTED
            return None
        delay_ms = self.policy.backoff_ms(self.attempt, self._rng)
        self.attempt += 1
        return delay_ms / 1000

    def _ensure_attempting(self) -> None:
        if self.finished:
            raise RuntimeError(f"Retry sequence already {self.state.value}")


async def run_with_retry(
    policy: RetryPolicy,
    operation: Callable[[int], Awaitable[T]],
    *,
    rng: random.Random | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> tuple[T, int]:
    """Drive ``operation(attempt)`` until it succeeds or the policy is exhausted.

    Only :class:`DeliveryError` counts as a retryable failure; anything else
    propagates untouched. Returns ``(result, attempt)``.

    Raises:
        RetriesExhaustedError: carrying the last failure and its attempt number.
    """
    sequence = RetrySequence(policy, rng)
    while True:
        attempt = sequence.attempt
        try:
            result = await operation(attempt)
        except DeliveryError as exc:
            delay = sequence.record_failure(exc)
            if delay is None:
                raise RetriesExhaustedError(exc, attempt) from exc
            logger.info(
                "webhook retry scheduled",
                attempt=attempt,
                next_attempt=sequence.attempt,
                delay_seconds=round(delay, 3),
                error=str(exc),
            )
            await sleep(delay)
            continue
        sequence.record_success()
        return result, attempt
