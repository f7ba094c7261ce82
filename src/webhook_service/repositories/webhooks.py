"""Webhook repositories (registrations + append-only delivery log)."""
from __future__ import annotations

from datetime import datetime
from typing import Any, List, Tuple
from uuid import UUID

from asyncpg import Pool, Record  # type: ignore[import-untyped]

from webhook_service.core.exceptions import NotFoundError
from webhook_service.domain.webhooks import DeliveryAttempt, WebhookConfig
from webhook_service.repositories.base import BaseRepository

# Columns an update may touch; id and timestamps are managed here.
_UPDATABLE_COLUMNS = (
    "url",
    "secret",
    "events",
    "description",
    "enabled",
    "max_retries",
    "retry_delay",
)


class WebhookRepository(BaseRepository):
    def __init__(self, pool: Pool):
        super().__init__(pool)

    @staticmethod
    def _to_model(record: Record) -> WebhookConfig:
        payload = dict(record)
        payload["events"] = list(payload.get("events") or [])
        return WebhookConfig.model_validate(payload)

    async def create(
        self,
        *,
        url: str,
        secret: str | None,
        events: list[str],
        description: str | None,
        max_retries: int,
        retry_delay: int,
    ) -> WebhookConfig:
        record = await self._fetchrow(
            """
            INSERT INTO webhooks (url, secret, events, description, enabled, max_retries, retry_delay)
            VALUES ($1, $2, $3::text[], $4, true, $5, $6)
            RETURNING *
            """,
            url,
            secret,
            events,
            description,
            max_retries,
            retry_delay,
        )
        assert record is not None
        return self._to_model(record)

    async def get(self, webhook_id: UUID) -> WebhookConfig:
        record = await self._fetchrow("SELECT * FROM webhooks WHERE id = $1", webhook_id)
        if record is None:
            raise NotFoundError(f"Webhook with ID {webhook_id} not found")
        return self._to_model(record)

    async def list_webhooks(self, *, enabled: bool | None = None) -> List[WebhookConfig]:
        if enabled is None:
            records = await self._fetch("SELECT * FROM webhooks ORDER BY created_at DESC")
        else:
            records = await self._fetch(
                "SELECT * FROM webhooks WHERE enabled = $1 ORDER BY created_at DESC",
                enabled,
            )
        return [self._to_model(r) for r in records]

    async def update(self, webhook_id: UUID, changes: dict[str, Any]) -> WebhookConfig:
        assignments: list[str] = []
        values: list[Any] = [webhook_id]
        for column in _UPDATABLE_COLUMNS:
            if column not in changes:
                continue
            values.append(changes[column])
            cast = "::text[]" if column == "events" else ""
            assignments.append(f"{column} = ${len(values)}{cast}")
        if not assignments:
            return await self.get(webhook_id)
        assignments.append("updated_at = now()")
        record = await self._fetchrow(
            f"""
            UPDATE webhooks
            SET {", ".join(assignments)}
            WHERE id = $1
            RETURNING *
            """,
            *values,
        )
        if record is None:
            raise NotFoundError(f"Webhook with ID {webhook_id} not found")
        return self._to_model(record)

    async def delete(self, webhook_id: UUID) -> None:
        record = await self._fetchrow(
            "DELETE FROM webhooks WHERE id = $1 RETURNING id",
            webhook_id,
        )
        if record is None:
            raise NotFoundError(f"Webhook with ID {webhook_id} not found")

    async def touch_last_called(self, webhook_id: UUID, called_at: datetime) -> None:
        # Concurrent deliveries race here; last write wins.
        await self._execute(
            "UPDATE webhooks SET last_called_at = $2 WHERE id = $1",
            webhook_id,
            called_at,
        )


class WebhookDeliveryRepository(BaseRepository):
    def __init__(self, pool: Pool):
        super().__init__(pool)

    def _to_model(self, record: Record) -> DeliveryAttempt:
        payload = dict(record)
        payload["payload"] = self._load_json(payload.get("payload"))
        payload["response"] = self._load_json(payload.get("response"))
        return DeliveryAttempt.model_validate(payload)

    async def create(
        self,
        *,
        webhook_id: UUID,
        event_id: UUID,
        event_type: str,
        payload: Any,
        success: bool,
        status_code: int | None,
        response: Any,
        error: str | None,
        duration: int,
        attempt: int,
    ) -> DeliveryAttempt:
        record = await self._fetchrow(
            """
            INSERT INTO webhook_deliveries (
                webhook_id,
                event_id,
                event_type,
                payload,
                success,
                status_code,
                response,
                error,
                duration,
                attempt
            )
            VALUES ($1, $2, $3, $4::jsonb, $5, $6, $7::jsonb, $8, $9, $10)
            RETURNING *
            """,
            webhook_id,
            event_id,
            event_type,
            self._dump_json(payload),
            success,
            status_code,
            self._dump_json(response),
            error,
            duration,
            attempt,
        )
        assert record is not None
        return self._to_model(record)

    async def get(self, webhook_id: UUID, delivery_id: UUID) -> DeliveryAttempt:
        record = await self._fetchrow(
            "SELECT * FROM webhook_deliveries WHERE webhook_id = $1 AND id = $2",
            webhook_id,
            delivery_id,
        )
        if record is None:
            raise NotFoundError("Delivery not found")
        return self._to_model(record)

    async def list_by_webhook(
        self,
        webhook_id: UUID,
        *,
        limit: int = 100,
        offset: int = 0,
    ) -> Tuple[List[DeliveryAttempt], int]:
        records = await self._fetch(
            """
            SELECT *,
                   COUNT(*) OVER() AS total_count
            FROM webhook_deliveries
            WHERE webhook_id = $1
            ORDER BY created_at DESC
            LIMIT $2 OFFSET $3
            """,
            webhook_id,
            limit,
            offset,
        )
        items: List[DeliveryAttempt] = []
        total: int | None = None
        for rec in records:
            rec_dict = dict(rec)
            total_value = rec_dict.pop("total_count", None)
            if total_value is not None:
                total = int(total_value)
            items.append(self._to_model(rec_dict))
        if total is None:
            total = await self._count_by_webhook(webhook_id)
        return items, total

    async def _count_by_webhook(self, webhook_id: UUID) -> int:
        value = await self._fetchval(
            "SELECT COUNT(*) FROM webhook_deliveries WHERE webhook_id = $1",
            webhook_id,
        )
        return int(value or 0)
