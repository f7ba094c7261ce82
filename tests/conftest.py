from __future__ import annotations

import random
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import aiohttp
import asyncpg
import pytest
from aiohttp import web
from testsuite.databases.pgsql import discover

from webhook_service.main import create_app
from webhook_service.runtime import build_runtime
from webhook_service.services.delivery import DeliveryExecutor
from webhook_service.services.rate_limiter import WebhookRateLimiter
from webhook_service.services.registry import WebhookRegistry
from webhook_service.services.stats import WebhookStatsAggregator
from webhook_service.services.webhook_cache import WebhookCache

from tests.fakes import FakeRedis, InMemoryDeliveryRepository, InMemoryWebhookRepository

pytest_plugins = (
    "testsuite.pytest_plugin",
    "testsuite.databases.pgsql.pytest_plugin",
)

PG_SCHEMAS_PATH = Path(__file__).parent / "schemas" / "postgresql"


@pytest.fixture(scope="session")
def pgsql_local(pgsql_local_create):
    databases = discover.find_schemas(
        service_name=None,
        schema_dirs=[PG_SCHEMAS_PATH],
    )
    return pgsql_local_create(list(databases.values()))


@pytest.fixture
async def db_pool(pgsql):
    """asyncpg pool on the testsuite PostgreSQL database."""
    conninfo = pgsql["webhook_service"].conninfo
    pool = await asyncpg.create_pool(dsn=conninfo.get_uri())
    try:
        yield pool
    finally:
        await pool.close()


@dataclass
class Receiver:
    """Local webhook target: replies with queued statuses, then ``default_status``."""

    statuses: list[int] = field(default_factory=list)
    default_status: int = 200
    json_body: Any = field(default_factory=lambda: {"received": True})
    text_body: str | None = None
    requests: list[tuple[Any, str]] = field(default_factory=list)
    url: str = ""

    async def handle(self, request: web.Request) -> web.Response:
        raw = await request.text()
        self.requests.append((request.headers.copy(), raw))
        status = self.statuses.pop(0) if self.statuses else self.default_status
        if self.text_body is not None:
            return web.Response(text=self.text_body, status=status)
        return web.json_response(self.json_body, status=status)

    @property
    def calls(self) -> int:
        return len(self.requests)

    def header_values(self, name: str) -> list[str]:
        return [headers.get(name, "") for headers, _ in self.requests]


@pytest.fixture
def make_receiver(aiohttp_server):
    async def factory(**kwargs: Any) -> Receiver:
        receiver = Receiver(**kwargs)
        app = web.Application()
        app.router.add_post("/hook", receiver.handle)
        server = await aiohttp_server(app)
        receiver.url = str(server.make_url("/hook"))
        return receiver

    return factory


@pytest.fixture
def redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def webhook_repo() -> InMemoryWebhookRepository:
    return InMemoryWebhookRepository()


@pytest.fixture
def delivery_repo() -> InMemoryDeliveryRepository:
    return InMemoryDeliveryRepository()


@pytest.fixture
async def http_session():
    async with aiohttp.ClientSession() as session:
        yield session


@pytest.fixture
def cache(redis) -> WebhookCache:
    return WebhookCache(redis)


@pytest.fixture
def stats(redis) -> WebhookStatsAggregator:
    return WebhookStatsAggregator(redis)


@pytest.fixture
def rate_limiter(redis) -> WebhookRateLimiter:
    return WebhookRateLimiter(redis)


@pytest.fixture
def registry(webhook_repo, delivery_repo, cache, stats) -> WebhookRegistry:
    return WebhookRegistry(webhook_repo, delivery_repo, cache, stats)


@pytest.fixture
def executor(http_session, rate_limiter, stats, delivery_repo, webhook_repo) -> DeliveryExecutor:
    return DeliveryExecutor(
        http_session,
        rate_limiter,
        stats,
        delivery_repo,
        webhook_repo,
        timeout_seconds=2.0,
        rng=random.Random(7),
    )


@pytest.fixture
def runtime(webhook_repo, delivery_repo, redis, http_session):
    return build_runtime(
        webhooks=webhook_repo,
        deliveries=delivery_repo,
        redis=redis,
        session=http_session,
        rng=random.Random(7),
    )


@pytest.fixture
async def service_client(aiohttp_client, runtime):
    """API client backed by in-memory stores and the fake Redis."""
    app = create_app(runtime=runtime)
    return await aiohttp_client(app)


@pytest.fixture
def register_fast(registry):
    """Register a webhook whose retries back off by about a millisecond."""

    async def factory(url: str, **kwargs: Any):
        view = await registry.register(url=url, **kwargs)
        return await registry.update(view.id, {"retry_delay": 1})

    return factory
