"""aiohttp application entrypoint."""
from __future__ import annotations

from pathlib import Path

from aiohttp import web

from backend_common.aiohttp_app import (
    add_cors_to_routes,
    add_healthcheck,
    add_openapi_spec,
    create_base_app,
)
from backend_common.db.migrations import create_migration_runner
from backend_common.db.pool import create_pool_hooks
from backend_common.logging_config import configure_logging
from backend_common.redis_client import close_redis, init_redis

from webhook_service.api.router import setup_routes
from webhook_service.otel import setup_otel, shutdown_otel
from webhook_service.runtime import (
    RUNTIME_KEY,
    WebhookRuntime,
    start_webhook_runtime,
    stop_webhook_runtime,
)
from webhook_service.settings import settings
from webhook_service.workers import start_background_worker, stop_background_worker

configure_logging()

PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
OPENAPI_PATH = PROJECT_ROOT / "openapi" / "openapi.yaml"
MIGRATION_PATHS = [
    PROJECT_ROOT / "migrations",  # /app/migrations in container, repo root locally
    Path("/app/migrations"),
]


async def _init_redis(_app: web.Application) -> None:
    await init_redis(settings.redis_url)


def create_app(runtime: WebhookRuntime | None = None) -> web.Application:
    """Build the application.

    Passing ``runtime`` skips every external resource hook (PostgreSQL,
    Redis, migrations, background worker); tests use it with in-memory stores.
    """
    app, cors = create_base_app(settings)
    add_healthcheck(app, settings)
    add_openapi_spec(app, OPENAPI_PATH)
    setup_routes(app)

    if runtime is None:
        setup_otel(app)
        init_pool, close_pool = create_pool_hooks(settings)
        app.on_startup.append(init_pool)
        app.on_startup.append(create_migration_runner(settings, MIGRATION_PATHS))
        app.on_startup.append(_init_redis)
        app.on_startup.append(start_webhook_runtime)
        app.on_startup.append(start_background_worker)
        app.on_cleanup.append(stop_background_worker)
        app.on_cleanup.append(stop_webhook_runtime)
        app.on_cleanup.append(close_redis)
        app.on_cleanup.append(close_pool)
        app.on_cleanup.append(shutdown_otel)
    else:
        app[RUNTIME_KEY] = runtime
        app.on_cleanup.append(stop_webhook_runtime)

    add_cors_to_routes(app, cors)
    return app


def main() -> None:
    web.run_app(create_app(), host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
