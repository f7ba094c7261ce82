"""SQL migration helpers shared between the startup hook and ``bin/migrate.py``."""
from __future__ import annotations

import asyncio
import hashlib
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable, Iterable, Protocol

import asyncpg  # type: ignore[import-untyped]
import structlog
from aiohttp import web

logger = structlog.get_logger(__name__)

_SCHEMA_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS schema_migrations (
    version text PRIMARY KEY,
    checksum text NOT NULL,
    applied_at timestamptz NOT NULL DEFAULT now()
);
"""


class SettingsProtocol(Protocol):
    """Protocol for settings objects with database configuration."""

    database_url: Any


@dataclass(frozen=True)
class Migration:
    version: str
    path: Path
    sql: str

    @property
    def checksum(self) -> str:
        return hashlib.sha256(self.sql.encode("utf-8")).hexdigest()


def load_migrations(directory: Path) -> list[Migration]:
    """Read ``*.sql`` files sorted lexicographically; the file stem is the version."""
    migrations: dict[str, Migration] = {}
    for path in sorted(directory.glob("*.sql")):
        version = path.stem
        if version in migrations:
            raise ValueError(f"Duplicate migration version detected: {version}")
        migrations[version] = Migration(version, path, path.read_text(encoding="utf-8"))
    return list(migrations.values())


async def pending_migrations(
    conn: asyncpg.Connection, migrations: Iterable[Migration]
) -> list[Migration]:
    """Return migrations not yet recorded, failing on checksum drift."""
    await conn.execute(_SCHEMA_TABLE_SQL)
    rows = await conn.fetch("SELECT version, checksum FROM schema_migrations")
    applied = {row["version"]: row["checksum"] for row in rows}
    pending = []
    for migration in migrations:
        recorded = applied.get(migration.version)
        if recorded is None:
            pending.append(migration)
        elif recorded != migration.checksum:
            raise RuntimeError(
                f"Checksum mismatch for {migration.version}: "
                f"{recorded} (db) != {migration.checksum} (file)"
            )
    return pending


async def apply_migrations(conn: asyncpg.Connection, migrations: Iterable[Migration]) -> int:
    """Apply each migration in its own transaction. Returns the number applied."""
    pending = await pending_migrations(conn, migrations)
    for migration in pending:
        logger.info("Applying migration", version=migration.version)
        async with conn.transaction():
            await conn.execute(migration.sql)
            await conn.execute(
                "INSERT INTO schema_migrations (version, checksum) VALUES ($1, $2)",
                migration.version,
                migration.checksum,
            )
    return len(pending)


async def _connect_with_retry(
    database_url: str, *, max_retries: int = 5, retry_delay: float = 2.0
) -> asyncpg.Connection | None:
    for attempt in range(1, max_retries + 1):
        try:
            return await asyncpg.connect(database_url)
        except (OSError, asyncpg.PostgresError) as exc:
            logger.warning(
                "Database connection failed",
                attempt=attempt,
                max_retries=max_retries,
                error=str(exc),
            )
            if attempt < max_retries:
                await asyncio.sleep(retry_delay)
    return None


def create_migration_runner(
    settings: SettingsProtocol,
    possible_paths: Iterable[Path],
) -> Callable[[web.Application], Awaitable[None]]:
    """Create an aiohttp startup hook that applies pending SQL migrations."""
    possible_paths_list = list(possible_paths)

    async def apply_migrations_on_startup(_app: web.Application) -> None:
        migrations_dir = next((p for p in possible_paths_list if p.exists()), None)
        if migrations_dir is None:
            logger.warning(
                "Migrations directory not found, skipping migrations",
                tried=[str(p) for p in possible_paths_list],
            )
            return

        migrations = load_migrations(migrations_dir)
        if not migrations:
            logger.warning("No migrations found, skipping", directory=str(migrations_dir))
            return

        conn = await _connect_with_retry(str(settings.database_url))
        if conn is None:
            logger.error("Failed to connect to database after retries, skipping migrations")
            return

        try:
            applied = await apply_migrations(conn, migrations)
        finally:
            await conn.close()
        logger.info("Migrations up to date", applied=applied)

    return apply_migrations_on_startup
