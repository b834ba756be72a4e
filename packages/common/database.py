"""PostgreSQL connection pool and migrations."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import psycopg
from psycopg import AsyncConnection
from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool

from packages.common.config import Settings, get_settings
from packages.common.exceptions import DatabaseConnectionError, DatabaseError, MigrationError
from packages.common.logging import get_logger

logger = get_logger(module=__name__)

MIGRATIONS_DIR = Path(__file__).parent / "migrations"

# Module-level pool (initialized on first use)
_pool: AsyncConnectionPool[AsyncConnection[dict[str, Any]]] | None = None


async def get_pool(
    settings: Settings | None = None,
) -> AsyncConnectionPool[AsyncConnection[dict[str, Any]]]:
    """Get or create the connection pool."""
    global _pool
    if _pool is None:
        if settings is None:
            settings = get_settings()
        pool: AsyncConnectionPool[AsyncConnection[dict[str, Any]]] = AsyncConnectionPool(
            conninfo=settings.postgres_url,
            min_size=2,
            max_size=10,
            open=False,
            kwargs={"row_factory": dict_row},
        )
        try:
            await pool.open()
        except psycopg.OperationalError as exc:
            raise DatabaseConnectionError(
                "Cannot open PostgreSQL pool", context={"error": str(exc)}
            ) from exc
        _pool = pool
    return _pool


async def close_pool() -> None:
    """Close the connection pool."""
    global _pool
    if _pool is not None:
        await _pool.close()
        _pool = None


@asynccontextmanager
async def get_connection(
    settings: Settings | None = None,
) -> AsyncGenerator[AsyncConnection[dict[str, Any]]]:
    """Get a database connection from the pool."""
    pool = await get_pool(settings)
    async with pool.connection() as conn:
        yield conn


@asynccontextmanager
async def db_operation(
    operation: str,
    settings: Settings | None = None,
) -> AsyncGenerator[AsyncConnection[dict[str, Any]]]:
    """Pooled connection whose driver errors surface as ``DatabaseError``.

    Args:
        operation: Short name of the store operation, recorded in the error context.
        settings: Optional settings for the pool.
    """
    try:
        async with get_connection(settings) as conn:
            yield conn
    except psycopg.Error as exc:
        raise DatabaseError(
            f"Database operation failed: {operation}",
            context={"operation": operation, "error": str(exc)},
        ) from exc


@dataclass
class MigrationResult:
    """Names of migrations applied and skipped by one run."""

    applied: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)


_TRACKING_TABLE_SQL = (
    "CREATE TABLE IF NOT EXISTS schema_migrations ("
    "  name TEXT PRIMARY KEY,"
    "  applied_at TIMESTAMPTZ NOT NULL DEFAULT NOW()"
    ")"
)


def migration_files() -> list[Path]:
    """Bundled ``.sql`` migrations in the order they must run."""
    return sorted(MIGRATIONS_DIR.glob("*.sql"))


async def _applied_names(conn: AsyncConnection[dict[str, Any]]) -> set[str]:
    async with conn.transaction(), conn.cursor() as cur:
        await cur.execute(_TRACKING_TABLE_SQL)
        await cur.execute("SELECT name FROM schema_migrations")
        return {row["name"] for row in await cur.fetchall()}


async def _apply(conn: AsyncConnection[dict[str, Any]], path: Path) -> None:
    # Schema change and its tracking row commit together
    async with conn.transaction(), conn.cursor() as cur:
        await cur.execute(path.read_text())
        await cur.execute("INSERT INTO schema_migrations (name) VALUES (%s)", (path.stem,))


async def run_migrations(settings: Settings | None = None) -> MigrationResult:
    """Apply pending migrations from ``MIGRATIONS_DIR``.

    Applied names are tracked in ``schema_migrations`` so each file runs
    at most once; re-running is a no-op.

    Raises:
        MigrationError: If a migration fails. Earlier ones stay applied.
    """
    settings = settings or get_settings()
    result = MigrationResult()

    try:
        async with await psycopg.AsyncConnection.connect(
            settings.postgres_url,
            row_factory=dict_row,
            autocommit=True,
        ) as conn:
            done = await _applied_names(conn)
            for path in migration_files():
                if path.stem in done:
                    logger.debug("migration_skipped", name=path.stem)
                    result.skipped.append(path.stem)
                    continue
                await _apply(conn, path)
                logger.info("migration_applied", name=path.stem)
                result.applied.append(path.stem)
    except psycopg.Error as exc:
        raise MigrationError(
            f"Migration failed: {exc}",
            context={"applied": list(result.applied)},
        ) from exc

    return result


async def check_connection(settings: Settings | None = None) -> bool:
    """Check if database is reachable."""
    if settings is None:
        settings = get_settings()

    try:
        async with (
            await psycopg.AsyncConnection.connect(
                settings.postgres_url,
                connect_timeout=5,
            ) as conn,
            conn.cursor() as cur,
        ):
            await cur.execute("SELECT 1")
        return True
    except psycopg.OperationalError as exc:
        logger.warning("postgres_health_check_failed", error=str(exc))
        return False
