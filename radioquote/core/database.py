"""
Async PostgreSQL connection pool module for the Radio Quote Engine.

This module owns the process-wide asyncpg connection pool. Every store call in
the service layer flows through a connection acquired from this pool, so pool
sizing and the per-call timeout are configured in exactly one place.

Key Components:
- Global connection pool singleton (_pool)
- init_db(): Initialize the connection pool at application startup
- close_db(): Gracefully close the pool at application shutdown
- apply_schema(): Create the quote engine tables if they don't exist

Connection Pool Configuration:
- min_size / max_size: from Settings.db_pool_min_size / db_pool_max_size
- command_timeout: Settings.store_timeout_seconds

Usage:
    # At application startup (in FastAPI lifespan)
    pool = await init_db()
    await apply_schema(pool)

    # At application shutdown
    await close_db()

Dependencies:
    - asyncpg: PostgreSQL driver
    - radioquote.core.config.get_settings (for DATABASE_URL and pool sizing)
"""

import logging
from typing import Optional

import asyncpg
from asyncpg import Pool

from radioquote.core.config import get_settings
from radioquote.sql.schema import SCHEMA_DDL

logger = logging.getLogger(__name__)


# =============================================================================
# Global Pool Singleton
# =============================================================================

# None until init_db() is called
_pool: Optional[Pool] = None


# =============================================================================
# Pool Lifecycle Functions
# =============================================================================

async def init_db() -> Pool:
    """
    Initialize the database connection pool.

    Creates an asyncpg connection pool sized from settings. Calling it again
    while a pool exists returns the existing pool.

    Returns:
        Pool: The asyncpg connection pool instance.

    Raises:
        asyncpg.PostgresError: If connection to the database fails.
        OSError: If the database host is unreachable.
    """
    global _pool

    if _pool is None:
        settings = get_settings()
        _pool = await asyncpg.create_pool(
            dsn=settings.database_url,
            min_size=settings.db_pool_min_size,
            max_size=settings.db_pool_max_size,
            command_timeout=settings.store_timeout_seconds,
        )
        logger.info(
            f"Created connection pool (min={settings.db_pool_min_size}, "
            f"max={settings.db_pool_max_size})"
        )

    return _pool


async def close_db() -> None:
    """
    Close the database connection pool gracefully.

    Idempotent; the pool is reset to None so a later init_db() creates a
    fresh one.
    """
    global _pool

    if _pool is not None:
        await _pool.close()
        _pool = None


async def apply_schema(pool: Pool) -> None:
    """
    Create every table, constraint and index the quote engine relies on.

    All statements use IF NOT EXISTS so this is safe to run on every startup.

    Args:
        pool: The connection pool to run the DDL on.
    """
    settings = get_settings()
    async with pool.acquire() as conn:
        await conn.execute(SCHEMA_DDL, timeout=settings.store_timeout_seconds)
    logger.info("Schema verified")
