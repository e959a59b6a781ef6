"""asyncpg pool shared by the config repository and the scripts."""

import logging

import asyncpg

from config.settings import settings

logger = logging.getLogger(__name__)

APPLICATION_NAME = "cn-iit-withholding"

_pool: asyncpg.Pool | None = None


async def get_pool() -> asyncpg.Pool:
    """Get or create the connection pool."""
    global _pool
    if _pool is None:
        logger.info(
            "Creating connection pool (%d-%d connections)",
            settings.db_pool_min_size,
            settings.db_pool_max_size,
        )
        _pool = await asyncpg.create_pool(
            settings.database_url_asyncpg,
            min_size=settings.db_pool_min_size,
            max_size=settings.db_pool_max_size,
            server_settings={"application_name": APPLICATION_NAME},
        )
    return _pool


async def close_pool() -> None:
    global _pool
    if _pool is not None:
        await _pool.close()
        _pool = None
