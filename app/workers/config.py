"""Arq worker configuration."""

from typing import Optional

from arq import create_pool
from arq.connections import ArqRedis, RedisSettings

from app.core.config import settings


class WorkerSettings:
    """Configuration for Arq workers."""

    redis_settings = RedisSettings.from_dsn(settings.redis_url)
    max_jobs = 4  # Each build already runs a pool of tile workers
    job_timeout = 6 * 3600  # Deep pyramids take hours
    keep_result = 3600  # Keep job results for 1 hour
    keep_result_forever = False
    max_tries = 3  # Retry failed jobs up to 3 times
    health_check_interval = 60  # Health check every minute


async def get_redis_pool(redis_url: Optional[str] = None) -> ArqRedis:
    """Get Redis connection pool for Arq.

    Args:
        redis_url: Redis DSN; defaults to the worker's configured instance

    Returns:
        ArqRedis: Redis connection pool configured for Arq
    """
    if redis_url is None:
        return await create_pool(WorkerSettings.redis_settings)
    return await create_pool(RedisSettings.from_dsn(redis_url))
