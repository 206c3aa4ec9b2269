from typing import Any

from arq import create_pool
from arq.connections import ArqRedis, RedisSettings
from arq.jobs import Job

from billing_metrics.core.config import settings

# Redis connection settings
redis_settings = RedisSettings.from_dsn(settings.REDIS_URL)


async def get_redis_pool() -> ArqRedis:
    """Get or create Redis pool for arq"""
    return await create_pool(redis_settings)


async def enqueue_task(task_name: str, *args: Any, **kwargs: Any) -> Job:
    """
    Enqueue a task to the arq worker.

    Args:
        task_name: Name of the task function
        *args: Positional arguments for the task
        **kwargs: Keyword arguments for the task

    Returns:
        Job object from arq
    """
    pool = await get_redis_pool()
    try:
        job = await pool.enqueue_job(task_name, *args, **kwargs)
        return job  # type: ignore[return-value]
    finally:
        await pool.close()


async def enqueue_metrics_invalidation(company_id: str) -> Job:
    """Enqueue a cache invalidation after invoices, quotes or customers of a company changed."""
    return await enqueue_task("invalidate_metrics_cache_task", company_id)


async def enqueue_dashboard_refresh(company_id: str) -> Job:
    """Enqueue a recompute of a company's dashboard snapshot."""
    return await enqueue_task("refresh_dashboard_task", company_id)
