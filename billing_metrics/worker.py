import logging
from typing import Any

from billing_metrics.core.config import settings
from billing_metrics.core.container import ServiceContainer, build_container
from billing_metrics.core.errors import MetricsError
from billing_metrics.tasks import redis_settings

logger = logging.getLogger(__name__)


async def startup(ctx: dict[str, Any]) -> None:
    ctx["container"] = build_container(settings)


async def shutdown(ctx: dict[str, Any]) -> None:
    container: ServiceContainer | None = ctx.pop("container", None)
    if container is not None:
        await container.close()


async def invalidate_metrics_cache_task(ctx: dict[str, Any], company_id: str) -> None:
    """Background task: drop every cached metrics entry for a company.

    Enqueued by the parts of the platform that create or change invoices,
    quotes, payments or customers.
    """
    container: ServiceContainer = ctx["container"]
    await container.metrics_service.invalidate_tenant(company_id)


async def refresh_dashboard_task(ctx: dict[str, Any], company_id: str) -> bool:
    """Background task: recompute a company's dashboard and overwrite the cached snapshot.

    Returns False when the data source could not be queried; the next read
    recomputes on demand anyway.
    """
    container: ServiceContainer = ctx["container"]
    try:
        await container.metrics_service.refresh_dashboard(company_id)
    except MetricsError as exc:
        logger.warning("Dashboard refresh for %s failed: %s", company_id, exc.message)
        return False
    return True


class WorkerSettings:
    functions = [
        invalidate_metrics_cache_task,
        refresh_dashboard_task,
    ]
    on_startup = startup
    on_shutdown = shutdown
    redis_settings = redis_settings
