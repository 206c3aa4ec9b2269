"""Composition root: builds the database and Redis clients and wires the metrics service."""

import logging
from dataclasses import dataclass

from redis.asyncio import Redis
from sqlalchemy import Engine
from sqlalchemy.orm import Session, sessionmaker

from billing_metrics.core.cache import CacheStore, create_redis_client
from billing_metrics.core.config import Settings
from billing_metrics.core.database import build_engine, build_session_factory
from billing_metrics.core.keys import MetricKeyBuilder
from billing_metrics.services.data_source import MetricsDataSource
from billing_metrics.services.metrics_service import MetricsService

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    engine: Engine
    session_factory: sessionmaker[Session]
    redis: Redis
    cache: CacheStore
    metrics_service: MetricsService

    async def close(self) -> None:
        try:
            await self.cache.close()
        finally:
            self.engine.dispose()
        logger.info("Metrics service clients closed")


def build_container(
    settings: Settings,
    *,
    engine: Engine | None = None,
    redis: Redis | None = None,
) -> ServiceContainer:
    """Construct every client handle from settings; tests may pass their own engine or Redis."""
    engine = engine or build_engine(settings.APP_DATABASE_DSN)
    session_factory = build_session_factory(engine)
    redis = redis or create_redis_client(
        settings.REDIS_URL, socket_timeout=settings.REDIS_SOCKET_TIMEOUT_SECONDS
    )
    cache = CacheStore(redis)
    metrics_service = MetricsService(
        MetricsDataSource(session_factory),
        cache,
        MetricKeyBuilder(settings.METRICS_CACHE_NAMESPACE),
        cache_ttl=settings.METRICS_CACHE_TTL_SECONDS,
        query_timeout=settings.METRICS_QUERY_TIMEOUT_SECONDS,
        top_customers_limit=settings.METRICS_TOP_CUSTOMERS_LIMIT,
        max_analytics_buckets=settings.METRICS_MAX_ANALYTICS_BUCKETS,
    )
    return ServiceContainer(
        engine=engine,
        session_factory=session_factory,
        redis=redis,
        cache=cache,
        metrics_service=metrics_service,
    )


async def check_connections(container: ServiceContainer) -> None:
    """Log the reachability of both backends at startup without failing."""
    health = await container.metrics_service.health_check()
    if health.status != "healthy":
        logger.warning("Database not reachable at startup")
    if not await container.cache.ping():
        logger.warning("Redis not reachable at startup, metrics will be served uncached")
