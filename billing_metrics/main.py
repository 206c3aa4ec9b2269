import logging
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from billing_metrics.core.config import settings
from billing_metrics.core.container import ServiceContainer, build_container, check_connections
from billing_metrics.core.errors import InternalError, MetricsError
from billing_metrics.routers import metrics

logger = logging.getLogger(__name__)

OPENAPI_TAGS = [
    {"name": "Metrics", "description": "Cached dashboard KPIs and revenue analytics per company."},
]

GENERIC_INTERNAL_MESSAGE = "An unexpected error occurred"


def create_app(
    container_factory: Callable[[], ServiceContainer] | None = None,
    debug: bool | None = None,
) -> FastAPI:
    """Build the API. The container is created on startup and closed on shutdown."""
    debug = settings.DEBUG if debug is None else debug

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        container = container_factory() if container_factory else build_container(settings)
        await check_connections(container)
        app.state.container = container
        try:
            yield
        finally:
            await container.close()

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.version,
        description="Dashboard and revenue metrics for the invoicing platform.",
        openapi_tags=OPENAPI_TAGS,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[o.strip() for o in settings.CORS_ORIGINS.split(",") if o.strip()],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(MetricsError)
    async def metrics_error_handler(request: Request, exc: MetricsError) -> JSONResponse:
        message = exc.message
        if isinstance(exc, InternalError) and not debug:
            message = GENERIC_INTERNAL_MESSAGE
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.kind, "message": message},
        )

    app.include_router(metrics.router, prefix="/v1/metrics", tags=["Metrics"])
    return app


app = create_app()
