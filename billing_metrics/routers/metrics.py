from datetime import datetime

from fastapi import APIRouter, Depends, Query, Response, status

from billing_metrics.core.auth import get_current_company, get_metrics_service
from billing_metrics.schemas.metrics import (
    DashboardSnapshot,
    ErrorResponse,
    HealthStatus,
    PeriodBucket,
    PeriodKind,
)
from billing_metrics.services.metrics_service import MetricsService

router = APIRouter()

_ERROR_RESPONSES: dict[int | str, dict[str, object]] = {
    400: {"model": ErrorResponse, "description": "Missing or invalid company id or parameters"},
    503: {"model": ErrorResponse, "description": "Data source unavailable"},
    504: {"model": ErrorResponse, "description": "Aggregation timed out"},
}


@router.get(
    "/dashboard",
    response_model=DashboardSnapshot,
    summary="Get dashboard metrics",
    responses=_ERROR_RESPONSES,
)
async def get_dashboard(
    company_id: str = Depends(get_current_company),
    service: MetricsService = Depends(get_metrics_service),
) -> DashboardSnapshot:
    """Get the dashboard snapshot for the current company, cached for 30 minutes."""
    return await service.get_dashboard(company_id)


@router.get(
    "/revenue",
    response_model=list[PeriodBucket],
    summary="Get revenue analytics",
    responses=_ERROR_RESPONSES,
)
async def get_revenue_analytics(
    company_id: str = Depends(get_current_company),
    service: MetricsService = Depends(get_metrics_service),
    period: PeriodKind = Query(PeriodKind.MONTHLY, description="Bucket granularity"),
    start_date: datetime | None = Query(
        None, alias="startDate", description="Range start (ISO 8601)"
    ),
    end_date: datetime | None = Query(None, alias="endDate", description="Range end (ISO 8601)"),
) -> list[PeriodBucket]:
    """Get paid revenue bucketed by period, with growth and cumulative totals."""
    return await service.get_revenue_analytics(company_id, period, start_date, end_date)


@router.delete(
    "/cache",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Invalidate cached metrics",
    responses={400: _ERROR_RESPONSES[400]},
)
async def invalidate_cache(
    company_id: str = Depends(get_current_company),
    service: MetricsService = Depends(get_metrics_service),
) -> Response:
    """Drop every cached metrics entry for the current company."""
    await service.invalidate_tenant(company_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get(
    "/health",
    response_model=HealthStatus,
    summary="Metrics service health",
    responses={503: {"model": HealthStatus, "description": "Data source unreachable"}},
)
async def health(
    response: Response,
    service: MetricsService = Depends(get_metrics_service),
) -> HealthStatus:
    """Check that the data source answers a trivial query. The cache is not checked."""
    result = await service.health_check()
    if result.status != "healthy":
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    return result
