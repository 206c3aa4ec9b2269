from fastapi import Request

from billing_metrics.core.errors import ValidationError
from billing_metrics.core.keys import validate_tenant_id
from billing_metrics.services.metrics_service import MetricsService

COMPANY_ID_HEADER = "X-Company-Id"


def get_current_company(request: Request) -> str:
    """Return the company id resolved by the upstream authentication layer.

    The gateway authenticates the caller and forwards the tenant in the
    X-Company-Id header; this service trusts it as-is.
    """
    company_id = request.headers.get(COMPANY_ID_HEADER)
    if not company_id:
        raise ValidationError("Company id is required")
    return validate_tenant_id(company_id)


def get_metrics_service(request: Request) -> MetricsService:
    return request.app.state.container.metrics_service  # type: ignore[no-any-return]
