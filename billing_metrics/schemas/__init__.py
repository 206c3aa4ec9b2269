from billing_metrics.schemas.metrics import (
    DashboardSnapshot,
    ErrorResponse,
    HealthStatus,
    PeriodBucket,
    PeriodKind,
    TopCustomer,
)

__all__ = [
    "DashboardSnapshot",
    "ErrorResponse",
    "HealthStatus",
    "PeriodBucket",
    "PeriodKind",
    "TopCustomer",
]
