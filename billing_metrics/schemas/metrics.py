from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field

from billing_metrics.models.invoice import InvoiceStatus
from billing_metrics.models.quote import QuoteStatus

# Fixed status sets, in display order
INVOICE_STATUSES: tuple[str, ...] = tuple(s.value for s in InvoiceStatus)
QUOTE_STATUSES: tuple[str, ...] = tuple(s.value for s in QuoteStatus)


class PeriodKind(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"


class TopCustomer(BaseModel):
    customer_id: str
    name: str
    total_amount: Decimal
    invoice_count: int
    type: Literal["individual", "company"]


class DashboardSnapshot(BaseModel):
    monthly_revenue: Decimal
    yearly_revenue: Decimal
    pending_invoices: int
    overdue_invoices: int
    top_customers: list[TopCustomer]
    invoice_status_distribution: dict[str, int]
    monthly_quotes: int
    yearly_quotes: int
    pending_quotes: int
    accepted_quotes: int
    quote_status_distribution: dict[str, int]
    quote_to_invoice_ratio: Decimal
    average_payment_delay: int  # days
    total_customers: int
    new_customers_this_month: int
    growth_rate: Decimal  # percent, month over month
    generated_at: datetime


class PeriodBucket(BaseModel):
    period: str
    period_start: datetime
    period_end: datetime
    revenue: Decimal
    invoice_count: int
    avg_invoice_amount: Decimal
    growth_rate: Decimal  # percent vs previous bucket
    cumulative_revenue: Decimal


class HealthStatus(BaseModel):
    status: Literal["healthy", "unhealthy"]
    timestamp: datetime


class ErrorResponse(BaseModel):
    error: str
    message: str = Field(description="Human-readable description")
