import math
from collections.abc import Iterable
from datetime import datetime
from decimal import Decimal

from sqlalchemy import func as sa_func
from sqlalchemy import text
from sqlalchemy.orm import Session

from billing_metrics.models.customer import Customer, customer_display_name
from billing_metrics.models.invoice import Invoice, InvoiceStatus
from billing_metrics.models.payment import Payment
from billing_metrics.models.quote import Quote
from billing_metrics.models.shared import ensure_utc
from billing_metrics.schemas.metrics import TopCustomer

CENTS = Decimal("0.01")
SECONDS_PER_DAY = 86400


def to_money(value: object) -> Decimal:
    """Normalize a driver-returned amount (Decimal, float, int or None) to cents."""
    if value is None:
        return Decimal("0.00")
    return Decimal(str(value)).quantize(CENTS)


def payment_delay_days(invoice_date: datetime, first_payment_date: datetime) -> int:
    """Whole days between issue and first payment, rounded up."""
    elapsed = ensure_utc(first_payment_date) - ensure_utc(invoice_date)
    return math.ceil(elapsed.total_seconds() / SECONDS_PER_DAY)


def average_delay(delays: Iterable[int]) -> int:
    """Mean of the delays rounded half up; 0 for an empty input."""
    values = list(delays)
    if not values:
        return 0
    return math.floor(sum(values) / len(values) + 0.5)


class MetricsRepository:
    """Read-only aggregate queries over a company's invoices, quotes and customers."""

    def __init__(self, db: Session):
        self.db = db

    def ping(self) -> None:
        self.db.execute(text("SELECT 1"))

    # --- Invoices ---

    def sum_paid_revenue(self, company_id: str, start: datetime, end: datetime) -> Decimal:
        """Gross amount of paid invoices dated within ``[start, end)``."""
        result = (
            self.db.query(sa_func.coalesce(sa_func.sum(Invoice.amount_including_tax), 0))
            .filter(
                Invoice.company_id == company_id,
                Invoice.status == InvoiceStatus.PAID.value,
                Invoice.invoice_date >= start,
                Invoice.invoice_date < end,
            )
            .scalar()
        )
        return to_money(result)

    def count_invoices(self, company_id: str, status: str | None = None) -> int:
        query = self.db.query(sa_func.count(Invoice.id)).filter(Invoice.company_id == company_id)
        if status is not None:
            query = query.filter(Invoice.status == status)
        return query.scalar() or 0

    def invoice_status_counts(self, company_id: str) -> dict[str, int]:
        """Invoice counts per status. Statuses without invoices are absent."""
        rows = (
            self.db.query(Invoice.status, sa_func.count(Invoice.id))
            .filter(Invoice.company_id == company_id)
            .group_by(Invoice.status)
            .all()
        )
        return {status: count for status, count in rows if count > 0}

    def paid_invoices_between(
        self, company_id: str, start: datetime, end: datetime
    ) -> list[tuple[datetime, Decimal]]:
        """(invoice_date, amount) of paid invoices dated within ``[start, end]``, oldest first."""
        rows = (
            self.db.query(Invoice.invoice_date, Invoice.amount_including_tax)
            .filter(
                Invoice.company_id == company_id,
                Invoice.status == InvoiceStatus.PAID.value,
                Invoice.invoice_date >= start,
                Invoice.invoice_date <= end,
            )
            .order_by(Invoice.invoice_date)
            .all()
        )
        return [(ensure_utc(row[0]), to_money(row[1])) for row in rows]

    def average_payment_delay(self, company_id: str) -> int:
        """Average days from issue to first payment over paid invoices with a payment.

        Invoices without any recorded payment are ignored entirely.
        """
        first_payment = sa_func.min(Payment.payment_date).label("first_payment_date")
        rows = (
            self.db.query(Invoice.invoice_date, first_payment)
            .join(Payment, Payment.invoice_id == Invoice.id)
            .filter(
                Invoice.company_id == company_id,
                Invoice.status == InvoiceStatus.PAID.value,
            )
            .group_by(Invoice.id, Invoice.invoice_date)
            .all()
        )
        return average_delay(payment_delay_days(row[0], row[1]) for row in rows)

    # --- Customers ---

    def top_customers(self, company_id: str, limit: int = 5) -> list[TopCustomer]:
        """Customers ranked by paid invoice total, ties broken by customer id.

        Customers without a paid invoice are not ranked.
        """
        total = sa_func.sum(Invoice.amount_including_tax)
        rows = (
            self.db.query(
                Customer.id,
                Customer.type,
                Customer.first_name,
                Customer.last_name,
                Customer.business_name,
                total.label("total_amount"),
                sa_func.count(Invoice.id).label("invoice_count"),
            )
            .join(Invoice, Invoice.customer_id == Customer.id)
            .filter(
                Customer.company_id == company_id,
                Invoice.company_id == company_id,
                Invoice.status == InvoiceStatus.PAID.value,
            )
            .group_by(
                Customer.id,
                Customer.type,
                Customer.first_name,
                Customer.last_name,
                Customer.business_name,
            )
            .order_by(total.desc(), Customer.id.asc())
            .limit(limit)
            .all()
        )
        return [
            TopCustomer(
                customer_id=str(row.id),
                name=customer_display_name(
                    row.type, row.first_name, row.last_name, row.business_name
                ),
                total_amount=to_money(row.total_amount),
                invoice_count=row.invoice_count,
                type=row.type,
            )
            for row in rows
        ]

    def count_customers(
        self,
        company_id: str,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> int:
        """Customers of the company, optionally restricted to those created in ``[start, end)``."""
        query = self.db.query(sa_func.count(Customer.id)).filter(
            Customer.company_id == company_id
        )
        if start is not None:
            query = query.filter(Customer.created_at >= start)
        if end is not None:
            query = query.filter(Customer.created_at < end)
        return query.scalar() or 0

    # --- Quotes ---

    def count_quotes(
        self,
        company_id: str,
        status: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> int:
        query = self.db.query(sa_func.count(Quote.id)).filter(Quote.company_id == company_id)
        if status is not None:
            query = query.filter(Quote.status == status)
        if start is not None:
            query = query.filter(Quote.quote_date >= start)
        if end is not None:
            query = query.filter(Quote.quote_date < end)
        return query.scalar() or 0

    def quote_status_counts(self, company_id: str) -> dict[str, int]:
        """Quote counts per status. Statuses without quotes are absent."""
        rows = (
            self.db.query(Quote.status, sa_func.count(Quote.id))
            .filter(Quote.company_id == company_id)
            .group_by(Quote.status)
            .all()
        )
        return {status: count for status, count in rows if count > 0}
