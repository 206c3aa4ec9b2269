from enum import Enum

from sqlalchemy import Column, ForeignKey, Numeric, String

from billing_metrics.core.database import Base
from billing_metrics.models.shared import UTCDateTime, UUIDType, generate_uuid, utc_now


class InvoiceStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    PAID = "paid"
    CANCELLED = "cancelled"
    LATE = "late"


class Invoice(Base):
    __tablename__ = "invoices"

    id = Column(UUIDType, primary_key=True, default=generate_uuid)
    company_id = Column(String(64), nullable=False, index=True)
    customer_id = Column(UUIDType, ForeignKey("customers.id", ondelete="RESTRICT"), nullable=False)
    invoice_number = Column(String(50), nullable=False, index=True)
    status = Column(String(20), nullable=False, default=InvoiceStatus.PENDING.value)

    # Amounts
    amount_excluding_tax = Column(Numeric(12, 2), nullable=False, default=0)
    tax_amount = Column(Numeric(12, 2), nullable=False, default=0)
    amount_including_tax = Column(Numeric(12, 2), nullable=False, default=0)
    currency = Column(String(3), nullable=False, default="EUR")

    # Dates
    invoice_date = Column(UTCDateTime, nullable=False, default=utc_now)
    due_date = Column(UTCDateTime, nullable=True)

    created_at = Column(UTCDateTime, nullable=False, default=utc_now)
    updated_at = Column(UTCDateTime, nullable=False, default=utc_now, onupdate=utc_now)
