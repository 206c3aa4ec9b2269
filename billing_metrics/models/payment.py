"""Payment model for tracking invoice payments."""

from sqlalchemy import Column, ForeignKey, Numeric, String

from billing_metrics.core.database import Base
from billing_metrics.models.shared import UTCDateTime, UUIDType, generate_uuid, utc_now


class Payment(Base):
    """A payment recorded against an invoice. Invoices may be paid in several instalments."""

    __tablename__ = "payments"

    id = Column(UUIDType, primary_key=True, default=generate_uuid)
    company_id = Column(String(64), nullable=False, index=True)
    invoice_id = Column(
        UUIDType, ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, index=True
    )
    amount = Column(Numeric(12, 2), nullable=False)
    payment_method = Column(String(30), nullable=True)
    payment_date = Column(UTCDateTime, nullable=False, default=utc_now)

    created_at = Column(UTCDateTime, nullable=False, default=utc_now)
