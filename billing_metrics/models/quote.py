from enum import Enum

from sqlalchemy import Column, ForeignKey, Numeric, String

from billing_metrics.core.database import Base
from billing_metrics.models.shared import UTCDateTime, UUIDType, generate_uuid, utc_now


class QuoteStatus(str, Enum):
    DRAFT = "draft"
    SENT = "sent"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    EXPIRED = "expired"


class Quote(Base):
    __tablename__ = "quotes"

    id = Column(UUIDType, primary_key=True, default=generate_uuid)
    company_id = Column(String(64), nullable=False, index=True)
    customer_id = Column(UUIDType, ForeignKey("customers.id", ondelete="RESTRICT"), nullable=False)
    quote_number = Column(String(50), nullable=False, index=True)
    status = Column(String(20), nullable=False, default=QuoteStatus.DRAFT.value)
    amount_including_tax = Column(Numeric(12, 2), nullable=False, default=0)
    quote_date = Column(UTCDateTime, nullable=False, default=utc_now)
    validity_date = Column(UTCDateTime, nullable=True)

    created_at = Column(UTCDateTime, nullable=False, default=utc_now)
