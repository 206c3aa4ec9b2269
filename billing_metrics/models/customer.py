from enum import Enum

from sqlalchemy import Column, String

from billing_metrics.core.database import Base
from billing_metrics.models.shared import UTCDateTime, UUIDType, generate_uuid, utc_now


class CustomerType(str, Enum):
    INDIVIDUAL = "individual"
    COMPANY = "company"


class Customer(Base):
    __tablename__ = "customers"

    id = Column(UUIDType, primary_key=True, default=generate_uuid)
    company_id = Column(String(64), nullable=False, index=True)
    type = Column(String(20), nullable=False, default=CustomerType.COMPANY.value)

    # Individual customers
    first_name = Column(String(255), nullable=True)
    last_name = Column(String(255), nullable=True)

    # Business customers
    business_name = Column(String(255), nullable=True)

    email = Column(String(255), nullable=True)
    created_at = Column(UTCDateTime, nullable=False, default=utc_now)
    updated_at = Column(UTCDateTime, nullable=False, default=utc_now, onupdate=utc_now)


def customer_display_name(
    customer_type: str,
    first_name: str | None,
    last_name: str | None,
    business_name: str | None,
) -> str:
    if customer_type == CustomerType.INDIVIDUAL.value:
        return f"{first_name or ''} {last_name or ''}".strip()
    return business_name or "N/A"
