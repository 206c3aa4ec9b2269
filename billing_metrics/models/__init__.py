from billing_metrics.models.customer import Customer, CustomerType
from billing_metrics.models.invoice import Invoice, InvoiceStatus
from billing_metrics.models.payment import Payment
from billing_metrics.models.quote import Quote, QuoteStatus

__all__ = [
    "Customer",
    "CustomerType",
    "Invoice",
    "InvoiceStatus",
    "Payment",
    "Quote",
    "QuoteStatus",
]
