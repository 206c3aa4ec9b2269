"""Cache key construction for metrics entries.

Keys have the shape ``<namespace>:<category>:<tenant_id>[:<dim>...]``. Any
process sharing the cache must build keys the same way, so the format is fixed
and dimensions are always consumed in the order the caller passes them:

- ``dashboard``: no dimensions
- ``revenue``: period kind, start, end
"""

from datetime import UTC, datetime
from enum import Enum

from billing_metrics.core.errors import ValidationError

NULL_DIMENSION = "null"
MAX_TENANT_ID_LENGTH = 64


class MetricCategory(str, Enum):
    DASHBOARD = "dashboard"
    REVENUE = "revenue"


def validate_tenant_id(tenant_id: str | None) -> str:
    """Return the tenant id stripped, or raise ValidationError."""
    if tenant_id is None or not tenant_id.strip():
        raise ValidationError("Company id is required")
    tenant_id = tenant_id.strip()
    if len(tenant_id) > MAX_TENANT_ID_LENGTH:
        raise ValidationError("Company id is too long")
    if ":" in tenant_id or any(ch.isspace() for ch in tenant_id):
        raise ValidationError("Company id contains invalid characters")
    return tenant_id


def format_dimension(value: object) -> str:
    """Render one key dimension deterministically."""
    if value is None:
        return NULL_DIMENSION
    if isinstance(value, Enum):
        value = value.value
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value.astimezone(UTC).isoformat()
    return str(value)


class MetricKeyBuilder:
    def __init__(self, namespace: str = "metrics"):
        if not namespace or ":" in namespace:
            raise ValueError(f"Invalid cache namespace: {namespace!r}")
        self.namespace = namespace

    def build_key(self, category: MetricCategory, tenant_id: str, *dims: object) -> str:
        tenant_id = validate_tenant_id(tenant_id)
        parts = [self.namespace, MetricCategory(category).value, tenant_id]
        parts.extend(format_dimension(dim) for dim in dims)
        return ":".join(parts)

    def build_prefix(self, tenant_id: str, category: MetricCategory) -> str:
        return self.build_key(category, tenant_id)

    def build_prefixes(
        self, tenant_id: str, category: MetricCategory | None = None
    ) -> list[str]:
        """Prefixes covering a tenant's keys.

        With no category, one prefix per known category is returned; together
        they match every key ``build_key`` can produce for the tenant.
        """
        categories = [category] if category is not None else list(MetricCategory)
        return [self.build_prefix(tenant_id, c) for c in categories]
