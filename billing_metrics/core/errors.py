"""Error taxonomy for the metrics service.

Every error carries a stable ``kind`` and the HTTP status the router renders it
with. ``CacheError`` exists so the cache store can report failures, but it is
always absorbed by the aggregation engine and never reaches a caller.
"""


class MetricsError(Exception):
    kind = "internal_error"
    status_code = 500
    default_message = "Internal error"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(MetricsError):
    kind = "validation_error"
    status_code = 400
    default_message = "Invalid request"


class NotFoundError(MetricsError):
    kind = "not_found"
    status_code = 404
    default_message = "Resource not found"


class DataSourceError(MetricsError):
    """The transactional store is unreachable or a query failed."""

    kind = "data_source_error"
    status_code = 503
    default_message = "Data source unavailable"


class AggregationTimeoutError(MetricsError):
    kind = "timeout"
    status_code = 504
    default_message = "Metrics aggregation timed out"


class CacheError(MetricsError):
    kind = "cache_error"
    status_code = 500
    default_message = "Cache backend error"


class InternalError(MetricsError):
    pass
