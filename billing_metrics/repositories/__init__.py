from billing_metrics.repositories.metrics_repository import MetricsRepository

__all__ = [
    "MetricsRepository",
]
