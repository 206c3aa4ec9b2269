"""Aggregation engine for dashboard and revenue metrics.

Snapshots are read cache-aside: a hit is returned as-is, a miss fans out every
sub-query concurrently, assembles the result and writes it back with a fixed
TTL. The cache is never a correctness dependency; any cache failure degrades
to a miss on read and to a logged no-op on write or delete.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, TypeVar

from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from billing_metrics.core.cache import CacheStore
from billing_metrics.core.errors import (
    AggregationTimeoutError,
    CacheError,
    DataSourceError,
    InternalError,
    MetricsError,
    ValidationError,
)
from billing_metrics.core.keys import MetricCategory, MetricKeyBuilder, validate_tenant_id
from billing_metrics.models.invoice import InvoiceStatus
from billing_metrics.models.quote import QuoteStatus
from billing_metrics.models.shared import ensure_utc, utc_now
from billing_metrics.schemas.metrics import (
    INVOICE_STATUSES,
    QUOTE_STATUSES,
    DashboardSnapshot,
    HealthStatus,
    PeriodBucket,
    PeriodKind,
)
from billing_metrics.services.data_source import MetricsDataSource
from billing_metrics.services.periods import (
    default_range,
    month_window,
    period_label,
    period_start,
    previous_month_window,
    split_range,
    year_window,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

CENTS = Decimal("0.01")
ZERO = Decimal("0.00")
DEFAULT_CACHE_TTL = 1800  # 30 minutes

_SNAPSHOT_ADAPTER = TypeAdapter(DashboardSnapshot)
_BUCKETS_ADAPTER = TypeAdapter(list[PeriodBucket])


def zero_filled(statuses: tuple[str, ...], counts: Mapping[str, int]) -> dict[str, int]:
    """Full histogram over ``statuses`` in their fixed order; unknown statuses are dropped."""
    histogram = dict.fromkeys(statuses, 0)
    for status, count in counts.items():
        if status in histogram:
            histogram[status] = count
    return histogram


def safe_ratio(numerator: int | Decimal, denominator: int | Decimal) -> Decimal:
    if not denominator:
        return ZERO
    return (Decimal(numerator) / Decimal(denominator)).quantize(CENTS, ROUND_HALF_UP)


def growth_rate(current: Decimal, previous: Decimal) -> Decimal:
    """Percent change from ``previous`` to ``current``; 0 when ``previous`` is 0."""
    if not previous:
        return ZERO
    return ((current - previous) / previous * 100).quantize(CENTS, ROUND_HALF_UP)


def assemble_snapshot(results: Mapping[str, Any], generated_at: datetime) -> DashboardSnapshot:
    return DashboardSnapshot(
        monthly_revenue=results["monthly_revenue"],
        yearly_revenue=results["yearly_revenue"],
        pending_invoices=results["pending_invoices"],
        overdue_invoices=results["overdue_invoices"],
        top_customers=results["top_customers"],
        invoice_status_distribution=zero_filled(INVOICE_STATUSES, results["invoice_statuses"]),
        monthly_quotes=results["monthly_quotes"],
        yearly_quotes=results["yearly_quotes"],
        pending_quotes=results["pending_quotes"],
        accepted_quotes=results["accepted_quotes"],
        quote_status_distribution=zero_filled(QUOTE_STATUSES, results["quote_statuses"]),
        quote_to_invoice_ratio=safe_ratio(results["total_invoices"], results["accepted_quotes"]),
        average_payment_delay=results["average_payment_delay"],
        total_customers=results["total_customers"],
        new_customers_this_month=results["new_customers"],
        growth_rate=growth_rate(results["monthly_revenue"], results["previous_month_revenue"]),
        generated_at=generated_at,
    )


def build_period_buckets(
    rows: list[tuple[datetime, Decimal]],
    spans: list[tuple[datetime, datetime]],
    kind: PeriodKind,
) -> list[PeriodBucket]:
    """Aggregate paid invoices into consecutive calendar buckets."""
    revenue: dict[datetime, Decimal] = {start: ZERO for start, _ in spans}
    counts: dict[datetime, int] = dict.fromkeys(revenue, 0)
    for invoice_date, amount in rows:
        bucket = period_start(invoice_date, kind)
        if bucket in revenue:
            revenue[bucket] += amount
            counts[bucket] += 1

    buckets: list[PeriodBucket] = []
    cumulative = ZERO
    previous: Decimal | None = None
    for start, end in spans:
        amount, count = revenue[start], counts[start]
        cumulative += amount
        buckets.append(
            PeriodBucket(
                period=period_label(start, kind),
                period_start=start,
                period_end=end,
                revenue=amount,
                invoice_count=count,
                avg_invoice_amount=safe_ratio(amount, count),
                growth_rate=ZERO if previous is None else growth_rate(amount, previous),
                cumulative_revenue=cumulative,
            )
        )
        previous = amount
    return buckets


class MetricsService:
    """Computes, caches and invalidates per-company metrics."""

    def __init__(
        self,
        data_source: MetricsDataSource,
        cache: CacheStore,
        key_builder: MetricKeyBuilder,
        *,
        cache_ttl: int = DEFAULT_CACHE_TTL,
        query_timeout: float = 10.0,
        top_customers_limit: int = 5,
        max_analytics_buckets: int = 400,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.data_source = data_source
        self.cache = cache
        self.key_builder = key_builder
        self.cache_ttl = cache_ttl
        self.query_timeout = query_timeout
        self.top_customers_limit = top_customers_limit
        self.max_analytics_buckets = max_analytics_buckets
        self.clock = clock

    # --- Dashboard ---

    async def get_dashboard(self, company_id: str) -> DashboardSnapshot:
        company_id = validate_tenant_id(company_id)
        key = self.key_builder.build_key(MetricCategory.DASHBOARD, company_id)

        cached = await self._cache_get(key, _SNAPSHOT_ADAPTER)
        if cached is not None:
            logger.info("Dashboard metrics for %s served from cache", company_id)
            return cached

        return await self.refresh_dashboard(company_id)

    async def refresh_dashboard(self, company_id: str) -> DashboardSnapshot:
        """Recompute the dashboard snapshot and overwrite the cached copy."""
        company_id = validate_tenant_id(company_id)
        key = self.key_builder.build_key(MetricCategory.DASHBOARD, company_id)

        logger.info("Computing dashboard metrics for %s", company_id)
        snapshot = await self._bounded(self._compute_dashboard(company_id), "dashboard metrics")
        await self._cache_set(key, _SNAPSHOT_ADAPTER.dump_json(snapshot).decode())
        return snapshot

    async def _compute_dashboard(self, company_id: str) -> DashboardSnapshot:
        now = ensure_utc(self.clock())
        month_start, month_end = month_window(now)
        year_start, year_end = year_window(now)
        last_month_start, last_month_end = previous_month_window(now)
        ds = self.data_source

        results = await self._gather(
            {
                "monthly_revenue": ds.sum_paid_revenue(company_id, month_start, month_end),
                "yearly_revenue": ds.sum_paid_revenue(company_id, year_start, year_end),
                "previous_month_revenue": ds.sum_paid_revenue(
                    company_id, last_month_start, last_month_end
                ),
                "pending_invoices": ds.count_invoices(company_id, InvoiceStatus.PENDING.value),
                "overdue_invoices": ds.count_invoices(company_id, InvoiceStatus.LATE.value),
                "total_invoices": ds.count_invoices(company_id),
                "top_customers": ds.top_customers(company_id, self.top_customers_limit),
                "invoice_statuses": ds.invoice_status_counts(company_id),
                "monthly_quotes": ds.count_quotes(company_id, start=month_start, end=month_end),
                "yearly_quotes": ds.count_quotes(company_id, start=year_start, end=year_end),
                "pending_quotes": ds.count_quotes(company_id, QuoteStatus.SENT.value),
                "accepted_quotes": ds.count_quotes(company_id, QuoteStatus.ACCEPTED.value),
                "quote_statuses": ds.quote_status_counts(company_id),
                "average_payment_delay": ds.average_payment_delay(company_id),
                "total_customers": ds.count_customers(company_id),
                "new_customers": ds.count_customers(company_id, month_start, month_end),
            }
        )
        return assemble_snapshot(results, generated_at=now)

    # --- Revenue analytics ---

    async def get_revenue_analytics(
        self,
        company_id: str,
        period: PeriodKind | str = PeriodKind.MONTHLY,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
    ) -> list[PeriodBucket]:
        company_id = validate_tenant_id(company_id)
        try:
            kind = PeriodKind(period)
        except ValueError:
            raise ValidationError(f"Unknown period: {period}") from None

        now = ensure_utc(self.clock())
        try:
            start_date = ensure_utc(start_date) if start_date is not None else None
            end_date = ensure_utc(end_date) if end_date is not None else None
            range_start, range_end = self._resolve_range(kind, start_date, end_date, now)
            spans = split_range(range_start, range_end, kind, self.max_analytics_buckets)
        except (ValueError, OverflowError) as exc:
            raise ValidationError(str(exc)) from None

        key = self.key_builder.build_key(
            MetricCategory.REVENUE, company_id, kind, start_date, end_date
        )
        cached = await self._cache_get(key, _BUCKETS_ADAPTER)
        if cached is not None:
            return cached

        logger.info("Computing revenue analytics for %s (%s)", company_id, kind.value)
        rows = await self._bounded(
            self.data_source.paid_invoices_between(company_id, range_start, range_end),
            "revenue analytics",
        )
        buckets = build_period_buckets(rows, spans, kind)
        await self._cache_set(key, _BUCKETS_ADAPTER.dump_json(buckets).decode())
        return buckets

    @staticmethod
    def _resolve_range(
        kind: PeriodKind,
        start_date: datetime | None,
        end_date: datetime | None,
        now: datetime,
    ) -> tuple[datetime, datetime]:
        end = end_date or now
        start = start_date or default_range(kind, end)[0]
        if start > end:
            raise ValidationError("start_date must not be after end_date")
        return start, end

    # --- Invalidation ---

    async def invalidate_tenant(self, company_id: str) -> None:
        """Drop every cached entry for a company. Never raises."""
        try:
            prefixes = self.key_builder.build_prefixes(company_id)
        except ValidationError:
            logger.warning("Skipping cache invalidation for invalid company id %r", company_id)
            return

        deleted = 0
        for prefix in prefixes:
            try:
                deleted += await self.cache.delete_by_prefix(prefix)
            except CacheError:
                logger.warning("Cache invalidation failed for %s", prefix, exc_info=True)
        logger.info("Invalidated %d cached metrics entries for %s", deleted, company_id)

    # --- Health ---

    async def health_check(self) -> HealthStatus:
        try:
            async with asyncio.timeout(self.query_timeout):
                await self.data_source.ping()
        except (DataSourceError, TimeoutError):
            logger.error("Health check failed", exc_info=True)
            return HealthStatus(status="unhealthy", timestamp=utc_now())
        except Exception:
            logger.exception("Unexpected failure during health check")
            return HealthStatus(status="unhealthy", timestamp=utc_now())
        return HealthStatus(status="healthy", timestamp=utc_now())

    # --- Internals ---

    async def _gather(self, calls: Mapping[str, Awaitable[Any]]) -> dict[str, Any]:
        """Run every call concurrently; the first failure cancels the rest and propagates."""
        tasks = {name: asyncio.ensure_future(call) for name, call in calls.items()}
        try:
            await asyncio.gather(*tasks.values())
        except BaseException:
            for task in tasks.values():
                task.cancel()
            await asyncio.gather(*tasks.values(), return_exceptions=True)
            raise
        return {name: task.result() for name, task in tasks.items()}

    async def _bounded(self, work: Awaitable[T], what: str) -> T:
        try:
            async with asyncio.timeout(self.query_timeout):
                return await work
        except TimeoutError:
            logger.error("Timed out computing %s after %ss", what, self.query_timeout)
            raise AggregationTimeoutError(f"Timed out computing {what}") from None
        except MetricsError:
            raise
        except Exception as exc:
            logger.exception("Unexpected failure computing %s", what)
            raise InternalError(f"Failed to compute {what}") from exc

    async def _cache_get(self, key: str, adapter: TypeAdapter[T]) -> T | None:
        try:
            payload = await self.cache.get(key)
        except CacheError:
            logger.warning("Cache read failed for %s, treating as miss", key, exc_info=True)
            return None
        if payload is None:
            return None
        try:
            return adapter.validate_json(payload)
        except PydanticValidationError:
            logger.warning("Discarding undecodable cache entry %s", key)
            return None

    async def _cache_set(self, key: str, payload: str) -> None:
        try:
            await self.cache.set(key, payload, self.cache_ttl)
        except CacheError:
            logger.warning("Cache write failed for %s", key, exc_info=True)
