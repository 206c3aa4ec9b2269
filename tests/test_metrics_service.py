"""Tests for the metrics aggregation engine."""

import asyncio
import uuid
from datetime import UTC, datetime
from decimal import Decimal
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from billing_metrics.core.cache import CacheStore
from billing_metrics.core.errors import (
    AggregationTimeoutError,
    DataSourceError,
    InternalError,
    ValidationError,
)
from billing_metrics.models.customer import CustomerType
from billing_metrics.models.invoice import InvoiceStatus
from billing_metrics.models.quote import QuoteStatus
from billing_metrics.schemas.metrics import PeriodKind
from billing_metrics.services.metrics_service import (
    MetricsService,
    growth_rate,
    safe_ratio,
    zero_filled,
)
from tests.conftest import COMPANY_ID, NOW, OTHER_COMPANY_ID
from tests.factories import create_customer, create_invoice, create_payment, create_quote
from tests.fakes import UnavailableRedis

DASHBOARD_KEY = f"metrics:dashboard:{COMPANY_ID}"
REPOSITORY = "billing_metrics.repositories.metrics_repository.MetricsRepository"


def _dt(year, month, day):
    return datetime(year, month, day, tzinfo=UTC)


def _query_failure(*args, **kwargs):
    raise OperationalError("SELECT ...", {}, Exception("connection lost"))


@pytest.fixture
def seeded(db_session):
    """Two customers with a mix of invoices, payments and quotes around March 2026."""
    acme = create_customer(
        db_session,
        COMPANY_ID,
        customer_id=uuid.UUID(int=1),
        business_name="Acme SARL",
        created_at=_dt(2025, 6, 1),
    )
    ada = create_customer(
        db_session,
        COMPANY_ID,
        customer_id=uuid.UUID(int=2),
        customer_type=CustomerType.INDIVIDUAL,
        business_name=None,
        first_name="Ada",
        last_name="Lovelace",
        created_at=_dt(2026, 3, 2),
    )

    march = create_invoice(db_session, acme, amount="500.00", invoice_date=_dt(2026, 3, 5))
    create_payment(db_session, march, payment_date=_dt(2026, 3, 8))
    february = create_invoice(db_session, acme, amount="400.00", invoice_date=_dt(2026, 2, 10))
    create_payment(db_session, february, payment_date=_dt(2026, 2, 15))
    create_invoice(db_session, ada, amount="250.50", invoice_date=_dt(2026, 1, 20))
    december = create_invoice(db_session, ada, amount="1000.00", invoice_date=_dt(2025, 12, 1))
    create_payment(db_session, december, payment_date=_dt(2025, 12, 2))
    create_invoice(
        db_session,
        ada,
        amount="100.00",
        status=InvoiceStatus.PENDING,
        invoice_date=_dt(2026, 3, 10),
    )
    create_invoice(
        db_session,
        acme,
        amount="80.00",
        status=InvoiceStatus.LATE,
        invoice_date=_dt(2026, 2, 1),
    )

    create_quote(db_session, acme, status=QuoteStatus.SENT, quote_date=_dt(2026, 3, 3))
    create_quote(db_session, acme, status=QuoteStatus.ACCEPTED, quote_date=_dt(2026, 3, 4))
    create_quote(db_session, acme, status=QuoteStatus.REJECTED, quote_date=_dt(2026, 3, 10))
    create_quote(db_session, ada, status=QuoteStatus.ACCEPTED, quote_date=_dt(2026, 1, 5))
    create_quote(db_session, ada, status=QuoteStatus.DRAFT, quote_date=_dt(2025, 11, 20))
    return acme, ada


class TestHelpers:
    def test_zero_filled_keeps_fixed_order(self):
        result = zero_filled(("a", "b", "c"), {"c": 2, "a": 1})
        assert list(result.items()) == [("a", 1), ("b", 0), ("c", 2)]

    def test_zero_filled_drops_unknown_status(self):
        assert zero_filled(("a",), {"zzz": 4}) == {"a": 0}

    def test_safe_ratio_zero_denominator(self):
        assert safe_ratio(5, 0) == Decimal("0.00")

    def test_safe_ratio_rounds_half_up(self):
        assert safe_ratio(1, 8) == Decimal("0.13")
        assert safe_ratio(2, 3) == Decimal("0.67")

    def test_growth_rate_previous_zero(self):
        assert growth_rate(Decimal("500.00"), Decimal("0")) == Decimal("0.00")

    def test_growth_rate(self):
        assert growth_rate(Decimal("500.00"), Decimal("400.00")) == Decimal("25.00")
        assert growth_rate(Decimal("0.00"), Decimal("150.00")) == Decimal("-100.00")


class TestGetDashboard:
    @pytest.mark.asyncio
    async def test_snapshot_fields(self, metrics_service, seeded):
        snapshot = await metrics_service.get_dashboard(COMPANY_ID)

        assert snapshot.monthly_revenue == Decimal("500.00")
        assert snapshot.yearly_revenue == Decimal("1150.50")
        assert snapshot.pending_invoices == 1
        assert snapshot.overdue_invoices == 1
        assert [c.name for c in snapshot.top_customers] == ["Ada Lovelace", "Acme SARL"]
        assert snapshot.top_customers[0].total_amount == Decimal("1250.50")
        assert snapshot.top_customers[0].type == "individual"
        assert snapshot.top_customers[1].invoice_count == 2
        assert snapshot.invoice_status_distribution == {
            "pending": 1,
            "sent": 0,
            "paid": 4,
            "cancelled": 0,
            "late": 1,
        }
        assert snapshot.monthly_quotes == 3
        assert snapshot.yearly_quotes == 4
        assert snapshot.pending_quotes == 1
        assert snapshot.accepted_quotes == 2
        assert snapshot.quote_status_distribution == {
            "draft": 1,
            "sent": 1,
            "accepted": 2,
            "rejected": 1,
            "expired": 0,
        }
        assert snapshot.quote_to_invoice_ratio == Decimal("3.00")
        assert snapshot.average_payment_delay == 3
        assert snapshot.total_customers == 2
        assert snapshot.new_customers_this_month == 1
        assert snapshot.growth_rate == Decimal("25.00")
        assert snapshot.generated_at == NOW

    @pytest.mark.asyncio
    async def test_empty_company(self, metrics_service):
        snapshot = await metrics_service.get_dashboard(COMPANY_ID)

        assert snapshot.monthly_revenue == Decimal("0.00")
        assert snapshot.yearly_revenue == Decimal("0.00")
        assert snapshot.top_customers == []
        assert snapshot.invoice_status_distribution == dict.fromkeys(
            ["pending", "sent", "paid", "cancelled", "late"], 0
        )
        assert snapshot.quote_status_distribution == dict.fromkeys(
            ["draft", "sent", "accepted", "rejected", "expired"], 0
        )
        assert snapshot.quote_to_invoice_ratio == Decimal("0.00")
        assert snapshot.average_payment_delay == 0
        assert snapshot.growth_rate == Decimal("0.00")
        assert snapshot.total_customers == 0

    @pytest.mark.asyncio
    async def test_writes_snapshot_with_ttl(self, metrics_service, cache, fake_redis):
        await metrics_service.get_dashboard(COMPANY_ID)

        assert fake_redis.keys() == [DASHBOARD_KEY]
        ttl = await cache.time_to_live(DASHBOARD_KEY)
        assert 1790 <= ttl <= 1800

    @pytest.mark.asyncio
    async def test_second_call_is_served_from_cache(self, metrics_service, data_source, seeded):
        with patch.object(data_source, "_execute", wraps=data_source._execute) as execute:
            first = await metrics_service.get_dashboard(COMPANY_ID)
            queries = execute.call_count
            second = await metrics_service.get_dashboard(COMPANY_ID)

        assert queries == 16
        assert execute.call_count == queries
        assert second == first

    @pytest.mark.asyncio
    async def test_cached_snapshot_keeps_exact_decimals(self, metrics_service, seeded):
        first = await metrics_service.get_dashboard(COMPANY_ID)
        second = await metrics_service.get_dashboard(COMPANY_ID)

        assert isinstance(second.yearly_revenue, Decimal)
        assert second.yearly_revenue == Decimal("1150.50")
        assert second.top_customers[0].total_amount == first.top_customers[0].total_amount

    @pytest.mark.asyncio
    async def test_cached_value_is_stale_until_invalidated(
        self, metrics_service, db_session, seeded
    ):
        acme, _ = seeded
        before = await metrics_service.get_dashboard(COMPANY_ID)
        create_invoice(db_session, acme, amount="20.00", invoice_date=_dt(2026, 3, 12))

        stale = await metrics_service.get_dashboard(COMPANY_ID)
        await metrics_service.invalidate_tenant(COMPANY_ID)
        fresh = await metrics_service.get_dashboard(COMPANY_ID)

        assert stale.monthly_revenue == before.monthly_revenue == Decimal("500.00")
        assert fresh.monthly_revenue == Decimal("520.00")

    @pytest.mark.asyncio
    async def test_rejects_invalid_company(self, metrics_service):
        with pytest.raises(ValidationError):
            await metrics_service.get_dashboard("bad:id")

    @pytest.mark.asyncio
    async def test_tenants_are_isolated(self, metrics_service, db_session, seeded):
        other = create_customer(db_session, OTHER_COMPANY_ID)
        create_invoice(db_session, other, amount="9.99", invoice_date=_dt(2026, 3, 1))

        mine = await metrics_service.get_dashboard(COMPANY_ID)
        theirs = await metrics_service.get_dashboard(OTHER_COMPANY_ID)

        assert mine.monthly_revenue == Decimal("500.00")
        assert theirs.monthly_revenue == Decimal("9.99")
        assert theirs.total_customers == 1


class TestDashboardFailures:
    @pytest.mark.asyncio
    async def test_query_failure_raises_data_source_error(self, metrics_service, fake_redis):
        with patch(
            f"{REPOSITORY}.top_customers",
            side_effect=_query_failure,
        ):
            with pytest.raises(DataSourceError):
                await metrics_service.get_dashboard(COMPANY_ID)

        assert fake_redis.keys() == []

    @pytest.mark.asyncio
    async def test_slow_query_raises_timeout(self, data_source, cache, key_builder, fake_redis):
        async def slow_revenue(*args, **kwargs):
            await asyncio.sleep(5)

        service = MetricsService(
            data_source, cache, key_builder, query_timeout=0.05, clock=lambda: NOW
        )
        with patch.object(data_source, "sum_paid_revenue", side_effect=slow_revenue):
            with pytest.raises(AggregationTimeoutError):
                await service.get_dashboard(COMPANY_ID)

        assert fake_redis.keys() == []

    @pytest.mark.asyncio
    async def test_unexpected_failure_becomes_internal_error(self, metrics_service, data_source):
        with patch.object(data_source, "count_quotes", side_effect=RuntimeError("bug")):
            with pytest.raises(InternalError):
                await metrics_service.get_dashboard(COMPANY_ID)

    @pytest.mark.asyncio
    async def test_first_failure_cancels_siblings(self, metrics_service):
        cancelled = asyncio.Event()

        async def slow():
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                cancelled.set()
                raise

        async def failing():
            raise DataSourceError("boom")

        with pytest.raises(DataSourceError):
            await metrics_service._gather({"slow": slow(), "failing": failing()})

        assert cancelled.is_set()


class TestCacheDegradation:
    @pytest.mark.asyncio
    async def test_unavailable_cache_still_computes(self, data_source, key_builder, seeded):
        service = MetricsService(
            data_source, CacheStore(UnavailableRedis()), key_builder, clock=lambda: NOW
        )

        snapshot = await service.get_dashboard(COMPANY_ID)

        assert snapshot.monthly_revenue == Decimal("500.00")

    @pytest.mark.asyncio
    async def test_unavailable_cache_invalidation_does_not_raise(self, data_source, key_builder):
        service = MetricsService(data_source, CacheStore(UnavailableRedis()), key_builder)
        await service.invalidate_tenant(COMPANY_ID)

    @pytest.mark.asyncio
    async def test_corrupt_entry_is_treated_as_miss(self, metrics_service, fake_redis, seeded):
        await fake_redis.set(DASHBOARD_KEY, "{not json", ex=1800)

        snapshot = await metrics_service.get_dashboard(COMPANY_ID)

        assert snapshot.monthly_revenue == Decimal("500.00")
        assert "monthly_revenue" in await fake_redis.get(DASHBOARD_KEY)


class TestRefreshDashboard:
    @pytest.mark.asyncio
    async def test_overwrites_cached_snapshot(self, metrics_service, db_session, seeded):
        acme, _ = seeded
        await metrics_service.get_dashboard(COMPANY_ID)
        create_invoice(db_session, acme, amount="20.00", invoice_date=_dt(2026, 3, 12))

        refreshed = await metrics_service.refresh_dashboard(COMPANY_ID)
        cached = await metrics_service.get_dashboard(COMPANY_ID)

        assert refreshed.monthly_revenue == Decimal("520.00")
        assert cached == refreshed


class TestInvalidateTenant:
    @pytest.mark.asyncio
    async def test_drops_every_category_for_tenant_only(self, metrics_service, fake_redis):
        await metrics_service.get_dashboard(COMPANY_ID)
        await metrics_service.get_revenue_analytics(COMPANY_ID, PeriodKind.DAILY)
        await metrics_service.get_dashboard(OTHER_COMPANY_ID)
        assert len(fake_redis.keys()) == 3

        await metrics_service.invalidate_tenant(COMPANY_ID)

        assert fake_redis.keys() == [f"metrics:dashboard:{OTHER_COMPANY_ID}"]

    @pytest.mark.asyncio
    async def test_invalid_company_is_ignored(self, metrics_service):
        await metrics_service.invalidate_tenant("")

    @pytest.mark.asyncio
    async def test_nothing_cached(self, metrics_service):
        await metrics_service.invalidate_tenant(COMPANY_ID)


class TestRevenueAnalytics:
    @pytest.fixture
    def revenue_data(self, db_session):
        customer = create_customer(db_session, COMPANY_ID)
        create_invoice(db_session, customer, amount="100.00", invoice_date=_dt(2026, 1, 10))
        create_invoice(db_session, customer, amount="50.00", invoice_date=_dt(2026, 1, 20))
        create_invoice(db_session, customer, amount="300.00", invoice_date=_dt(2026, 3, 5))
        create_invoice(
            db_session,
            customer,
            amount="70.00",
            status=InvoiceStatus.SENT,
            invoice_date=_dt(2026, 2, 5),
        )
        return customer

    @pytest.mark.asyncio
    async def test_monthly_buckets(self, metrics_service, revenue_data):
        buckets = await metrics_service.get_revenue_analytics(
            COMPANY_ID, PeriodKind.MONTHLY, start_date=_dt(2026, 1, 1)
        )

        assert [b.period for b in buckets] == ["2026-01", "2026-02", "2026-03"]
        assert [b.revenue for b in buckets] == [
            Decimal("150.00"),
            Decimal("0.00"),
            Decimal("300.00"),
        ]
        assert [b.invoice_count for b in buckets] == [2, 0, 1]
        assert [b.avg_invoice_amount for b in buckets] == [
            Decimal("75.00"),
            Decimal("0.00"),
            Decimal("300.00"),
        ]
        assert [b.growth_rate for b in buckets] == [
            Decimal("0.00"),
            Decimal("-100.00"),
            Decimal("0.00"),
        ]
        assert [b.cumulative_revenue for b in buckets] == [
            Decimal("150.00"),
            Decimal("150.00"),
            Decimal("450.00"),
        ]
        assert buckets[0].period_start == _dt(2026, 1, 1)
        assert buckets[0].period_end == _dt(2026, 2, 1)

    @pytest.mark.asyncio
    async def test_default_range(self, metrics_service, revenue_data):
        buckets = await metrics_service.get_revenue_analytics(COMPANY_ID)

        assert len(buckets) == 12
        assert buckets[0].period == "2025-04"
        assert buckets[-1].period == "2026-03"
        assert buckets[-1].cumulative_revenue == Decimal("450.00")

    @pytest.mark.asyncio
    async def test_quarterly_accepts_string_period(self, metrics_service, revenue_data):
        buckets = await metrics_service.get_revenue_analytics(
            COMPANY_ID, "quarterly", start_date=_dt(2026, 1, 1), end_date=_dt(2026, 3, 31)
        )

        assert len(buckets) == 1
        assert buckets[0].period == "2026-Q1"
        assert buckets[0].revenue == Decimal("450.00")
        assert buckets[0].invoice_count == 3

    @pytest.mark.asyncio
    async def test_cached_under_range_key(self, metrics_service, data_source, fake_redis):
        with patch.object(data_source, "_execute", wraps=data_source._execute) as execute:
            first = await metrics_service.get_revenue_analytics(
                COMPANY_ID, PeriodKind.MONTHLY, start_date=_dt(2026, 1, 1)
            )
            second = await metrics_service.get_revenue_analytics(
                COMPANY_ID, PeriodKind.MONTHLY, start_date=_dt(2026, 1, 1)
            )

        assert execute.call_count == 1
        assert second == first
        assert fake_redis.keys() == [
            f"metrics:revenue:{COMPANY_ID}:monthly:2026-01-01T00:00:00+00:00:null"
        ]

    @pytest.mark.asyncio
    async def test_start_after_end(self, metrics_service):
        with pytest.raises(ValidationError, match="start_date"):
            await metrics_service.get_revenue_analytics(
                COMPANY_ID, start_date=_dt(2026, 3, 1), end_date=_dt(2026, 1, 1)
            )

    @pytest.mark.asyncio
    async def test_too_many_buckets(self, metrics_service):
        with pytest.raises(ValidationError):
            await metrics_service.get_revenue_analytics(
                COMPANY_ID, PeriodKind.DAILY, start_date=_dt(2020, 1, 1)
            )

    @pytest.mark.asyncio
    async def test_default_range_before_calendar_start(self, metrics_service):
        with pytest.raises(ValidationError, match="out of range"):
            await metrics_service.get_revenue_analytics(
                COMPANY_ID, PeriodKind.YEARLY, end_date=datetime(2, 6, 1, tzinfo=UTC)
            )

    @pytest.mark.asyncio
    async def test_range_past_calendar_end(self, metrics_service):
        with pytest.raises(ValidationError, match="out of range"):
            await metrics_service.get_revenue_analytics(
                COMPANY_ID,
                PeriodKind.YEARLY,
                start_date=datetime(9990, 1, 1, tzinfo=UTC),
                end_date=datetime(9999, 12, 31, tzinfo=UTC),
            )

    @pytest.mark.asyncio
    async def test_unknown_period(self, metrics_service):
        with pytest.raises(ValidationError, match="Unknown period"):
            await metrics_service.get_revenue_analytics(COMPANY_ID, "hourly")

    @pytest.mark.asyncio
    async def test_query_failure(self, metrics_service):
        with patch(
            f"{REPOSITORY}.paid_invoices_between",
            side_effect=_query_failure,
        ):
            with pytest.raises(DataSourceError):
                await metrics_service.get_revenue_analytics(COMPANY_ID)


class TestHealthCheck:
    @pytest.mark.asyncio
    async def test_healthy(self, metrics_service):
        result = await metrics_service.health_check()
        assert result.status == "healthy"
        assert result.timestamp.tzinfo is not None

    @pytest.mark.asyncio
    async def test_unhealthy_when_database_fails(self, metrics_service):
        with patch(
            f"{REPOSITORY}.ping",
            side_effect=_query_failure,
        ):
            result = await metrics_service.health_check()

        assert result.status == "unhealthy"

    @pytest.mark.asyncio
    async def test_unhealthy_on_unexpected_failure(self, metrics_service, data_source):
        with patch.object(data_source, "ping", side_effect=RuntimeError("driver bug")):
            result = await metrics_service.health_check()

        assert result.status == "unhealthy"

    @pytest.mark.asyncio
    async def test_ignores_cache_state(self, data_source, key_builder):
        service = MetricsService(data_source, CacheStore(UnavailableRedis()), key_builder)
        result = await service.health_check()
        assert result.status == "healthy"
