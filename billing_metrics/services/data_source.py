"""Async facade over MetricsRepository.

Each call opens its own session and runs in a worker thread, so independent
queries can be awaited concurrently without sharing a Session.
"""

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime
from decimal import Decimal
from typing import TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from billing_metrics.core.errors import DataSourceError
from billing_metrics.repositories.metrics_repository import MetricsRepository
from billing_metrics.schemas.metrics import TopCustomer

logger = logging.getLogger(__name__)

T = TypeVar("T")


class MetricsDataSource:
    def __init__(self, session_factory: sessionmaker[Session]):
        self.session_factory = session_factory

    def _execute(self, query: Callable[[MetricsRepository], T]) -> T:
        try:
            with self.session_factory() as db:
                return query(MetricsRepository(db))
        except SQLAlchemyError as exc:
            logger.error("Metrics query failed: %s", exc)
            raise DataSourceError("Metrics query failed") from exc

    async def _run(self, query: Callable[[MetricsRepository], T]) -> T:
        return await asyncio.to_thread(self._execute, query)

    async def ping(self) -> None:
        await self._run(lambda repo: repo.ping())

    async def sum_paid_revenue(self, company_id: str, start: datetime, end: datetime) -> Decimal:
        return await self._run(lambda repo: repo.sum_paid_revenue(company_id, start, end))

    async def count_invoices(self, company_id: str, status: str | None = None) -> int:
        return await self._run(lambda repo: repo.count_invoices(company_id, status))

    async def invoice_status_counts(self, company_id: str) -> dict[str, int]:
        return await self._run(lambda repo: repo.invoice_status_counts(company_id))

    async def paid_invoices_between(
        self, company_id: str, start: datetime, end: datetime
    ) -> list[tuple[datetime, Decimal]]:
        return await self._run(lambda repo: repo.paid_invoices_between(company_id, start, end))

    async def average_payment_delay(self, company_id: str) -> int:
        return await self._run(lambda repo: repo.average_payment_delay(company_id))

    async def top_customers(self, company_id: str, limit: int = 5) -> list[TopCustomer]:
        return await self._run(lambda repo: repo.top_customers(company_id, limit))

    async def count_customers(
        self,
        company_id: str,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> int:
        return await self._run(lambda repo: repo.count_customers(company_id, start, end))

    async def count_quotes(
        self,
        company_id: str,
        status: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> int:
        return await self._run(lambda repo: repo.count_quotes(company_id, status, start, end))

    async def quote_status_counts(self, company_id: str) -> dict[str, int]:
        return await self._run(lambda repo: repo.quote_status_counts(company_id))
