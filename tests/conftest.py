"""Shared test fixtures for all test modules."""

from datetime import UTC, datetime

import pytest
from sqlalchemy.orm import Session

from billing_metrics.core.cache import CacheStore
from billing_metrics.core.database import build_engine, build_session_factory, init_db
from billing_metrics.core.keys import MetricKeyBuilder
from billing_metrics.services.data_source import MetricsDataSource
from billing_metrics.services.metrics_service import MetricsService
from tests.fakes import InMemoryRedis

# Well-known tenant used across all tests
COMPANY_ID = "company-0001"
OTHER_COMPANY_ID = "company-0002"

# Fixed "now" for every time-windowed metric: March 2026
NOW = datetime(2026, 3, 18, 12, 0, 0, tzinfo=UTC)


@pytest.fixture
def engine(tmp_path):
    """A file-backed SQLite database per test.

    File-backed rather than in-memory so that concurrent queries each get their
    own connection from the pool.
    """
    test_engine = build_engine(f"sqlite:///{tmp_path / 'metrics.db'}")
    init_db(test_engine)
    yield test_engine
    test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def db_session(session_factory):
    db: Session = session_factory()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def fake_redis():
    return InMemoryRedis()


@pytest.fixture
def cache(fake_redis):
    return CacheStore(fake_redis)


@pytest.fixture
def key_builder():
    return MetricKeyBuilder("metrics")


@pytest.fixture
def data_source(session_factory):
    return MetricsDataSource(session_factory)


@pytest.fixture
def metrics_service(data_source, cache, key_builder):
    return MetricsService(data_source, cache, key_builder, clock=lambda: NOW)


@pytest.fixture
def company_id():
    """Return the default company ID for tests."""
    return COMPANY_ID
