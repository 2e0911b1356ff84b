"""
Pytest fixtures for the stock kernel test suite.

Provides:
- An isolated in-memory SQLite database per test (BEGIN IMMEDIATE
  transactions, same engine setup as production SQLite)
- A file-backed SQLite database for multi-threaded tests
- A PostgreSQL engine for tests marked ``postgres``
- Seeded companies, projects and stock items
- Structured log capture

Environment Variables:
- DATABASE_URL: PostgreSQL connection URL for tests marked ``postgres``.
  Those tests are skipped when it is not set to a PostgreSQL URL.
"""

import json
import logging
import os
from io import StringIO
from typing import Generator
from uuid import UUID, uuid4

import pytest
from sqlalchemy.orm import Session, sessionmaker

from stock_config.schema import AdjusterConfig
from stock_kernel.db.engine import build_engine, create_tables, drop_tables
from stock_kernel.db.immutability import (
    register_immutability_listeners,
    unregister_immutability_listeners,
)
from stock_kernel.domain.clock import DeterministicClock
from stock_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from stock_services.stock_adjuster import AdjustStockRequest, StockAdjuster
from tests.factories import BASE_TIME, seed_company

# Test actor ID for all test operations
TEST_ACTOR_ID = uuid4()


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture stock_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, adjuster):
            adjuster.adjust_stock(...)
            logs = captured_logs()
            assert any(r["message"] == "stock_adjustment_completed" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("stock_kernel")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


# =============================================================================
# Database fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _immutability_listeners():
    register_immutability_listeners()
    yield
    unregister_immutability_listeners()


@pytest.fixture(scope="function")
def engine():
    """Fresh in-memory SQLite database per test."""
    eng = build_engine("sqlite://")
    create_tables(eng)
    yield eng
    eng.dispose()


@pytest.fixture(scope="function")
def session_factory(engine):
    return sessionmaker(bind=engine, expire_on_commit=False)


@pytest.fixture(scope="function")
def session(session_factory) -> Generator[Session, None, None]:
    """Session with real commits; the database is discarded after the test."""
    sess = session_factory()
    yield sess
    sess.rollback()
    sess.close()


@pytest.fixture(scope="function")
def file_engine(tmp_path):
    """File-backed SQLite so several threads can hold their own connections."""
    eng = build_engine(f"sqlite:///{tmp_path / 'stock.db'}", sqlite_busy_timeout=60.0)
    create_tables(eng)
    yield eng
    eng.dispose()


def get_database_url() -> str | None:
    url = os.environ.get("DATABASE_URL")
    if url and url.startswith("postgresql"):
        return url
    return None


@pytest.fixture(scope="function")
def pg_engine():
    """PostgreSQL engine with freshly created tables, dropped at teardown."""
    url = get_database_url()
    if url is None:
        pytest.skip("DATABASE_URL does not point at PostgreSQL")
    eng = build_engine(url, pool_size=20, max_overflow=10)
    drop_tables(eng)
    create_tables(eng)
    yield eng
    drop_tables(eng)
    eng.dispose()


# =============================================================================
# Domain fixtures
# =============================================================================


@pytest.fixture
def test_actor_id() -> UUID:
    """Provide a consistent test actor ID."""
    return TEST_ACTOR_ID


@pytest.fixture
def deterministic_clock():
    """Clock pinned to 2024-01-01 12:00 UTC; advance it between writes."""
    return DeterministicClock(BASE_TIME)


@pytest.fixture
def fast_retry_config() -> AdjusterConfig:
    return AdjusterConfig(max_attempts=3, backoff_base_seconds=0.0)


@pytest.fixture
def seeded(session, test_actor_id):
    return seed_company(session, test_actor_id)


@pytest.fixture
def company_id(seeded) -> UUID:
    return seeded["company"].id


@pytest.fixture
def project_id(seeded) -> UUID:
    return seeded["project"].id


@pytest.fixture
def other_project_id(seeded) -> UUID:
    return seeded["other_project"].id


@pytest.fixture
def cement_id(seeded) -> UUID:
    return seeded["cement"].id


@pytest.fixture
def steel_id(seeded) -> UUID:
    return seeded["steel"].id


@pytest.fixture
def sand_id(seeded) -> UUID:
    return seeded["sand"].id


@pytest.fixture
def adjuster(session, deterministic_clock, fast_retry_config) -> StockAdjuster:
    return StockAdjuster(session, clock=deterministic_clock, config=fast_retry_config)


@pytest.fixture
def adjust(adjuster, deterministic_clock, company_id, test_actor_id):
    """
    Apply one adjustment with sensible defaults, advancing the clock first
    so every movement gets a distinct created_at.
    """

    def _adjust(stock_item_id, type, quantity, **kwargs):
        deterministic_clock.advance(1)
        kwargs.setdefault("company_id", company_id)
        kwargs.setdefault("actor_id", test_actor_id)
        return adjuster.adjust_stock(
            AdjustStockRequest(
                stock_item_id=stock_item_id,
                type=type,
                quantity=quantity,
                **kwargs,
            )
        )

    return _adjust


