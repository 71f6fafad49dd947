"""
Pytest fixtures for the MES lot allocation test suite.

Provides:
- A fresh in-memory SQLite database per test (tables created and dropped
  around each test)
- Deterministic clock, actors and a lot factory
- Structured log capture

Environment Variables:
- DATABASE_URL: overrides the database URL (e.g. a PostgreSQL URL for
  tests marked ``postgres``).  Defaults to in-memory SQLite.
"""

import json
import logging
import os
from collections.abc import Generator
from contextlib import contextmanager
from datetime import date
from decimal import Decimal
from io import StringIO

import pytest
from sqlalchemy import event, text
from sqlalchemy.orm import Session

from mes_config import CONFIG_PATH_ENV, get_active_config, reset_active_config
from mes_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session,
    init_engine_from_url,
    reset_engine,
)
from mes_kernel.domain.clock import DeterministicClock
from mes_kernel.domain.lot import QualityStatus
from mes_kernel.domain.workflow import Actor
from mes_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from mes_kernel.models.lot import LotModel
from mes_services.lot_service import LotService

TEST_TENANT = "T1"
OTHER_TENANT = "T2"
WAREHOUSE = 1
OTHER_WAREHOUSE = 2
PRODUCT = 100
OTHER_PRODUCT = 200

DEFAULT_DATABASE_URL = "sqlite://"


def get_database_url() -> str:
    """Get database URL from environment, or use in-memory SQLite."""
    return os.environ.get("DATABASE_URL", DEFAULT_DATABASE_URL)


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "postgres: mark test as requiring PostgreSQL"
    )


def pytest_collection_modifyitems(config, items):
    """Skip postgres-marked tests unless DATABASE_URL points at PostgreSQL."""
    if get_database_url().startswith("postgresql"):
        return
    skip_pg = pytest.mark.skip(reason="requires DATABASE_URL=postgresql://...")
    for item in items:
        if "postgres" in item.keywords:
            item.add_marker(skip_pg)


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
    Capture mes_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, allocator):
            allocator.select_by_fifo(...)
            logs = captured_logs()
            assert any(r["message"] == "lot_selection_completed" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("mes_kernel")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


# =============================================================================
# Configuration
# =============================================================================


@pytest.fixture(autouse=True)
def _packaged_config(monkeypatch):
    """Every test starts from the packaged defaults.yaml."""
    monkeypatch.delenv(CONFIG_PATH_ENV, raising=False)
    reset_active_config()
    yield
    reset_active_config()


@pytest.fixture
def mes_config():
    return get_active_config()


# =============================================================================
# Database
# =============================================================================


@pytest.fixture
def session() -> Generator[Session, None, None]:
    """
    Session on a freshly created schema.

    Services only flush, so everything a test writes stays inside the
    session's open transaction; the schema is dropped afterwards.
    """
    init_engine_from_url(get_database_url())
    create_tables()
    db_session = get_session()
    try:
        yield db_session
    finally:
        db_session.rollback()
        db_session.close()
        drop_tables()
        reset_engine()


@contextmanager
def concurrent_version_bump():
    """
    Simulate another transaction committing a lot between our read and write.

    Just before the ORM issues its versioned UPDATE, the row's ``version``
    is bumped on the same connection, so the UPDATE matches no row.
    """

    def _bump(mapper, connection, target):
        connection.execute(
            text("UPDATE lots SET version = version + 1 WHERE id = :id"),
            {"id": target.id},
        )

    event.listen(LotModel, "before_update", _bump)
    try:
        yield
    finally:
        event.remove(LotModel, "before_update", _bump)


# =============================================================================
# Domain helpers
# =============================================================================


@pytest.fixture
def deterministic_clock() -> DeterministicClock:
    """Clock fixed at 2024-01-01 12:00 UTC."""
    return DeterministicClock()


@pytest.fixture
def warehouse_manager() -> Actor:
    return Actor(actor_id=1, name="Warehouse Manager", roles=frozenset({"WAREHOUSE_MANAGER"}))


@pytest.fixture
def warehouse_staff() -> Actor:
    return Actor(actor_id=2, name="Warehouse Staff", roles=frozenset({"WAREHOUSE_STAFF"}))


@pytest.fixture
def quality_manager() -> Actor:
    return Actor(actor_id=3, name="Quality Manager", roles=frozenset({"QUALITY_MANAGER"}))


@pytest.fixture
def operator() -> Actor:
    """Production operator; holds no warehouse or quality role."""
    return Actor(actor_id=10, name="Line Operator", roles=frozenset({"OPERATOR"}))


@pytest.fixture
def lot_service(session, deterministic_clock) -> LotService:
    return LotService(session, deterministic_clock)


@pytest.fixture
def create_lot(lot_service):
    """
    Factory for lots with allocation-friendly defaults.

    Lots default to quality PASS in warehouse 1 for product 100 in tenant
    T1, manufactured 2024-01-01 without expiry.  ``current_quantity``
    below ``quantity`` is reached through an ADJUST.
    """
    counter = {"n": 0}

    def _create(
        quantity: Decimal | str | int = "10",
        manufacturing_date: date = date(2024, 1, 1),
        expiry_date: date | None = None,
        quality_status: QualityStatus = QualityStatus.PASS,
        tenant_id: str = TEST_TENANT,
        warehouse_id: int = WAREHOUSE,
        product_id: int = PRODUCT,
        lot_no: str | None = None,
        current_quantity: Decimal | str | int | None = None,
        is_active: bool = True,
    ) -> LotModel:
        counter["n"] += 1
        lot = lot_service.create_lot(
            tenant_id=tenant_id,
            lot_no=lot_no or f"LOT-{counter['n']:04d}",
            warehouse_id=warehouse_id,
            product_id=product_id,
            initial_quantity=Decimal(str(quantity)),
            manufacturing_date=manufacturing_date,
            expiry_date=expiry_date,
            quality_status=quality_status,
        )
        if current_quantity is not None:
            lot_service.adjust_quantity(
                tenant_id, lot.id, Decimal(str(current_quantity)), reason="test setup",
            )
        if not is_active:
            lot_service.deactivate_lot(tenant_id, lot.id)
        return lot

    return _create
