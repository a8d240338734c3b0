"""
Pytest fixtures for the catalog sync test suite.

Provides:
- In-memory SQLite sessions (foreign keys and SAVEPOINTs enabled)
- A deterministic clock, tracker, store and service fixtures
- A catalog row factory
- Structured log capture

Every test gets a fresh database; nothing is shared between tests.
"""

import json
import logging
from io import StringIO
from typing import Any, Generator

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

from catalog_config.settings import EngineSettings
from catalog_kernel.db.base import Base
from catalog_kernel.db.engine import enable_sqlite_foreign_keys, enable_sqlite_savepoints
from catalog_kernel.db.registry import import_all_orm_models
from catalog_kernel.domain.clock import DeterministicClock
from catalog_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)

from catalog_ingestion.domain.field_map import CsvField
from catalog_ingestion.services.import_service import ImportService
from catalog_ingestion.services.upsert_executor import UpsertExecutor
from catalog_jobs.services.job_store import JobStore
from catalog_jobs.services.progress_tracker import ProgressTracker
from catalog_jobs.services.queue_dequeuer import QueueDequeuer
from catalog_jobs.services.sync_processor import SyncQueueProcessor


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
    Capture catalog_sync logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, import_service):
            import_service.import_rows(rows)
            logs = captured_logs()
            assert any(r["message"] == "job_tracking_completed" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("catalog_sync")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Database fixtures
# =============================================================================


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enable_sqlite_foreign_keys(eng)
    enable_sqlite_savepoints(eng)
    import_all_orm_models()
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session(engine) -> Generator[Session, None, None]:
    """A session whose outer transaction is rolled back after the test."""
    sess = Session(bind=engine, expire_on_commit=False)
    yield sess
    sess.rollback()
    sess.close()


# =============================================================================
# Service fixtures
# =============================================================================


@pytest.fixture
def deterministic_clock() -> DeterministicClock:
    return DeterministicClock()


@pytest.fixture
def settings() -> EngineSettings:
    return EngineSettings(
        database_url="sqlite://",
        batch_size=2,
        progress_update_interval=1,
        max_retries=3,
        queue_batch_size=10,
        retry_delay_base_seconds=2.0,
        max_retry_delay_seconds=60.0,
    )


@pytest.fixture
def tracker(deterministic_clock) -> ProgressTracker:
    return ProgressTracker(clock=deterministic_clock, update_interval=1)


@pytest.fixture
def job_store(session, deterministic_clock) -> JobStore:
    return JobStore(session, deterministic_clock)


@pytest.fixture
def executor(session, deterministic_clock) -> UpsertExecutor:
    return UpsertExecutor(session, deterministic_clock)


@pytest.fixture
def import_service(session, tracker, deterministic_clock, settings) -> ImportService:
    return ImportService(session, tracker, clock=deterministic_clock, settings=settings)


@pytest.fixture
def dequeuer(session, deterministic_clock) -> QueueDequeuer:
    return QueueDequeuer(session, deterministic_clock)


@pytest.fixture
def sync_processor(session, tracker, deterministic_clock, settings) -> SyncQueueProcessor:
    return SyncQueueProcessor(session, tracker, clock=deterministic_clock, settings=settings)


# =============================================================================
# Data factories
# =============================================================================


_BASE_ROW: dict[str, Any] = {
    CsvField.ITEM_CODE.value: "1354-6543",
    CsvField.OPMS_ITEM_ID.value: "",
    CsvField.OPMS_PRODUCT_ID.value: "",
    CsvField.PRODUCT_NAME.value: "Alder",
    CsvField.DISPLAY_NAME.value: "",
    CsvField.COLOR.value: "Ash, Blue",
    CsvField.WIDTH.value: "54",
    CsvField.VERTICAL_REPEAT.value: "12.5",
    CsvField.HORIZONTAL_REPEAT.value: "6.25",
    CsvField.VENDOR.value: "Acme Mills",
    CsvField.VENDOR_ITEM_CODE.value: "AM-100",
    CsvField.VENDOR_PRODUCT_NAME.value: "Alder Weave",
    CsvField.VENDOR_ITEM_COLOR.value: "Ash Grey",
    CsvField.REPEAT.value: "Repeat",
    CsvField.FRONT_CONTENT.value: "100% Linen",
    CsvField.BACK_CONTENT.value: "",
    CsvField.ABRASION.value: "50,000 double rubs",
    CsvField.FIRECODES.value: "CAL 117",
    CsvField.PROP_65.value: "Y",
    CsvField.AB_2998.value: "N",
    CsvField.FINISH.value: "Stain Resistant",
    CsvField.CLEANING.value: "S, W",
    CsvField.ORIGIN.value: "Belgium",
    CsvField.TARIFF_CODE.value: "5309.21",
    CsvField.USE.value: "Upholstery, Drapery",
}


@pytest.fixture
def make_row():
    """Build a complete catalog row; keyword overrides use CsvField member names.

    Usage::

        row = make_row(item_code="1111-2222", color="Red")
    """

    def _make(**overrides: Any) -> dict[str, Any]:
        row = dict(_BASE_ROW)
        for name, value in overrides.items():
            row[CsvField[name.upper()].value] = value
        return row

    return _make


@pytest.fixture
def make_rows(make_row):
    """``count`` distinct valid rows with codes 1000-0001, 1000-0002, ..."""

    def _make(count: int, **overrides: Any) -> list[dict[str, Any]]:
        return [
            make_row(item_code=f"1000-{n:04d}", product_name=f"Product {n}", **overrides)
            for n in range(1, count + 1)
        ]

    return _make
