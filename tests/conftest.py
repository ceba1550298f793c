"""Pytest fixtures for RCTI engine tests."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import AsyncGenerator, Awaitable, Callable

import pytest
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from rcti_engine.calculators.types import BillableRecord
from rcti_engine.config import Settings
from rcti_engine.models import Base, Driver, Invoice, StandingDeduction
from rcti_engine.services.invoice_service import InvoiceService

PERIOD_ENDING = date(2025, 1, 19)


def enable_savepoints(engine) -> None:
    """Let SQLAlchemy own BEGIN so SAVEPOINT works with the sqlite driver.

    See "Serializable isolation / Savepoints / Transactional DDL" in the
    SQLAlchemy SQLite dialect documentation.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN")


@pytest.fixture
def database_url(tmp_path) -> str:
    """File-backed SQLite database, one per test."""
    return f"sqlite+aiosqlite:///{tmp_path / 'rcti_test.db'}"


@pytest.fixture
async def engine(database_url):
    """Create test database engine."""
    engine = create_async_engine(database_url, echo=False)
    enable_savepoints(engine)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
async def session(engine) -> AsyncGenerator[AsyncSession, None]:
    """Create a database session for each test."""
    session_factory = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def settings() -> Settings:
    """Settings independent of the environment."""
    return Settings(
        database_url="sqlite+aiosqlite://",
        engine_version="test",
        break_threshold_hours=Decimal("7"),
        invoice_number_attempts=3,
        log_level="DEBUG",
        debug=False,
    )


@pytest.fixture
async def driver(session) -> Driver:
    """A GST-registered contractor with a half-hour unpaid break."""
    driver = Driver(
        name="Jane Citizen",
        business_name="Acme Transport Pty Ltd",
        address="1 Freight Rd, Dandenong VIC 3175",
        abn="51824753556",
        driver_type="contractor",
        tax_status="registered",
        tax_mode="exclusive",
        bank_account_name="Acme Transport",
        bank_bsb="063-000",
        bank_account_number="12345678",
        break_hours_per_shift=Decimal("0.5"),
        tolls_enabled=True,
        fuel_levy_percent=None,
        rate_tray=Decimal("85.00"),
        rate_crane=Decimal("110.00"),
        rate_semi=Decimal("120.00"),
        rate_semi_crane=Decimal("135.00"),
    )
    session.add(driver)
    await session.flush()
    return driver


@pytest.fixture
def invoice_service(session, settings) -> InvoiceService:
    return InvoiceService(session, settings)


@pytest.fixture
async def draft_invoice(invoice_service, driver) -> Invoice:
    """Draft with one 8.5 hour tray shift (722.50 ex GST, less a 0.5 h break)."""
    return await invoice_service.create_invoice(
        driver.driver_id,
        PERIOD_ENDING,
        [
            BillableRecord(
                source_ref="JOB-1001",
                work_date=date(2025, 1, 15),
                vehicle_class="Tray",
                hours=Decimal("8.5"),
            )
        ],
    )


@pytest.fixture
def make_deduction(session, driver) -> Callable[..., Awaitable[StandingDeduction]]:
    """Factory for active standing deductions on the test driver."""

    async def _make(
        total: str = "1000.00",
        per_cycle: str = "150.00",
        kind: str = "deduction",
        start_date: date = date(2025, 1, 1),
        description: str = "Truck lease",
        frequency: str = "weekly",
    ) -> StandingDeduction:
        deduction = StandingDeduction(
            driver_id=driver.driver_id,
            kind=kind,
            description=description,
            total_amount=Decimal(total),
            amount_paid=Decimal("0"),
            amount_remaining=Decimal(total),
            amount_per_cycle=Decimal(per_cycle),
            frequency=frequency,
            start_date=start_date,
            status="active",
        )
        session.add(deduction)
        await session.flush()
        return deduction

    return _make
