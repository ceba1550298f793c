"""Tests for the operator CLI.

Each command opens its own engine, so the tests seed a file database
through a separate event loop and then drive the CLI synchronously.
"""

from __future__ import annotations

import asyncio
import json
from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from rcti_engine.cli import RctiCli, parse_override
from rcti_engine.models import Base, Driver, Invoice, InvoiceLine, StandingDeduction

PERIOD_ENDING = date(2025, 1, 19)


async def seed(database_url: str) -> dict[str, str]:
    engine = create_async_engine(database_url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, expire_on_commit=False)
    async with factory() as session:
        driver = Driver(
            name="Jane Citizen",
            business_name="Acme Transport Pty Ltd",
            tax_status="registered",
            tax_mode="exclusive",
            rate_tray=Decimal("85.00"),
        )
        session.add(driver)
        await session.flush()

        lease = StandingDeduction(
            driver_id=driver.driver_id,
            kind="deduction",
            description="Truck lease",
            total_amount=Decimal("1000.00"),
            amount_paid=Decimal("0"),
            amount_remaining=Decimal("1000.00"),
            amount_per_cycle=Decimal("150.00"),
            start_date=date(2025, 1, 1),
        )
        session.add(lease)

        invoice = Invoice(
            driver_id=driver.driver_id,
            driver_name=driver.name,
            business_name=driver.business_name,
            tax_status="registered",
            tax_mode="exclusive",
            period_ending=PERIOD_ENDING,
            invoice_number="RCTI-19012025-ACMETRANS",
            subtotal=Decimal("510.00"),
            tax=Decimal("51.00"),
            total=Decimal("561.00"),
        )
        session.add(invoice)
        await session.flush()
        session.add(
            InvoiceLine(
                invoice_id=invoice.invoice_id,
                source_ref="JOB-1",
                line_kind="work",
                line_date=date(2025, 1, 15),
                category="Tray",
                units=Decimal("6"),
                unit_rate=Decimal("85.00"),
                ex_tax=Decimal("510.00"),
                tax=Decimal("51.00"),
                inc_tax=Decimal("561.00"),
            )
        )
        await session.commit()
        ids = {
            "driver_id": str(driver.driver_id),
            "deduction_id": str(lease.deduction_id),
            "invoice_id": str(invoice.invoice_id),
        }

    await engine.dispose()
    return ids


@pytest.fixture
def seeded(database_url) -> dict[str, str]:
    return asyncio.run(seed(database_url))


def run_cli(database_url: str, *args: str) -> int:
    return RctiCli().run(["--database-url", database_url, *args])


class TestCli:
    """Test command dispatch and output."""

    def test_no_command_prints_help(self, capsys):
        assert RctiCli().run([]) == 1
        assert "usage" in capsys.readouterr().out

    def test_init_db(self, database_url, capsys):
        assert run_cli(database_url, "init-db") == 0
        assert run_cli(
            database_url,
            "pending-deductions",
            "--driver-id",
            str(uuid4()),
            "--period-ending",
            "2025-01-19",
        ) == 0
        assert json.loads(capsys.readouterr().out.split("Schema created", 1)[1]) == []

    def test_pending_then_finalize_then_summary(self, database_url, seeded, capsys):
        assert run_cli(
            database_url,
            "pending-deductions",
            "--driver-id",
            seeded["driver_id"],
            "--period-ending",
            "2025-01-19",
        ) == 0
        [pending] = json.loads(capsys.readouterr().out)
        assert pending["amount_to_apply"] == "150.00"

        assert run_cli(database_url, "finalize", "--invoice-id", seeded["invoice_id"]) == 0
        finalized = json.loads(capsys.readouterr().out)
        assert finalized["status"] == "finalised"
        assert finalized["deductions"]["applied_count"] == 1

        assert run_cli(database_url, "summary", "--invoice-id", seeded["invoice_id"]) == 0
        summary = json.loads(capsys.readouterr().out)
        assert summary["total_deductions"] == "150.00"
        assert summary["net_adjustment"] == "-150.00"

    def test_finalize_with_skip(self, database_url, seeded, capsys):
        code = run_cli(
            database_url,
            "finalize",
            "--invoice-id",
            seeded["invoice_id"],
            "--skip",
            seeded["deduction_id"],
        )

        assert code == 0
        assert json.loads(capsys.readouterr().out)["deductions"]["applied_count"] == 0

    def test_mark_paid_before_finalise_fails(self, database_url, seeded, capsys):
        assert run_cli(database_url, "mark-paid", "--invoice-id", seeded["invoice_id"]) == 1
        assert "not_finalised" in capsys.readouterr().err

    def test_mark_paid(self, database_url, seeded, capsys):
        run_cli(database_url, "finalize", "--invoice-id", seeded["invoice_id"])
        capsys.readouterr()

        assert run_cli(
            database_url,
            "mark-paid",
            "--invoice-id",
            seeded["invoice_id"],
            "--paid-at",
            "2025-01-21T09:30:00Z",
        ) == 0
        assert json.loads(capsys.readouterr().out)["status"] == "paid"

    def test_unknown_invoice(self, database_url, seeded, capsys):
        assert run_cli(database_url, "summary", "--invoice-id", str(uuid4())) == 1
        assert "not found" in capsys.readouterr().err


class TestParseOverride:
    def test_valid(self):
        deduction_id = uuid4()

        assert parse_override(f"{deduction_id}=75.50") == (deduction_id, Decimal("75.50"))

    @pytest.mark.parametrize("value", ["75.50", "not-a-uuid=1", f"{uuid4()}=lots"])
    def test_invalid(self, value):
        import argparse

        with pytest.raises(argparse.ArgumentTypeError):
            parse_override(value)
