"""RCTI Command Line Interface.

Provides operational tools for:
- Schema creation
- Previewing pending standing deductions
- Finalising invoices (applies standing deductions)
- Marking invoices paid
- Invoice deduction summaries

Usage:
    rcti-engine init-db
    rcti-engine pending-deductions --driver-id X --period-ending 2025-01-19
    rcti-engine finalize --invoice-id X [--skip DEDUCTION_ID] [--override DEDUCTION_ID=AMOUNT]
    rcti-engine mark-paid --invoice-id X
    rcti-engine summary --invoice-id X
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Awaitable, Callable
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from rcti_engine.config import get_settings
from rcti_engine.database import create_schema, get_engine
from rcti_engine.errors import RctiError
from rcti_engine.services.deduction_ledger import DeductionLedger
from rcti_engine.services.invoice_service import InvoiceService

logger = logging.getLogger(__name__)

Handler = Callable[[AsyncSession, argparse.Namespace], Awaitable[int]]


def parse_uuid(s: str) -> UUID:
    """Parse UUID string."""
    return UUID(s)


def parse_date(s: str) -> date:
    """Parse ISO date string."""
    return date.fromisoformat(s)


def parse_datetime(s: str) -> datetime:
    """Parse ISO datetime string."""
    return datetime.fromisoformat(s.replace("Z", "+00:00"))


def parse_override(s: str) -> tuple[UUID, Decimal]:
    """Parse DEDUCTION_ID=AMOUNT."""
    deduction_id, sep, amount = s.partition("=")
    if not sep:
        raise argparse.ArgumentTypeError(f"Expected DEDUCTION_ID=AMOUNT, got {s!r}")
    try:
        return UUID(deduction_id), Decimal(amount)
    except (ValueError, InvalidOperation):
        raise argparse.ArgumentTypeError(f"Invalid override: {s!r}") from None


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, indent=2, default=str))


class RctiCli:
    """RCTI Command Line Interface."""

    def __init__(self) -> None:
        self.parser = self._build_parser()
        self._engine: AsyncEngine | None = None

    def _build_parser(self) -> argparse.ArgumentParser:
        """Build argument parser."""
        parser = argparse.ArgumentParser(
            prog="rcti-engine",
            description="RCTI invoice and standing deduction tools",
        )
        parser.add_argument(
            "--version",
            action="version",
            version=f"%(prog)s {get_settings().engine_version}",
        )
        parser.add_argument(
            "--database-url",
            type=str,
            help="Database URL (default: DATABASE_URL from the environment)",
        )
        subparsers = parser.add_subparsers(dest="command", help="Commands")

        subparsers.add_parser("init-db", help="Create tables for the configured database")

        # pending-deductions command
        pending = subparsers.add_parser(
            "pending-deductions",
            help="Preview what the next finalisation would apply",
        )
        pending.add_argument(
            "--driver-id",
            type=parse_uuid,
            required=True,
            help="Driver to preview",
        )
        pending.add_argument(
            "--period-ending",
            type=parse_date,
            required=True,
            help="Period ending date (YYYY-MM-DD)",
        )

        # finalize command
        finalize = subparsers.add_parser(
            "finalize",
            help="Finalise a draft invoice and apply standing deductions",
        )
        finalize.add_argument(
            "--invoice-id",
            type=parse_uuid,
            required=True,
            help="Invoice to finalise",
        )
        finalize.add_argument(
            "--skip",
            type=parse_uuid,
            action="append",
            default=[],
            help="Standing deduction to skip for this invoice (repeatable)",
        )
        finalize.add_argument(
            "--override",
            type=parse_override,
            action="append",
            default=[],
            help="Replace a deduction's per-cycle amount: DEDUCTION_ID=AMOUNT (repeatable)",
        )

        # mark-paid command
        paid = subparsers.add_parser("mark-paid", help="Mark a finalised invoice as paid")
        paid.add_argument(
            "--invoice-id",
            type=parse_uuid,
            required=True,
            help="Invoice to mark paid",
        )
        paid.add_argument(
            "--paid-at",
            type=parse_datetime,
            help="Payment timestamp (ISO format, default: now)",
        )

        # summary command
        summary = subparsers.add_parser("summary", help="Show deductions applied to an invoice")
        summary.add_argument(
            "--invoice-id",
            type=parse_uuid,
            required=True,
            help="Invoice to summarise",
        )

        return parser

    def run(self, args: list[str] | None = None) -> int:
        """Run the CLI with given arguments."""
        parsed = self.parser.parse_args(args)

        if not parsed.command:
            self.parser.print_help()
            return 1

        settings = get_settings()
        logging.basicConfig(
            level=settings.log_level,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )

        # Dispatch to command handler
        handlers: dict[str, Handler] = {
            "init-db": self._cmd_init_db,
            "pending-deductions": self._cmd_pending_deductions,
            "finalize": self._cmd_finalize,
            "mark-paid": self._cmd_mark_paid,
            "summary": self._cmd_summary,
        }

        handler = handlers.get(parsed.command)
        if handler:
            return asyncio.run(self._dispatch(handler, parsed))

        print(f"Unknown command: {parsed.command}", file=sys.stderr)
        return 1

    async def _dispatch(self, handler: Handler, args: argparse.Namespace) -> int:
        """Run one handler in its own session; commit on success."""
        self._engine = get_engine(args.database_url)
        factory = async_sessionmaker(self._engine, expire_on_commit=False, autoflush=False)
        try:
            async with factory() as session:
                try:
                    code = await handler(session, args)
                    await session.commit()
                except Exception:
                    await session.rollback()
                    raise
            return code
        except RctiError as e:
            logger.debug("Command %s failed", args.command, exc_info=True)
            print(f"Error: {e}", file=sys.stderr)
            return 1
        finally:
            await self._engine.dispose()
            self._engine = None

    async def _cmd_init_db(self, session: AsyncSession, args: argparse.Namespace) -> int:
        """Create tables."""
        await create_schema(self._engine)
        print("Schema created")
        return 0

    async def _cmd_pending_deductions(self, session: AsyncSession, args: argparse.Namespace) -> int:
        """Preview pending deductions for a driver."""
        pending = await DeductionLedger(session).get_pending_deductions(
            args.driver_id, args.period_ending
        )
        _print_json([p.to_dict() for p in pending])
        return 0

    async def _cmd_finalize(self, session: AsyncSession, args: argparse.Namespace) -> int:
        """Finalise an invoice."""
        overrides: dict[UUID, Decimal | None] = dict(args.override)
        for deduction_id in args.skip:
            overrides[deduction_id] = None

        result = await InvoiceService(session).finalize_invoice(
            args.invoice_id, overrides or None
        )
        _print_json(result.to_dict())
        return 0

    async def _cmd_mark_paid(self, session: AsyncSession, args: argparse.Namespace) -> int:
        """Mark an invoice paid."""
        invoice = await InvoiceService(session).mark_paid(args.invoice_id, args.paid_at)
        _print_json(
            {
                "invoice_id": str(invoice.invoice_id),
                "invoice_number": invoice.invoice_number,
                "status": invoice.status,
                "paid_at": invoice.paid_at.isoformat() if invoice.paid_at else None,
            }
        )
        return 0

    async def _cmd_summary(self, session: AsyncSession, args: argparse.Namespace) -> int:
        """Show an invoice's deduction summary."""
        service = InvoiceService(session)
        invoice = await service.get_invoice(args.invoice_id)
        summary = await service.ledger.get_invoice_deduction_summary(invoice.invoice_id)
        payload = summary.to_dict()
        payload["invoice_number"] = invoice.invoice_number
        _print_json(payload)
        return 0


def main() -> int:
    """CLI entry point."""
    cli = RctiCli()
    return cli.run()


if __name__ == "__main__":
    sys.exit(main())
