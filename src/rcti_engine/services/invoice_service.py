"""Invoice service - orchestrates pricing, lifecycle and persistence."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any, Mapping, Sequence
from uuid import UUID

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from rcti_engine.calculators import (
    VehicleRateResolver,
    compute_break_lines,
    compute_fuel_levy_line,
    compute_line_amounts,
    compute_toll_lines,
    compute_totals,
    generate_invoice_number,
    select_break_candidates,
)
from rcti_engine.calculators.amounts import parse_tax_mode, parse_tax_status, to_decimal
from rcti_engine.calculators.invoice_number import base_invoice_number
from rcti_engine.calculators.types import (
    BillableRecord,
    InvoiceDraft,
    LineCandidate,
    LineKind,
    TaxMode,
    TaxStatus,
)
from rcti_engine.config import Settings, get_settings
from rcti_engine.database import storage_errors
from rcti_engine.enums import DriverType, InvoiceStatus
from rcti_engine.errors import NotFoundError, StateConflictError, ValidationError
from rcti_engine.models import Driver, Invoice, InvoiceLine, InvoiceStatusChange
from rcti_engine.models.base import utcnow
from rcti_engine.schemas import InvoiceUpdate, LineInput, LineUpdate, parse_payload
from rcti_engine.services.deduction_ledger import ApplyResult, DeductionLedger, Overrides
from rcti_engine.services.state_machine import (
    InvoiceLifecycle,
    RejectionReason,
    SideEffect,
)

logger = logging.getLogger(__name__)

_LINE_CHANGE = {"lines": True}


@dataclass
class FinalizeResult:
    """Finalised invoice and the ledger outcome."""

    invoice: Invoice
    deductions: ApplyResult

    def to_dict(self) -> dict[str, Any]:
        return {
            "invoice_id": str(self.invoice.invoice_id),
            "invoice_number": self.invoice.invoice_number,
            "status": self.invoice.status,
            "subtotal": str(self.invoice.subtotal),
            "tax": str(self.invoice.tax),
            "total": str(self.invoice.total),
            "deductions": self.deductions.to_dict(),
        }


class InvoiceService:
    """Service for the RCTI lifecycle.

    Operations:
    - create_invoice: Price records and persist a draft
    - add_manual_line / update_line / remove_line: Draft-only line edits
    - update_invoice: Generic field update through the lifecycle table
    - finalize_invoice: draft → finalised, applying standing deductions
    - mark_paid: finalised → paid
    - delete_invoice: Remove a draft and its lines

    Nothing here commits; the caller's session is the unit of work.
    """

    def __init__(self, session: AsyncSession, settings: Settings | None = None):
        self.session = session
        self.settings = settings or get_settings()
        self.ledger = DeductionLedger(session)

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    async def get_invoice(self, invoice_id: UUID) -> Invoice:
        invoice = await self.session.get(Invoice, invoice_id)
        if invoice is None:
            raise NotFoundError("Invoice", invoice_id)
        return invoice

    async def get_lines(self, invoice_id: UUID) -> list[InvoiceLine]:
        result = await self.session.execute(
            select(InvoiceLine)
            .where(InvoiceLine.invoice_id == invoice_id)
            .order_by(InvoiceLine.created_at, InvoiceLine.line_id)
        )
        return list(result.scalars().all())

    async def get_status_changes(self, invoice_id: UUID) -> list[InvoiceStatusChange]:
        result = await self.session.execute(
            select(InvoiceStatusChange)
            .where(InvoiceStatusChange.invoice_id == invoice_id)
            .order_by(InvoiceStatusChange.changed_at)
        )
        return list(result.scalars().all())

    async def _get_line(self, invoice_id: UUID, line_id: UUID) -> InvoiceLine:
        line = await self.session.get(InvoiceLine, line_id)
        if line is None or line.invoice_id != invoice_id:
            raise NotFoundError("InvoiceLine", line_id)
        return line

    async def _count_lines(self, invoice_id: UUID) -> int:
        result = await self.session.execute(
            select(func.count()).select_from(InvoiceLine).where(InvoiceLine.invoice_id == invoice_id)
        )
        return int(result.scalar_one())

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def build_draft(
        self,
        driver: Driver,
        records: Sequence[BillableRecord],
        tax_status: TaxStatus,
        tax_mode: TaxMode,
    ) -> InvoiceDraft:
        """Price records and append break, toll and fuel levy lines."""
        resolver = VehicleRateResolver(driver)

        work_lines: list[LineCandidate] = []
        for record in records:
            units = to_decimal(record.hours, "hours")
            rate = to_decimal(resolver.resolve(record), "rate")
            amounts = compute_line_amounts(units, rate, tax_status, tax_mode)
            work_lines.append(
                LineCandidate(
                    line_kind=LineKind.WORK,
                    units=units,
                    unit_rate=rate,
                    ex_tax=amounts.ex_tax,
                    tax=amounts.tax,
                    inc_tax=amounts.inc_tax,
                    source_ref=record.source_ref,
                    line_date=record.work_date,
                    category=record.vehicle_class,
                    description=record.description,
                )
            )

        candidates = select_break_candidates(work_lines, self.settings.break_threshold_hours)
        lines = list(work_lines)
        lines.extend(
            compute_break_lines(candidates, driver.break_hours_per_shift, tax_status, tax_mode)
        )
        lines.extend(compute_toll_lines(records, driver.tolls_enabled, tax_status, tax_mode))

        levy = compute_fuel_levy_line(lines, driver.fuel_levy_percent, tax_status, tax_mode)
        if levy is not None:
            lines.append(levy)

        return InvoiceDraft(lines=lines, totals=compute_totals(lines))

    async def _unbilled_records(self, records: Sequence[BillableRecord]) -> list[BillableRecord]:
        """Drop records already on an invoice line, and repeats within the batch."""
        refs = {record.source_ref for record in records}
        if not refs:
            return []

        result = await self.session.execute(
            select(InvoiceLine.source_ref).where(InvoiceLine.source_ref.in_(refs))
        )
        billed = set(result.scalars().all())

        fresh: list[BillableRecord] = []
        seen: set[str] = set()
        for record in records:
            if record.source_ref in billed or record.source_ref in seen:
                continue
            seen.add(record.source_ref)
            fresh.append(record)

        if len(fresh) < len(records):
            logger.info(
                "Skipped %d record(s) already billed or repeated: %s",
                len(records) - len(fresh),
                ", ".join(sorted(billed)) or "repeats only",
            )
        return fresh

    async def _existing_numbers(self, period_ending: date, payee_name: str) -> set[str]:
        base = base_invoice_number(period_ending, payee_name)
        result = await self.session.execute(
            select(Invoice.invoice_number).where(Invoice.invoice_number.like(f"{base}%"))
        )
        return set(result.scalars().all())

    async def create_invoice(
        self,
        driver_id: UUID,
        period_ending: date,
        records: Sequence[BillableRecord],
        tax_status: TaxStatus | str | None = None,
        tax_mode: TaxMode | str | None = None,
        notes: str | None = None,
    ) -> Invoice:
        """Create a draft invoice for a driver and period.

        Tax status and mode default to the driver's settings. The driver's
        payee and bank details are copied onto the invoice. Records whose
        source_ref is already on an invoice line are left off. An empty
        record list gives an empty draft for manual lines.

        Raises:
            NotFoundError: If the driver does not exist
            ValidationError: If the driver is an employee, every record
                given is already billed, or input is invalid
            StateConflictError: If no free invoice number could be claimed
        """
        driver = await self.session.get(Driver, driver_id)
        if driver is None:
            raise NotFoundError("Driver", driver_id)
        if driver.driver_type == DriverType.EMPLOYEE.value:
            raise ValidationError(
                "RCTIs can only be created for contractors and subcontractors"
            )

        if records:
            with storage_errors("create_invoice"):
                unbilled = await self._unbilled_records(records)
            if not unbilled:
                raise ValidationError("All records given are already billed on an invoice")
            records = unbilled

        status = parse_tax_status(tax_status or driver.tax_status)
        mode = parse_tax_mode(tax_mode or driver.tax_mode)
        draft = self.build_draft(driver, records, status, mode)

        with storage_errors("create_invoice"):
            invoice = await self._insert_with_number(driver, period_ending, status, mode, notes, draft)
            for candidate in draft.lines:
                self.session.add(InvoiceLine(invoice_id=invoice.invoice_id, **candidate.to_row()))
            await self.session.flush()

        logger.info(
            "Created invoice %s (%s) for driver %s: %d line(s), total %s",
            invoice.invoice_id,
            invoice.invoice_number,
            driver_id,
            len(draft.lines),
            invoice.total,
        )
        return invoice

    async def _insert_with_number(
        self,
        driver: Driver,
        period_ending: date,
        tax_status: TaxStatus,
        tax_mode: TaxMode,
        notes: str | None,
        draft: InvoiceDraft,
    ) -> Invoice:
        """Insert the invoice row, regenerating the number on collision."""
        attempts = self.settings.invoice_number_attempts
        for attempt in range(1, attempts + 1):
            existing = await self._existing_numbers(period_ending, driver.payee_name)
            number = generate_invoice_number(existing, period_ending, driver.payee_name)
            invoice = Invoice(
                driver_id=driver.driver_id,
                driver_name=driver.name,
                business_name=driver.business_name,
                driver_address=driver.address,
                driver_abn=driver.abn,
                bank_account_name=driver.bank_account_name,
                bank_bsb=driver.bank_bsb,
                bank_account_number=driver.bank_account_number,
                tax_status=tax_status.value,
                tax_mode=tax_mode.value,
                period_ending=period_ending,
                invoice_number=number,
                subtotal=draft.totals.subtotal,
                tax=draft.totals.tax,
                total=draft.totals.total,
                status=InvoiceStatus.DRAFT.value,
                notes=notes,
            )
            try:
                async with self.session.begin_nested():
                    self.session.add(invoice)
                    await self.session.flush()
            except IntegrityError:
                logger.warning(
                    "Invoice number %s was claimed concurrently (attempt %d of %d)",
                    number,
                    attempt,
                    attempts,
                )
                continue
            return invoice

        raise StateConflictError(
            "invoice_number_exhausted",
            f"Could not claim a unique invoice number after {attempts} attempts",
        )

    # ------------------------------------------------------------------
    # Line edits
    # ------------------------------------------------------------------

    async def _refresh_totals(self, invoice: Invoice) -> None:
        totals = compute_totals(await self.get_lines(invoice.invoice_id))
        invoice.subtotal = totals.subtotal
        invoice.tax = totals.tax
        invoice.total = totals.total
        await self.session.flush()

    async def _reprice_lines(self, invoice: Invoice) -> None:
        """Recompute every line's tax split; units and rates are kept."""
        for line in await self.get_lines(invoice.invoice_id):
            amounts = compute_line_amounts(
                line.units, line.unit_rate, invoice.tax_status, invoice.tax_mode
            )
            line.ex_tax = amounts.ex_tax
            line.tax = amounts.tax
            line.inc_tax = amounts.inc_tax
        await self._refresh_totals(invoice)

    async def add_manual_line(
        self,
        invoice_id: UUID,
        line: LineInput | Mapping[str, Any],
    ) -> InvoiceLine:
        """Add a manual line to a draft invoice."""
        payload = parse_payload(LineInput, line)
        invoice = await self.get_invoice(invoice_id)
        InvoiceLifecycle.require_mutation_allowed(invoice, _LINE_CHANGE)

        amounts = compute_line_amounts(
            payload.units, payload.unit_rate, invoice.tax_status, invoice.tax_mode
        )
        with storage_errors("add_manual_line"):
            row = InvoiceLine(
                invoice_id=invoice_id,
                line_kind=LineKind.MANUAL.value,
                line_date=payload.line_date,
                category=payload.category,
                description=payload.description,
                units=payload.units,
                unit_rate=payload.unit_rate,
                ex_tax=amounts.ex_tax,
                tax=amounts.tax,
                inc_tax=amounts.inc_tax,
            )
            self.session.add(row)
            await self.session.flush()
            await self._refresh_totals(invoice)
        return row

    async def update_line(
        self,
        invoice_id: UUID,
        line_id: UUID,
        changes: LineUpdate | Mapping[str, Any],
    ) -> InvoiceLine:
        """Change a line on a draft invoice and re-price it."""
        payload = parse_payload(LineUpdate, changes)
        invoice = await self.get_invoice(invoice_id)
        InvoiceLifecycle.require_mutation_allowed(invoice, _LINE_CHANGE)
        line = await self._get_line(invoice_id, line_id)

        for name, value in payload.model_dump(exclude_unset=True).items():
            setattr(line, name, value)

        amounts = compute_line_amounts(
            line.units, line.unit_rate, invoice.tax_status, invoice.tax_mode
        )
        line.ex_tax = amounts.ex_tax
        line.tax = amounts.tax
        line.inc_tax = amounts.inc_tax

        with storage_errors("update_line"):
            await self.session.flush()
            await self._refresh_totals(invoice)
        return line

    async def remove_line(self, invoice_id: UUID, line_id: UUID) -> None:
        """Remove a line from a draft invoice."""
        invoice = await self.get_invoice(invoice_id)
        InvoiceLifecycle.require_mutation_allowed(invoice, _LINE_CHANGE)
        line = await self._get_line(invoice_id, line_id)

        with storage_errors("remove_line"):
            await self.session.delete(line)
            await self.session.flush()
            await self._refresh_totals(invoice)

    # ------------------------------------------------------------------
    # Generic update
    # ------------------------------------------------------------------

    async def update_invoice(
        self,
        invoice_id: UUID,
        changes: InvoiceUpdate | Mapping[str, Any],
    ) -> Invoice:
        """Apply a generic update after checking the lifecycle table.

        Raises:
            ValidationError: If the payload is malformed
            StateConflictError: If the current status forbids the change
        """
        payload = parse_payload(InvoiceUpdate, changes)
        requested = payload.requested_fields()
        invoice = await self.get_invoice(invoice_id)
        decision = InvoiceLifecycle.require_mutation_allowed(invoice, requested)

        for name, value in requested.items():
            if name == "status":
                # Only draft -> draft gets this far
                continue
            setattr(invoice, name, value.value if isinstance(value, Enum) else value)

        with storage_errors("update_invoice"):
            if SideEffect.RECOMPUTE_LINES in decision.side_effects:
                await self._reprice_lines(invoice)
            else:
                await self.session.flush()
        return invoice

    # ------------------------------------------------------------------
    # Dedicated transitions
    # ------------------------------------------------------------------

    def _record_status_change(
        self,
        invoice_id: UUID,
        from_status: InvoiceStatus,
        to_status: InvoiceStatus,
        reason: str | None = None,
    ) -> None:
        self.session.add(
            InvoiceStatusChange(
                invoice_id=invoice_id,
                from_status=from_status.value,
                to_status=to_status.value,
                reason=reason,
            )
        )

    async def _swap_status(
        self,
        invoice: Invoice,
        from_status: InvoiceStatus,
        to_status: InvoiceStatus,
        **values: Any,
    ) -> None:
        """Conditionally move status; a concurrent mover makes this fail."""
        result = await self.session.execute(
            update(Invoice)
            .where(
                Invoice.invoice_id == invoice.invoice_id,
                Invoice.status == from_status.value,
            )
            .values(status=to_status.value, updated_at=utcnow(), **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise StateConflictError(
                RejectionReason.NOT_DRAFT.value
                if from_status == InvoiceStatus.DRAFT
                else RejectionReason.NOT_FINALISED.value,
                f"Invoice {invoice.invoice_id} is no longer {from_status.value}",
            )
        await self.session.refresh(invoice)

    async def finalize_invoice(
        self,
        invoice_id: UUID,
        overrides: Overrides | None = None,
    ) -> FinalizeResult:
        """Finalise a draft invoice and apply standing deductions.

        Args:
            invoice_id: Draft invoice to finalise
            overrides: Optional per-deduction amounts; None skips a deduction

        Raises:
            StateConflictError: If not draft, no lines, or a concurrent
                finaliser won
            PersistenceError: If the store fails
        """
        invoice = await self.get_invoice(invoice_id)
        line_count = await self._count_lines(invoice_id)
        InvoiceLifecycle.require(InvoiceLifecycle.validate_finalize(invoice, line_count))

        with storage_errors("finalize_invoice"):
            await self._swap_status(invoice, InvoiceStatus.DRAFT, InvoiceStatus.FINALISED)

        deductions = await self.ledger.apply_standing_deductions(
            invoice.invoice_id,
            invoice.driver_id,
            invoice.period_ending,
            overrides,
        )

        with storage_errors("finalize_invoice"):
            self._record_status_change(
                invoice.invoice_id,
                InvoiceStatus.DRAFT,
                InvoiceStatus.FINALISED,
                f"{deductions.applied_count} standing deduction(s) applied",
            )
            await self.session.flush()

        logger.info(
            "Finalised invoice %s (%s): %d deduction(s) applied",
            invoice.invoice_id,
            invoice.invoice_number,
            deductions.applied_count,
        )
        return FinalizeResult(invoice=invoice, deductions=deductions)

    async def mark_paid(self, invoice_id: UUID, paid_at: datetime | None = None) -> Invoice:
        """Mark a finalised invoice as paid."""
        invoice = await self.get_invoice(invoice_id)
        InvoiceLifecycle.require(InvoiceLifecycle.validate_pay(invoice))

        with storage_errors("mark_paid"):
            await self._swap_status(
                invoice,
                InvoiceStatus.FINALISED,
                InvoiceStatus.PAID,
                paid_at=paid_at or utcnow(),
            )
            self._record_status_change(invoice.invoice_id, InvoiceStatus.FINALISED, InvoiceStatus.PAID)
            await self.session.flush()

        logger.info("Invoice %s marked as paid", invoice.invoice_id)
        return invoice

    async def delete_invoice(self, invoice_id: UUID) -> None:
        """Delete a draft invoice together with its lines."""
        invoice = await self.get_invoice(invoice_id)
        if not InvoiceLifecycle.is_editable(invoice.status):
            raise StateConflictError(
                RejectionReason.NOT_DRAFT.value,
                "Only draft invoices can be deleted",
            )

        with storage_errors("delete_invoice"):
            await self.session.execute(
                delete(InvoiceLine).where(InvoiceLine.invoice_id == invoice_id)
            )
            await self.session.delete(invoice)
            await self.session.flush()

        logger.info("Deleted draft invoice %s", invoice_id)
