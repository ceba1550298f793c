"""Standing deduction ledger - exactly-once application at finalisation.

Applies a driver's active standing deductions and reimbursements to an
invoice with:
- One optimistic compare-and-swap per deduction on amount_remaining
- An append-only DeductionApplication row per successful swap
- No locks; a lost race skips that deduction for this invocation
- Everything inside the caller's transaction
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Mapping, Optional
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from rcti_engine.calculators.amounts import Number, round_to_cents, to_decimal
from rcti_engine.calculators.schedule import is_deduction_due
from rcti_engine.calculators.types import ZERO
from rcti_engine.enums import DeductionKind, DeductionStatus
from rcti_engine.errors import PersistenceError
from rcti_engine.models import DeductionApplication, Invoice, StandingDeduction
from rcti_engine.models.base import utcnow

logger = logging.getLogger(__name__)


# deduction_id -> replacement per-cycle amount, or None to skip
Overrides = Mapping[UUID, Optional[Number]]


@dataclass(frozen=True)
class DeductionSnapshot:
    """Column values read at selection time.

    amount_remaining is the expected value for the compare-and-swap.
    """

    deduction_id: UUID
    kind: str
    description: str
    amount_remaining: Decimal
    amount_paid: Decimal
    amount_per_cycle: Decimal
    frequency: str
    last_period_ending: date | None = None

    def is_due(self, period_ending: date) -> bool:
        return is_deduction_due(self.frequency, self.last_period_ending, period_ending)

    def amount_to_apply(self, overrides: Overrides | None = None) -> Decimal:
        """Amount this snapshot would charge, capped at what remains."""
        per_cycle = self.amount_per_cycle
        if overrides is not None and self.deduction_id in overrides:
            override = overrides[self.deduction_id]
            if override is None:
                return ZERO
            per_cycle = to_decimal(override, "override")
        amount = round_to_cents(min(self.amount_remaining, per_cycle))
        return amount if amount > 0 else ZERO


@dataclass
class ApplyResult:
    """Outcome of one apply_standing_deductions call.

    Deductions that lost a race or had nothing to apply are not counted.
    """

    applied_count: int = 0
    total_deduction_amount: Decimal = ZERO
    total_reimbursement_amount: Decimal = ZERO
    application_ids: list[UUID] = field(default_factory=list)

    @property
    def net_adjustment(self) -> Decimal:
        """Reimbursements minus deductions."""
        return self.total_reimbursement_amount - self.total_deduction_amount

    def to_dict(self) -> dict[str, object]:
        return {
            "applied_count": self.applied_count,
            "total_deduction_amount": str(self.total_deduction_amount),
            "total_reimbursement_amount": str(self.total_reimbursement_amount),
            "net_adjustment": str(self.net_adjustment),
            "application_ids": [str(a) for a in self.application_ids],
        }


@dataclass(frozen=True)
class PendingDeduction:
    """Preview of what the next finalisation would apply."""

    deduction_id: UUID
    kind: str
    description: str
    amount_to_apply: Decimal
    amount_remaining: Decimal
    frequency: str

    def to_dict(self) -> dict[str, object]:
        return {
            "deduction_id": str(self.deduction_id),
            "kind": self.kind,
            "description": self.description,
            "amount_to_apply": str(self.amount_to_apply),
            "amount_remaining": str(self.amount_remaining),
            "frequency": self.frequency,
        }


@dataclass(frozen=True)
class AppliedDeduction:
    application_id: UUID
    deduction_id: UUID
    kind: str
    description: str
    applied_amount: Decimal
    applied_at: datetime


@dataclass
class DeductionSummary:
    """Deductions and reimbursements recorded against one invoice."""

    total_deductions: Decimal = ZERO
    total_reimbursements: Decimal = ZERO
    applications: list[AppliedDeduction] = field(default_factory=list)

    @property
    def net_adjustment(self) -> Decimal:
        return self.total_reimbursements - self.total_deductions

    def to_dict(self) -> dict[str, object]:
        return {
            "total_deductions": str(self.total_deductions),
            "total_reimbursements": str(self.total_reimbursements),
            "net_adjustment": str(self.net_adjustment),
            "applications": [
                {
                    "application_id": str(a.application_id),
                    "deduction_id": str(a.deduction_id),
                    "kind": a.kind,
                    "description": a.description,
                    "applied_amount": str(a.applied_amount),
                    "applied_at": a.applied_at.isoformat(),
                }
                for a in self.applications
            ],
        }


class DeductionLedger:
    """Concurrency-safe application of standing deductions.

    Notes:
    - The caller owns the transaction; nothing here commits.
    - A zero-row swap means another writer got there first. It is logged
      and skipped, never retried.
    - deduction_application is append-only.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def apply_standing_deductions(
        self,
        invoice_id: UUID,
        driver_id: UUID,
        period_ending: date,
        overrides: Overrides | None = None,
    ) -> ApplyResult:
        """Apply every eligible standing deduction to an invoice.

        Args:
            invoice_id: Invoice being finalised
            driver_id: Driver whose deductions apply
            period_ending: Only deductions started on or before this date
            overrides: Optional per-deduction amount, or None to skip

        Returns:
            ApplyResult with counts and totals of successful applications

        Raises:
            PersistenceError: If the store fails
        """
        result = ApplyResult()
        try:
            candidates = await self._select_candidates(driver_id, period_ending, invoice_id)
            for snapshot in candidates:
                amount = snapshot.amount_to_apply(overrides)
                if amount <= 0:
                    continue

                application = await self._apply_one(invoice_id, snapshot, amount)
                if application is None:
                    continue

                result.applied_count += 1
                result.application_ids.append(application.application_id)
                if snapshot.kind == DeductionKind.REIMBURSEMENT.value:
                    result.total_reimbursement_amount += amount
                else:
                    result.total_deduction_amount += amount
        except SQLAlchemyError as e:
            raise PersistenceError("apply_standing_deductions", e) from e

        logger.info(
            "Applied %d standing deduction(s) to invoice %s: deductions=%s reimbursements=%s",
            result.applied_count,
            invoice_id,
            result.total_deduction_amount,
            result.total_reimbursement_amount,
        )
        return result

    async def _select_candidates(
        self,
        driver_id: UUID,
        period_ending: date,
        invoice_id: UUID | None = None,
    ) -> list[DeductionSnapshot]:
        """Read snapshots of the driver's active deductions due this period.

        A deduction is due when its frequency interval has passed since the
        period ending of the latest invoice it was applied to. When
        invoice_id is given, deductions already applied to that invoice are
        excluded.
        """
        last_period_ending = (
            select(func.max(Invoice.period_ending))
            .join(DeductionApplication, DeductionApplication.invoice_id == Invoice.invoice_id)
            .where(DeductionApplication.deduction_id == StandingDeduction.deduction_id)
            .correlate(StandingDeduction)
            .scalar_subquery()
        )
        stmt = (
            select(
                StandingDeduction.deduction_id,
                StandingDeduction.kind,
                StandingDeduction.description,
                StandingDeduction.amount_remaining,
                StandingDeduction.amount_paid,
                StandingDeduction.amount_per_cycle,
                StandingDeduction.frequency,
                last_period_ending.label("last_period_ending"),
            )
            .where(
                StandingDeduction.driver_id == driver_id,
                StandingDeduction.status == DeductionStatus.ACTIVE.value,
                StandingDeduction.start_date <= period_ending,
            )
            .order_by(StandingDeduction.start_date, StandingDeduction.created_at)
        )
        if invoice_id is not None:
            already_applied = select(DeductionApplication.deduction_id).where(
                DeductionApplication.invoice_id == invoice_id
            )
            stmt = stmt.where(StandingDeduction.deduction_id.not_in(already_applied))

        rows = (await self.session.execute(stmt)).all()
        snapshots = [
            DeductionSnapshot(
                deduction_id=row.deduction_id,
                kind=row.kind,
                description=row.description,
                amount_remaining=row.amount_remaining,
                amount_paid=row.amount_paid,
                amount_per_cycle=row.amount_per_cycle,
                frequency=row.frequency,
                last_period_ending=row.last_period_ending,
            )
            for row in rows
        ]

        due = []
        for snapshot in snapshots:
            if snapshot.is_due(period_ending):
                due.append(snapshot)
            else:
                logger.debug(
                    "Standing deduction %s (%s) not due for period ending %s; last applied %s",
                    snapshot.deduction_id,
                    snapshot.frequency,
                    period_ending,
                    snapshot.last_period_ending,
                )
        return due

    async def _apply_one(
        self,
        invoice_id: UUID,
        snapshot: DeductionSnapshot,
        amount: Decimal,
    ) -> DeductionApplication | None:
        """Swap amount_remaining and record the application.

        Returns None when the swap matched no row.
        """
        new_remaining = snapshot.amount_remaining - amount
        values: dict[str, object] = {
            "amount_remaining": new_remaining,
            "amount_paid": StandingDeduction.amount_paid + amount,
        }
        if new_remaining == 0:
            values["status"] = DeductionStatus.COMPLETED.value
            values["completed_at"] = utcnow()

        stmt = (
            update(StandingDeduction)
            .where(
                StandingDeduction.deduction_id == snapshot.deduction_id,
                StandingDeduction.status == DeductionStatus.ACTIVE.value,
                StandingDeduction.amount_remaining == snapshot.amount_remaining,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        outcome = await self.session.execute(stmt)

        if outcome.rowcount != 1:
            logger.info(
                "Standing deduction %s changed since it was read (expected remaining %s); "
                "skipping for invoice %s",
                snapshot.deduction_id,
                snapshot.amount_remaining,
                invoice_id,
            )
            return None

        application = DeductionApplication(
            deduction_id=snapshot.deduction_id,
            invoice_id=invoice_id,
            applied_amount=amount,
        )
        self.session.add(application)
        await self.session.flush()

        logger.debug(
            "Applied %s %s from standing deduction %s to invoice %s (remaining %s)",
            snapshot.kind,
            amount,
            snapshot.deduction_id,
            invoice_id,
            new_remaining,
        )
        return application

    async def get_pending_deductions(
        self,
        driver_id: UUID,
        period_ending: date,
    ) -> list[PendingDeduction]:
        """Preview the deductions a finalisation for this period would apply."""
        try:
            candidates = await self._select_candidates(driver_id, period_ending)
        except SQLAlchemyError as e:
            raise PersistenceError("get_pending_deductions", e) from e

        pending = []
        for snapshot in candidates:
            amount = snapshot.amount_to_apply()
            if amount <= 0:
                continue
            pending.append(
                PendingDeduction(
                    deduction_id=snapshot.deduction_id,
                    kind=snapshot.kind,
                    description=snapshot.description,
                    amount_to_apply=amount,
                    amount_remaining=snapshot.amount_remaining,
                    frequency=snapshot.frequency,
                )
            )
        return pending

    async def get_invoice_deduction_summary(self, invoice_id: UUID) -> DeductionSummary:
        """Total the applications recorded against an invoice."""
        stmt = (
            select(
                DeductionApplication.application_id,
                DeductionApplication.deduction_id,
                DeductionApplication.applied_amount,
                DeductionApplication.applied_at,
                StandingDeduction.kind,
                StandingDeduction.description,
            )
            .join(
                StandingDeduction,
                StandingDeduction.deduction_id == DeductionApplication.deduction_id,
            )
            .where(DeductionApplication.invoice_id == invoice_id)
            .order_by(DeductionApplication.applied_at, DeductionApplication.application_id)
        )
        try:
            rows = (await self.session.execute(stmt)).all()
        except SQLAlchemyError as e:
            raise PersistenceError("get_invoice_deduction_summary", e) from e

        summary = DeductionSummary()
        for row in rows:
            summary.applications.append(
                AppliedDeduction(
                    application_id=row.application_id,
                    deduction_id=row.deduction_id,
                    kind=row.kind,
                    description=row.description,
                    applied_amount=row.applied_amount,
                    applied_at=row.applied_at,
                )
            )
            if row.kind == DeductionKind.REIMBURSEMENT.value:
                summary.total_reimbursements += row.applied_amount
            else:
                summary.total_deductions += row.applied_amount
        return summary
