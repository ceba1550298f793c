"""Standing deduction and application ledger models."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from rcti_engine.models.base import Base, TimestampMixin, utcnow


class StandingDeduction(Base, TimestampMixin):
    """A recurring charge or credit applied across invoices until exhausted.

    amount_remaining is the compare-and-swap column for the ledger; every
    write that changes it must match the previously read value.
    """

    __tablename__ = "standing_deduction"

    deduction_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    driver_id: Mapped[UUID] = mapped_column(
        ForeignKey("driver.driver_id", ondelete="CASCADE"),
        nullable=False,
    )
    kind: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[str] = mapped_column(String, nullable=False)

    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    amount_paid: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    amount_remaining: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    amount_per_cycle: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    frequency: Mapped[str] = mapped_column(String, nullable=False, default="weekly")
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False, default="active")
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        CheckConstraint(
            "kind IN ('deduction', 'reimbursement')",
            name="standing_deduction_kind_check",
        ),
        CheckConstraint(
            "frequency IN ('once', 'weekly', 'fortnightly', 'monthly')",
            name="standing_deduction_frequency_check",
        ),
        CheckConstraint(
            "status IN ('active', 'completed', 'cancelled')",
            name="standing_deduction_status_check",
        ),
        CheckConstraint("amount_remaining >= 0", name="standing_deduction_remaining_check"),
        Index("standing_deduction_driver_idx", "driver_id", "status"),
    )


class DeductionApplication(Base):
    """Append-only proof that a deduction was charged to an invoice."""

    __tablename__ = "deduction_application"

    application_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    deduction_id: Mapped[UUID] = mapped_column(
        ForeignKey("standing_deduction.deduction_id"),
        nullable=False,
    )
    invoice_id: Mapped[UUID] = mapped_column(
        ForeignKey("invoice.invoice_id"),
        nullable=False,
    )
    applied_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    applied_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    __table_args__ = (
        Index("deduction_application_invoice_idx", "invoice_id"),
        Index("deduction_application_deduction_idx", "deduction_id"),
    )
