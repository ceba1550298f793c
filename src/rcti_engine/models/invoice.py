"""Invoice, invoice line, and status audit models."""

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


class Invoice(Base, TimestampMixin):
    """A recipient-created tax invoice for one driver and period.

    The driver_* and bank_* columns are a snapshot taken at creation and
    are deliberately not foreign-keyed to the live driver record.
    """

    __tablename__ = "invoice"

    invoice_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    driver_id: Mapped[UUID] = mapped_column(
        ForeignKey("driver.driver_id"),
        nullable=False,
    )

    # Driver snapshot
    driver_name: Mapped[str] = mapped_column(String, nullable=False)
    business_name: Mapped[str | None] = mapped_column(String, nullable=True)
    driver_address: Mapped[str | None] = mapped_column(Text, nullable=True)
    driver_abn: Mapped[str | None] = mapped_column(String, nullable=True)
    bank_account_name: Mapped[str | None] = mapped_column(String, nullable=True)
    bank_bsb: Mapped[str | None] = mapped_column(String, nullable=True)
    bank_account_number: Mapped[str | None] = mapped_column(String, nullable=True)

    tax_status: Mapped[str] = mapped_column(String, nullable=False)
    tax_mode: Mapped[str] = mapped_column(String, nullable=False)

    period_ending: Mapped[date] = mapped_column(Date, nullable=False)
    invoice_number: Mapped[str] = mapped_column(String, nullable=False, unique=True)

    subtotal: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    tax: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    total: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))

    status: Mapped[str] = mapped_column(String, nullable=False, default="draft")
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('draft', 'finalised', 'paid')",
            name="invoice_status_check",
        ),
        CheckConstraint(
            "tax_status IN ('registered', 'not_registered')",
            name="invoice_tax_status_check",
        ),
        CheckConstraint(
            "tax_mode IN ('exclusive', 'inclusive')",
            name="invoice_tax_mode_check",
        ),
        Index("invoice_driver_period_idx", "driver_id", "period_ending"),
    )


class InvoiceLine(Base, TimestampMixin):
    """A priced line on an invoice.

    source_ref is null for manual and generated (break, toll, levy) lines.
    """

    __tablename__ = "invoice_line"

    line_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    invoice_id: Mapped[UUID] = mapped_column(
        ForeignKey("invoice.invoice_id", ondelete="CASCADE"),
        nullable=False,
    )
    source_ref: Mapped[str | None] = mapped_column(String, nullable=True)
    line_kind: Mapped[str] = mapped_column(String, nullable=False, default="work")
    line_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    category: Mapped[str | None] = mapped_column(String, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    units: Mapped[Decimal] = mapped_column(Numeric(12, 4), nullable=False)
    unit_rate: Mapped[Decimal] = mapped_column(Numeric(12, 4), nullable=False)
    ex_tax: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    tax: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    inc_tax: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    __table_args__ = (
        CheckConstraint(
            "line_kind IN ('work', 'manual', 'break', 'toll', 'fuel_levy')",
            name="invoice_line_kind_check",
        ),
        Index("invoice_line_invoice_idx", "invoice_id"),
    )


class InvoiceStatusChange(Base):
    """Audit record written by the finalize and pay operations."""

    __tablename__ = "invoice_status_change"

    status_change_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    invoice_id: Mapped[UUID] = mapped_column(
        ForeignKey("invoice.invoice_id", ondelete="CASCADE"),
        nullable=False,
    )
    from_status: Mapped[str] = mapped_column(String, nullable=False)
    to_status: Mapped[str] = mapped_column(String, nullable=False)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    changed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
