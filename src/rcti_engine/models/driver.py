"""Driver (payee) master record."""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import Boolean, CheckConstraint, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from rcti_engine.models.base import Base, TimestampMixin


class Driver(Base, TimestampMixin):
    """A driver or subcontracting business paid through RCTIs.

    Invoices copy the payee fields at creation time; edits made here
    afterwards never reach an existing invoice.
    """

    __tablename__ = "driver"

    driver_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String, nullable=False)
    business_name: Mapped[str | None] = mapped_column(String, nullable=True)
    address: Mapped[str | None] = mapped_column(Text, nullable=True)
    abn: Mapped[str | None] = mapped_column(String, nullable=True)
    driver_type: Mapped[str] = mapped_column(String, nullable=False, default="contractor")

    tax_status: Mapped[str] = mapped_column(String, nullable=False, default="not_registered")
    tax_mode: Mapped[str] = mapped_column(String, nullable=False, default="exclusive")

    bank_account_name: Mapped[str | None] = mapped_column(String, nullable=True)
    bank_bsb: Mapped[str | None] = mapped_column(String, nullable=True)
    bank_account_number: Mapped[str | None] = mapped_column(String, nullable=True)

    # Unpaid break deducted per shift over the threshold, in hours
    break_hours_per_shift: Mapped[Decimal | None] = mapped_column(Numeric(6, 2), nullable=True)
    tolls_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    fuel_levy_percent: Mapped[Decimal | None] = mapped_column(Numeric(5, 2), nullable=True)

    # Hourly rates by vehicle class
    rate_tray: Mapped[Decimal | None] = mapped_column(Numeric(12, 4), nullable=True)
    rate_crane: Mapped[Decimal | None] = mapped_column(Numeric(12, 4), nullable=True)
    rate_semi: Mapped[Decimal | None] = mapped_column(Numeric(12, 4), nullable=True)
    rate_semi_crane: Mapped[Decimal | None] = mapped_column(Numeric(12, 4), nullable=True)

    __table_args__ = (
        CheckConstraint(
            "driver_type IN ('employee', 'contractor', 'subcontractor')",
            name="driver_type_check",
        ),
        CheckConstraint(
            "tax_status IN ('registered', 'not_registered')",
            name="driver_tax_status_check",
        ),
        CheckConstraint(
            "tax_mode IN ('exclusive', 'inclusive')",
            name="driver_tax_mode_check",
        ),
    )

    @property
    def payee_name(self) -> str:
        """Name printed on invoices: the business name when there is one."""
        return self.business_name or self.name
