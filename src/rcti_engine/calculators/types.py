"""Type definitions for the invoice calculation pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any

ZERO = Decimal("0")


class TaxStatus(str, Enum):
    """Payee GST registration status."""

    REGISTERED = "registered"
    NOT_REGISTERED = "not_registered"


class TaxMode(str, Enum):
    """Whether an entered rate already includes GST."""

    EXCLUSIVE = "exclusive"
    INCLUSIVE = "inclusive"


class LineKind(str, Enum):
    """Invoice line kinds."""

    WORK = "work"
    MANUAL = "manual"
    BREAK = "break"
    TOLL = "toll"
    FUEL_LEVY = "fuel_levy"

    @property
    def is_ordinary(self) -> bool:
        """Ordinary lines form the fuel levy base."""
        return self in (LineKind.WORK, LineKind.MANUAL)


@dataclass(frozen=True)
class LineAmounts:
    """Ex-tax, tax and inc-tax split for one line."""

    ex_tax: Decimal
    tax: Decimal
    inc_tax: Decimal


@dataclass(frozen=True)
class InvoiceTotals:
    """Aggregated invoice totals."""

    subtotal: Decimal = ZERO
    tax: Decimal = ZERO
    total: Decimal = ZERO


@dataclass
class BillableRecord:
    """A raw billable record from the job store, before pricing.

    rate is the explicit charge for the job; when None the driver's rate
    for the vehicle class is used.
    """

    source_ref: str
    work_date: date
    vehicle_class: str
    hours: Decimal
    rate: Decimal | None = None
    description: str | None = None
    eastlink_trips: int | None = 0
    citylink_trips: int | None = 0


@dataclass
class LineCandidate:
    """A priced line before persistence."""

    line_kind: LineKind
    units: Decimal
    unit_rate: Decimal
    ex_tax: Decimal
    tax: Decimal
    inc_tax: Decimal

    source_ref: str | None = None
    line_date: date | None = None
    category: str | None = None
    description: str | None = None

    def to_row(self) -> dict[str, Any]:
        """Column values for an InvoiceLine insert."""
        return {
            "line_kind": self.line_kind.value,
            "source_ref": self.source_ref,
            "line_date": self.line_date,
            "category": self.category,
            "description": self.description,
            "units": self.units,
            "unit_rate": self.unit_rate,
            "ex_tax": self.ex_tax,
            "tax": self.tax,
            "inc_tax": self.inc_tax,
        }


@dataclass
class InvoiceDraft:
    """The full priced line set for a new invoice."""

    lines: list[LineCandidate] = field(default_factory=list)
    totals: InvoiceTotals = field(default_factory=InvoiceTotals)
