"""Invoice totals aggregation."""

from __future__ import annotations

from decimal import Decimal
from typing import Iterable, Protocol

from rcti_engine.calculators.amounts import round_to_cents
from rcti_engine.calculators.types import ZERO, InvoiceTotals


class PricedLine(Protocol):
    ex_tax: Decimal
    tax: Decimal
    inc_tax: Decimal


def compute_totals(lines: Iterable[PricedLine]) -> InvoiceTotals:
    """Sum ex-tax, tax and inc-tax across a line set.

    Works for LineCandidate and persisted InvoiceLine rows alike. The result
    does not depend on line order; an empty set totals to zero.
    """
    subtotal = tax = total = ZERO
    for line in lines:
        subtotal += line.ex_tax
        tax += line.tax
        total += line.inc_tax
    return InvoiceTotals(
        subtotal=round_to_cents(subtotal),
        tax=round_to_cents(tax),
        total=round_to_cents(total),
    )
