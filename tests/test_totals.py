"""Tests for invoice totals aggregation."""

from decimal import Decimal

from rcti_engine.calculators.amounts import compute_line_amounts
from rcti_engine.calculators.totals import compute_totals
from rcti_engine.calculators.types import InvoiceTotals


class TestComputeTotals:
    """Test totals over priced lines."""

    def test_sums_each_column(self):
        lines = [
            compute_line_amounts(Decimal("8.5"), Decimal("85"), "registered", "exclusive"),
            compute_line_amounts(Decimal("-0.5"), Decimal("85"), "registered", "exclusive"),
        ]

        totals = compute_totals(lines)

        assert totals == InvoiceTotals(
            subtotal=Decimal("680.00"),
            tax=Decimal("68.00"),
            total=Decimal("748.00"),
        )

    def test_empty_is_zero(self):
        totals = compute_totals([])

        assert totals.subtotal == Decimal("0")
        assert totals.tax == Decimal("0")
        assert totals.total == Decimal("0")

    def test_order_independent(self):
        lines = [
            compute_line_amounts(1, Decimal("37.00"), "registered", "inclusive"),
            compute_line_amounts(3, Decimal("12.34"), "registered", "inclusive"),
            compute_line_amounts(Decimal("0.75"), Decimal("99.99"), "registered", "inclusive"),
        ]

        assert compute_totals(lines) == compute_totals(list(reversed(lines)))
