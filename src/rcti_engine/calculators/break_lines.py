"""Unpaid lunch-break deduction lines grouped by vehicle class."""

from __future__ import annotations

from decimal import Decimal
from typing import Iterable, Sequence

from rcti_engine.calculators.amounts import Number, compute_line_amounts, to_decimal
from rcti_engine.calculators.types import LineCandidate, LineKind, TaxMode, TaxStatus

DEFAULT_BREAK_THRESHOLD_HOURS = Decimal("7")


def select_break_candidates(
    lines: Iterable[LineCandidate],
    min_shift_hours: Decimal = DEFAULT_BREAK_THRESHOLD_HOURS,
) -> list[LineCandidate]:
    """Return the lines that attract an unpaid break.

    Only lines backed by a source record qualify, and only when the shift
    is strictly longer than the threshold (a 7.00 hour shift does not).
    """
    return [
        line
        for line in lines
        if line.source_ref is not None
        and line.line_kind == LineKind.WORK
        and line.units > min_shift_hours
    ]


def compute_break_lines(
    lines: Sequence[LineCandidate],
    break_hours_per_shift: Number | None,
    tax_status: TaxStatus | str,
    tax_mode: TaxMode | str,
) -> list[LineCandidate]:
    """Build one negative break line per vehicle class.

    Total break hours for a class are break_hours_per_shift times the
    number of lines (shifts) in that class. The class's first line supplies
    the hourly rate. Classes keep the order in which they first appear.
    """
    if break_hours_per_shift is None:
        return []
    per_shift = to_decimal(break_hours_per_shift, "break_hours_per_shift")
    if per_shift <= 0:
        return []

    groups: dict[str, list[LineCandidate]] = {}
    for line in lines:
        groups.setdefault(line.category or "", []).append(line)

    break_lines: list[LineCandidate] = []
    for vehicle_class, members in groups.items():
        total_hours = per_shift * len(members)
        rate = members[0].unit_rate
        amounts = compute_line_amounts(-total_hours, rate, tax_status, tax_mode)
        break_lines.append(
            LineCandidate(
                line_kind=LineKind.BREAK,
                units=-total_hours,
                unit_rate=rate,
                ex_tax=amounts.ex_tax,
                tax=amounts.tax,
                inc_tax=amounts.inc_tax,
                category=vehicle_class or None,
                description=f"Lunch Breaks - {vehicle_class}".rstrip(" -"),
            )
        )

    return break_lines
