"""Toll network and fuel levy surcharge lines."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable

from rcti_engine.calculators.amounts import Number, compute_line_amounts, round_to_cents, to_decimal
from rcti_engine.calculators.types import (
    ZERO,
    BillableRecord,
    LineCandidate,
    LineKind,
    TaxMode,
    TaxStatus,
)

ONE = Decimal("1")


@dataclass(frozen=True)
class TollNetwork:
    """A toll road network charged per trip."""

    name: str
    rate_per_trip: Decimal
    record_field: str


EASTLINK = TollNetwork("Eastlink", Decimal("18.50"), "eastlink_trips")
CITYLINK = TollNetwork("CityLink", Decimal("31.00"), "citylink_trips")
TOLL_NETWORKS: tuple[TollNetwork, ...] = (EASTLINK, CITYLINK)


def _surcharge_line(
    kind: LineKind,
    amount: Decimal,
    description: str,
    tax_status: TaxStatus | str,
    tax_mode: TaxMode | str,
) -> LineCandidate:
    # One unit at the surcharge amount so the invoice's tax treatment applies
    amounts = compute_line_amounts(ONE, amount, tax_status, tax_mode)
    return LineCandidate(
        line_kind=kind,
        units=ONE,
        unit_rate=amount,
        ex_tax=amounts.ex_tax,
        tax=amounts.tax,
        inc_tax=amounts.inc_tax,
        description=description,
    )


def compute_toll_lines(
    records: Iterable[BillableRecord],
    tolls_enabled: bool,
    tax_status: TaxStatus | str,
    tax_mode: TaxMode | str,
) -> list[LineCandidate]:
    """Build at most one toll line per network for the period."""
    if not tolls_enabled:
        return []

    records = list(records)
    lines: list[LineCandidate] = []
    for network in TOLL_NETWORKS:
        trips = sum(int(getattr(record, network.record_field) or 0) for record in records)
        if trips <= 0:
            continue
        lines.append(
            _surcharge_line(
                LineKind.TOLL,
                network.rate_per_trip * trips,
                f"{network.name} Tolls ({trips} x ${network.rate_per_trip})",
                tax_status,
                tax_mode,
            )
        )
    return lines


def fuel_levy_base(lines: Iterable[LineCandidate]) -> Decimal:
    """Ex-tax subtotal of ordinary lines; tolls, breaks and levies excluded."""
    return sum((line.ex_tax for line in lines if line.line_kind.is_ordinary), ZERO)


def compute_fuel_levy_line(
    lines: Iterable[LineCandidate],
    levy_percent: Number | None,
    tax_status: TaxStatus | str,
    tax_mode: TaxMode | str,
) -> LineCandidate | None:
    """Build the percentage fuel levy line, or None when no levy applies."""
    if levy_percent is None:
        return None
    percent = to_decimal(levy_percent, "levy_percent")
    if percent == 0:
        return None

    base = fuel_levy_base(lines)
    amount = round_to_cents(base * percent / Decimal("100"))
    return _surcharge_line(
        LineKind.FUEL_LEVY,
        amount,
        f"Fuel Levy ({percent.normalize():f}%)",
        tax_status,
        tax_mode,
    )
