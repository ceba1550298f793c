"""Tests for toll and fuel levy lines."""

from datetime import date
from decimal import Decimal

from rcti_engine.calculators.surcharges import (
    CITYLINK,
    EASTLINK,
    compute_fuel_levy_line,
    compute_toll_lines,
    fuel_levy_base,
)
from rcti_engine.calculators.types import BillableRecord, LineCandidate, LineKind


def record(eastlink: int | None = 0, citylink: int | None = 0) -> BillableRecord:
    return BillableRecord(
        source_ref="JOB",
        work_date=date(2025, 1, 15),
        vehicle_class="Tray",
        hours=Decimal("8"),
        eastlink_trips=eastlink,
        citylink_trips=citylink,
    )


def priced(kind: LineKind, ex_tax: str) -> LineCandidate:
    amount = Decimal(ex_tax)
    return LineCandidate(
        line_kind=kind,
        units=Decimal("1"),
        unit_rate=amount,
        ex_tax=amount,
        tax=Decimal("0"),
        inc_tax=amount,
    )


class TestTollLines:
    """Test per-network toll aggregation."""

    def test_network_rates(self):
        assert EASTLINK.rate_per_trip == Decimal("18.50")
        assert CITYLINK.rate_per_trip == Decimal("31.00")

    def test_trips_summed_per_network(self):
        records = [record(eastlink=2, citylink=1), record(eastlink=1)]

        eastlink, citylink = compute_toll_lines(records, True, "registered", "exclusive")

        assert eastlink.line_kind == LineKind.TOLL
        assert eastlink.units == Decimal("1")
        assert eastlink.ex_tax == Decimal("55.50")
        assert eastlink.tax == Decimal("5.55")
        assert eastlink.description == "Eastlink Tolls (3 x $18.50)"

        assert citylink.ex_tax == Decimal("31.00")
        assert citylink.description == "CityLink Tolls (1 x $31.00)"

    def test_disabled(self):
        assert compute_toll_lines([record(eastlink=4)], False, "registered", "exclusive") == []

    def test_zero_trips_skipped(self):
        [line] = compute_toll_lines([record(citylink=2)], True, "not_registered", "exclusive")

        assert line.description.startswith("CityLink")
        assert line.tax == Decimal("0.00")

    def test_missing_trip_counts_count_as_zero(self):
        records = [record(eastlink=None, citylink=None), record(eastlink=2, citylink=None)]

        [line] = compute_toll_lines(records, True, "registered", "exclusive")

        assert line.description == "Eastlink Tolls (2 x $18.50)"
        assert line.ex_tax == Decimal("37.00")


class TestFuelLevy:
    """Test percentage fuel levy."""

    def test_ten_percent(self):
        """10% of 484.38 is 48.44."""
        lines = [priced(LineKind.WORK, "484.38")]

        levy = compute_fuel_levy_line(lines, Decimal("10"), "not_registered", "exclusive")

        assert levy is not None
        assert levy.line_kind == LineKind.FUEL_LEVY
        assert levy.ex_tax == Decimal("48.44")
        assert levy.description == "Fuel Levy (10%)"

    def test_base_excludes_tolls_and_breaks(self):
        lines = [
            priced(LineKind.WORK, "400.00"),
            priced(LineKind.MANUAL, "100.00"),
            priced(LineKind.BREAK, "-42.50"),
            priced(LineKind.TOLL, "37.00"),
        ]

        assert fuel_levy_base(lines) == Decimal("500.00")

        levy = compute_fuel_levy_line(lines, Decimal("2.5"), "registered", "exclusive")
        assert levy.ex_tax == Decimal("12.50")
        assert levy.tax == Decimal("1.25")
        assert levy.description == "Fuel Levy (2.5%)"

    def test_no_levy(self):
        lines = [priced(LineKind.WORK, "100.00")]

        assert compute_fuel_levy_line(lines, None, "registered", "exclusive") is None
        assert compute_fuel_levy_line(lines, 0, "registered", "exclusive") is None
