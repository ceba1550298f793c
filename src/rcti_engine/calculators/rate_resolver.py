"""Driver hourly rate resolution by vehicle class."""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING

from rcti_engine.calculators.types import ZERO, BillableRecord

if TYPE_CHECKING:
    from rcti_engine.models import Driver


class VehicleRateResolver:
    """Resolves the hourly rate for a billable record.

    Rate selection priority:
    1. If the record carries an explicit rate, use it
    2. Otherwise match the vehicle class label against the driver's rates:
       - "semi" and "crane" together -> semi-crane rate
       - "semi" -> semi rate
       - "crane" -> crane rate
       - anything else (including "tray") -> tray rate
    3. No configured rate resolves to zero
    """

    def __init__(self, driver: Driver):
        self.driver = driver

    def rate_for_class(self, vehicle_class: str) -> Decimal | None:
        """Return the driver's configured rate for a vehicle class label."""
        normalized = vehicle_class.lower().strip()

        if "semi" in normalized and "crane" in normalized:
            return self.driver.rate_semi_crane
        if "semi" in normalized:
            return self.driver.rate_semi
        if "crane" in normalized:
            return self.driver.rate_crane
        return self.driver.rate_tray

    def resolve(self, record: BillableRecord) -> Decimal:
        """Resolve the rate to charge for a record."""
        if record.rate is not None:
            return record.rate
        rate = self.rate_for_class(record.vehicle_class)
        return rate if rate is not None else ZERO
