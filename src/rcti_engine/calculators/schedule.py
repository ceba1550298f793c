"""Standing deduction scheduling by frequency."""

from __future__ import annotations

import calendar
from datetime import date, timedelta

from rcti_engine.enums import DeductionFrequency
from rcti_engine.errors import ValidationError

INTERVAL_DAYS = {
    DeductionFrequency.WEEKLY: 7,
    DeductionFrequency.FORTNIGHTLY: 14,
}


def parse_frequency(value: DeductionFrequency | str) -> DeductionFrequency:
    try:
        return DeductionFrequency(value)
    except ValueError:
        raise ValidationError(f"Unknown deduction frequency: {value!r}") from None


def add_months(start: date, months: int) -> date:
    """Same day in a later month, clamped to that month's last day."""
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def next_due_date(
    last_period_ending: date,
    frequency: DeductionFrequency | str,
) -> date | None:
    """First period ending at which a deduction falls due again.

    Returns None for one-off deductions, which never recur.
    """
    frequency = parse_frequency(frequency)
    if frequency == DeductionFrequency.ONCE:
        return None
    if frequency == DeductionFrequency.MONTHLY:
        return add_months(last_period_ending, 1)
    return last_period_ending + timedelta(days=INTERVAL_DAYS[frequency])


def is_deduction_due(
    frequency: DeductionFrequency | str,
    last_period_ending: date | None,
    period_ending: date,
) -> bool:
    """Whether a deduction applies to an invoice for period_ending.

    Args:
        frequency: once, weekly, fortnightly or monthly
        last_period_ending: Period ending of the latest invoice the
            deduction was applied to, or None if never applied
        period_ending: Period ending of the invoice being finalised

    A deduction that was never applied is always due. After that a one-off
    deduction is never due, and a recurring one is due once a full interval
    has passed since the last application.
    """
    if last_period_ending is None:
        return True
    next_due = next_due_date(last_period_ending, frequency)
    return next_due is not None and period_ending >= next_due
