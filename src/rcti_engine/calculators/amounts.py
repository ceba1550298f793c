"""Line amount calculation under GST-exclusive and GST-inclusive rates."""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Union

from rcti_engine.calculators.types import LineAmounts, TaxMode, TaxStatus
from rcti_engine.errors import ValidationError

TAX_RATE = Decimal("0.10")
CENTS = Decimal("0.01")

Number = Union[Decimal, int, str, float]


def round_to_cents(amount: Decimal) -> Decimal:
    """Round amount to 2 decimal places, half-up."""
    return amount.quantize(CENTS, rounding=ROUND_HALF_UP)


def to_decimal(value: Number, field_name: str = "value") -> Decimal:
    """Coerce a numeric input to Decimal.

    Floats go through str() so 85.1 becomes Decimal("85.1"), not the
    binary expansion.
    """
    if isinstance(value, bool):
        raise ValidationError(f"{field_name} must be numeric, got bool")
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, (int, str)):
        try:
            result = Decimal(value)
        except InvalidOperation:
            raise ValidationError(f"{field_name} is not a number: {value!r}") from None
    elif isinstance(value, float):
        result = Decimal(str(value))
    else:
        raise ValidationError(f"{field_name} must be numeric, got {type(value).__name__}")

    if not result.is_finite():
        raise ValidationError(f"{field_name} must be finite, got {value!r}")
    return result


def parse_tax_status(value: TaxStatus | str) -> TaxStatus:
    try:
        return TaxStatus(value)
    except ValueError:
        raise ValidationError(f"Unknown tax status: {value!r}") from None


def parse_tax_mode(value: TaxMode | str) -> TaxMode:
    try:
        return TaxMode(value)
    except ValueError:
        raise ValidationError(f"Unknown tax mode: {value!r}") from None


def compute_line_amounts(
    units: Number,
    rate: Number,
    tax_status: TaxStatus | str,
    tax_mode: TaxMode | str,
) -> LineAmounts:
    """Compute the ex-tax / tax / inc-tax split for units x rate.

    - Not registered: no GST, ex-tax equals inc-tax.
    - Exclusive: the rate excludes GST, 10% is added on top.
    - Inclusive: the rate includes GST, ex-tax is backed out of it.

    Units may be negative (break deductions) and so may the rate
    (clawbacks); the same rules apply to the signed product.
    """
    status = parse_tax_status(tax_status)
    mode = parse_tax_mode(tax_mode)
    gross = round_to_cents(to_decimal(units, "units") * to_decimal(rate, "rate"))

    if status == TaxStatus.NOT_REGISTERED:
        return LineAmounts(ex_tax=gross, tax=round_to_cents(Decimal("0")), inc_tax=gross)

    if mode == TaxMode.EXCLUSIVE:
        ex_tax = gross
        tax = round_to_cents(ex_tax * TAX_RATE)
        return LineAmounts(ex_tax=ex_tax, tax=tax, inc_tax=ex_tax + tax)

    inc_tax = gross
    ex_tax = round_to_cents(inc_tax / (Decimal("1") + TAX_RATE))
    return LineAmounts(ex_tax=ex_tax, tax=inc_tax - ex_tax, inc_tax=inc_tax)
