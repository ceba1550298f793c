"""Invoice calculation pipeline."""

from rcti_engine.calculators.amounts import TAX_RATE, compute_line_amounts, round_to_cents
from rcti_engine.calculators.break_lines import compute_break_lines, select_break_candidates
from rcti_engine.calculators.invoice_number import generate_invoice_number
from rcti_engine.calculators.rate_resolver import VehicleRateResolver
from rcti_engine.calculators.schedule import is_deduction_due, next_due_date
from rcti_engine.calculators.surcharges import compute_fuel_levy_line, compute_toll_lines
from rcti_engine.calculators.totals import compute_totals

__all__ = [
    "TAX_RATE",
    "compute_line_amounts",
    "round_to_cents",
    "compute_break_lines",
    "select_break_candidates",
    "generate_invoice_number",
    "VehicleRateResolver",
    "is_deduction_due",
    "next_due_date",
    "compute_fuel_levy_line",
    "compute_toll_lines",
    "compute_totals",
]
