"""Invoice number generation."""

from __future__ import annotations

import re
from datetime import date
from typing import AbstractSet

PREFIX = "RCTI"
NAME_LENGTH = 10

_NON_ALNUM = re.compile(r"[^A-Z0-9]")


def base_invoice_number(period_ending: date, payee_name: str | None) -> str:
    """Deterministic number for a period and payee, e.g. RCTI-20012025-ACMETRANS."""
    name_part = _NON_ALNUM.sub("", (payee_name or "")[:NAME_LENGTH].upper())
    return f"{PREFIX}-{period_ending:%d%m%Y}-{name_part}"


def generate_invoice_number(
    existing_numbers: AbstractSet[str],
    period_ending: date,
    payee_name: str | None,
) -> str:
    """Return a number not present in existing_numbers.

    The base number is used when free, otherwise -1, -2, ... is appended.
    Uniqueness is only as good as the snapshot passed in; the unique
    constraint on invoice.invoice_number is the real guard.
    """
    base = base_invoice_number(period_ending, payee_name)
    if base not in existing_numbers:
        return base

    counter = 1
    while f"{base}-{counter}" in existing_numbers:
        counter += 1
    return f"{base}-{counter}"
