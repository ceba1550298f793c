"""ORM models."""

from rcti_engine.models.base import Base, TimestampMixin
from rcti_engine.models.deduction import DeductionApplication, StandingDeduction
from rcti_engine.models.driver import Driver
from rcti_engine.models.invoice import Invoice, InvoiceLine, InvoiceStatusChange

__all__ = [
    "Base",
    "TimestampMixin",
    "DeductionApplication",
    "Driver",
    "Invoice",
    "InvoiceLine",
    "InvoiceStatusChange",
    "StandingDeduction",
]
