"""RCTI engine services."""

from rcti_engine.services.state_machine import InvoiceLifecycle, MutationDecision, RejectionReason
from rcti_engine.services.deduction_ledger import ApplyResult, DeductionLedger
from rcti_engine.services.invoice_service import FinalizeResult, InvoiceService
from rcti_engine.services.deduction_service import DeductionService

__all__ = [
    "InvoiceLifecycle",
    "MutationDecision",
    "RejectionReason",
    "ApplyResult",
    "DeductionLedger",
    "FinalizeResult",
    "InvoiceService",
    "DeductionService",
]
