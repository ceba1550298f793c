"""RCTI engine - recipient-created tax invoices and standing-deduction ledger."""

__version__ = "1.0.0"
