"""Error taxonomy for invoice and ledger operations."""

from __future__ import annotations

from typing import Any


class RctiError(Exception):
    """Base class for all engine errors."""


class ValidationError(RctiError):
    """Raised when input is malformed or out of range.

    Rejected before any computation or write happens.
    """

    def __init__(self, message: str, errors: list[str] | None = None):
        self.errors = errors or [message]
        super().__init__(message)


class NotFoundError(RctiError):
    """Raised when a referenced record does not exist."""

    def __init__(self, entity: str, entity_id: Any):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} not found")


class StateConflictError(RctiError):
    """Raised when a lifecycle or ledger rule blocks a mutation.

    ``reason`` is the machine-readable code of the rule that fired.
    """

    def __init__(self, reason: str, message: str):
        self.reason = reason
        self.message = message
        super().__init__(f"{message} ({reason})")


class PersistenceError(RctiError):
    """Raised when the record store fails; the unit of work is aborted."""

    def __init__(self, operation: str, cause: Exception):
        self.operation = operation
        self.cause = cause
        super().__init__(f"Storage failure during {operation}: {cause}")
