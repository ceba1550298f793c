"""Status and classification values shared by models, schemas and services."""

from enum import Enum


class InvoiceStatus(str, Enum):
    """Invoice status values."""

    DRAFT = "draft"
    FINALISED = "finalised"
    PAID = "paid"


class DeductionKind(str, Enum):
    """Direction of a standing deduction."""

    DEDUCTION = "deduction"
    REIMBURSEMENT = "reimbursement"


class DeductionStatus(str, Enum):
    """Standing deduction status values."""

    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class DeductionFrequency(str, Enum):
    """How often a standing deduction falls due."""

    ONCE = "once"
    WEEKLY = "weekly"
    FORTNIGHTLY = "fortnightly"
    MONTHLY = "monthly"


class DriverType(str, Enum):
    """Engagement type of a driver; only contractors are invoiced."""

    EMPLOYEE = "employee"
    CONTRACTOR = "contractor"
    SUBCONTRACTOR = "subcontractor"
