"""Pydantic schemas for invoice and deduction mutation payloads."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Any, Mapping, TypeVar
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from rcti_engine.calculators.types import TaxMode, TaxStatus
from rcti_engine.enums import DeductionFrequency, DeductionKind, InvoiceStatus
from rcti_engine.errors import ValidationError

Money = Decimal
SchemaT = TypeVar("SchemaT", bound=BaseModel)


class PayloadBase(BaseModel):
    """Base for mutation payloads; unknown keys are rejected."""

    model_config = ConfigDict(extra="forbid")


# ============================================================================
# Invoice schemas
# ============================================================================


class InvoiceUpdate(PayloadBase):
    """Fields accepted by the generic invoice update."""

    status: InvoiceStatus | None = None
    tax_status: TaxStatus | None = None
    tax_mode: TaxMode | None = None

    driver_name: str | None = Field(default=None, min_length=1)
    business_name: str | None = None
    driver_address: str | None = None
    driver_abn: str | None = None
    bank_account_name: str | None = None
    bank_bsb: str | None = None
    bank_account_number: str | None = None
    notes: str | None = None

    @field_validator("status", "tax_status", "tax_mode", "driver_name")
    @classmethod
    def _not_null(cls, value: Any) -> Any:
        if value is None:
            raise ValueError("may not be null")
        return value

    def requested_fields(self) -> dict[str, Any]:
        """Only the fields the caller actually sent."""
        return self.model_dump(exclude_unset=True)


class LineInput(PayloadBase):
    """A manual invoice line."""

    units: Decimal = Field(max_digits=12, decimal_places=4)
    unit_rate: Decimal = Field(max_digits=12, decimal_places=4)
    line_date: date | None = None
    category: str | None = None
    description: str | None = None


class LineUpdate(PayloadBase):
    """Changes to an existing invoice line."""

    units: Decimal | None = Field(default=None, max_digits=12, decimal_places=4)
    unit_rate: Decimal | None = Field(default=None, max_digits=12, decimal_places=4)
    line_date: date | None = None
    category: str | None = None
    description: str | None = None

    @field_validator("units", "unit_rate")
    @classmethod
    def _not_null(cls, value: Decimal | None) -> Decimal | None:
        if value is None:
            raise ValueError("may not be null")
        return value


# ============================================================================
# Deduction schemas
# ============================================================================


class DeductionCreate(PayloadBase):
    """A new standing deduction or reimbursement."""

    driver_id: UUID
    kind: DeductionKind
    description: str = Field(min_length=1)
    total_amount: Money = Field(gt=0, max_digits=12, decimal_places=2)
    amount_per_cycle: Money | None = Field(default=None, gt=0, max_digits=12, decimal_places=2)
    frequency: DeductionFrequency = DeductionFrequency.WEEKLY
    start_date: date
    notes: str | None = None

    @model_validator(mode="after")
    def _default_per_cycle(self) -> DeductionCreate:
        if self.amount_per_cycle is None:
            self.amount_per_cycle = self.total_amount
        return self


class DeductionUpdate(PayloadBase):
    """Administrative changes to a standing deduction."""

    description: str | None = Field(default=None, min_length=1)
    total_amount: Money | None = Field(default=None, gt=0, max_digits=12, decimal_places=2)
    amount_per_cycle: Money | None = Field(default=None, gt=0, max_digits=12, decimal_places=2)
    frequency: DeductionFrequency | None = None
    start_date: date | None = None
    notes: str | None = None

    @field_validator("description", "total_amount", "amount_per_cycle", "frequency", "start_date")
    @classmethod
    def _not_null(cls, value: Any) -> Any:
        if value is None:
            raise ValueError("may not be null")
        return value

    def requested_fields(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True)


def parse_payload(schema: type[SchemaT], data: Mapping[str, Any] | SchemaT) -> SchemaT:
    """Validate a payload, translating pydantic errors into ValidationError."""
    if isinstance(data, schema):
        return data
    try:
        return schema.model_validate(data)
    except PydanticValidationError as e:
        messages = [
            f"{'.'.join(str(part) for part in err['loc']) or schema.__name__}: {err['msg']}"
            for err in e.errors()
        ]
        raise ValidationError(f"Invalid {schema.__name__}: {'; '.join(messages)}", messages) from None
