"""Administrative edits of standing deductions."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Mapping
from uuid import UUID

from sqlalchemy import exists, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from rcti_engine.calculators.types import ZERO
from rcti_engine.database import storage_errors
from rcti_engine.enums import DeductionStatus
from rcti_engine.errors import NotFoundError, StateConflictError
from rcti_engine.models import DeductionApplication, Driver, StandingDeduction
from rcti_engine.schemas import DeductionCreate, DeductionUpdate, parse_payload

logger = logging.getLogger(__name__)

DEDUCTION_ALREADY_APPLIED = "deduction_already_applied"
CONCURRENT_MODIFICATION = "concurrent_modification"


class DeductionService:
    """Create, edit and cancel standing deductions.

    Edits never bypass the ledger: once a deduction has been applied its
    total is frozen, and any write to amount_remaining uses the same
    compare-and-swap the ledger uses.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_deduction(self, deduction_id: UUID) -> StandingDeduction:
        deduction = await self.session.get(StandingDeduction, deduction_id)
        if deduction is None:
            raise NotFoundError("StandingDeduction", deduction_id)
        return deduction

    async def has_applications(self, deduction_id: UUID) -> bool:
        result = await self.session.execute(
            select(exists().where(DeductionApplication.deduction_id == deduction_id))
        )
        return bool(result.scalar())

    async def create_deduction(
        self,
        payload: DeductionCreate | Mapping[str, Any],
    ) -> StandingDeduction:
        """Create an active standing deduction.

        amount_per_cycle defaults to the total (a one-off charge).
        """
        data = parse_payload(DeductionCreate, payload)
        if await self.session.get(Driver, data.driver_id) is None:
            raise NotFoundError("Driver", data.driver_id)

        deduction = StandingDeduction(
            driver_id=data.driver_id,
            kind=data.kind.value,
            description=data.description,
            total_amount=data.total_amount,
            amount_paid=ZERO,
            amount_remaining=data.total_amount,
            amount_per_cycle=data.amount_per_cycle,
            frequency=data.frequency.value,
            start_date=data.start_date,
            status=DeductionStatus.ACTIVE.value,
            notes=data.notes,
        )
        with storage_errors("create_deduction"):
            self.session.add(deduction)
            await self.session.flush()

        logger.info(
            "Created %s %s for driver %s: total %s, %s per cycle",
            deduction.kind,
            deduction.deduction_id,
            deduction.driver_id,
            deduction.total_amount,
            deduction.amount_per_cycle,
        )
        return deduction

    async def update_deduction(
        self,
        deduction_id: UUID,
        changes: DeductionUpdate | Mapping[str, Any],
    ) -> StandingDeduction:
        """Edit a standing deduction.

        Raises:
            ValidationError: If the payload is malformed
            StateConflictError: If the total changes after an application
                (deduction_already_applied) or the ledger moved underneath
                this edit (concurrent_modification)
        """
        requested = parse_payload(DeductionUpdate, changes).requested_fields()
        deduction = await self.get_deduction(deduction_id)
        # Work from the stored values, not whatever the identity map holds
        await self.session.refresh(deduction)

        new_total = requested.pop("total_amount", None)
        total_changed = new_total is not None and new_total != deduction.total_amount

        values = {
            name: value.value if isinstance(value, Enum) else value
            for name, value in requested.items()
        }

        with storage_errors("update_deduction"):
            if total_changed:
                if await self.has_applications(deduction_id):
                    raise StateConflictError(
                        DEDUCTION_ALREADY_APPLIED,
                        "Cannot change the total of a deduction that has already been applied",
                    )
                await self._swap_total(deduction, new_total, values)
            elif values:
                for name, value in values.items():
                    setattr(deduction, name, value)
                await self.session.flush()

        return deduction

    async def _swap_total(
        self,
        deduction: StandingDeduction,
        new_total: Any,
        values: dict[str, Any],
    ) -> None:
        """Rewrite total and remaining guarded by the remaining read earlier."""
        expected_remaining = deduction.amount_remaining
        new_remaining = new_total - deduction.amount_paid
        if new_remaining < 0:
            raise StateConflictError(
                DEDUCTION_ALREADY_APPLIED,
                "New total is below the amount already paid",
            )

        result = await self.session.execute(
            update(StandingDeduction)
            .where(
                StandingDeduction.deduction_id == deduction.deduction_id,
                StandingDeduction.amount_remaining == expected_remaining,
            )
            .values(total_amount=new_total, amount_remaining=new_remaining, **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise StateConflictError(
                CONCURRENT_MODIFICATION,
                f"Standing deduction {deduction.deduction_id} changed while being edited",
            )
        await self.session.refresh(deduction)

    async def cancel_deduction(self, deduction_id: UUID) -> StandingDeduction | None:
        """Cancel a standing deduction.

        Deletes it outright when it was never applied; otherwise the record
        is kept for the ledger and marked cancelled. Returns the cancelled
        record, or None when it was deleted.
        """
        deduction = await self.get_deduction(deduction_id)

        with storage_errors("cancel_deduction"):
            if not await self.has_applications(deduction_id):
                await self.session.delete(deduction)
                await self.session.flush()
                logger.info("Deleted unapplied standing deduction %s", deduction_id)
                return None

            deduction.status = DeductionStatus.CANCELLED.value
            await self.session.flush()

        logger.info("Cancelled standing deduction %s", deduction_id)
        return deduction
