"""Invoice lifecycle state machine with mutation validation."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, Mapping, Protocol

from rcti_engine.enums import InvoiceStatus
from rcti_engine.errors import StateConflictError, ValidationError


class FieldGroup(str, Enum):
    """Groups of invoice fields that share lifecycle rules."""

    STATUS = "status"
    TAX_SETTINGS = "tax_settings"
    LINES = "lines"
    DETAILS = "details"


class RejectionReason(str, Enum):
    """Codes naming the rule that blocked a mutation."""

    USE_FINALIZE_OPERATION = "use_finalize_operation"
    USE_PAY_OPERATION = "use_pay_operation"
    PAID_IS_IMMUTABLE = "paid_is_immutable"
    NO_REVERT_TO_DRAFT = "no_revert_to_draft"
    TAX_SETTINGS_LOCKED = "tax_settings_locked"
    LINES_LOCKED = "lines_locked"
    NOT_DRAFT = "not_draft"
    NO_LINES = "no_lines"
    NOT_FINALISED = "not_finalised"
    MUTATION_REJECTED = "mutation_rejected"


class SideEffect(str, Enum):
    """Work the caller must do after an allowed mutation."""

    RECOMPUTE_LINES = "recompute_lines"
    RECOMPUTE_TOTALS = "recompute_totals"


FIELD_GROUPS: dict[str, FieldGroup] = {
    "status": FieldGroup.STATUS,
    "tax_status": FieldGroup.TAX_SETTINGS,
    "tax_mode": FieldGroup.TAX_SETTINGS,
    "lines": FieldGroup.LINES,
    "driver_name": FieldGroup.DETAILS,
    "business_name": FieldGroup.DETAILS,
    "driver_address": FieldGroup.DETAILS,
    "driver_abn": FieldGroup.DETAILS,
    "bank_account_name": FieldGroup.DETAILS,
    "bank_bsb": FieldGroup.DETAILS,
    "bank_account_number": FieldGroup.DETAILS,
    "notes": FieldGroup.DETAILS,
}


@dataclass(frozen=True)
class Rule:
    """One cell of the lifecycle table."""

    allowed: bool
    reason: RejectionReason | None = None
    message: str | None = None
    effect: SideEffect | None = None


ALLOW = Rule(allowed=True)


def _deny(reason: RejectionReason, message: str) -> Rule:
    return Rule(allowed=False, reason=reason, message=message)


_USE_FINALIZE = _deny(
    RejectionReason.USE_FINALIZE_OPERATION,
    "Invoices can only be finalised through the finalise operation",
)
_USE_PAY = _deny(
    RejectionReason.USE_PAY_OPERATION,
    "Invoices can only be marked as paid through the pay operation",
)
_PAID_IMMUTABLE = _deny(
    RejectionReason.PAID_IS_IMMUTABLE,
    "Cannot change the status of a paid invoice",
)
_TAX_LOCKED = _deny(
    RejectionReason.TAX_SETTINGS_LOCKED,
    "GST status and mode can only be changed on draft invoices",
)
_LINES_LOCKED = _deny(
    RejectionReason.LINES_LOCKED,
    "Cannot change lines of a finalised or paid invoice",
)


@dataclass(frozen=True)
class MutationDecision:
    """Outcome of validating a mutation request."""

    allowed: bool
    reason: RejectionReason | None = None
    message: str | None = None
    side_effects: frozenset[SideEffect] = frozenset()

    @classmethod
    def ok(cls, side_effects: Iterable[SideEffect] = ()) -> MutationDecision:
        return cls(allowed=True, side_effects=frozenset(side_effects))

    @classmethod
    def rejected(cls, rule: Rule) -> MutationDecision:
        return cls(allowed=False, reason=rule.reason, message=rule.message)

    @property
    def requires_recompute(self) -> bool:
        return SideEffect.RECOMPUTE_LINES in self.side_effects


class HasStatus(Protocol):
    status: str


class InvoiceLifecycle:
    """State machine for invoice status and field mutability.

    Allowed transitions (dedicated operations only):
    - draft → finalised (finalise, applies standing deductions)
    - finalised → paid (pay, stamps paid_at)

    Paid is terminal. The generic update path never moves status; it may
    only re-state the current draft status.
    """

    VALID_TRANSITIONS: dict[InvoiceStatus, list[InvoiceStatus]] = {
        InvoiceStatus.DRAFT: [InvoiceStatus.FINALISED],
        InvoiceStatus.FINALISED: [InvoiceStatus.PAID],
        InvoiceStatus.PAID: [],  # Terminal state
    }

    # Generic update path: (current status, requested status) -> rule
    STATUS_RULES: dict[tuple[InvoiceStatus, InvoiceStatus], Rule] = {
        (InvoiceStatus.DRAFT, InvoiceStatus.DRAFT): ALLOW,
        (InvoiceStatus.DRAFT, InvoiceStatus.FINALISED): _USE_FINALIZE,
        (InvoiceStatus.DRAFT, InvoiceStatus.PAID): _USE_PAY,
        (InvoiceStatus.FINALISED, InvoiceStatus.DRAFT): _deny(
            RejectionReason.NO_REVERT_TO_DRAFT,
            "A finalised invoice cannot be returned to draft",
        ),
        (InvoiceStatus.FINALISED, InvoiceStatus.FINALISED): _USE_FINALIZE,
        (InvoiceStatus.FINALISED, InvoiceStatus.PAID): _USE_PAY,
        (InvoiceStatus.PAID, InvoiceStatus.DRAFT): _PAID_IMMUTABLE,
        (InvoiceStatus.PAID, InvoiceStatus.FINALISED): _PAID_IMMUTABLE,
        (InvoiceStatus.PAID, InvoiceStatus.PAID): _PAID_IMMUTABLE,
    }

    # Non-status field groups: (current status, field group) -> rule
    FIELD_RULES: dict[tuple[InvoiceStatus, FieldGroup], Rule] = {
        (InvoiceStatus.DRAFT, FieldGroup.TAX_SETTINGS): Rule(
            allowed=True, effect=SideEffect.RECOMPUTE_LINES
        ),
        (InvoiceStatus.FINALISED, FieldGroup.TAX_SETTINGS): _TAX_LOCKED,
        (InvoiceStatus.PAID, FieldGroup.TAX_SETTINGS): _TAX_LOCKED,
        (InvoiceStatus.DRAFT, FieldGroup.LINES): Rule(
            allowed=True, effect=SideEffect.RECOMPUTE_TOTALS
        ),
        (InvoiceStatus.FINALISED, FieldGroup.LINES): _LINES_LOCKED,
        (InvoiceStatus.PAID, FieldGroup.LINES): _LINES_LOCKED,
        (InvoiceStatus.DRAFT, FieldGroup.DETAILS): ALLOW,
        (InvoiceStatus.FINALISED, FieldGroup.DETAILS): ALLOW,
        (InvoiceStatus.PAID, FieldGroup.DETAILS): ALLOW,
    }

    # Order in which groups are evaluated; the first denial wins
    EVALUATION_ORDER = (
        FieldGroup.STATUS,
        FieldGroup.TAX_SETTINGS,
        FieldGroup.LINES,
        FieldGroup.DETAILS,
    )

    @staticmethod
    def parse_status(value: Any) -> InvoiceStatus:
        try:
            return InvoiceStatus(value)
        except ValueError:
            raise ValidationError(f"Unknown invoice status: {value!r}") from None

    @classmethod
    def can_transition(cls, from_status: Any, to_status: Any) -> bool:
        """Check if a dedicated-operation transition is valid."""
        allowed = cls.VALID_TRANSITIONS[cls.parse_status(from_status)]
        return cls.parse_status(to_status) in allowed

    @classmethod
    def is_editable(cls, status: str) -> bool:
        """Lines, totals and tax settings may change only in draft."""
        return InvoiceStatus(status) == InvoiceStatus.DRAFT

    @classmethod
    def group_fields(cls, requested_fields: Iterable[str]) -> set[FieldGroup]:
        """Map requested field names to their groups.

        Raises:
            ValidationError: If a field name is not a mutable invoice field
        """
        unknown = sorted(name for name in requested_fields if name not in FIELD_GROUPS)
        if unknown:
            raise ValidationError(
                f"Unknown invoice field(s): {', '.join(unknown)}",
                [f"Unknown invoice field: {name}" for name in unknown],
            )
        return {FIELD_GROUPS[name] for name in requested_fields}

    @classmethod
    def validate_mutation(
        cls,
        invoice: HasStatus,
        requested_fields: Mapping[str, Any],
    ) -> MutationDecision:
        """Validate a generic update request against the current status.

        Args:
            invoice: Current invoice (anything with a ``status``)
            requested_fields: Field name → requested value

        Returns:
            MutationDecision; when allowed, ``side_effects`` lists the
            recomputation the caller must perform.
        """
        current = cls.parse_status(invoice.status)
        groups = cls.group_fields(requested_fields)
        effects: set[SideEffect] = set()

        for group in cls.EVALUATION_ORDER:
            if group not in groups:
                continue
            if group == FieldGroup.STATUS:
                target = cls.parse_status(requested_fields["status"])
                rule = cls.STATUS_RULES[(current, target)]
            else:
                rule = cls.FIELD_RULES[(current, group)]

            if not rule.allowed:
                return MutationDecision.rejected(rule)
            if rule.effect is not None:
                effects.add(rule.effect)

        return MutationDecision.ok(effects)

    @classmethod
    def validate_finalize(cls, invoice: HasStatus, line_count: int) -> MutationDecision:
        """Validate the dedicated finalise operation."""
        if not cls.can_transition(invoice.status, InvoiceStatus.FINALISED):
            return MutationDecision.rejected(
                _deny(RejectionReason.NOT_DRAFT, "Only draft invoices can be finalised")
            )
        if line_count == 0:
            return MutationDecision.rejected(
                _deny(RejectionReason.NO_LINES, "Cannot finalise an invoice with no lines")
            )
        return MutationDecision.ok()

    @classmethod
    def validate_pay(cls, invoice: HasStatus) -> MutationDecision:
        """Validate the dedicated pay operation."""
        current = cls.parse_status(invoice.status)
        if current == InvoiceStatus.PAID:
            return MutationDecision.rejected(_PAID_IMMUTABLE)
        if not cls.can_transition(current, InvoiceStatus.PAID):
            return MutationDecision.rejected(
                _deny(
                    RejectionReason.NOT_FINALISED,
                    "Only finalised invoices can be marked as paid",
                )
            )
        return MutationDecision.ok()

    @staticmethod
    def require(decision: MutationDecision) -> MutationDecision:
        """Raise StateConflictError if the decision is a rejection."""
        if not decision.allowed:
            reason = (decision.reason or RejectionReason.MUTATION_REJECTED).value
            raise StateConflictError(reason, decision.message or reason)
        return decision

    @classmethod
    def require_mutation_allowed(
        cls,
        invoice: HasStatus,
        requested_fields: Mapping[str, Any],
    ) -> MutationDecision:
        """validate_mutation, raising StateConflictError on rejection."""
        return cls.require(cls.validate_mutation(invoice, requested_fields))
