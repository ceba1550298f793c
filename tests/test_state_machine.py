"""Tests for the invoice lifecycle state machine."""

from types import SimpleNamespace

import pytest

from rcti_engine.errors import StateConflictError, ValidationError
from rcti_engine.services.state_machine import (
    InvoiceLifecycle,
    InvoiceStatus,
    MutationDecision,
    RejectionReason,
    SideEffect,
)


def invoice(status: str) -> SimpleNamespace:
    return SimpleNamespace(status=status)


ALL_STATUSES = ["draft", "finalised", "paid"]


class TestDedicatedTransitions:
    """Test transitions made by finalise and pay."""

    def test_valid_transitions(self):
        assert InvoiceLifecycle.can_transition("draft", "finalised") is True
        assert InvoiceLifecycle.can_transition("finalised", "paid") is True

    def test_invalid_transitions(self):
        # Can't skip finalisation
        assert InvoiceLifecycle.can_transition("draft", "paid") is False

        # No way back to draft
        assert InvoiceLifecycle.can_transition("finalised", "draft") is False
        assert InvoiceLifecycle.can_transition("paid", "draft") is False

        # Paid is terminal
        assert InvoiceLifecycle.VALID_TRANSITIONS[InvoiceStatus.PAID] == []

    def test_unknown_status_in_transition(self):
        with pytest.raises(ValidationError):
            InvoiceLifecycle.can_transition("void", "paid")

    def test_dedicated_checks_follow_transition_table(self, monkeypatch):
        monkeypatch.setitem(
            InvoiceLifecycle.VALID_TRANSITIONS, InvoiceStatus.DRAFT, [InvoiceStatus.PAID]
        )

        assert InvoiceLifecycle.validate_pay(invoice("draft")).allowed is True
        decision = InvoiceLifecycle.validate_finalize(invoice("draft"), line_count=1)
        assert decision.reason == RejectionReason.NOT_DRAFT

    def test_finalize_requires_draft(self):
        decision = InvoiceLifecycle.validate_finalize(invoice("finalised"), line_count=3)

        assert decision.allowed is False
        assert decision.reason == RejectionReason.NOT_DRAFT

    def test_finalize_requires_lines(self):
        decision = InvoiceLifecycle.validate_finalize(invoice("draft"), line_count=0)

        assert decision.allowed is False
        assert decision.reason == RejectionReason.NO_LINES

    def test_finalize_allowed(self):
        assert InvoiceLifecycle.validate_finalize(invoice("draft"), line_count=1).allowed is True

    @pytest.mark.parametrize(
        "status,reason",
        [("draft", RejectionReason.NOT_FINALISED), ("paid", RejectionReason.PAID_IS_IMMUTABLE)],
    )
    def test_pay_requires_finalised(self, status, reason):
        decision = InvoiceLifecycle.validate_pay(invoice(status))

        assert decision.allowed is False
        assert decision.reason == reason

    def test_pay_allowed(self):
        assert InvoiceLifecycle.validate_pay(invoice("finalised")).allowed is True


class TestStatusMutation:
    """Status changes through the generic update path."""

    @pytest.mark.parametrize("current", ["draft", "finalised"])
    def test_finalised_via_generic_update_rejected(self, current):
        decision = InvoiceLifecycle.validate_mutation(invoice(current), {"status": "finalised"})

        assert decision.allowed is False
        assert decision.reason == RejectionReason.USE_FINALIZE_OPERATION

    @pytest.mark.parametrize("current", ["draft", "finalised"])
    def test_paid_via_generic_update_rejected(self, current):
        decision = InvoiceLifecycle.validate_mutation(invoice(current), {"status": "paid"})

        assert decision.allowed is False
        assert decision.reason == RejectionReason.USE_PAY_OPERATION

    @pytest.mark.parametrize("target", ALL_STATUSES)
    def test_paid_is_immutable(self, target):
        """Any status write on a paid invoice is refused, even re-setting paid."""
        decision = InvoiceLifecycle.validate_mutation(invoice("paid"), {"status": target})

        assert decision.allowed is False
        assert decision.reason == RejectionReason.PAID_IS_IMMUTABLE

    def test_no_revert_to_draft(self):
        decision = InvoiceLifecycle.validate_mutation(invoice("finalised"), {"status": "draft"})

        assert decision.allowed is False
        assert decision.reason == RejectionReason.NO_REVERT_TO_DRAFT

    def test_draft_to_draft_is_noop(self):
        decision = InvoiceLifecycle.validate_mutation(invoice("draft"), {"status": "draft"})

        assert decision.allowed is True
        assert decision.side_effects == frozenset()

    def test_unknown_status_is_malformed(self):
        with pytest.raises(ValidationError):
            InvoiceLifecycle.validate_mutation(invoice("draft"), {"status": "void"})


class TestFieldMutation:
    """Tax settings, lines and details."""

    @pytest.mark.parametrize("field", ["tax_status", "tax_mode"])
    def test_tax_settings_on_draft_recompute(self, field):
        decision = InvoiceLifecycle.validate_mutation(invoice("draft"), {field: "x"})

        assert decision.allowed is True
        assert SideEffect.RECOMPUTE_LINES in decision.side_effects
        assert decision.requires_recompute

    @pytest.mark.parametrize("current", ["finalised", "paid"])
    @pytest.mark.parametrize("field", ["tax_status", "tax_mode"])
    def test_tax_settings_locked(self, current, field):
        decision = InvoiceLifecycle.validate_mutation(invoice(current), {field: "x"})

        assert decision.allowed is False
        assert decision.reason == RejectionReason.TAX_SETTINGS_LOCKED
        assert "draft" in decision.message

    @pytest.mark.parametrize("current", ["finalised", "paid"])
    def test_lines_locked(self, current):
        decision = InvoiceLifecycle.validate_mutation(invoice(current), {"lines": []})

        assert decision.allowed is False
        assert decision.reason == RejectionReason.LINES_LOCKED

    @pytest.mark.parametrize("current", ALL_STATUSES)
    def test_details_always_allowed(self, current):
        decision = InvoiceLifecycle.validate_mutation(
            invoice(current),
            {"notes": "Paid by EFT", "bank_bsb": "063-001", "driver_address": "2 Depot St"},
        )

        assert decision.allowed is True

    def test_paid_rule_takes_precedence(self):
        """A combined request reports the status rule, not the tax rule."""
        decision = InvoiceLifecycle.validate_mutation(
            invoice("paid"), {"status": "paid", "tax_mode": "inclusive"}
        )

        assert decision.reason == RejectionReason.PAID_IS_IMMUTABLE

    def test_one_denied_field_blocks_the_request(self):
        decision = InvoiceLifecycle.validate_mutation(
            invoice("finalised"), {"notes": "ok", "tax_status": "registered"}
        )

        assert decision.allowed is False

    def test_unknown_field_is_malformed(self):
        with pytest.raises(ValidationError, match="invoice_number"):
            InvoiceLifecycle.validate_mutation(invoice("draft"), {"invoice_number": "X"})


class TestRequire:
    """Rejections raise StateConflictError carrying the reason."""

    def test_raises_with_reason(self):
        with pytest.raises(StateConflictError) as exc_info:
            InvoiceLifecycle.require_mutation_allowed(invoice("paid"), {"status": "draft"})

        assert exc_info.value.reason == RejectionReason.PAID_IS_IMMUTABLE.value
        assert "paid" in exc_info.value.message

    def test_rejection_without_reason_still_coded(self):
        with pytest.raises(StateConflictError) as exc_info:
            InvoiceLifecycle.require(MutationDecision(allowed=False))

        assert exc_info.value.reason == RejectionReason.MUTATION_REJECTED.value

    def test_returns_decision_when_allowed(self):
        decision = InvoiceLifecycle.require_mutation_allowed(invoice("draft"), {"tax_mode": "inclusive"})

        assert decision.allowed is True

    def test_status_enum_values(self):
        assert [s.value for s in InvoiceStatus] == ALL_STATUSES
