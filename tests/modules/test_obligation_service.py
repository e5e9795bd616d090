"""
Integration tests for ObligationService.

Covers the full obligation lifecycle against a real database session:
creation and fee computation, duplicate prevention, submission, payment,
late fees, adjustments, disputes, cancellation, refunds, attachments, line items and
overdue notification.
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from franchise_engines.periods import BillingFrequency
from franchise_kernel.exceptions import (
    DuplicateObligationError,
    FranchiseNotFoundError,
    InvalidStateTransitionError,
    LateFeeAlreadyAppliedError,
    ObligationNotFoundError,
    UnitNotFoundError,
    ValidationError,
)
from franchise_modules.obligations.events import (
    OBLIGATION_CANCELLED,
    OBLIGATION_CREATED,
    OBLIGATION_DISPUTED,
    OBLIGATION_OVERDUE,
    OBLIGATION_PAID,
    OBLIGATION_REFUNDED,
)
from franchise_modules.obligations.models import (
    LedgerEntryType,
    ObligationKind,
    ObligationStatus,
    PaymentMethod,
    PaymentStatus,
)
from franchise_modules.obligations.selectors import ObligationSelector


def _make_overdue(clock):
    """Move the clock past the March due date (2024-04-15)."""
    clock.set_time(datetime(2024, 4, 20, 9, 0, 0, tzinfo=timezone.utc))


class TestCreateObligation:
    """Creation computes fees, period, due date and numbering."""

    def test_royalty_amounts(self, obligation_service, royalty_input, test_actor_id):
        obligation = obligation_service.create_obligation(royalty_input(), test_actor_id)

        assert obligation.kind == ObligationKind.ROYALTY
        assert obligation.royalty_amount == Decimal("8000.00")
        assert obligation.marketing_fee_amount == Decimal("2000.00")
        assert obligation.technology_fee_amount == Decimal("50.00")
        assert obligation.subtotal_amount == Decimal("10050.00")
        assert obligation.total_amount == Decimal("10050.00")
        assert obligation.late_fee == Decimal("0")

    def test_period_and_due_date(self, obligation_service, royalty_input, test_actor_id):
        obligation = obligation_service.create_obligation(royalty_input(), test_actor_id)

        assert obligation.period_start_date == date(2024, 3, 1)
        assert obligation.period_end_date == date(2024, 3, 31)
        assert obligation.due_date == date(2024, 4, 15)
        assert obligation.period_description == "March 2024"

    def test_defaults(self, obligation_service, royalty_input, test_actor_id):
        obligation = obligation_service.create_obligation(royalty_input(), test_actor_id)

        assert obligation.status == ObligationStatus.PENDING
        assert obligation.payment_status == PaymentStatus.PENDING
        assert obligation.currency == "SAR"
        assert obligation.is_reversal is False
        assert obligation.formatted_total == "SAR 10,050.00"

    def test_number_format(self, obligation_service, royalty_input, test_actor_id):
        first = obligation_service.create_obligation(royalty_input(), test_actor_id)
        second = obligation_service.create_obligation(
            royalty_input(period_month=4), test_actor_id
        )

        assert first.obligation_number.startswith("ROY202404")
        assert len(first.obligation_number) == len("ROY2024040001")
        assert first.obligation_number != second.obligation_number

    def test_revenue_bills_gross(self, obligation_service, revenue_input, test_actor_id):
        obligation = obligation_service.create_obligation(revenue_input(), test_actor_id)

        assert obligation.obligation_number.startswith("REV")
        assert obligation.subtotal_amount == Decimal("25000.00")
        assert obligation.total_amount == Decimal("25000.00")
        assert obligation.royalty_amount == Decimal("0")

    def test_revenue_bills_net_of_discount_and_tax(
        self, obligation_service, revenue_input, test_actor_id
    ):
        obligation = obligation_service.create_obligation(
            revenue_input(discount_amount=Decimal("1000"), tax_amount=Decimal("3600")),
            test_actor_id,
        )

        assert obligation.discount_amount == Decimal("1000.00")
        assert obligation.tax_amount == Decimal("3600.00")
        assert obligation.net_amount == Decimal("27600.00")
        assert obligation.subtotal_amount == Decimal("27600.00")
        assert obligation.total_amount == Decimal("27600.00")
        assert obligation.gross_amount == Decimal("25000.00")

    def test_royalty_net_is_gross(self, obligation_service, royalty_input, test_actor_id):
        obligation = obligation_service.create_obligation(royalty_input(), test_actor_id)

        assert obligation.net_amount == Decimal("100000.00")
        assert obligation.tax_amount == Decimal("0")
        assert obligation.discount_amount == Decimal("0")

    def test_technology_fee_defaults_to_policy(
        self, obligation_service, royalty_input, test_actor_id
    ):
        obligation = obligation_service.create_obligation(
            royalty_input(technology_fee_amount=None), test_actor_id
        )

        assert obligation.technology_fee_amount == Decimal("50.00")

    def test_franchise_grace_period_override(
        self, obligation_service, create_franchise, create_unit, royalty_input, test_actor_id
    ):
        franchise = create_franchise(grace_period_days=30)
        unit = create_unit(franchise)

        obligation = obligation_service.create_obligation(
            royalty_input(franchise_id=franchise.id, unit_id=unit.id), test_actor_id
        )

        assert obligation.due_date == date(2024, 4, 30)

    def test_explicit_due_date(self, obligation_service, royalty_input, test_actor_id):
        obligation = obligation_service.create_obligation(
            royalty_input(due_date=date(2024, 4, 5)), test_actor_id
        )

        assert obligation.due_date == date(2024, 4, 5)

    def test_quarterly_period(self, obligation_service, royalty_input, test_actor_id):
        obligation = obligation_service.create_obligation(
            royalty_input(
                billing_frequency=BillingFrequency.QUARTERLY,
                period_month=None,
                period_quarter=1,
            ),
            test_actor_id,
        )

        assert obligation.period_start_date == date(2024, 1, 1)
        assert obligation.period_end_date == date(2024, 3, 31)
        assert obligation.period_description == "Q1 2024"

    def test_party_defaults_to_franchisee(
        self, obligation_service, create_franchise, create_unit, royalty_input, test_actor_id
    ):
        franchisee_id = uuid4()
        franchise = create_franchise(franchisee_id=franchisee_id)
        unit = create_unit(franchise)

        obligation = obligation_service.create_obligation(
            royalty_input(franchise_id=franchise.id, unit_id=unit.id), test_actor_id
        )

        assert obligation.party_id == franchisee_id

    def test_publishes_created(
        self, obligation_service, royalty_input, test_actor_id, published_events
    ):
        _, events = published_events

        obligation = obligation_service.create_obligation(royalty_input(), test_actor_id)

        assert [e.event_type for e in events] == [OBLIGATION_CREATED]
        assert events[0].obligation_id == obligation.id

    def test_unknown_franchise(self, obligation_service, royalty_input, test_actor_id):
        with pytest.raises(FranchiseNotFoundError):
            obligation_service.create_obligation(
                royalty_input(franchise_id=uuid4(), unit_id=None), test_actor_id
            )

    def test_unit_of_other_franchise(
        self, obligation_service, create_franchise, create_unit, royalty_input, test_actor_id
    ):
        other_unit = create_unit(create_franchise())

        with pytest.raises(UnitNotFoundError):
            obligation_service.create_obligation(
                royalty_input(unit_id=other_unit.id), test_actor_id
            )


class TestDuplicatePrevention:
    """At most one live record per (kind, scope, period)."""

    def test_second_create_rejected(self, obligation_service, royalty_input, test_actor_id):
        first = obligation_service.create_obligation(royalty_input(), test_actor_id)

        with pytest.raises(DuplicateObligationError) as exc_info:
            obligation_service.create_obligation(royalty_input(), test_actor_id)

        assert exc_info.value.existing_id == str(first.id)

    def test_other_kind_allowed(
        self, obligation_service, royalty_input, revenue_input, test_actor_id
    ):
        obligation_service.create_obligation(royalty_input(), test_actor_id)
        revenue = obligation_service.create_obligation(revenue_input(), test_actor_id)

        assert revenue.kind == ObligationKind.REVENUE

    def test_other_unit_allowed(
        self, obligation_service, create_unit, franchise, royalty_input, test_actor_id
    ):
        obligation_service.create_obligation(royalty_input(), test_actor_id)
        second_unit = create_unit(franchise)

        other = obligation_service.create_obligation(
            royalty_input(unit_id=second_unit.id), test_actor_id
        )

        assert other.unit_id == second_unit.id

    def test_cancel_frees_period(self, obligation_service, royalty_input, test_actor_id):
        first = obligation_service.create_obligation(royalty_input(), test_actor_id)
        obligation_service.cancel(first.id, test_actor_id, reason="wrong revenue figure")

        rebilled = obligation_service.create_obligation(
            royalty_input(gross_amount=Decimal("90000")), test_actor_id
        )

        assert rebilled.total_amount == Decimal("9050.00")


class TestSubmit:

    def test_draft_to_pending(self, obligation_service, royalty_input, test_actor_id):
        draft = obligation_service.create_obligation(
            royalty_input(status=ObligationStatus.DRAFT), test_actor_id
        )

        submitted = obligation_service.submit(draft.id, test_actor_id)

        assert draft.status == ObligationStatus.DRAFT
        assert submitted.status == ObligationStatus.PENDING

    def test_pending_cannot_submit(self, obligation_service, royalty_input, test_actor_id):
        obligation = obligation_service.create_obligation(royalty_input(), test_actor_id)

        with pytest.raises(InvalidStateTransitionError):
            obligation_service.submit(obligation.id, test_actor_id)


class TestMarkPaid:
    """Payment recording."""

    def test_pending_to_paid(self, obligation_service, royalty_input, test_actor_id, clock):
        obligation = obligation_service.create_obligation(royalty_input(), test_actor_id)

        paid = obligation_service.mark_paid(
            obligation.id, PaymentMethod.BANK_TRANSFER, "TRX-1", test_actor_id
        )

        assert paid.status == ObligationStatus.PAID
        assert paid.payment_status == PaymentStatus.COMPLETED
        assert paid.payment_method == PaymentMethod.BANK_TRANSFER
        assert paid.payment_reference == "TRX-1"
        assert paid.paid_date == clock.today()
        assert paid.is_paid

    def test_overdue_can_be_paid(self, obligation_service, royalty_input, test_actor_id, clock):
        obligation = obligation_service.create_obligation(royalty_input(), test_actor_id)
        _make_overdue(clock)

        paid = obligation_service.mark_paid(obligation.id, "cash", None, test_actor_id)

        assert paid.status == ObligationStatus.PAID

    def test_writes_payment_ledger_entry(
        self, obligation_service, royalty_input, test_actor_id, session
    ):
        obligation = obligation_service.create_obligation(royalty_input(), test_actor_id)
        obligation_service.mark_paid(obligation.id, "wire", "W-77", test_actor_id)

        entries = ObligationSelector(session).ledger_entries(obligation.id)

        assert len(entries) == 1
        assert entries[0].entry_type == LedgerEntryType.PAYMENT
        assert entries[0].amount == Decimal("10050.00")
        assert entries[0].entry_number.startswith("LED")
        assert entries[0].reference == "W-77"

    def test_ledger_numbers_separate_from_transactions(
        self, obligation_service, revenue_input, test_actor_id, session
    ):
        obligation = obligation_service.create_obligation(
            revenue_input(kind=ObligationKind.TRANSACTION), test_actor_id
        )
        obligation_service.mark_paid(obligation.id, "cash", None, test_actor_id)

        entries = ObligationSelector(session).ledger_entries(obligation.id)

        assert obligation.obligation_number == "TXN2024040001"
        assert entries[0].entry_number == "LED2024040001"

    def test_publishes_paid(
        self, obligation_service, royalty_input, test_actor_id, published_events
    ):
        _, events = published_events
        obligation = obligation_service.create_obligation(royalty_input(), test_actor_id)

        obligation_service.mark_paid(obligation.id, "ach", None, test_actor_id)

        assert events[-1].event_type == OBLIGATION_PAID
        assert events[-1].payload["amount"] == "10050.00"

    def test_paid_cannot_be_paid_again(
        self, obligation_service, royalty_input, test_actor_id
    ):
        obligation = obligation_service.create_obligation(royalty_input(), test_actor_id)
        obligation_service.mark_paid(obligation.id, "cash", None, test_actor_id)

        with pytest.raises(InvalidStateTransitionError):
            obligation_service.mark_paid(obligation.id, "cash", None, test_actor_id)

    def test_draft_cannot_be_paid(self, obligation_service, royalty_input, test_actor_id):
        draft = obligation_service.create_obligation(
            royalty_input(status="draft"), test_actor_id
        )

        with pytest.raises(InvalidStateTransitionError):
            obligation_service.mark_paid(draft.id, "cash", None, test_actor_id)

    def test_unknown_payment_method(self, obligation_service, royalty_input, test_actor_id):
        obligation = obligation_service.create_obligation(royalty_input(), test_actor_id)

        with pytest.raises(ValidationError):
            obligation_service.mark_paid(obligation.id, "barter", None, test_actor_id)

    def test_unknown_obligation(self, obligation_service, test_actor_id):
        with pytest.raises(ObligationNotFoundError):
            obligation_service.mark_paid(uuid4(), "cash", None, test_actor_id)


class TestLateFee:
    """Late fee charged once on overdue obligations."""

    def test_applied_when_overdue(self, obligation_service, royalty_input, test_actor_id, clock):
        obligation = obligation_service.create_obligation(royalty_input(), test_actor_id)
        _make_overdue(clock)

        charged = obligation_service.calculate_late_fee(obligation.id, test_actor_id)

        assert charged.late_fee == Decimal("502.50")
        assert charged.total_amount == Decimal("10552.50")
        assert charged.effective_status(clock.today()) == ObligationStatus.OVERDUE

    def test_second_application_rejected_and_total_unchanged(
        self, obligation_service, royalty_input, test_actor_id, clock
    ):
        obligation = obligation_service.create_obligation(royalty_input(), test_actor_id)
        _make_overdue(clock)
        obligation_service.calculate_late_fee(obligation.id, test_actor_id)

        with pytest.raises(LateFeeAlreadyAppliedError):
            obligation_service.calculate_late_fee(obligation.id, test_actor_id)

        assert obligation_service.get(obligation.id).total_amount == Decimal("10552.50")

    def test_not_overdue_rejected(self, obligation_service, royalty_input, test_actor_id):
        obligation = obligation_service.create_obligation(royalty_input(), test_actor_id)

        with pytest.raises(InvalidStateTransitionError):
            obligation_service.calculate_late_fee(obligation.id, test_actor_id)

    def test_franchise_rate_override(
        self, obligation_service, create_franchise, create_unit, royalty_input, test_actor_id, clock
    ):
        franchise = create_franchise(late_fee_rate=Decimal("0.10"))
        unit = create_unit(franchise)
        obligation = obligation_service.create_obligation(
            royalty_input(franchise_id=franchise.id, unit_id=unit.id), test_actor_id
        )
        _make_overdue(clock)

        charged = obligation_service.calculate_late_fee(obligation.id, test_actor_id)

        assert charged.late_fee == Decimal("1005.00")

    def test_then_paid_in_full(self, obligation_service, royalty_input, test_actor_id, clock, session):
        obligation = obligation_service.create_obligation(royalty_input(), test_actor_id)
        _make_overdue(clock)
        obligation_service.calculate_late_fee(obligation.id, test_actor_id)

        obligation_service.mark_paid(obligation.id, "cash", None, test_actor_id)

        entries = ObligationSelector(session).ledger_entries(obligation.id)
        assert entries[0].amount == Decimal("10552.50")


class TestAdjustment:

    def test_adjustment_replaces_previous(
        self, obligation_service, royalty_input, test_actor_id
    ):
        obligation = obligation_service.create_obligation(royalty_input(), test_actor_id)

        first = obligation_service.add_adjustment(
            obligation.id, Decimal("100"), "marketing co-op", test_actor_id
        )
        second = obligation_service.add_adjustment(
            obligation.id, Decimal("-50"), "credit", test_actor_id
        )

        assert first.total_amount == Decimal("10150.00")
        assert second.adjustments == Decimal("-50.00")
        assert second.adjustment_notes == "credit"
        assert second.total_amount == Decimal("10000.00")

    def test_total_invariant_holds(self, obligation_service, royalty_input, test_actor_id, clock):
        obligation = obligation_service.create_obligation(royalty_input(), test_actor_id)
        obligation_service.add_adjustment(obligation.id, Decimal("25.50"), None, test_actor_id)
        _make_overdue(clock)

        result = obligation_service.calculate_late_fee(obligation.id, test_actor_id)

        assert result.total_amount == result.subtotal_amount + result.adjustments + result.late_fee

    def test_paid_cannot_be_adjusted(self, obligation_service, royalty_input, test_actor_id):
        obligation = obligation_service.create_obligation(royalty_input(), test_actor_id)
        obligation_service.mark_paid(obligation.id, "cash", None, test_actor_id)

        with pytest.raises(InvalidStateTransitionError):
            obligation_service.add_adjustment(obligation.id, Decimal("1"), None, test_actor_id)

    def test_float_rejected(self, obligation_service, royalty_input, test_actor_id):
        obligation = obligation_service.create_obligation(royalty_input(), test_actor_id)

        with pytest.raises(ValidationError):
            obligation_service.add_adjustment(obligation.id, 1.5, None, test_actor_id)


class TestDispute:
    """Dispute and resolution."""

    def test_dispute_records_reason(
        self, obligation_service, royalty_input, test_actor_id, published_events
    ):
        _, events = published_events
        obligation = obligation_service.create_obligation(
            royalty_input(notes="Imported from POS"), test_actor_id
        )

        disputed = obligation_service.dispute(
            obligation.id, "revenue double counted", test_actor_id
        )

        assert disputed.status == ObligationStatus.DISPUTED
        assert disputed.notes == "Imported from POS\n\nDisputed: revenue double counted"
        assert events[-1].event_type == OBLIGATION_DISPUTED

    def test_disputed_cannot_be_paid(self, obligation_service, royalty_input, test_actor_id):
        obligation = obligation_service.create_obligation(royalty_input(), test_actor_id)
        obligation_service.dispute(obligation.id, "wrong gross", test_actor_id)

        with pytest.raises(InvalidStateTransitionError):
            obligation_service.mark_paid(obligation.id, "cash", None, test_actor_id)

        assert obligation_service.get(obligation.id).status == ObligationStatus.DISPUTED

    def test_resolve_returns_to_pending(
        self, obligation_service, royalty_input, test_actor_id
    ):
        obligation = obligation_service.create_obligation(royalty_input(), test_actor_id)
        obligation_service.dispute(obligation.id, "wrong gross", test_actor_id)

        resolved = obligation_service.resolve_dispute(
            obligation.id, "gross confirmed", test_actor_id
        )

        assert resolved.status == ObligationStatus.PENDING
        assert resolved.notes.endswith("Dispute resolved: gross confirmed")

    def test_resolved_past_due_reads_overdue(
        self, obligation_service, royalty_input, test_actor_id, clock
    ):
        obligation = obligation_service.create_obligation(royalty_input(), test_actor_id)
        obligation_service.dispute(obligation.id, "wrong gross", test_actor_id)
        _make_overdue(clock)

        resolved = obligation_service.resolve_dispute(obligation.id, "ok", test_actor_id)

        assert resolved.is_overdue(clock.today())

    def test_reason_required(self, obligation_service, royalty_input, test_actor_id):
        obligation = obligation_service.create_obligation(royalty_input(), test_actor_id)

        with pytest.raises(ValidationError):
            obligation_service.dispute(obligation.id, "   ", test_actor_id)

    def test_draft_cannot_be_disputed(self, obligation_service, royalty_input, test_actor_id):
        draft = obligation_service.create_obligation(
            royalty_input(status="draft"), test_actor_id
        )

        with pytest.raises(InvalidStateTransitionError):
            obligation_service.dispute(draft.id, "no", test_actor_id)


class TestCancel:

    def test_cancel_pending(
        self, obligation_service, royalty_input, test_actor_id, published_events
    ):
        _, events = published_events
        obligation = obligation_service.create_obligation(royalty_input(), test_actor_id)

        cancelled = obligation_service.cancel(obligation.id, test_actor_id, reason="closed")

        assert cancelled.status == ObligationStatus.CANCELLED
        assert cancelled.dedupe_key is None
        assert cancelled.notes == "Cancelled: closed"
        assert events[-1].event_type == OBLIGATION_CANCELLED

    def test_cancel_disputed(self, obligation_service, royalty_input, test_actor_id):
        obligation = obligation_service.create_obligation(royalty_input(), test_actor_id)
        obligation_service.dispute(obligation.id, "x", test_actor_id)

        assert obligation_service.cancel(obligation.id, test_actor_id).status == (
            ObligationStatus.CANCELLED
        )

    def test_paid_cannot_be_cancelled(self, obligation_service, royalty_input, test_actor_id):
        obligation = obligation_service.create_obligation(royalty_input(), test_actor_id)
        obligation_service.mark_paid(obligation.id, "cash", None, test_actor_id)

        with pytest.raises(InvalidStateTransitionError):
            obligation_service.cancel(obligation.id, test_actor_id)

    def test_cancelled_is_terminal(self, obligation_service, royalty_input, test_actor_id):
        obligation = obligation_service.create_obligation(royalty_input(), test_actor_id)
        obligation_service.cancel(obligation.id, test_actor_id)

        with pytest.raises(InvalidStateTransitionError):
            obligation_service.mark_paid(obligation.id, "cash", None, test_actor_id)


class TestRefund:
    """Refunds create a linked reversal and leave the original's amounts intact."""

    def _paid(self, obligation_service, royalty_input, test_actor_id):
        obligation = obligation_service.create_obligation(royalty_input(), test_actor_id)
        return obligation_service.mark_paid(obligation.id, "bank_transfer", "B-1", test_actor_id)

    def test_reversal_negates_amounts(self, obligation_service, royalty_input, test_actor_id):
        original = self._paid(obligation_service, royalty_input, test_actor_id)

        reversal = obligation_service.refund(original.id, "overbilled", test_actor_id)

        assert reversal.is_reversal is True
        assert reversal.parent_record_id == original.id
        assert reversal.total_amount == Decimal("-10050.00")
        assert reversal.royalty_amount == Decimal("-8000.00")
        assert reversal.status == ObligationStatus.PAID
        assert reversal.description == f"Refund for {original.obligation_number}"
        assert reversal.dedupe_key is None

    def test_original_unchanged_except_payment_status(
        self, obligation_service, royalty_input, test_actor_id
    ):
        original = self._paid(obligation_service, royalty_input, test_actor_id)

        obligation_service.refund(original.id, "overbilled", test_actor_id)

        after = obligation_service.get(original.id)
        assert after.total_amount == original.total_amount
        assert after.royalty_amount == original.royalty_amount
        assert after.status == ObligationStatus.PAID
        assert after.payment_status == PaymentStatus.REFUNDED

    def test_net_total_zero(self, obligation_service, royalty_input, test_actor_id, session):
        original = self._paid(obligation_service, royalty_input, test_actor_id)

        obligation_service.refund(original.id, "overbilled", test_actor_id)

        total = ObligationSelector(session).total_by_period(2024, 3, ObligationKind.ROYALTY)
        assert total == Decimal("0")

    def test_refund_ledger_entry(self, obligation_service, royalty_input, test_actor_id, session):
        original = self._paid(obligation_service, royalty_input, test_actor_id)

        reversal = obligation_service.refund(original.id, "overbilled", test_actor_id)

        entries = ObligationSelector(session).ledger_entries(reversal.id)
        assert len(entries) == 1
        assert entries[0].entry_type == LedgerEntryType.REFUND
        assert entries[0].amount == Decimal("-10050.00")

    def test_reversal_negates_discount_tax_and_net(
        self, obligation_service, revenue_input, test_actor_id
    ):
        obligation = obligation_service.create_obligation(
            revenue_input(discount_amount=Decimal("500"), tax_amount=Decimal("3675")),
            test_actor_id,
        )
        obligation_service.mark_paid(obligation.id, "cash", None, test_actor_id)

        reversal = obligation_service.refund(obligation.id, "returned goods", test_actor_id)

        assert reversal.gross_amount == Decimal("-25000.00")
        assert reversal.discount_amount == Decimal("-500.00")
        assert reversal.tax_amount == Decimal("-3675.00")
        assert reversal.net_amount == Decimal("-28175.00")
        assert reversal.net_amount == (
            reversal.gross_amount - reversal.discount_amount + reversal.tax_amount
        )
        assert reversal.total_amount == Decimal("-28175.00")

    def test_second_refund_rejected(self, obligation_service, royalty_input, test_actor_id):
        original = self._paid(obligation_service, royalty_input, test_actor_id)
        obligation_service.refund(original.id, "overbilled", test_actor_id)

        with pytest.raises(InvalidStateTransitionError):
            obligation_service.refund(original.id, "again", test_actor_id)

    def test_reversal_cannot_be_refunded(
        self, obligation_service, royalty_input, test_actor_id
    ):
        original = self._paid(obligation_service, royalty_input, test_actor_id)
        reversal = obligation_service.refund(original.id, "overbilled", test_actor_id)

        with pytest.raises(InvalidStateTransitionError):
            obligation_service.refund(reversal.id, "loop", test_actor_id)

    def test_unpaid_cannot_be_refunded(self, obligation_service, royalty_input, test_actor_id):
        obligation = obligation_service.create_obligation(royalty_input(), test_actor_id)

        with pytest.raises(InvalidStateTransitionError):
            obligation_service.refund(obligation.id, "why", test_actor_id)

    def test_publishes_refunded_for_original(
        self, obligation_service, royalty_input, test_actor_id, published_events
    ):
        _, events = published_events
        original = self._paid(obligation_service, royalty_input, test_actor_id)

        reversal = obligation_service.refund(original.id, "overbilled", test_actor_id)

        assert events[-1].event_type == OBLIGATION_REFUNDED
        assert events[-1].obligation_id == original.id
        assert events[-1].payload["reversal_id"] == str(reversal.id)


class TestAttachments:

    def test_appends_paths(self, obligation_service, royalty_input, test_actor_id):
        obligation = obligation_service.create_obligation(royalty_input(), test_actor_id)

        obligation_service.add_attachment(obligation.id, "docs/march.pdf", test_actor_id)
        result = obligation_service.add_attachment(obligation.id, "docs/pos.csv", test_actor_id)

        assert result.attachments == ("docs/march.pdf", "docs/pos.csv")

    def test_allowed_on_paid(self, obligation_service, royalty_input, test_actor_id):
        obligation = obligation_service.create_obligation(royalty_input(), test_actor_id)
        obligation_service.mark_paid(obligation.id, "cash", None, test_actor_id)

        result = obligation_service.add_attachment(obligation.id, "receipt.pdf", test_actor_id)

        assert result.attachments == ("receipt.pdf",)


class TestLineItems:
    """Line items itemise revenue and transaction records without changing amounts."""

    def test_appends_items(self, obligation_service, revenue_input, test_actor_id):
        obligation = obligation_service.create_obligation(revenue_input(), test_actor_id)

        obligation_service.add_line_item(
            obligation.id, "Espresso", Decimal("1000"), Decimal("15.00"), test_actor_id
        )
        result = obligation_service.add_line_item(
            obligation.id, "Croissant", Decimal("500"), Decimal("20.00"), test_actor_id
        )

        assert [item.description for item in result.line_items] == ["Espresso", "Croissant"]
        assert result.line_items[0].amount == Decimal("15000.00")
        assert result.line_items[1].quantity == Decimal("500")
        assert result.total_amount == obligation.total_amount

    def test_allowed_while_overdue(
        self, obligation_service, revenue_input, test_actor_id, clock
    ):
        obligation = obligation_service.create_obligation(revenue_input(), test_actor_id)
        _make_overdue(clock)

        result = obligation_service.add_line_item(
            obligation.id, "Catering", Decimal("1"), Decimal("25000"), test_actor_id
        )

        assert len(result.line_items) == 1

    def test_paid_cannot_be_itemised(self, obligation_service, revenue_input, test_actor_id):
        obligation = obligation_service.create_obligation(revenue_input(), test_actor_id)
        obligation_service.mark_paid(obligation.id, "cash", None, test_actor_id)

        with pytest.raises(InvalidStateTransitionError):
            obligation_service.add_line_item(
                obligation.id, "Late sale", Decimal("1"), Decimal("10"), test_actor_id
            )

        assert obligation_service.get(obligation.id).line_items == ()

    def test_royalty_rejected(self, obligation_service, royalty_input, test_actor_id):
        obligation = obligation_service.create_obligation(royalty_input(), test_actor_id)

        with pytest.raises(ValidationError) as exc_info:
            obligation_service.add_line_item(
                obligation.id, "Coffee", Decimal("1"), Decimal("10"), test_actor_id
            )

        assert exc_info.value.field == "kind"
        assert obligation_service.get(obligation.id).line_items == ()

    @pytest.mark.parametrize(
        "description, quantity, unit_price, field",
        [
            ("", Decimal("1"), Decimal("10"), "description"),
            ("Tea", Decimal("0"), Decimal("10"), "quantity"),
            ("Tea", Decimal("-1"), Decimal("10"), "quantity"),
            ("Tea", Decimal("1"), 9.99, "unit_price"),
            ("Tea", Decimal("1"), None, "unit_price"),
        ],
    )
    def test_invalid_item_rejected(
        self, obligation_service, revenue_input, test_actor_id,
        description, quantity, unit_price, field,
    ):
        obligation = obligation_service.create_obligation(revenue_input(), test_actor_id)

        with pytest.raises(ValidationError) as exc_info:
            obligation_service.add_line_item(
                obligation.id, description, quantity, unit_price, test_actor_id
            )

        assert exc_info.value.field == field

    def test_reversal_starts_without_items(
        self, obligation_service, revenue_input, test_actor_id
    ):
        obligation = obligation_service.create_obligation(revenue_input(), test_actor_id)
        obligation_service.add_line_item(
            obligation.id, "Espresso", Decimal("1000"), Decimal("25"), test_actor_id
        )
        obligation_service.mark_paid(obligation.id, "cash", None, test_actor_id)

        reversal = obligation_service.refund(obligation.id, "void", test_actor_id)

        assert reversal.line_items == ()
        assert len(obligation_service.get(obligation.id).line_items) == 1


class TestPublishOverdue:
    """Overdue notifications are sent once per record."""

    def test_publishes_once(
        self, obligation_service, royalty_input, test_actor_id, clock, published_events
    ):
        _, events = published_events
        obligation = obligation_service.create_obligation(royalty_input(), test_actor_id)
        _make_overdue(clock)

        first = obligation_service.publish_overdue()
        second = obligation_service.publish_overdue()

        assert [o.id for o in first] == [obligation.id]
        assert second == []
        overdue_events = [e for e in events if e.event_type == OBLIGATION_OVERDUE]
        assert len(overdue_events) == 1
        assert overdue_events[0].payload["days_overdue"] == 5

    def test_not_yet_due_skipped(self, obligation_service, royalty_input, test_actor_id):
        obligation_service.create_obligation(royalty_input(), test_actor_id)

        assert obligation_service.publish_overdue() == []


class TestTransitionFailuresLeaveRecordUnchanged:

    def test_rejected_transition_logs_warning(
        self, obligation_service, royalty_input, test_actor_id, captured_logs
    ):
        obligation = obligation_service.create_obligation(royalty_input(), test_actor_id)
        obligation_service.cancel(obligation.id, test_actor_id)

        with pytest.raises(InvalidStateTransitionError) as exc_info:
            obligation_service.dispute(obligation.id, "late", test_actor_id)

        assert exc_info.value.current_state == "cancelled"
        rejected = [
            r for r in captured_logs() if r["message"] == "obligation_transition_rejected"
        ]
        assert rejected and rejected[-1]["action"] == "dispute"
        assert obligation_service.get(obligation.id).status == ObligationStatus.CANCELLED
