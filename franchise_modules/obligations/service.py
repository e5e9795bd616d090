"""
Obligation Module Service - owns the lifecycle of royalty, revenue and
transaction obligations.

Thin glue layer that:
1. Validates the action against ``OBLIGATION_WORKFLOW`` using the derived
   status (stored status plus the overdue view)
2. Calls the fee engine for late fees and adjustments
3. Calls ObligationWriter for numbering, inserts, reversals and ledger entries
4. Publishes obligation events after commit

Every mutation loads its row ``SELECT ... FOR UPDATE``, validates, writes,
flushes and commits.  On any error the transaction is rolled back and the
error re-raised, so a rejected action leaves the row unchanged.

Usage:
    service = ObligationService(session, clock=clock)
    obligation = service.create_obligation(ObligationInput(...), actor_id)
    service.mark_paid(obligation.id, PaymentMethod.BANK_TRANSFER, "TRX-1", actor_id)
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
from contextlib import contextmanager
from decimal import Decimal
from datetime import date
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from franchise_engines.fees import apply_adjustment, calculate_late_fee, quantize_currency
from franchise_kernel.domain.clock import Clock, SystemClock
from franchise_kernel.exceptions import (
    FranchiseNotFoundError,
    InvalidStateTransitionError,
    LateFeeAlreadyAppliedError,
    UnitNotFoundError,
    ValidationError,
)
from franchise_kernel.logging_config import LogContext, get_logger
from franchise_modules.obligations.config import BillingPolicy
from franchise_modules.obligations.events import (
    OBLIGATION_CANCELLED,
    OBLIGATION_CREATED,
    OBLIGATION_DISPUTED,
    OBLIGATION_OVERDUE,
    OBLIGATION_PAID,
    OBLIGATION_REFUNDED,
    ObligationEvent,
    ObligationEventPublisher,
)
from franchise_modules.obligations.models import (
    LedgerEntryType,
    LineItem,
    Obligation,
    ObligationInput,
    ObligationKind,
    ObligationStatus,
    PaymentMethod,
    PaymentStatus,
    derive_status,
)
from franchise_modules.obligations.orm import FranchiseModel, ObligationModel, UnitModel
from franchise_modules.obligations.selectors import ObligationSelector
from franchise_modules.obligations.workflows import OBLIGATION_WORKFLOW, Transition
from franchise_modules.obligations.writer import ObligationWriter

logger = get_logger("modules.obligations.service")

_ZERO = Decimal("0")


def _append_note(existing: str | None, note: str) -> str:
    if existing:
        return f"{existing}\n\n{note}"
    return note


def _require_text(field: str, value: str | None) -> str:
    if value is None or not str(value).strip():
        raise ValidationError(field, "cannot be empty", value)
    return str(value).strip()


def _require_decimal(field: str, value: Decimal) -> Decimal:
    if isinstance(value, float) or not isinstance(value, (Decimal, int)):
        raise ValidationError(field, "must be a Decimal", value)
    return Decimal(value)


class ObligationService:
    """
    Orchestrates obligation operations through the workflow, engines and writer.

    Transaction boundary: this service commits on success, rolls back on failure.
    Events are published only after the commit succeeds.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        policy: BillingPolicy | None = None,
        publisher: ObligationEventPublisher | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._policy = policy or BillingPolicy.with_defaults()
        self._publisher = publisher or ObligationEventPublisher()
        self._writer = ObligationWriter(session, self._clock)
        self._selector = ObligationSelector(session)

    @property
    def publisher(self) -> ObligationEventPublisher:
        return self._publisher

    # =========================================================================
    # Helpers
    # =========================================================================

    @contextmanager
    def _transaction(self) -> Iterator[None]:
        try:
            yield
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise

    def _franchise(self, franchise_id: UUID) -> FranchiseModel:
        franchise = self._session.get(FranchiseModel, franchise_id)
        if franchise is None:
            raise FranchiseNotFoundError(str(franchise_id))
        return franchise

    def policy_for(self, franchise_id: UUID) -> BillingPolicy:
        """The billing policy with the franchise's overrides applied."""
        return self._policy.resolve_for(self._franchise(franchise_id))

    def _check(self, model: ObligationModel, action: str) -> Transition:
        state = derive_status(model.status, model.due_date, self._clock.today())
        transition = OBLIGATION_WORKFLOW.transition_for(state.value, action)
        if transition is None:
            logger.warning(
                "obligation_transition_rejected",
                extra={
                    "obligation_id": str(model.id),
                    "current_state": state.value,
                    "action": action,
                },
            )
            raise InvalidStateTransitionError(str(model.id), state.value, action)
        return transition

    def _publish(
        self,
        event_type: str,
        obligation: Obligation,
        actor_id: UUID | None,
        **payload,
    ) -> None:
        self._publisher.publish(
            ObligationEvent(
                event_type=event_type,
                obligation_id=obligation.id,
                obligation_number=obligation.obligation_number,
                franchise_id=obligation.franchise_id,
                occurred_at=self._clock.now(),
                actor_id=actor_id,
                payload=payload,
            )
        )

    def _mutate(
        self,
        obligation_id: UUID,
        action: str,
        actor_id: UUID,
        apply: Callable[[ObligationModel, Transition], None],
    ) -> Obligation:
        """Lock, check the transition, apply, flush and commit."""
        with LogContext.bind(obligation_id=str(obligation_id), actor_id=str(actor_id)):
            with self._transaction():
                model = self._writer.load_for_update(obligation_id)
                transition = self._check(model, action)
                apply(model, transition)
                if transition.to_state != transition.from_state:
                    model.status = transition.to_state
                model.updated_by_id = actor_id
                self._session.flush()
            logger.info(
                f"obligation_{action}",
                extra={
                    "obligation_id": str(model.id),
                    "obligation_number": model.obligation_number,
                    "status": model.status,
                    "total_amount": str(model.total_amount),
                },
            )
            return model.to_dto()

    # =========================================================================
    # Creation
    # =========================================================================

    def create_obligation(self, data: ObligationInput, actor_id: UUID) -> Obligation:
        """
        Create an obligation for one scope and period.

        Raises:
            FranchiseNotFoundError / UnitNotFoundError: unknown scope.
            DuplicateObligationError: the scope and period are already billed.
        """
        with LogContext.bind(actor_id=str(actor_id)):
            with self._transaction():
                franchise = self._franchise(data.franchise_id)
                if data.unit_id is not None:
                    unit = self._session.get(UnitModel, data.unit_id)
                    if unit is None or unit.franchise_id != franchise.id:
                        raise UnitNotFoundError(str(data.unit_id))
                policy = self._policy.resolve_for(franchise)
                model = self._writer.build(data, policy, franchise, actor_id)
                self._writer.insert(model, policy.prefix_for(data.kind))
            obligation = model.to_dto()

        self._publish(OBLIGATION_CREATED, obligation, actor_id)
        return obligation

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def submit(self, obligation_id: UUID, actor_id: UUID) -> Obligation:
        """Move a draft obligation to pending."""
        return self._mutate(obligation_id, "submit", actor_id, lambda model, t: None)

    def mark_paid(
        self,
        obligation_id: UUID,
        payment_method: PaymentMethod | str,
        payment_reference: str | None,
        actor_id: UUID,
    ) -> Obligation:
        """Record full payment and write the payment ledger entry."""
        try:
            method = PaymentMethod(payment_method)
        except ValueError as exc:
            raise ValidationError("payment_method", str(exc), payment_method) from exc

        def apply(model: ObligationModel, transition: Transition) -> None:
            model.paid_date = self._clock.today()
            model.payment_status = PaymentStatus.COMPLETED.value
            model.payment_method = method.value
            model.payment_reference = payment_reference
            self._writer.write_ledger_entry(
                model,
                LedgerEntryType.PAYMENT,
                model.total_amount,
                self.policy_for(model.franchise_id),
                actor_id,
                payment_method=method,
                reference=payment_reference,
            )

        obligation = self._mutate(obligation_id, "mark_paid", actor_id, apply)
        self._publish(
            OBLIGATION_PAID,
            obligation,
            actor_id,
            amount=str(obligation.total_amount),
            payment_method=method.value,
        )
        return obligation

    def calculate_late_fee(self, obligation_id: UUID, actor_id: UUID) -> Obligation:
        """
        Charge the late fee on an overdue obligation, once.

        Raises:
            InvalidStateTransitionError: the obligation is not overdue.
            LateFeeAlreadyAppliedError: a late fee was already charged.
        """

        def apply(model: ObligationModel, transition: Transition) -> None:
            if model.late_fee > _ZERO:
                raise LateFeeAlreadyAppliedError(
                    str(model.id), transition.from_state, str(model.late_fee)
                )
            policy = self.policy_for(model.franchise_id)
            late_fee = calculate_late_fee(model.total_amount, policy.late_fee_rate)
            model.late_fee = late_fee
            model.total_amount = quantize_currency(model.total_amount + late_fee)

        return self._mutate(obligation_id, "calculate_late_fee", actor_id, apply)

    def add_adjustment(
        self,
        obligation_id: UUID,
        amount: Decimal,
        notes: str | None,
        actor_id: UUID,
    ) -> Obligation:
        """Replace the adjustment (signed) and recompute the total."""
        amount = quantize_currency(_require_decimal("adjustment", amount))

        def apply(model: ObligationModel, transition: Transition) -> None:
            model.total_amount = quantize_currency(
                apply_adjustment(model.total_amount, model.adjustments, amount)
            )
            model.adjustments = amount
            model.adjustment_notes = notes

        return self._mutate(obligation_id, "add_adjustment", actor_id, apply)

    def dispute(self, obligation_id: UUID, reason: str, actor_id: UUID) -> Obligation:
        """Put a pending or overdue obligation into dispute."""
        reason = _require_text("reason", reason)

        def apply(model: ObligationModel, transition: Transition) -> None:
            model.notes = _append_note(model.notes, f"Disputed: {reason}")

        obligation = self._mutate(obligation_id, "dispute", actor_id, apply)
        self._publish(OBLIGATION_DISPUTED, obligation, actor_id, reason=reason)
        return obligation

    def resolve_dispute(
        self,
        obligation_id: UUID,
        resolution: str,
        actor_id: UUID,
    ) -> Obligation:
        """Return a disputed obligation to pending."""
        resolution = _require_text("resolution", resolution)

        def apply(model: ObligationModel, transition: Transition) -> None:
            model.notes = _append_note(model.notes, f"Dispute resolved: {resolution}")

        return self._mutate(obligation_id, "resolve_dispute", actor_id, apply)

    def cancel(
        self,
        obligation_id: UUID,
        actor_id: UUID,
        reason: str | None = None,
    ) -> Obligation:
        """Cancel an unpaid obligation.  Frees its period for re-billing."""

        def apply(model: ObligationModel, transition: Transition) -> None:
            model.dedupe_key = None
            if reason:
                model.notes = _append_note(model.notes, f"Cancelled: {reason}")

        obligation = self._mutate(obligation_id, "cancel", actor_id, apply)
        self._publish(OBLIGATION_CANCELLED, obligation, actor_id, reason=reason)
        return obligation

    def refund(self, obligation_id: UUID, reason: str, actor_id: UUID) -> Obligation:
        """
        Refund a paid obligation by creating a linked reversal record.

        The original keeps its amounts; only its payment_status becomes
        refunded.  Returns the reversal.

        Raises:
            InvalidStateTransitionError: not paid, payment not completed, or
                the record is itself a reversal.
        """
        reason = _require_text("reason", reason)

        with LogContext.bind(obligation_id=str(obligation_id), actor_id=str(actor_id)):
            with self._transaction():
                original = self._writer.load_for_update(obligation_id)
                transition = self._check(original, "refund")
                if (
                    original.is_reversal
                    or original.payment_status != PaymentStatus.COMPLETED.value
                ):
                    raise InvalidStateTransitionError(
                        str(original.id),
                        transition.from_state,
                        "refund",
                        reason=f"guard {transition.guard.name} failed",
                    )
                policy = self.policy_for(original.franchise_id)
                reversal = self._writer.build_reversal(original, reason, actor_id)
                self._writer.insert(reversal, policy.prefix_for(original.kind))
                original.payment_status = PaymentStatus.REFUNDED.value
                original.updated_by_id = actor_id
                self._writer.write_ledger_entry(
                    reversal,
                    LedgerEntryType.REFUND,
                    reversal.total_amount,
                    policy,
                    actor_id,
                    payment_method=original.payment_method,
                    reference=original.payment_reference,
                    memo=reason,
                )
                self._session.flush()
            logger.info(
                "obligation_refunded",
                extra={
                    "obligation_id": str(original.id),
                    "reversal_id": str(reversal.id),
                    "reversal_number": reversal.obligation_number,
                    "amount": str(reversal.total_amount),
                },
            )
            result = reversal.to_dto()

        self._publish(
            OBLIGATION_REFUNDED,
            original.to_dto(),
            actor_id,
            reversal_id=str(result.id),
            amount=str(result.total_amount),
            reason=reason,
        )
        return result

    def add_attachment(self, obligation_id: UUID, path: str, actor_id: UUID) -> Obligation:
        """Record a stored document path against the obligation."""
        path = _require_text("path", path)

        def apply(model: ObligationModel, transition: Transition) -> None:
            model.attachments = [*(model.attachments or []), path]

        return self._mutate(obligation_id, "add_attachment", actor_id, apply)

    def add_line_item(
        self,
        obligation_id: UUID,
        description: str,
        quantity: Decimal,
        unit_price: Decimal,
        actor_id: UUID,
    ) -> Obligation:
        """
        Itemise a revenue or transaction record.  Amounts are unchanged.

        Raises:
            ValidationError: bad item, or the record is a royalty.
            InvalidStateTransitionError: paid or cancelled record.
        """
        item = LineItem(_require_text("description", description), quantity, unit_price)

        def apply(model: ObligationModel, transition: Transition) -> None:
            if model.kind == ObligationKind.ROYALTY.value:
                raise ValidationError("kind", "royalty records have no line items", model.kind)
            model.line_items = [*(model.line_items or []), item.to_dict()]

        return self._mutate(obligation_id, "add_line_item", actor_id, apply)

    # =========================================================================
    # Overdue notifications
    # =========================================================================

    def publish_overdue(self, as_of: date | None = None) -> list[Obligation]:
        """
        Publish ``obligation.overdue`` once for every newly overdue record.

        Stamps ``overdue_notified_at`` so later calls skip the record.
        """
        as_of = as_of or self._clock.today()
        with self._transaction():
            rows = list(
                self._session.execute(
                    select(ObligationModel)
                    .where(
                        ObligationModel.status == ObligationStatus.PENDING.value,
                        ObligationModel.due_date.is_not(None),
                        ObligationModel.due_date < as_of,
                        ObligationModel.overdue_notified_at.is_(None),
                    )
                    .order_by(ObligationModel.due_date)
                    .with_for_update()
                ).scalars()
            )
            notified_at = self._clock.now()
            for row in rows:
                row.overdue_notified_at = notified_at
            self._session.flush()
        obligations = [row.to_dto() for row in rows]

        for obligation in obligations:
            self._publish(
                OBLIGATION_OVERDUE,
                obligation,
                None,
                days_overdue=obligation.days_overdue(as_of),
                total_amount=str(obligation.total_amount),
            )
        logger.info(
            "obligation_overdue_published",
            extra={"as_of": as_of.isoformat(), "count": len(obligations)},
        )
        return obligations

    # =========================================================================
    # Queries
    # =========================================================================

    def get(self, obligation_id: UUID) -> Obligation:
        return self._selector.get(obligation_id)
