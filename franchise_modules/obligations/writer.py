"""
ObligationWriter -- flush-only persistence for obligations and ledger entries.

Responsibility:
    Turns validated input into ``ObligationModel`` rows: resolves the
    billing period, runs the fee engine, numbers the record from a locked
    sequence counter, assigns the dedupe key and inserts the row inside a
    SAVEPOINT so a duplicate surfaces as ``DuplicateObligationError``
    without poisoning the caller's transaction.  Also writes the ledger
    entries that accompany payments and refunds, and builds reversal rows.

Architecture position:
    Modules > Obligations -- imperative shell.  Shared by
    ``ObligationService``, ``RecurrenceService`` and ``MonthlyBillingSweep``.

Invariants enforced:
    - Never commits.  The caller owns the transaction boundary.
    - total_amount == subtotal_amount + adjustments + late_fee on insert.
    - Amounts are rounded once, here, at storage precision.
    - obligation_number = prefix + YYYY + MM (creation date) + 4-digit
      sequence; the counter row is locked for the rest of the transaction.

Failure modes:
    - DuplicateObligationError: a live obligation already bills the same
      kind, scope and period.
    - ObligationNotFoundError: ``load_for_update`` on an unknown id.
"""

from __future__ import annotations

from datetime import date, timedelta
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from franchise_engines.fees import (
    calculate_fees,
    calculate_net_amount,
    compute_total,
    quantize_currency,
)
from franchise_engines.periods import BillingFrequency, Period
from franchise_kernel.domain.clock import Clock, SystemClock
from franchise_kernel.exceptions import DuplicateObligationError, ObligationNotFoundError
from franchise_kernel.logging_config import get_logger
from franchise_kernel.services.base import BaseService
from franchise_kernel.services.sequence_service import SequenceService
from franchise_modules.obligations.config import BillingPolicy
from franchise_modules.obligations.models import (
    LedgerEntryType,
    ObligationInput,
    ObligationKind,
    ObligationStatus,
    PaymentMethod,
    PaymentStatus,
)
from franchise_modules.obligations.orm import (
    FranchiseModel,
    LedgerEntryModel,
    ObligationModel,
)

logger = get_logger("modules.obligations.writer")

_ZERO = Decimal("0")

# Actor recorded on rows the system generates on its own (sweep, recurrence).
SYSTEM_ACTOR_ID = UUID(int=0)


def dedupe_key_for(
    kind: ObligationKind | str,
    franchise_id: UUID,
    unit_id: UUID | None,
    period_start: date,
    period_end: date,
) -> str:
    """Identity of a billable (kind, scope, period)."""
    kind_value = kind.value if isinstance(kind, ObligationKind) else str(kind)
    return "|".join((
        kind_value,
        str(franchise_id),
        str(unit_id) if unit_id else "-",
        period_start.isoformat(),
        period_end.isoformat(),
    ))


class ObligationWriter(BaseService[ObligationModel]):
    """
    Flush-only writer for obligation rows.

    Non-goals:
        - Does NOT check workflow transitions; ``ObligationService`` does.
        - Does NOT publish events.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._sequences = SequenceService(session)

    # =========================================================================
    # Lookups
    # =========================================================================

    def load_for_update(self, obligation_id: UUID) -> ObligationModel:
        """Load and row-lock an obligation for the rest of the transaction."""
        model = self.session.execute(
            select(ObligationModel)
            .where(ObligationModel.id == obligation_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if model is None:
            raise ObligationNotFoundError(str(obligation_id))
        return model

    def find_by_dedupe_key(self, dedupe_key: str) -> ObligationModel | None:
        return self.session.execute(
            select(ObligationModel).where(ObligationModel.dedupe_key == dedupe_key)
        ).scalar_one_or_none()

    # =========================================================================
    # Numbering
    # =========================================================================

    def next_number(self, prefix: str, on_date: date | None = None) -> str:
        on_date = on_date or self._clock.today()
        sequence_name = f"{prefix}{on_date.year:04d}{on_date.month:02d}"
        value = self._sequences.next_value(sequence_name)
        return f"{sequence_name}{value:04d}"

    # =========================================================================
    # Inserts
    # =========================================================================

    def insert(self, model: ObligationModel, prefix: str) -> ObligationModel:
        """
        Number and insert ``model`` inside a SAVEPOINT.

        Raises:
            DuplicateObligationError: the dedupe key is already taken.
        """
        if model.dedupe_key is not None:
            existing = self.find_by_dedupe_key(model.dedupe_key)
            if existing is not None:
                raise DuplicateObligationError(model.dedupe_key, str(existing.id))

        savepoint = self.session.begin_nested()
        try:
            model.obligation_number = self.next_number(prefix)
            self.session.add(model)
            self.session.flush()
            savepoint.commit()
        except IntegrityError:
            savepoint.rollback()
            if model.dedupe_key is None:
                raise
            existing = self.find_by_dedupe_key(model.dedupe_key)
            if existing is None:
                raise
            logger.warning(
                "obligation_duplicate_insert_race",
                extra={
                    "dedupe_key": model.dedupe_key,
                    "existing_id": str(existing.id),
                },
            )
            raise DuplicateObligationError(model.dedupe_key, str(existing.id)) from None

        logger.info(
            "obligation_inserted",
            extra={
                "obligation_id": str(model.id),
                "obligation_number": model.obligation_number,
                "kind": model.kind,
                "franchise_id": str(model.franchise_id),
                "total_amount": str(model.total_amount),
                "is_auto_generated": model.is_auto_generated,
            },
        )
        return model

    def build(
        self,
        data: ObligationInput,
        policy: BillingPolicy,
        franchise: FranchiseModel,
        actor_id: UUID,
        *,
        period: Period | None = None,
        is_auto_generated: bool = False,
        generated_by_id: UUID | None = None,
        parent_record_id: UUID | None = None,
    ) -> ObligationModel:
        """
        Compute amounts and build an unsaved ``ObligationModel``.

        ``policy`` must already be resolved for ``franchise``.
        """
        period = period or data.period()
        kind = data.kind

        gross = quantize_currency(data.gross_amount)
        royalty_percentage = data.royalty_percentage or _ZERO
        marketing_percentage = data.marketing_fee_percentage or _ZERO
        if kind == ObligationKind.ROYALTY:
            technology_fee = (
                data.technology_fee_amount
                if data.technology_fee_amount is not None
                else policy.default_technology_fee
            )
            fees = calculate_fees(
                data.gross_amount,
                royalty_percentage,
                marketing_percentage,
                technology_fee,
            ).quantized()
            royalty_amount = fees.royalty_amount
            marketing_amount = fees.marketing_fee_amount
            technology_fee = fees.technology_fee_amount
            subtotal = fees.total
            discount = tax = _ZERO
            net = gross
        else:
            technology_fee = _ZERO
            royalty_amount = _ZERO
            marketing_amount = _ZERO
            discount = quantize_currency(data.discount_amount or _ZERO)
            tax = quantize_currency(data.tax_amount or _ZERO)
            net = calculate_net_amount(gross, discount, tax)
            subtotal = net

        due_date = data.due_date or period.end + timedelta(days=policy.grace_period_days)
        quarter = period.quarter if period.frequency == BillingFrequency.QUARTERLY else None

        return ObligationModel(
            kind=kind.value,
            franchise_id=data.franchise_id,
            unit_id=data.unit_id,
            party_id=data.party_id or franchise.franchisee_id,
            billing_frequency=period.frequency.value,
            period_year=period.year,
            period_month=period.month,
            period_quarter=data.period_quarter or quarter,
            period_start_date=period.start,
            period_end_date=period.end,
            gross_amount=gross,
            royalty_percentage=royalty_percentage,
            marketing_fee_percentage=marketing_percentage,
            technology_fee_amount=technology_fee,
            royalty_amount=royalty_amount,
            marketing_fee_amount=marketing_amount,
            discount_amount=discount,
            tax_amount=tax,
            net_amount=net,
            subtotal_amount=subtotal,
            adjustments=_ZERO,
            late_fee=_ZERO,
            total_amount=compute_total(subtotal),
            currency=(data.currency or policy.currency).upper(),
            status=data.status.value,
            payment_status=PaymentStatus.PENDING.value,
            due_date=due_date,
            is_recurring=data.is_recurring,
            recurrence_type=data.recurrence_type.value if data.recurrence_type else None,
            recurrence_interval=data.recurrence_interval,
            recurrence_end_date=data.recurrence_end_date,
            parent_record_id=parent_record_id,
            is_reversal=False,
            is_auto_generated=is_auto_generated,
            generated_by_id=generated_by_id,
            description=data.description,
            notes=data.notes,
            attachments=[],
            line_items=[],
            dedupe_key=dedupe_key_for(
                kind, data.franchise_id, data.unit_id, period.start, period.end
            ),
            created_by_id=actor_id,
        )

    def build_reversal(
        self,
        original: ObligationModel,
        reason: str,
        actor_id: UUID,
    ) -> ObligationModel:
        """Negated copy of a paid obligation, linked back to it."""
        today = self._clock.today()
        return ObligationModel(
            kind=original.kind,
            franchise_id=original.franchise_id,
            unit_id=original.unit_id,
            party_id=original.party_id,
            billing_frequency=original.billing_frequency,
            period_year=original.period_year,
            period_month=original.period_month,
            period_quarter=original.period_quarter,
            period_start_date=original.period_start_date,
            period_end_date=original.period_end_date,
            gross_amount=-original.gross_amount,
            royalty_percentage=original.royalty_percentage,
            marketing_fee_percentage=original.marketing_fee_percentage,
            technology_fee_amount=-original.technology_fee_amount,
            royalty_amount=-original.royalty_amount,
            marketing_fee_amount=-original.marketing_fee_amount,
            discount_amount=-original.discount_amount,
            tax_amount=-original.tax_amount,
            net_amount=-original.net_amount,
            subtotal_amount=-original.subtotal_amount,
            adjustments=-original.adjustments,
            late_fee=-original.late_fee,
            total_amount=-original.total_amount,
            currency=original.currency,
            status=ObligationStatus.PAID.value,
            payment_status=PaymentStatus.COMPLETED.value,
            due_date=today,
            paid_date=today,
            payment_method=original.payment_method,
            payment_reference=original.payment_reference,
            is_recurring=False,
            parent_record_id=original.id,
            is_reversal=True,
            is_auto_generated=False,
            description=f"Refund for {original.obligation_number}",
            notes=reason,
            attachments=[],
            line_items=[],
            dedupe_key=None,
            created_by_id=actor_id,
        )

    # =========================================================================
    # Ledger
    # =========================================================================

    def write_ledger_entry(
        self,
        obligation: ObligationModel,
        entry_type: LedgerEntryType,
        amount: Decimal,
        policy: BillingPolicy,
        actor_id: UUID,
        payment_method: PaymentMethod | str | None = None,
        reference: str | None = None,
        memo: str | None = None,
    ) -> LedgerEntryModel:
        method = payment_method.value if isinstance(payment_method, PaymentMethod) else payment_method
        entry = LedgerEntryModel(
            entry_number=self.next_number(policy.ledger_prefix),
            obligation_id=obligation.id,
            entry_type=entry_type.value,
            amount=quantize_currency(amount),
            currency=obligation.currency,
            entry_date=self._clock.today(),
            payment_method=method,
            reference=reference,
            memo=memo,
            created_by_id=actor_id,
        )
        self.session.add(entry)
        self.session.flush()
        logger.info(
            "ledger_entry_written",
            extra={
                "entry_number": entry.entry_number,
                "obligation_id": str(obligation.id),
                "entry_type": entry.entry_type,
                "amount": str(entry.amount),
            },
        )
        return entry
