"""
Module: franchise_modules.obligations.selectors
Responsibility: Read-only obligation queries: lookups, status filters,
    period / scope filters, recurrence chains and period totals.
Architecture position: Modules > Obligations.  May import the module's ORM
    and models and ``franchise_kernel.selectors.base``.

Invariants enforced:
    - ``overdue`` is derived in SQL exactly as in
      ``models.derive_status``: stored status pending and due_date before
      ``as_of``.  ``pending`` excludes those rows.  Every status filter goes
      through ``_status_clause`` so the two views never disagree.
    - Returns frozen ``Obligation`` DTOs, never ORM rows.
"""

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import and_, func, or_, select

from franchise_kernel.exceptions import ObligationNotFoundError
from franchise_kernel.selectors.base import BaseSelector
from franchise_modules.obligations.models import (
    LedgerEntry,
    Obligation,
    ObligationKind,
    ObligationStatus,
)
from franchise_modules.obligations.orm import LedgerEntryModel, ObligationModel


def _status_clause(status: ObligationStatus, as_of: date):
    pending = ObligationModel.status == ObligationStatus.PENDING.value
    past_due = and_(
        ObligationModel.due_date.is_not(None),
        ObligationModel.due_date < as_of,
    )
    if status == ObligationStatus.OVERDUE:
        return and_(pending, past_due)
    if status == ObligationStatus.PENDING:
        return and_(pending, or_(ObligationModel.due_date.is_(None), ObligationModel.due_date >= as_of))
    return ObligationModel.status == status.value


class ObligationSelector(BaseSelector[ObligationModel]):
    """Read-only queries over the obligations table."""

    def _list(self, *criteria) -> list[Obligation]:
        rows = self.session.execute(
            select(ObligationModel)
            .where(*criteria)
            .order_by(ObligationModel.period_start_date, ObligationModel.obligation_number)
        ).scalars()
        return [row.to_dto() for row in rows]

    def get(self, obligation_id: UUID) -> Obligation:
        model = self.session.get(ObligationModel, obligation_id)
        if model is None:
            raise ObligationNotFoundError(str(obligation_id))
        return model.to_dto()

    def get_by_number(self, obligation_number: str) -> Obligation | None:
        model = self.session.execute(
            select(ObligationModel).where(
                ObligationModel.obligation_number == obligation_number
            )
        ).scalar_one_or_none()
        return model.to_dto() if model else None

    def by_status(
        self,
        status: ObligationStatus | str,
        as_of: date,
        kind: ObligationKind | None = None,
    ) -> list[Obligation]:
        criteria = [_status_clause(ObligationStatus(status), as_of)]
        if kind is not None:
            criteria.append(ObligationModel.kind == kind.value)
        return self._list(*criteria)

    def overdue(self, as_of: date, kind: ObligationKind | None = None) -> list[Obligation]:
        return self.by_status(ObligationStatus.OVERDUE, as_of, kind)

    def pending(self, as_of: date, kind: ObligationKind | None = None) -> list[Obligation]:
        return self.by_status(ObligationStatus.PENDING, as_of, kind)

    def for_period(
        self,
        year: int,
        month: int | None = None,
        kind: ObligationKind | None = None,
    ) -> list[Obligation]:
        criteria = [ObligationModel.period_year == year]
        if month is not None:
            criteria.append(ObligationModel.period_month == month)
        if kind is not None:
            criteria.append(ObligationModel.kind == kind.value)
        return self._list(*criteria)

    def for_franchise(
        self,
        franchise_id: UUID,
        kind: ObligationKind | None = None,
    ) -> list[Obligation]:
        criteria = [ObligationModel.franchise_id == franchise_id]
        if kind is not None:
            criteria.append(ObligationModel.kind == kind.value)
        return self._list(*criteria)

    def for_unit(self, unit_id: UUID) -> list[Obligation]:
        return self._list(ObligationModel.unit_id == unit_id)

    def auto_generated(self) -> list[Obligation]:
        return self._list(ObligationModel.is_auto_generated.is_(True))

    def recurring(self) -> list[Obligation]:
        return self._list(
            ObligationModel.is_recurring.is_(True),
            ObligationModel.is_reversal.is_(False),
        )

    def series(self, root_id: UUID) -> list[Obligation]:
        """The root of a recurrence chain followed by every generated occurrence."""
        return self._list(
            or_(
                ObligationModel.id == root_id,
                and_(
                    ObligationModel.parent_record_id == root_id,
                    ObligationModel.is_reversal.is_(False),
                ),
            )
        )

    def reversals_of(self, obligation_id: UUID) -> list[Obligation]:
        return self._list(
            ObligationModel.parent_record_id == obligation_id,
            ObligationModel.is_reversal.is_(True),
        )

    def total_by_period(
        self,
        year: int,
        month: int,
        kind: ObligationKind | None = None,
        franchise_id: UUID | None = None,
    ) -> Decimal:
        """Sum of paid totals for the period.  Reversals net out refunds."""
        stmt = select(func.coalesce(func.sum(ObligationModel.total_amount), 0)).where(
            ObligationModel.period_year == year,
            ObligationModel.period_month == month,
            ObligationModel.status == ObligationStatus.PAID.value,
        )
        if kind is not None:
            stmt = stmt.where(ObligationModel.kind == kind.value)
        if franchise_id is not None:
            stmt = stmt.where(ObligationModel.franchise_id == franchise_id)
        return Decimal(str(self.session.execute(stmt).scalar_one()))

    def ledger_entries(self, obligation_id: UUID) -> list[LedgerEntry]:
        rows = self.session.execute(
            select(LedgerEntryModel)
            .where(LedgerEntryModel.obligation_id == obligation_id)
            .order_by(LedgerEntryModel.entry_number)
        ).scalars()
        return [row.to_dto() for row in rows]
