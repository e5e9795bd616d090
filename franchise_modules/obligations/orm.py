"""
Obligation ORM Models (``franchise_modules.obligations.orm``).

Responsibility
--------------
SQLAlchemy persistence models for the obligations module: the franchise
and unit scope rows that carry rate configuration, the ``obligations``
table itself and the ``ledger_entries`` written for payments and refunds.
Maps rows to the frozen dataclasses in ``models.py``.

Architecture position
---------------------
**Modules layer** -- persistence.  Imports from ``franchise_kernel.db.base``
and sibling ``models.py``.  MUST NOT be imported by ``franchise_kernel``.

Invariants enforced
-------------------
* ``obligation_number`` and ``entry_number`` are unique.
* ``dedupe_key`` is unique; live primary obligations carry
  ``kind|franchise|unit|start|end``, reversals and cancelled rows NULL.
* ``status`` stores the persisted state only; ``overdue`` is never written.
* Monetary columns are Numeric(14, 2); percentages Numeric(5, 2).
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from franchise_kernel.db.base import CurrencyAmount, Percentage, Rate, TrackedBase


# ---------------------------------------------------------------------------
# 1. FranchiseModel
# ---------------------------------------------------------------------------


class FranchiseModel(TrackedBase):
    """
    ORM model for a franchise: the billing scope that owns units.

    Rate columns are read-only for the billing core.  The nullable policy
    columns override the deployment ``BillingPolicy`` for this franchise.

    Guarantees:
        - code is unique (uq_franchises_code).
        - status stored as string; only "active" franchises are billed.
    """

    __tablename__ = "franchises"

    __table_args__ = (
        UniqueConstraint("code", name="uq_franchises_code"),
        Index("idx_franchises_status", "status"),
    )

    code: Mapped[str] = mapped_column(String(50), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="active")
    franchisee_id: Mapped[UUID | None] = mapped_column(nullable=True)

    royalty_percentage: Mapped[Decimal | None] = mapped_column(Percentage, nullable=True)
    marketing_fee_percentage: Mapped[Decimal | None] = mapped_column(
        Percentage, nullable=True
    )
    technology_fee_amount: Mapped[Decimal | None] = mapped_column(
        CurrencyAmount, nullable=True
    )

    late_fee_rate: Mapped[Decimal | None] = mapped_column(Rate, nullable=True)
    grace_period_days: Mapped[int | None] = mapped_column(nullable=True)
    currency: Mapped[str | None] = mapped_column(String(3), nullable=True)

    units: Mapped[list["UnitModel"]] = relationship(
        back_populates="franchise",
        lazy="selectin",
    )

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    def __repr__(self) -> str:
        return f"<FranchiseModel {self.code}: {self.name}>"


# ---------------------------------------------------------------------------
# 2. UnitModel
# ---------------------------------------------------------------------------


class UnitModel(TrackedBase):
    """
    ORM model for a franchise unit (an outlet / location).

    Guarantees:
        - code is unique within a franchise (uq_units_franchise_code).
    """

    __tablename__ = "units"

    __table_args__ = (
        UniqueConstraint("franchise_id", "code", name="uq_units_franchise_code"),
        Index("idx_units_franchise_id", "franchise_id"),
        Index("idx_units_status", "status"),
    )

    franchise_id: Mapped[UUID] = mapped_column(
        ForeignKey("franchises.id"), nullable=False
    )
    code: Mapped[str] = mapped_column(String(50), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="active")

    franchise: Mapped[FranchiseModel] = relationship(back_populates="units")

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    def __repr__(self) -> str:
        return f"<UnitModel {self.code}: {self.name}>"


# ---------------------------------------------------------------------------
# 3. ObligationModel
# ---------------------------------------------------------------------------


class ObligationModel(TrackedBase):
    """
    ORM model for royalty, revenue and transaction records.

    Maps to the ``Obligation`` frozen dataclass.

    Guarantees:
        - total_amount == subtotal_amount + adjustments + late_fee after
          every service operation.
        - late_fee >= 0 except on reversals, which negate every amount
          (ck_obligations_late_fee_non_negative).
        - net_amount == gross_amount - discount_amount + tax_amount; it is
          the subtotal of revenue and transaction records.
        - parent_record_id always points at the root of a recurrence chain
          or at the refunded original for reversals.
    """

    __tablename__ = "obligations"

    __table_args__ = (
        UniqueConstraint("obligation_number", name="uq_obligations_number"),
        UniqueConstraint("dedupe_key", name="uq_obligations_dedupe_key"),
        CheckConstraint(
            "is_reversal OR late_fee >= 0",
            name="ck_obligations_late_fee_non_negative",
        ),
        CheckConstraint(
            "is_reversal OR (discount_amount >= 0 AND tax_amount >= 0)",
            name="ck_obligations_discount_tax_non_negative",
        ),
        CheckConstraint(
            "period_start_date <= period_end_date",
            name="ck_obligations_period_order",
        ),
        Index("idx_obligations_franchise_id", "franchise_id"),
        Index("idx_obligations_unit_id", "unit_id"),
        Index("idx_obligations_status", "status"),
        Index("idx_obligations_due_date", "due_date"),
        Index("idx_obligations_period", "period_year", "period_month"),
        Index("idx_obligations_parent_record_id", "parent_record_id"),
    )

    obligation_number: Mapped[str] = mapped_column(String(30), nullable=False)
    kind: Mapped[str] = mapped_column(String(20), nullable=False)

    franchise_id: Mapped[UUID] = mapped_column(
        ForeignKey("franchises.id"), nullable=False
    )
    unit_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("units.id"), nullable=True
    )
    party_id: Mapped[UUID | None] = mapped_column(nullable=True)

    billing_frequency: Mapped[str] = mapped_column(String(20), default="monthly")
    period_year: Mapped[int] = mapped_column(nullable=False)
    period_month: Mapped[int] = mapped_column(nullable=False)
    period_quarter: Mapped[int | None] = mapped_column(nullable=True)
    period_start_date: Mapped[date] = mapped_column(Date, nullable=False)
    period_end_date: Mapped[date] = mapped_column(Date, nullable=False)

    gross_amount: Mapped[Decimal] = mapped_column(CurrencyAmount, nullable=False)
    royalty_percentage: Mapped[Decimal] = mapped_column(Percentage, default=Decimal("0"))
    marketing_fee_percentage: Mapped[Decimal] = mapped_column(
        Percentage, default=Decimal("0")
    )
    technology_fee_amount: Mapped[Decimal] = mapped_column(
        CurrencyAmount, default=Decimal("0")
    )
    royalty_amount: Mapped[Decimal] = mapped_column(CurrencyAmount, default=Decimal("0"))
    marketing_fee_amount: Mapped[Decimal] = mapped_column(
        CurrencyAmount, default=Decimal("0")
    )
    discount_amount: Mapped[Decimal] = mapped_column(CurrencyAmount, default=Decimal("0"))
    tax_amount: Mapped[Decimal] = mapped_column(CurrencyAmount, default=Decimal("0"))
    net_amount: Mapped[Decimal] = mapped_column(CurrencyAmount, default=Decimal("0"))
    subtotal_amount: Mapped[Decimal] = mapped_column(CurrencyAmount, nullable=False)
    adjustments: Mapped[Decimal] = mapped_column(CurrencyAmount, default=Decimal("0"))
    adjustment_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    late_fee: Mapped[Decimal] = mapped_column(CurrencyAmount, default=Decimal("0"))
    total_amount: Mapped[Decimal] = mapped_column(CurrencyAmount, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    status: Mapped[str] = mapped_column(String(20), default="pending")
    payment_status: Mapped[str] = mapped_column(String(20), default="pending")
    due_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    paid_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    payment_method: Mapped[str | None] = mapped_column(String(30), nullable=True)
    payment_reference: Mapped[str | None] = mapped_column(String(255), nullable=True)

    is_recurring: Mapped[bool] = mapped_column(Boolean, default=False)
    recurrence_type: Mapped[str | None] = mapped_column(String(20), nullable=True)
    recurrence_interval: Mapped[int] = mapped_column(default=1)
    recurrence_end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    parent_record_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("obligations.id"), nullable=True
    )

    is_reversal: Mapped[bool] = mapped_column(Boolean, default=False)
    is_auto_generated: Mapped[bool] = mapped_column(Boolean, default=False)
    generated_by_id: Mapped[UUID | None] = mapped_column(nullable=True)

    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    attachments: Mapped[list] = mapped_column(JSON, default=list)
    line_items: Mapped[list] = mapped_column(JSON, default=list)

    dedupe_key: Mapped[str | None] = mapped_column(String(200), nullable=True)
    overdue_notified_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    def to_dto(self):
        """Convert ORM model to frozen dataclass."""
        from franchise_engines.periods import BillingFrequency, RecurrenceType
        from franchise_modules.obligations.models import (
            LineItem,
            Obligation,
            ObligationKind,
            ObligationStatus,
            PaymentMethod,
            PaymentStatus,
        )

        return Obligation(
            id=self.id,
            obligation_number=self.obligation_number,
            kind=ObligationKind(self.kind),
            franchise_id=self.franchise_id,
            unit_id=self.unit_id,
            party_id=self.party_id,
            billing_frequency=BillingFrequency(self.billing_frequency),
            period_year=self.period_year,
            period_month=self.period_month,
            period_quarter=self.period_quarter,
            period_start_date=self.period_start_date,
            period_end_date=self.period_end_date,
            gross_amount=self.gross_amount,
            royalty_percentage=self.royalty_percentage,
            marketing_fee_percentage=self.marketing_fee_percentage,
            technology_fee_amount=self.technology_fee_amount,
            royalty_amount=self.royalty_amount,
            marketing_fee_amount=self.marketing_fee_amount,
            discount_amount=self.discount_amount,
            tax_amount=self.tax_amount,
            net_amount=self.net_amount,
            subtotal_amount=self.subtotal_amount,
            adjustments=self.adjustments,
            adjustment_notes=self.adjustment_notes,
            late_fee=self.late_fee,
            total_amount=self.total_amount,
            currency=self.currency,
            status=ObligationStatus(self.status),
            payment_status=PaymentStatus(self.payment_status),
            due_date=self.due_date,
            paid_date=self.paid_date,
            payment_method=(
                PaymentMethod(self.payment_method) if self.payment_method else None
            ),
            payment_reference=self.payment_reference,
            is_recurring=self.is_recurring,
            recurrence_type=(
                RecurrenceType(self.recurrence_type) if self.recurrence_type else None
            ),
            recurrence_interval=self.recurrence_interval,
            recurrence_end_date=self.recurrence_end_date,
            parent_record_id=self.parent_record_id,
            is_reversal=self.is_reversal,
            is_auto_generated=self.is_auto_generated,
            generated_by_id=self.generated_by_id,
            description=self.description,
            notes=self.notes,
            attachments=tuple(self.attachments or ()),
            line_items=tuple(LineItem.from_dict(item) for item in self.line_items or ()),
            dedupe_key=self.dedupe_key,
            overdue_notified_at=self.overdue_notified_at,
            created_at=self.created_at,
        )

    def __repr__(self) -> str:
        return f"<ObligationModel {self.obligation_number}: {self.status}>"


# ---------------------------------------------------------------------------
# 4. LedgerEntryModel
# ---------------------------------------------------------------------------


class LedgerEntryModel(TrackedBase):
    """
    ORM model for payment and refund ledger entries.

    Maps to the ``LedgerEntry`` frozen dataclass.  Written in the same
    transaction as the obligation change it records.

    Guarantees:
        - entry_number is unique (uq_ledger_entries_number).
        - refunds carry a negative amount.
    """

    __tablename__ = "ledger_entries"

    __table_args__ = (
        UniqueConstraint("entry_number", name="uq_ledger_entries_number"),
        Index("idx_ledger_entries_obligation_id", "obligation_id"),
        Index("idx_ledger_entries_entry_date", "entry_date"),
    )

    entry_number: Mapped[str] = mapped_column(String(30), nullable=False)
    obligation_id: Mapped[UUID] = mapped_column(
        ForeignKey("obligations.id"), nullable=False
    )
    entry_type: Mapped[str] = mapped_column(String(20), nullable=False)
    amount: Mapped[Decimal] = mapped_column(CurrencyAmount, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    entry_date: Mapped[date] = mapped_column(Date, nullable=False)
    payment_method: Mapped[str | None] = mapped_column(String(30), nullable=True)
    reference: Mapped[str | None] = mapped_column(String(255), nullable=True)
    memo: Mapped[str | None] = mapped_column(Text, nullable=True)

    def to_dto(self):
        """Convert ORM model to frozen dataclass."""
        from franchise_modules.obligations.models import (
            LedgerEntry,
            LedgerEntryType,
            PaymentMethod,
        )

        return LedgerEntry(
            id=self.id,
            entry_number=self.entry_number,
            obligation_id=self.obligation_id,
            entry_type=LedgerEntryType(self.entry_type),
            amount=self.amount,
            currency=self.currency,
            entry_date=self.entry_date,
            payment_method=(
                PaymentMethod(self.payment_method) if self.payment_method else None
            ),
            reference=self.reference,
            memo=self.memo,
        )

    def __repr__(self) -> str:
        return f"<LedgerEntryModel {self.entry_number}: {self.amount}>"
