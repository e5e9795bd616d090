"""
Obligation Domain Models (``franchise_modules.obligations.models``).

Responsibility
--------------
Frozen dataclass value objects for the obligations module: the
``Obligation`` read model returned by services and selectors, the
validated ``ObligationInput`` accepted by ``ObligationService``, and the
``LedgerEntry`` written for payments and refunds.  Also the status,
kind and payment enums shared by the ORM and the workflow.

Architecture position
---------------------
**Modules layer** -- pure data definitions with ZERO I/O.  Depends only on
the period engine and kernel exceptions.

Invariants enforced
-------------------
* All models are ``frozen=True`` (immutable after construction).
* All monetary fields use ``Decimal`` -- NEVER ``float``.
* ``ObligationInput`` rejects malformed input with ``ValidationError``
  before any computation runs; values are never silently clamped.
* ``overdue`` is derived, never stored: see ``Obligation.effective_status``.

Failure modes
-------------
* ``ValidationError`` from ``ObligationInput.__post_init__``.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from franchise_engines.periods import (
    BillingFrequency,
    Period,
    RecurrenceType,
    compute_period,
)
from franchise_kernel.exceptions import ValidationError
from franchise_kernel.logging_config import get_logger

logger = get_logger("modules.obligations.models")

_ZERO = Decimal("0")
_HUNDRED = Decimal("100")


class ObligationKind(Enum):
    """What an obligation bills for."""
    ROYALTY = "royalty"
    REVENUE = "revenue"
    TRANSACTION = "transaction"


class ObligationStatus(Enum):
    """Obligation lifecycle states.  OVERDUE is derived, never persisted."""
    DRAFT = "draft"
    PENDING = "pending"
    PAID = "paid"
    OVERDUE = "overdue"
    DISPUTED = "disputed"
    CANCELLED = "cancelled"


class PaymentStatus(Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    REFUNDED = "refunded"


class PaymentMethod(Enum):
    BANK_TRANSFER = "bank_transfer"
    CHECK = "check"
    CREDIT_CARD = "credit_card"
    DEBIT_CARD = "debit_card"
    ACH = "ach"
    WIRE = "wire"
    CASH = "cash"
    DIGITAL_WALLET = "digital_wallet"
    OTHER = "other"


class LedgerEntryType(Enum):
    PAYMENT = "payment"
    REFUND = "refund"


def derive_status(
    stored_status: str,
    due_date: date | None,
    as_of: date,
) -> ObligationStatus:
    """Stored status with the overdue view applied: pending and past due."""
    status = ObligationStatus(stored_status)
    if status == ObligationStatus.PENDING and due_date is not None and due_date < as_of:
        return ObligationStatus.OVERDUE
    return status


@dataclass(frozen=True)
class LineItem:
    """
    One itemised sale on a revenue or transaction record.

    Line items document how the gross amount was made up; they do not
    change the billed amounts.
    """
    description: str
    quantity: Decimal
    unit_price: Decimal

    def __post_init__(self):
        if not isinstance(self.description, str) or not self.description.strip():
            raise ValidationError("description", "cannot be empty", self.description)
        _check_amount("quantity", self.quantity, required=True)
        _check_amount("unit_price", self.unit_price, required=True)
        if self.quantity == _ZERO:
            raise ValidationError("quantity", "must be positive", self.quantity)

    @property
    def amount(self) -> Decimal:
        return self.quantity * self.unit_price

    def to_dict(self) -> dict[str, str]:
        return {
            "description": self.description,
            "quantity": str(self.quantity),
            "unit_price": str(self.unit_price),
            "amount": str(self.amount),
        }

    @classmethod
    def from_dict(cls, data: dict[str, str]) -> "LineItem":
        return cls(
            description=data["description"],
            quantity=Decimal(data["quantity"]),
            unit_price=Decimal(data["unit_price"]),
        )


@dataclass(frozen=True)
class Obligation:
    """A royalty, revenue or transaction record."""
    id: UUID
    obligation_number: str
    kind: ObligationKind
    franchise_id: UUID
    billing_frequency: BillingFrequency
    period_year: int
    period_month: int
    period_start_date: date
    period_end_date: date
    gross_amount: Decimal
    subtotal_amount: Decimal
    total_amount: Decimal
    currency: str
    status: ObligationStatus
    payment_status: PaymentStatus
    unit_id: UUID | None = None
    party_id: UUID | None = None
    period_quarter: int | None = None
    royalty_percentage: Decimal = _ZERO
    marketing_fee_percentage: Decimal = _ZERO
    technology_fee_amount: Decimal = _ZERO
    royalty_amount: Decimal = _ZERO
    marketing_fee_amount: Decimal = _ZERO
    discount_amount: Decimal = _ZERO
    tax_amount: Decimal = _ZERO
    net_amount: Decimal = _ZERO
    adjustments: Decimal = _ZERO
    adjustment_notes: str | None = None
    late_fee: Decimal = _ZERO
    due_date: date | None = None
    paid_date: date | None = None
    payment_method: PaymentMethod | None = None
    payment_reference: str | None = None
    is_recurring: bool = False
    recurrence_type: RecurrenceType | None = None
    recurrence_interval: int = 1
    recurrence_end_date: date | None = None
    parent_record_id: UUID | None = None
    is_reversal: bool = False
    is_auto_generated: bool = False
    generated_by_id: UUID | None = None
    description: str | None = None
    notes: str | None = None
    attachments: tuple[str, ...] = field(default_factory=tuple)
    line_items: tuple[LineItem, ...] = field(default_factory=tuple)
    dedupe_key: str | None = None
    overdue_notified_at: datetime | None = None
    created_at: datetime | None = None

    @property
    def is_paid(self) -> bool:
        return self.status == ObligationStatus.PAID

    @property
    def series_root_id(self) -> UUID:
        """Root of the recurrence chain (the record itself for a root)."""
        return self.parent_record_id or self.id

    def effective_status(self, as_of: date) -> ObligationStatus:
        return derive_status(self.status.value, self.due_date, as_of)

    def is_overdue(self, as_of: date) -> bool:
        return self.effective_status(as_of) == ObligationStatus.OVERDUE

    def days_overdue(self, as_of: date) -> int:
        if not self.is_overdue(as_of):
            return 0
        return (as_of - self.due_date).days

    @property
    def period_description(self) -> str:
        if self.billing_frequency == BillingFrequency.QUARTERLY:
            return f"Q{self.period_quarter} {self.period_year}"
        if self.billing_frequency == BillingFrequency.MONTHLY:
            return self.period_start_date.strftime("%B %Y")
        return f"{self.period_start_date.isoformat()} to {self.period_end_date.isoformat()}"

    @property
    def formatted_total(self) -> str:
        return f"{self.currency} {self.total_amount:,.2f}"


def _check_amount(
    field_name: str,
    value: Decimal | None,
    *,
    percentage: bool = False,
    required: bool = False,
) -> None:
    if value is None:
        if required:
            raise ValidationError(field_name, "is required")
        return
    if isinstance(value, (float, bool)) or not isinstance(value, (Decimal, int)):
        raise ValidationError(field_name, "must be a Decimal", value)
    if value < _ZERO:
        raise ValidationError(field_name, "cannot be negative", value)
    if percentage and value > _HUNDRED:
        raise ValidationError(field_name, "must be between 0 and 100", value)


def _check_int(field_name: str, value: int | None, *, required: bool = False) -> None:
    if value is None:
        if required:
            raise ValidationError(field_name, "is required")
        return
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(field_name, "must be an integer", value)


@dataclass(frozen=True)
class ObligationInput:
    """
    Validated request to create an obligation.

    Period fields: monthly needs ``period_month``; quarterly needs
    ``period_quarter`` (or a month inside it); custom needs explicit
    ``period_start_date`` / ``period_end_date``.

    Royalty obligations need both percentages; ``technology_fee_amount``
    falls back to the billing policy default when omitted.  Revenue and
    transaction obligations bill their net amount (gross - discount + tax).
    """
    kind: ObligationKind
    franchise_id: UUID
    period_year: int
    gross_amount: Decimal
    period_month: int | None = None
    period_quarter: int | None = None
    billing_frequency: BillingFrequency = BillingFrequency.MONTHLY
    period_start_date: date | None = None
    period_end_date: date | None = None
    unit_id: UUID | None = None
    party_id: UUID | None = None
    royalty_percentage: Decimal | None = None
    marketing_fee_percentage: Decimal | None = None
    technology_fee_amount: Decimal | None = None
    discount_amount: Decimal | None = None
    tax_amount: Decimal | None = None
    currency: str | None = None
    due_date: date | None = None
    status: ObligationStatus = ObligationStatus.PENDING
    description: str | None = None
    notes: str | None = None
    is_recurring: bool = False
    recurrence_type: RecurrenceType | None = None
    recurrence_interval: int = 1
    recurrence_end_date: date | None = None

    def __post_init__(self):
        try:
            object.__setattr__(self, "kind", ObligationKind(self.kind))
            object.__setattr__(
                self, "billing_frequency", BillingFrequency(self.billing_frequency)
            )
            object.__setattr__(self, "status", ObligationStatus(self.status))
            if self.recurrence_type is not None:
                object.__setattr__(
                    self, "recurrence_type", RecurrenceType(self.recurrence_type)
                )
        except ValueError as exc:
            raise ValidationError("enum", str(exc)) from exc

        if self.status not in (ObligationStatus.DRAFT, ObligationStatus.PENDING):
            raise ValidationError(
                "status", "new obligations start as draft or pending", self.status.value
            )

        _check_int("period_year", self.period_year, required=True)
        _check_int("period_month", self.period_month)
        _check_int("period_quarter", self.period_quarter)
        _check_int("recurrence_interval", self.recurrence_interval, required=True)

        _check_amount("gross_amount", self.gross_amount, required=True)
        _check_amount("royalty_percentage", self.royalty_percentage, percentage=True)
        _check_amount(
            "marketing_fee_percentage", self.marketing_fee_percentage, percentage=True
        )
        _check_amount("technology_fee_amount", self.technology_fee_amount)
        _check_amount("discount_amount", self.discount_amount)
        _check_amount("tax_amount", self.tax_amount)

        if self.kind == ObligationKind.ROYALTY:
            if self.royalty_percentage is None:
                raise ValidationError("royalty_percentage", "required for royalty")
            if self.marketing_fee_percentage is None:
                raise ValidationError("marketing_fee_percentage", "required for royalty")
            for name in ("discount_amount", "tax_amount"):
                value = getattr(self, name)
                if value:
                    raise ValidationError(name, "not applicable to royalty", value)
        elif self.discount_amount is not None and self.discount_amount > self.gross_amount:
            raise ValidationError(
                "discount_amount", "cannot exceed gross_amount", self.discount_amount
            )

        if self.currency is not None and (
            len(self.currency) != 3 or not self.currency.isalpha()
        ):
            raise ValidationError("currency", "must be a 3-letter code", self.currency)

        if self.is_recurring:
            if self.recurrence_type is None:
                raise ValidationError("recurrence_type", "required when recurring")
        if self.recurrence_interval < 1:
            raise ValidationError(
                "recurrence_interval", "must be positive", self.recurrence_interval
            )

        # Resolving the period validates year/month/quarter/custom dates.
        period = self.period()
        if self.recurrence_end_date is not None and self.recurrence_end_date < period.start:
            raise ValidationError(
                "recurrence_end_date",
                "cannot precede the period start",
                self.recurrence_end_date,
            )
        if self.due_date is not None and self.due_date < period.start:
            raise ValidationError(
                "due_date", "cannot precede the period start", self.due_date
            )

    def period(self) -> Period:
        """The billing period this input describes."""
        if self.billing_frequency == BillingFrequency.CUSTOM:
            if self.period_start_date is None or self.period_end_date is None:
                raise ValidationError(
                    "period_start_date", "custom periods need start and end dates"
                )
            if self.period_start_date > self.period_end_date:
                raise ValidationError(
                    "period_end_date",
                    "cannot precede period_start_date",
                    self.period_end_date,
                )
            return Period(
                start=self.period_start_date,
                end=self.period_end_date,
                frequency=BillingFrequency.CUSTOM,
            )
        try:
            return compute_period(
                self.period_year,
                month=self.period_month,
                quarter=self.period_quarter,
                frequency=self.billing_frequency,
            )
        except ValueError as exc:
            raise ValidationError("period", str(exc)) from exc


@dataclass(frozen=True)
class LedgerEntry:
    """A payment or refund posted against an obligation."""
    id: UUID
    entry_number: str
    obligation_id: UUID
    entry_type: LedgerEntryType
    amount: Decimal
    currency: str
    entry_date: date
    payment_method: PaymentMethod | None = None
    reference: str | None = None
    memo: str | None = None
