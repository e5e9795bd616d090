"""
Module: franchise_engines.fees
Responsibility:
    Royalty fee arithmetic: component fees from gross revenue and rates,
    late fees, adjustment replacement and the obligation total.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - Decimal-only arithmetic.  float inputs are rejected.
    - No intermediate rounding: ``calculate_fees`` returns exact products;
      ``quantize_currency`` applies ROUND_HALF_UP to 0.01 once, at storage.
    - ``FeeBreakdown.total == royalty_amount + marketing_fee_amount +
      technology_fee_amount`` exactly.

Failure modes:
    - ValidationError for negative gross revenue, percentages outside
      [0, 100], negative technology fee or a late-fee rate outside [0, 1].

Usage:
    from decimal import Decimal
    from franchise_engines.fees import calculate_fees

    fees = calculate_fees(Decimal("100000"), Decimal("8"), Decimal("2"), Decimal("50"))
    # FeeBreakdown(royalty_amount=Decimal("8000"), marketing_fee_amount=Decimal("2000"),
    #              technology_fee_amount=Decimal("50"), total=Decimal("10050"))
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from franchise_engines.tracer import traced_engine
from franchise_kernel.exceptions import ValidationError
from franchise_kernel.logging_config import get_logger

logger = get_logger("engines.fees")

_TWO_PLACES = Decimal("0.01")
_HUNDRED = Decimal("100")
_ZERO = Decimal("0")


def _require_decimal(field: str, value: Decimal) -> Decimal:
    if isinstance(value, float) or not isinstance(value, (Decimal, int)):
        raise ValidationError(field, "must be a Decimal", value)
    return Decimal(value)


def _require_percentage(field: str, value: Decimal) -> Decimal:
    value = _require_decimal(field, value)
    if value < _ZERO or value > _HUNDRED:
        raise ValidationError(field, "must be between 0 and 100", value)
    return value


@dataclass(frozen=True)
class FeeBreakdown:
    """Unrounded fee components for one billing period."""

    royalty_amount: Decimal
    marketing_fee_amount: Decimal
    technology_fee_amount: Decimal
    total: Decimal

    def quantized(self) -> FeeBreakdown:
        """Copy with every component rounded to currency precision."""
        royalty = quantize_currency(self.royalty_amount)
        marketing = quantize_currency(self.marketing_fee_amount)
        technology = quantize_currency(self.technology_fee_amount)
        return FeeBreakdown(
            royalty_amount=royalty,
            marketing_fee_amount=marketing,
            technology_fee_amount=technology,
            total=royalty + marketing + technology,
        )


def quantize_currency(amount: Decimal) -> Decimal:
    """Round to 2 decimal places, ROUND_HALF_UP."""
    return Decimal(amount).quantize(_TWO_PLACES, rounding=ROUND_HALF_UP)


@traced_engine(
    "fees",
    "1.0",
    fingerprint_fields=(
        "gross_revenue",
        "royalty_percentage",
        "marketing_fee_percentage",
        "technology_fee_amount",
    ),
)
def calculate_fees(
    gross_revenue: Decimal,
    royalty_percentage: Decimal,
    marketing_fee_percentage: Decimal,
    technology_fee_amount: Decimal,
) -> FeeBreakdown:
    """
    Compute royalty, marketing fee and total for one period.

    royalty = gross * royalty% / 100, marketing = gross * marketing% / 100,
    total = royalty + marketing + technology fee.

    Raises:
        ValidationError: gross < 0, a percentage outside [0, 100] or a
            negative technology fee.
    """
    gross_revenue = _require_decimal("gross_revenue", gross_revenue)
    if gross_revenue < _ZERO:
        raise ValidationError("gross_revenue", "must be non-negative", gross_revenue)
    royalty_percentage = _require_percentage("royalty_percentage", royalty_percentage)
    marketing_fee_percentage = _require_percentage(
        "marketing_fee_percentage", marketing_fee_percentage
    )
    technology_fee_amount = _require_decimal(
        "technology_fee_amount", technology_fee_amount
    )
    if technology_fee_amount < _ZERO:
        raise ValidationError(
            "technology_fee_amount", "must be non-negative", technology_fee_amount
        )

    royalty = gross_revenue * royalty_percentage / _HUNDRED
    marketing = gross_revenue * marketing_fee_percentage / _HUNDRED
    return FeeBreakdown(
        royalty_amount=royalty,
        marketing_fee_amount=marketing,
        technology_fee_amount=technology_fee_amount,
        total=royalty + marketing + technology_fee_amount,
    )


@traced_engine("late_fee", "1.0", fingerprint_fields=("total_amount", "late_fee_rate"))
def calculate_late_fee(total_amount: Decimal, late_fee_rate: Decimal) -> Decimal:
    """
    Late fee for an overdue obligation: ``total * rate``, currency-rounded.

    A non-positive total yields zero; late fees are never negative.
    """
    total_amount = _require_decimal("total_amount", total_amount)
    late_fee_rate = _require_decimal("late_fee_rate", late_fee_rate)
    if late_fee_rate < _ZERO or late_fee_rate > Decimal("1"):
        raise ValidationError("late_fee_rate", "must be between 0 and 1", late_fee_rate)
    if total_amount <= _ZERO:
        return quantize_currency(_ZERO)
    return quantize_currency(total_amount * late_fee_rate)


def calculate_net_amount(
    gross_amount: Decimal,
    discount_amount: Decimal = _ZERO,
    tax_amount: Decimal = _ZERO,
) -> Decimal:
    """
    Amount billed on a revenue or transaction record: gross - discount + tax.

    Raises:
        ValidationError: a negative component, or a discount above gross.
    """
    gross_amount = _require_decimal("gross_amount", gross_amount)
    discount_amount = _require_decimal("discount_amount", discount_amount)
    tax_amount = _require_decimal("tax_amount", tax_amount)
    for field, value in (
        ("gross_amount", gross_amount),
        ("discount_amount", discount_amount),
        ("tax_amount", tax_amount),
    ):
        if value < _ZERO:
            raise ValidationError(field, "must be non-negative", value)
    if discount_amount > gross_amount:
        raise ValidationError("discount_amount", "cannot exceed gross_amount", discount_amount)
    return gross_amount - discount_amount + tax_amount


def apply_adjustment(
    total_amount: Decimal,
    previous_adjustment: Decimal,
    new_adjustment: Decimal,
) -> Decimal:
    """Replace one adjustment with another: ``total - previous + new``."""
    return (
        _require_decimal("total_amount", total_amount)
        - _require_decimal("previous_adjustment", previous_adjustment)
        + _require_decimal("adjustment", new_adjustment)
    )


def compute_total(
    subtotal_amount: Decimal,
    adjustments: Decimal = _ZERO,
    late_fee: Decimal = _ZERO,
) -> Decimal:
    """Obligation total: subtotal + adjustments + late fee."""
    return subtotal_amount + adjustments + late_fee
