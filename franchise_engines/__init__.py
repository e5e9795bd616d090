"""
Module: franchise_engines
Responsibility:
    Package entrypoint re-exporting the pure calculation engines.  This is
    the canonical import surface for franchise_modules and
    franchise_services.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import franchise_kernel exceptions and logging.
    MUST NOT import franchise_services or franchise_modules.

Invariants enforced:
    - Purity: engines never read the clock.  Dates are passed in by the
      caller, which takes them from an injected Clock.
    - Decimal-only arithmetic for monetary amounts.
    - Determinism: identical inputs always produce identical outputs.

Audit relevance:
    Fee calculations are traced via ``@traced_engine`` (see
    ``franchise_engines.tracer``), emitting BILLING_ENGINE_TRACE records.
"""

from franchise_engines.fees import (
    FeeBreakdown,
    apply_adjustment,
    calculate_fees,
    calculate_late_fee,
    calculate_net_amount,
    compute_total,
    quantize_currency,
)
from franchise_engines.periods import (
    BillingFrequency,
    Period,
    RecurrenceType,
    add_months,
    compute_next_occurrence,
    compute_period,
    last_day_of_month,
    period_following,
    quarter_of_month,
)

__all__ = [
    "BillingFrequency",
    "FeeBreakdown",
    "Period",
    "RecurrenceType",
    "add_months",
    "apply_adjustment",
    "calculate_fees",
    "calculate_late_fee",
    "calculate_net_amount",
    "compute_next_occurrence",
    "compute_period",
    "compute_total",
    "last_day_of_month",
    "period_following",
    "quantize_currency",
    "quarter_of_month",
]
