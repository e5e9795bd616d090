"""
Module: franchise_engines.periods
Responsibility:
    Billing-period and recurrence date arithmetic.  Computes the start/end
    dates of a monthly or quarterly billing period and the next occurrence
    date of a recurring obligation.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - Purity: no clock access, no I/O.  Dates are always passed in.
    - ``compute_period`` always returns start <= end, with start on the
      first day of a month and end on the last day of a month.
    - Month arithmetic clamps to the last day of the target month
      (Jan 31 + 1 month = Feb 28/29), so a chain of occurrences never skips
      a month.

Failure modes:
    - ValueError when month is outside 1..12 or quarter outside 1..4.
    - ValueError from enum construction for unknown frequency/recurrence
      strings; the validation boundary rejects these before they get here.

Usage:
    from datetime import date
    from franchise_engines.periods import (
        BillingFrequency, RecurrenceType, compute_period, compute_next_occurrence,
    )

    period = compute_period(2024, month=3)
    # Period(start=date(2024, 3, 1), end=date(2024, 3, 31), ...)

    compute_next_occurrence(date(2024, 1, 31), RecurrenceType.MONTHLY, 1)
    # date(2024, 2, 29)
"""

from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import date, timedelta
from enum import Enum


class BillingFrequency(str, Enum):
    """How a billing period is laid out on the calendar."""

    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    CUSTOM = "custom"  # explicit start/end (recurrence-generated periods)


class RecurrenceType(str, Enum):
    """Unit of a recurrence interval."""

    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"


@dataclass(frozen=True)
class Period:
    """
    A closed date range [start, end] that an obligation bills for.

    Guarantees:
        - start <= end.
        - year/month are those of ``start``; quarter is set for quarterly
          periods and derived from ``start`` otherwise.
    """

    start: date
    end: date
    frequency: BillingFrequency = BillingFrequency.MONTHLY

    def __post_init__(self) -> None:
        if self.start > self.end:
            raise ValueError(
                f"period start {self.start} is after period end {self.end}"
            )

    @property
    def year(self) -> int:
        return self.start.year

    @property
    def month(self) -> int:
        return self.start.month

    @property
    def quarter(self) -> int:
        return quarter_of_month(self.start.month)

    @property
    def days(self) -> int:
        """Number of calendar days covered (inclusive)."""
        return (self.end - self.start).days + 1

    def contains(self, day: date) -> bool:
        return self.start <= day <= self.end


def last_day_of_month(year: int, month: int) -> date:
    """Last calendar day of (year, month)."""
    if not 1 <= month <= 12:
        raise ValueError(f"month must be in 1..12, got {month}")
    return date(year, month, calendar.monthrange(year, month)[1])


def quarter_of_month(month: int) -> int:
    """Calendar quarter (1..4) containing ``month``."""
    if not 1 <= month <= 12:
        raise ValueError(f"month must be in 1..12, got {month}")
    return (month - 1) // 3 + 1


def add_months(base: date, months: int, anchor_day: int | None = None) -> date:
    """
    Add calendar months, clamping the day to the target month's length.

    ``anchor_day`` replaces ``base.day`` as the wanted day of month, so a
    chain started on the 31st lands on each month's last day instead of
    keeping the 29th it was clamped to in February.
    """
    month_index = base.month - 1 + months
    year = base.year + month_index // 12
    month = month_index % 12 + 1
    day = min(anchor_day or base.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def compute_period(
    year: int,
    month: int | None = None,
    quarter: int | None = None,
    frequency: BillingFrequency = BillingFrequency.MONTHLY,
) -> Period:
    """
    Compute the start/end dates of a billing period.

    Monthly: first to last calendar day of (year, month).
    Quarterly: first day of the quarter's first month to last day of its
    third month.  ``quarter`` wins over ``month`` when both are given; with
    only ``month``, the quarter containing it is used.

    Raises:
        ValueError: month/quarter missing or out of range.
    """
    frequency = BillingFrequency(frequency)

    if frequency == BillingFrequency.QUARTERLY:
        if quarter is None:
            if month is None:
                raise ValueError("quarterly period requires quarter or month")
            quarter = quarter_of_month(month)
        if not 1 <= quarter <= 4:
            raise ValueError(f"quarter must be in 1..4, got {quarter}")
        first_month = (quarter - 1) * 3 + 1
        return Period(
            start=date(year, first_month, 1),
            end=last_day_of_month(year, first_month + 2),
            frequency=frequency,
        )

    if frequency == BillingFrequency.CUSTOM:
        raise ValueError("custom periods carry explicit dates; use Period directly")

    if month is None:
        raise ValueError("monthly period requires month")
    return Period(
        start=date(year, month, 1),
        end=last_day_of_month(year, month),
        frequency=frequency,
    )


def compute_next_occurrence(
    base_date: date,
    recurrence_type: RecurrenceType,
    interval: int = 1,
    anchor_day: int | None = None,
) -> date:
    """
    Add ``interval`` recurrence units to ``base_date``.

    quarterly == 3 months.  Month-based units aim for ``anchor_day`` (the
    chain's first day of month, default ``base_date.day``) and clamp it to
    the target month's length.
    """
    recurrence_type = RecurrenceType(recurrence_type)

    if recurrence_type == RecurrenceType.DAILY:
        return base_date + timedelta(days=interval)
    if recurrence_type == RecurrenceType.WEEKLY:
        return base_date + timedelta(weeks=interval)
    if recurrence_type == RecurrenceType.MONTHLY:
        return add_months(base_date, interval, anchor_day)
    if recurrence_type == RecurrenceType.QUARTERLY:
        return add_months(base_date, interval * 3, anchor_day)
    return add_months(base_date, interval * 12, anchor_day)


def period_following(
    period_start: date,
    recurrence_type: RecurrenceType,
    interval: int = 1,
    anchor_day: int | None = None,
) -> Period:
    """
    The occurrence period after the one starting at ``period_start``.

    It starts on the next occurrence date and ends the day before the
    occurrence after that, so consecutive occurrences tile the calendar.
    A monthly chain anchored on the 1st therefore yields calendar months.
    Pass the chain root's day of month as ``anchor_day`` so month-end
    chains do not drift (Jan 31, Feb 29, Mar 31, Apr 30).
    """
    start = compute_next_occurrence(period_start, recurrence_type, interval, anchor_day)
    following = compute_next_occurrence(start, recurrence_type, interval, anchor_day)
    frequency = BillingFrequency.CUSTOM
    if start.day == 1 and following.day == 1:
        months_apart = (following.year - start.year) * 12 + following.month - start.month
        if months_apart == 1:
            frequency = BillingFrequency.MONTHLY
        elif months_apart == 3:
            frequency = BillingFrequency.QUARTERLY
    return Period(
        start=start,
        end=following - timedelta(days=1),
        frequency=frequency,
    )
