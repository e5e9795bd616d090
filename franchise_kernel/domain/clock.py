"""
Clock -- Deterministic time abstraction.

Responsibility:
    Provides an injectable clock interface so that engine, module and service
    code never call ``datetime.now()`` or ``date.today()`` directly.  Overdue
    derivation, paid dates, obligation numbers and due-date checks all read
    time from an injected Clock.

    Billing dates are calendar dates in the billing time zone (UTC unless
    configured): an obligation due on the 15th becomes overdue when the
    billing calendar reaches the 16th, wherever the process runs.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O (except SystemClock,
    which is the one sanctioned I/O boundary for time).
"""

from abc import ABC, abstractmethod
from datetime import date, datetime, time, timedelta, timezone, tzinfo


class Clock(ABC):
    """
    Abstract clock interface.

    Contract:
        Services receive a Clock through their constructor and read both
        instants (``now``) and billing dates (``today``) from it.

    Guarantees:
        - ``now()`` returns a timezone-aware ``datetime``.
        - ``today()`` is the date of ``now()`` in the billing time zone.
    """

    def __init__(self, billing_tz: tzinfo = timezone.utc):
        self.billing_tz = billing_tz

    @abstractmethod
    def now(self) -> datetime:
        """Current instant, timezone-aware."""
        ...

    def today(self) -> date:
        """Current calendar date in the billing time zone."""
        return self.now().astimezone(self.billing_tz).date()


class SystemClock(Clock):
    """Wall-clock time.  Not for tests."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Test clock that only moves when told to.

    ``now()`` returns the same instant until ``set_time``, ``set_date``,
    ``advance`` or ``advance_days`` moves it.
    """

    DEFAULT_TIME = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __init__(
        self,
        fixed_time: datetime | None = None,
        billing_tz: tzinfo = timezone.utc,
    ):
        super().__init__(billing_tz)
        self._current = fixed_time or self.DEFAULT_TIME

    def now(self) -> datetime:
        return self._current

    def set_time(self, instant: datetime) -> None:
        self._current = instant

    def set_date(self, day: date, at: time = time(9, 0)) -> None:
        """Move to ``at`` on ``day`` in the billing time zone."""
        self._current = datetime.combine(day, at, tzinfo=self.billing_tz)

    def advance(self, seconds: int = 1) -> None:
        self._current += timedelta(seconds=seconds)

    def advance_days(self, days: int) -> None:
        """Move forward whole billing days (e.g. past a grace period)."""
        self._current += timedelta(days=days)
