"""
SequenceService -- monotonic sequence allocation via locked counter rows.

Responsibility:
    Hands out the running part of obligation and ledger entry numbers.  A
    sequence is named after the number prefix and month it serves
    ("ROY202403", "TXN202404"), so numbering restarts every month.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.
    Called by ObligationWriter when inserting obligations and ledger entries.

Invariants enforced:
    - The counter row, locked with ``SELECT ... FOR UPDATE``, is the only
      source of the next value; two transactions numbering the same month
      are serialized on it.  Numbers are never derived from the highest
      existing obligation number.
    - Allocation joins the caller's transaction: a rolled-back billing run
      gives its numbers back.

Failure modes:
    - Two transactions creating the same counter at once: the loser's
      INSERT fails inside a SAVEPOINT and it locks the winner's row instead.
"""

from sqlalchemy import String, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Mapped, Session, mapped_column

from franchise_kernel.db.base import Base
from franchise_kernel.logging_config import get_logger

logger = get_logger("services.sequence")


class SequenceCounter(Base):
    """Last value handed out for one named sequence."""

    __tablename__ = "sequence_counters"

    name: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    current_value: Mapped[int] = mapped_column(nullable=False, default=0)


class SequenceService:
    """
    Allocates sequence values inside the caller's transaction.

    Never commits.

    Usage:
        value = SequenceService(session).next_value("ROY202403")
        number = f"ROY202403{value:04d}"
    """

    def __init__(self, session: Session):
        self._session = session

    def _lock(self, name: str) -> SequenceCounter | None:
        return self._session.execute(
            select(SequenceCounter)
            .where(SequenceCounter.name == name)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def _create(self, name: str, value: int) -> SequenceCounter | None:
        """Insert a counter row; None when another transaction created it first."""
        savepoint = self._session.begin_nested()
        counter = SequenceCounter(name=name, current_value=value)
        try:
            self._session.add(counter)
            self._session.flush()
        except IntegrityError:
            savepoint.rollback()
            logger.debug("sequence_counter_race_retry", extra={"sequence_name": name})
            return None
        savepoint.commit()
        return counter

    def next_value(self, name: str) -> int:
        """Increment ``name`` and return the new value (1 for a new sequence)."""
        counter = self._lock(name)
        if counter is None:
            counter = self._create(name, 1)
            if counter is not None:
                value = 1
            else:
                counter = self._lock(name)
                if counter is None:
                    raise LookupError(f"sequence counter {name} vanished during creation")
                counter.current_value += 1
                value = counter.current_value
        else:
            counter.current_value += 1
            value = counter.current_value

        self._session.flush()
        logger.debug("sequence_allocated", extra={"sequence_name": name, "value": value})
        return value

    def current_value(self, name: str) -> int | None:
        """Last value handed out, or None if ``name`` was never used."""
        return self._session.execute(
            select(SequenceCounter.current_value).where(SequenceCounter.name == name)
        ).scalar_one_or_none()

    def reset(self, name: str, value: int = 0) -> None:
        """Set ``name`` so the next allocation returns ``value + 1``.  Tests and migrations only."""
        counter = self._lock(name)
        if counter is None:
            self._session.add(SequenceCounter(name=name, current_value=value))
        else:
            counter.current_value = value
        self._session.flush()
