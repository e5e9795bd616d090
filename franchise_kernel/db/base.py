"""
Module: franchise_kernel.db.base
Responsibility: Declarative base, shared column types and the audit mixin
    for every billing table (franchises, units, obligations, ledger entries,
    sequence counters).
Architecture position: Kernel > DB.  Lowest import target in the kernel;
    must not import from services/, selectors/, domain/ or outer layers.

Invariants enforced:
    - Primary keys are uuid4 values, stored as 36-character strings so the
      same schema runs on PostgreSQL and SQLite.
    - Money never touches float: currency columns are Numeric(14, 2),
      percentages Numeric(5, 2), rates Numeric(7, 4).  Any other Decimal
      column defaults to Numeric(38, 9).
    - Every tracked row records who created it and who last changed it.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import ClassVar
from uuid import UUID as PyUUID, uuid4

from sqlalchemy import BigInteger, Date, DateTime, Numeric, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

# Obligation amounts: up to 999,999,999,999.99 in the billing currency.
CurrencyAmount = Numeric(14, 2)
# Royalty and marketing percentages, 0.00 to 100.00.
Percentage = Numeric(5, 2)
# Late fee rates as fractions, e.g. 0.0500.
Rate = Numeric(7, 4)


class UUIDString(TypeDecorator):
    """UUID bound as ``str`` and loaded back as ``uuid.UUID``."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return None if value is None else str(value)

    def process_result_value(self, value, dialect):
        return None if value is None else PyUUID(value)


class Base(DeclarativeBase):
    """Declarative base: uuid4 ``id`` plus the annotation-to-column map."""

    type_annotation_map: ClassVar[dict] = {
        Decimal: Numeric(38, 9),
        datetime: DateTime(timezone=True),
        date: Date(),
        PyUUID: UUIDString(),
        int: BigInteger,
    }

    id: Mapped[PyUUID] = mapped_column(UUIDString(), primary_key=True, default=uuid4)


class TrackedBase(Base):
    """
    Abstract base for rows with an audit trail.

    ``created_at`` / ``created_by_id`` are written once on insert;
    ``updated_at`` moves on every UPDATE and services set
    ``updated_by_id`` to the acting user.  Rows the system generates on its
    own (monthly sweep, recurrence) are created by the system actor.
    """

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(), onupdate=func.now(), nullable=False
    )
    created_by_id: Mapped[PyUUID] = mapped_column(nullable=False)
    updated_by_id: Mapped[PyUUID | None] = mapped_column(nullable=True)
