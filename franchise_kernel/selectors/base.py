"""
Module: franchise_kernel.selectors.base
Responsibility: Common base for the read side (obligation lookups, status
    and period filters, ledger history).
Architecture position: Kernel > Selectors.  May import from db/base.py.

Invariants enforced:
    - Selectors only read: no add, delete, flush or commit on the session
      they are handed.
    - They return frozen DTOs (``Obligation``, ``LedgerEntry``), never ORM
      rows, so callers cannot mutate billing state through a query result.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from franchise_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseSelector(ABC, Generic[ModelType]):
    """Holds the caller's session; ``ModelType`` is the primary table queried."""

    def __init__(self, session: Session):
        self.session = session
