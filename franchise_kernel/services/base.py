"""
BaseService -- base for writers that join the caller's transaction.

Writers (``ObligationWriter``, ``SequenceService``) stage rows with
``session.flush()`` and leave commit and rollback to whoever opened the unit
of work: a module service, the recurrence service, the billing sweep's
per-scope SAVEPOINT or a test.  A failed step therefore never leaves half of
an obligation and its ledger entry behind.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from franchise_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """Flush-only writer bound to one session.  Never commits or rolls back."""

    def __init__(self, session: Session):
        self.session = session
