"""
Obligations Module.

Royalty, revenue and transaction records: creation with fee arithmetic,
payment, late fees, adjustments, disputes, cancellation and refund by
reversal.

Period and fee arithmetic come from shared engines; numbering comes from
the kernel sequence service.
"""

from franchise_modules.obligations.config import BillingPolicy
from franchise_modules.obligations.events import ObligationEvent, ObligationEventPublisher
from franchise_modules.obligations.models import (
    LedgerEntry,
    LineItem,
    Obligation,
    ObligationInput,
    ObligationKind,
    ObligationStatus,
    PaymentMethod,
    PaymentStatus,
)
from franchise_modules.obligations.service import ObligationService
from franchise_modules.obligations.workflows import OBLIGATION_WORKFLOW

__all__ = [
    "BillingPolicy",
    "LedgerEntry",
    "LineItem",
    "OBLIGATION_WORKFLOW",
    "Obligation",
    "ObligationEvent",
    "ObligationEventPublisher",
    "ObligationInput",
    "ObligationKind",
    "ObligationService",
    "ObligationStatus",
    "PaymentMethod",
    "PaymentStatus",
]
