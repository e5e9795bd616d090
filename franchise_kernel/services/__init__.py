"""Kernel services - flush-only writers and sequence allocation."""

from franchise_kernel.services.base import BaseService
from franchise_kernel.services.sequence_service import SequenceCounter, SequenceService

__all__ = [
    "BaseService",
    "SequenceCounter",
    "SequenceService",
]
