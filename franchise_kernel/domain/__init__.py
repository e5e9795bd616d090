"""
Pure domain layer.

Objects here have NO dependencies on the ORM, the database or I/O
(SystemClock is the single sanctioned time boundary).
"""

from franchise_kernel.domain.clock import Clock, DeterministicClock, SystemClock

__all__ = [
    "Clock",
    "DeterministicClock",
    "SystemClock",
]
