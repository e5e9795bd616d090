"""
Franchise Services.

Orchestration that spans many obligations: the monthly royalty sweep, the
recurrence generator and the rate / revenue providers they read from.
"""

from franchise_services.billing_sweep import (
    MonthlyBillingSweep,
    SweepFailure,
    SweepReport,
    SweepSkip,
)
from franchise_services.providers import (
    FranchiseRateProvider,
    RateConfiguration,
    RateProvider,
    RecordedRevenueProvider,
    RevenueProvider,
)
from franchise_services.recurrence_service import RecurrenceService

__all__ = [
    "FranchiseRateProvider",
    "MonthlyBillingSweep",
    "RateConfiguration",
    "RateProvider",
    "RecordedRevenueProvider",
    "RecurrenceService",
    "RevenueProvider",
    "SweepFailure",
    "SweepReport",
    "SweepSkip",
]
