"""
Rate and revenue providers for obligation billing.

Responsibility:
    The two collaborators the billing sweep reads from: a ``RateProvider``
    supplying a franchise's royalty / marketing / technology fee settings
    and a ``RevenueProvider`` supplying gross revenue for a scope and month.
    Both are abstract so deployments can plug in a POS feed or an external
    configuration store; the defaults read this system's own tables.

Architecture position:
    Services -- read-only adapters.  Never write.

Failure modes:
    - ConfigurationMissingError: the franchise has no royalty or marketing
      percentage configured.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from franchise_kernel.exceptions import ConfigurationMissingError
from franchise_kernel.logging_config import get_logger
from franchise_modules.obligations.config import BillingPolicy
from franchise_modules.obligations.models import ObligationKind, ObligationStatus
from franchise_modules.obligations.orm import FranchiseModel, ObligationModel, UnitModel

logger = get_logger("services.providers")


@dataclass(frozen=True)
class RateConfiguration:
    """Fee settings for one franchise scope."""

    royalty_percentage: Decimal
    marketing_fee_percentage: Decimal
    technology_fee_amount: Decimal


class RateProvider(ABC):
    """Supplies fee settings for a franchise scope."""

    @abstractmethod
    def rates_for(
        self,
        franchise: FranchiseModel,
        unit: UnitModel | None = None,
    ) -> RateConfiguration:
        ...


class RevenueProvider(ABC):
    """Supplies gross revenue for a scope and calendar month."""

    @abstractmethod
    def gross_revenue(
        self,
        franchise_id: UUID,
        unit_id: UUID | None,
        year: int,
        month: int,
    ) -> Decimal:
        ...


class FranchiseRateProvider(RateProvider):
    """
    Reads rates from the ``franchises`` row.

    The technology fee falls back to the policy default when the franchise
    does not set one.
    """

    def __init__(self, policy: BillingPolicy | None = None):
        self._policy = policy or BillingPolicy.with_defaults()

    def rates_for(
        self,
        franchise: FranchiseModel,
        unit: UnitModel | None = None,
    ) -> RateConfiguration:
        missing = [
            name
            for name in ("royalty_percentage", "marketing_fee_percentage")
            if getattr(franchise, name) is None
        ]
        if missing:
            raise ConfigurationMissingError(str(franchise.id), missing)
        technology_fee = franchise.technology_fee_amount
        if technology_fee is None:
            technology_fee = self._policy.default_technology_fee
        return RateConfiguration(
            royalty_percentage=franchise.royalty_percentage,
            marketing_fee_percentage=franchise.marketing_fee_percentage,
            technology_fee_amount=technology_fee,
        )


class RecordedRevenueProvider(RevenueProvider):
    """
    Sums recorded revenue obligations.

    Counts ``gross_amount`` of paid revenue-kind records for the scope and
    month.  Refund reversals are paid records with negated amounts, so
    refunded revenue nets out.
    """

    def __init__(self, session: Session):
        self._session = session

    def gross_revenue(
        self,
        franchise_id: UUID,
        unit_id: UUID | None,
        year: int,
        month: int,
    ) -> Decimal:
        stmt = select(func.coalesce(func.sum(ObligationModel.gross_amount), 0)).where(
            ObligationModel.kind == ObligationKind.REVENUE.value,
            ObligationModel.status == ObligationStatus.PAID.value,
            ObligationModel.franchise_id == franchise_id,
            ObligationModel.period_year == year,
            ObligationModel.period_month == month,
        )
        if unit_id is None:
            stmt = stmt.where(ObligationModel.unit_id.is_(None))
        else:
            stmt = stmt.where(ObligationModel.unit_id == unit_id)
        total = Decimal(str(self._session.execute(stmt).scalar_one()))
        logger.debug(
            "recorded_revenue_summed",
            extra={
                "franchise_id": str(franchise_id),
                "unit_id": str(unit_id) if unit_id else None,
                "year": year,
                "month": month,
                "gross_revenue": str(total),
            },
        )
        return total
