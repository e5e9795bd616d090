"""
MonthlyBillingSweep -- SAVEPOINT-per-scope royalty generation for one month.

Contract:
    ``generate_monthly_obligations(year, month)`` bills every active unit of
    every active franchise for the calendar month: it skips scopes already
    billed, reads gross revenue and rates from the providers and, when
    revenue is positive, creates a pending royalty obligation due
    ``grace_period_days`` after the period end.

Architecture: franchise_services.  Imports the obligations module writer,
    the providers and kernel infrastructure.

Invariants enforced:
    - SAVEPOINT isolation per scope: one failing scope never aborts the
      batch.  Every failure is logged and returned as a ``SweepFailure``.
    - Duplicate prevention via the obligation dedupe key, also under a
      concurrent sweep (the losing insert is reported as skipped).
    - All dates from the injected Clock.

Non-goals:
    - Does NOT call ``session.commit()`` -- the caller controls the final
      boundary, then calls ``publish_created`` to emit events.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from franchise_engines.periods import compute_period
from franchise_kernel.domain.clock import Clock, SystemClock
from franchise_kernel.exceptions import DuplicateObligationError, FranchiseKernelError
from franchise_kernel.logging_config import LogContext, get_logger
from franchise_modules.obligations.config import BillingPolicy
from franchise_modules.obligations.events import (
    OBLIGATION_CREATED,
    ObligationEvent,
    ObligationEventPublisher,
)
from franchise_modules.obligations.models import (
    Obligation,
    ObligationInput,
    ObligationKind,
    ObligationStatus,
)
from franchise_modules.obligations.orm import FranchiseModel, UnitModel
from franchise_modules.obligations.writer import (
    SYSTEM_ACTOR_ID,
    ObligationWriter,
    dedupe_key_for,
)
from franchise_services.providers import (
    FranchiseRateProvider,
    RateProvider,
    RecordedRevenueProvider,
    RevenueProvider,
)

logger = get_logger("services.billing_sweep")

SKIP_ALREADY_BILLED = "already_billed"
SKIP_NO_REVENUE = "no_revenue"


@dataclass(frozen=True)
class SweepFailure:
    """A scope the sweep could not bill."""

    franchise_id: UUID
    unit_id: UUID | None
    error_code: str
    message: str


@dataclass(frozen=True)
class SweepSkip:
    """A scope the sweep intentionally did not bill."""

    franchise_id: UUID
    unit_id: UUID | None
    reason: str


@dataclass
class SweepReport:
    """Outcome of one monthly sweep."""

    year: int
    month: int
    created: list[Obligation] = field(default_factory=list)
    skipped: list[SweepSkip] = field(default_factory=list)
    failures: list[SweepFailure] = field(default_factory=list)
    duration_ms: int = 0

    @property
    def scopes_processed(self) -> int:
        return len(self.created) + len(self.skipped) + len(self.failures)

    @property
    def total_billed(self) -> Decimal:
        return sum((o.total_amount for o in self.created), Decimal("0"))

    def to_dict(self) -> dict[str, Any]:
        return {
            "year": self.year,
            "month": self.month,
            "scopes_processed": self.scopes_processed,
            "created": [
                {
                    "obligation_id": str(o.id),
                    "obligation_number": o.obligation_number,
                    "franchise_id": str(o.franchise_id),
                    "unit_id": str(o.unit_id) if o.unit_id else None,
                    "total_amount": str(o.total_amount),
                    "due_date": o.due_date.isoformat() if o.due_date else None,
                }
                for o in self.created
            ],
            "skipped": [
                {
                    "franchise_id": str(s.franchise_id),
                    "unit_id": str(s.unit_id) if s.unit_id else None,
                    "reason": s.reason,
                }
                for s in self.skipped
            ],
            "failures": [
                {
                    "franchise_id": str(f.franchise_id),
                    "unit_id": str(f.unit_id) if f.unit_id else None,
                    "error_code": f.error_code,
                    "message": f.message,
                }
                for f in self.failures
            ],
            "total_billed": str(self.total_billed),
            "duration_ms": self.duration_ms,
        }


class MonthlyBillingSweep:
    """
    Monthly royalty generation over all active scopes.

    Usage:
        with session_scope() as session:
            sweep = MonthlyBillingSweep(session, clock=clock)
            report = sweep.generate_monthly_obligations(2024, 3)
        sweep.publish_created(report)
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        policy: BillingPolicy | None = None,
        rate_provider: RateProvider | None = None,
        revenue_provider: RevenueProvider | None = None,
        publisher: ObligationEventPublisher | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._policy = policy or BillingPolicy.with_defaults()
        self._rates = rate_provider or FranchiseRateProvider(self._policy)
        self._revenue = revenue_provider or RecordedRevenueProvider(session)
        self._publisher = publisher or ObligationEventPublisher()
        self._writer = ObligationWriter(session, self._clock)

    def _active_scopes(self) -> list[tuple[FranchiseModel, UnitModel]]:
        rows = self._session.execute(
            select(FranchiseModel, UnitModel)
            .join(UnitModel, UnitModel.franchise_id == FranchiseModel.id)
            .where(FranchiseModel.status == "active", UnitModel.status == "active")
            .order_by(FranchiseModel.code, UnitModel.code)
        ).all()
        return [(franchise, unit) for franchise, unit in rows]

    def generate_monthly_obligations(
        self,
        year: int,
        month: int,
        actor_id: UUID | None = None,
    ) -> SweepReport:
        """
        Bill every active scope for (year, month).

        Returns a ``SweepReport``; per-scope errors never propagate.
        """
        start_time = time.monotonic()
        period = compute_period(year, month=month)
        report = SweepReport(year=year, month=month)
        scopes = self._active_scopes()

        logger.info(
            "billing_sweep_started",
            extra={"year": year, "month": month, "scope_count": len(scopes)},
        )

        for franchise, unit in scopes:
            with LogContext.bind(scope=f"{franchise.code}/{unit.code}"):
                savepoint = self._session.begin_nested()
                try:
                    outcome = self._bill_scope(franchise, unit, period, actor_id)
                    savepoint.commit()
                except DuplicateObligationError:
                    savepoint.rollback()
                    outcome = SweepSkip(franchise.id, unit.id, SKIP_ALREADY_BILLED)
                except FranchiseKernelError as exc:
                    savepoint.rollback()
                    logger.warning(
                        "billing_sweep_scope_failed",
                        extra={
                            "franchise_id": str(franchise.id),
                            "unit_id": str(unit.id),
                            "error_code": exc.code,
                            "error": str(exc),
                        },
                    )
                    outcome = SweepFailure(franchise.id, unit.id, exc.code, str(exc))
                except Exception as exc:
                    savepoint.rollback()
                    logger.error(
                        "billing_sweep_scope_failed",
                        extra={
                            "franchise_id": str(franchise.id),
                            "unit_id": str(unit.id),
                            "error_code": "UNHANDLED_EXCEPTION",
                        },
                        exc_info=True,
                    )
                    outcome = SweepFailure(
                        franchise.id, unit.id, "UNHANDLED_EXCEPTION", str(exc)
                    )

            if isinstance(outcome, SweepFailure):
                report.failures.append(outcome)
            elif isinstance(outcome, SweepSkip):
                report.skipped.append(outcome)
            else:
                report.created.append(outcome)

        report.duration_ms = int((time.monotonic() - start_time) * 1000)
        logger.info(
            "billing_sweep_completed",
            extra={
                "year": year,
                "month": month,
                "created_count": len(report.created),
                "skipped_count": len(report.skipped),
                "failed_count": len(report.failures),
                "total_billed": str(report.total_billed),
                "duration_ms": report.duration_ms,
            },
        )
        return report

    def _bill_scope(
        self,
        franchise: FranchiseModel,
        unit: UnitModel,
        period,
        actor_id: UUID | None,
    ) -> Obligation | SweepSkip:
        dedupe_key = dedupe_key_for(
            ObligationKind.ROYALTY, franchise.id, unit.id, period.start, period.end
        )
        if self._writer.find_by_dedupe_key(dedupe_key) is not None:
            logger.debug("billing_sweep_scope_already_billed", extra={"unit_id": str(unit.id)})
            return SweepSkip(franchise.id, unit.id, SKIP_ALREADY_BILLED)

        revenue = self._revenue.gross_revenue(franchise.id, unit.id, period.year, period.month)
        if revenue <= 0:
            logger.debug(
                "billing_sweep_scope_no_revenue",
                extra={"unit_id": str(unit.id), "gross_revenue": str(revenue)},
            )
            return SweepSkip(franchise.id, unit.id, SKIP_NO_REVENUE)

        rates = self._rates.rates_for(franchise, unit)
        policy = self._policy.resolve_for(franchise)
        data = ObligationInput(
            kind=ObligationKind.ROYALTY,
            franchise_id=franchise.id,
            unit_id=unit.id,
            period_year=period.year,
            period_month=period.month,
            gross_amount=revenue,
            royalty_percentage=rates.royalty_percentage,
            marketing_fee_percentage=rates.marketing_fee_percentage,
            technology_fee_amount=rates.technology_fee_amount,
            status=ObligationStatus.PENDING,
            description=f"Royalty for {unit.name}, {period.start.strftime('%B %Y')}",
        )
        model = self._writer.build(
            data,
            policy,
            franchise,
            actor_id or SYSTEM_ACTOR_ID,
            is_auto_generated=True,
            generated_by_id=actor_id,
        )
        self._writer.insert(model, policy.prefix_for(ObligationKind.ROYALTY))
        return model.to_dto()

    def publish_created(self, report: SweepReport) -> None:
        """Emit ``obligation.created`` for each record in a committed report."""
        for obligation in report.created:
            self._publisher.publish(
                ObligationEvent(
                    event_type=OBLIGATION_CREATED,
                    obligation_id=obligation.id,
                    obligation_number=obligation.obligation_number,
                    franchise_id=obligation.franchise_id,
                    occurred_at=self._clock.now(),
                    actor_id=obligation.generated_by_id,
                    payload={"auto_generated": True, "source": "monthly_billing_sweep"},
                )
            )
