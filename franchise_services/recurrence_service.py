"""
RecurrenceService -- generates the next occurrence of recurring obligations.

Responsibility:
    Given a recurring obligation, creates the obligation for the following
    occurrence period: same scope, rates, gross amount, currency,
    description and recurrence policy; a fresh period and due date; linked
    to the root of its chain.  ``generate_due`` catches every chain up to a
    date.

Architecture position:
    Services -- orchestration over the obligations module writer.
    Owns its transaction boundary: commits on success, rolls back on failure.

Invariants enforced:
    - Idempotent: an occurrence whose (kind, scope, period) already exists
      is returned, never duplicated.
    - Termination: nothing is created once the next occurrence date passes
      ``recurrence_end_date``, on every call.
    - Every generated record carries ``parent_record_id`` = chain root and
      ``is_auto_generated`` = True.
"""

from __future__ import annotations

from datetime import date, timedelta
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from franchise_engines.periods import BillingFrequency, compute_next_occurrence, period_following
from franchise_kernel.domain.clock import Clock, SystemClock
from franchise_kernel.exceptions import DuplicateObligationError, ObligationNotFoundError
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
from franchise_modules.obligations.orm import FranchiseModel, ObligationModel
from franchise_modules.obligations.writer import (
    SYSTEM_ACTOR_ID,
    ObligationWriter,
    dedupe_key_for,
)

logger = get_logger("services.recurrence")

# Upper bound on occurrences generated for one chain in a single catch-up.
MAX_CATCH_UP_OCCURRENCES = 1000


class RecurrenceService:
    """
    Generates recurring obligation occurrences.

    Usage:
        service = RecurrenceService(session, clock=clock)
        next_obligation = service.generate_next(obligation_id)
        created = service.generate_due(as_of=date(2024, 6, 30))
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        policy: BillingPolicy | None = None,
        publisher: ObligationEventPublisher | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._policy = policy or BillingPolicy.with_defaults()
        self._publisher = publisher or ObligationEventPublisher()
        self._writer = ObligationWriter(session, self._clock)

    def _anchor_day(self, source: ObligationModel) -> int:
        """Day of month the chain started on; later occurrences aim for it."""
        if source.parent_record_id is None:
            return source.period_start_date.day
        root = self._session.get(ObligationModel, source.parent_record_id)
        return (root or source).period_start_date.day

    # =========================================================================
    # Single occurrence
    # =========================================================================

    def generate_next(
        self,
        obligation_id: UUID,
        actor_id: UUID | None = None,
    ) -> Obligation | None:
        """
        Create (or return the existing) next occurrence of ``obligation_id``.

        Returns None when the record is not recurring, is a reversal or is
        cancelled, or when the next occurrence falls after the recurrence
        end date.

        Raises:
            ObligationNotFoundError: unknown id.
        """
        with LogContext.bind(obligation_id=str(obligation_id)):
            try:
                source = self._session.get(ObligationModel, obligation_id)
                if source is None:
                    raise ObligationNotFoundError(str(obligation_id))
                model, created = self._generate(source, actor_id)
                self._session.commit()
            except Exception:
                self._session.rollback()
                raise

            if model is None:
                return None
            obligation = model.to_dto()
            if created:
                self._publish_created(obligation, actor_id)
            return obligation

    def _generate(
        self,
        source: ObligationModel,
        actor_id: UUID | None,
    ) -> tuple[ObligationModel | None, bool]:
        """Flush-only core of ``generate_next``.  Returns (model, created)."""
        if (
            not source.is_recurring
            or not source.recurrence_type
            or source.is_reversal
            or source.status == ObligationStatus.CANCELLED.value
        ):
            logger.info(
                "recurrence_not_applicable",
                extra={
                    "obligation_id": str(source.id),
                    "is_recurring": source.is_recurring,
                    "status": source.status,
                },
            )
            return None, False

        interval = source.recurrence_interval or 1
        anchor_day = self._anchor_day(source)
        next_date = compute_next_occurrence(
            source.period_start_date, source.recurrence_type, interval, anchor_day
        )
        if source.recurrence_end_date is not None and next_date > source.recurrence_end_date:
            logger.info(
                "recurrence_ended",
                extra={
                    "obligation_id": str(source.id),
                    "next_date": next_date.isoformat(),
                    "recurrence_end_date": source.recurrence_end_date.isoformat(),
                },
            )
            return None, False

        period = period_following(
            source.period_start_date, source.recurrence_type, interval, anchor_day
        )
        dedupe_key = dedupe_key_for(
            source.kind, source.franchise_id, source.unit_id, period.start, period.end
        )
        existing = self._writer.find_by_dedupe_key(dedupe_key)
        if existing is not None:
            logger.info(
                "recurrence_occurrence_exists",
                extra={
                    "obligation_id": str(source.id),
                    "existing_id": str(existing.id),
                },
            )
            return existing, False

        franchise = self._session.get(FranchiseModel, source.franchise_id)
        policy = self._policy.resolve_for(franchise)
        if source.due_date is not None:
            due_date = period.end + (source.due_date - source.period_end_date)
        else:
            due_date = period.end + timedelta(days=policy.grace_period_days)

        data = ObligationInput(
            kind=ObligationKind(source.kind),
            franchise_id=source.franchise_id,
            unit_id=source.unit_id,
            party_id=source.party_id,
            period_year=period.year,
            period_month=period.month,
            billing_frequency=BillingFrequency.CUSTOM,
            period_start_date=period.start,
            period_end_date=period.end,
            gross_amount=source.gross_amount,
            royalty_percentage=source.royalty_percentage,
            marketing_fee_percentage=source.marketing_fee_percentage,
            technology_fee_amount=source.technology_fee_amount,
            discount_amount=source.discount_amount,
            tax_amount=source.tax_amount,
            currency=source.currency,
            due_date=max(due_date, period.start),
            status=ObligationStatus.PENDING,
            description=source.description,
            is_recurring=True,
            recurrence_type=source.recurrence_type,
            recurrence_interval=interval,
            recurrence_end_date=source.recurrence_end_date,
        )
        model = self._writer.build(
            data,
            policy,
            franchise,
            actor_id or SYSTEM_ACTOR_ID,
            period=period,
            is_auto_generated=True,
            generated_by_id=actor_id,
            parent_record_id=source.parent_record_id or source.id,
        )
        try:
            self._writer.insert(model, policy.prefix_for(source.kind))
        except DuplicateObligationError as exc:
            existing = self._writer.find_by_dedupe_key(exc.dedupe_key)
            if existing is None:
                raise
            return existing, False

        logger.info(
            "recurrence_occurrence_generated",
            extra={
                "source_id": str(source.id),
                "obligation_id": str(model.id),
                "obligation_number": model.obligation_number,
                "period_start": period.start.isoformat(),
                "period_end": period.end.isoformat(),
            },
        )
        return model, True

    # =========================================================================
    # Catch-up
    # =========================================================================

    def _chain_head(self, root: ObligationModel) -> ObligationModel:
        return self._session.execute(
            select(ObligationModel)
            .where(
                (ObligationModel.id == root.id)
                | (ObligationModel.parent_record_id == root.id),
                ObligationModel.is_reversal.is_(False),
            )
            .order_by(ObligationModel.period_start_date.desc())
            .limit(1)
        ).scalar_one()

    def generate_due(
        self,
        as_of: date | None = None,
        actor_id: UUID | None = None,
    ) -> list[Obligation]:
        """
        Generate every occurrence whose start date is on or before ``as_of``.

        Each chain is advanced from its latest occurrence; a chain whose
        latest occurrence is cancelled is stopped.  Each chain runs in its
        own SAVEPOINT so one failing chain does not block the others.
        """
        as_of = as_of or self._clock.today()
        roots = list(
            self._session.execute(
                select(ObligationModel).where(
                    ObligationModel.is_recurring.is_(True),
                    ObligationModel.is_reversal.is_(False),
                    ObligationModel.parent_record_id.is_(None),
                )
            ).scalars()
        )

        created: list[ObligationModel] = []
        try:
            for root in roots:
                savepoint = self._session.begin_nested()
                try:
                    created.extend(self._catch_up(root, as_of, actor_id))
                    savepoint.commit()
                except Exception:
                    savepoint.rollback()
                    logger.error(
                        "recurrence_chain_failed",
                        extra={"root_id": str(root.id)},
                        exc_info=True,
                    )
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise

        obligations = [model.to_dto() for model in created]
        for obligation in obligations:
            self._publish_created(obligation, actor_id)
        logger.info(
            "recurrence_generate_due_completed",
            extra={
                "as_of": as_of.isoformat(),
                "chains": len(roots),
                "created_count": len(obligations),
            },
        )
        return obligations

    def _catch_up(
        self,
        root: ObligationModel,
        as_of: date,
        actor_id: UUID | None,
    ) -> list[ObligationModel]:
        created: list[ObligationModel] = []
        head = self._chain_head(root)
        anchor_day = root.period_start_date.day
        for _ in range(MAX_CATCH_UP_OCCURRENCES):
            if head.status == ObligationStatus.CANCELLED.value or not head.recurrence_type:
                break
            next_date = compute_next_occurrence(
                head.period_start_date,
                head.recurrence_type,
                head.recurrence_interval or 1,
                anchor_day,
            )
            if next_date > as_of:
                break
            model, was_created = self._generate(head, actor_id)
            if model is None:
                break
            if was_created:
                created.append(model)
            head = model
        return created

    def _publish_created(self, obligation: Obligation, actor_id: UUID | None) -> None:
        self._publisher.publish(
            ObligationEvent(
                event_type=OBLIGATION_CREATED,
                obligation_id=obligation.id,
                obligation_number=obligation.obligation_number,
                franchise_id=obligation.franchise_id,
                occurred_at=self._clock.now(),
                actor_id=actor_id,
                payload={"auto_generated": True},
            )
        )
