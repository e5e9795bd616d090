"""
Shared fixtures for the franchise billing suite.

Every test gets its own ``session`` whose work is rolled back afterwards,
a ``clock`` pinned to the morning of 2024-04-01 (March just closed) and the
default ``policy``.  ``create_franchise`` / ``create_unit`` build billing
scopes; ``royalty_input`` / ``revenue_input`` build March obligation inputs.

Set DATABASE_URL (e.g. ``postgresql+psycopg2://billing@localhost/billing_test``)
to run against PostgreSQL instead of in-memory SQLite.
"""

import json
import logging
import os
from collections.abc import Iterator
from datetime import datetime, timezone
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest
from sqlalchemy.orm import Session

from franchise_kernel.db.engine import (
    create_tables,
    drop_tables,
    init_engine_from_url,
    reset_engine,
)
from franchise_kernel.domain.clock import DeterministicClock
from franchise_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from franchise_modules.obligations.config import BillingPolicy
from franchise_modules.obligations.events import ALL_EVENTS, ObligationEventPublisher
from franchise_modules.obligations.models import ObligationInput, ObligationKind
from franchise_modules.obligations.orm import FranchiseModel, UnitModel
from franchise_modules.obligations.service import ObligationService
from franchise_services.billing_sweep import MonthlyBillingSweep
from franchise_services.recurrence_service import RecurrenceService

ACTOR_ID = uuid4()


# -----------------------------------------------------------------------------
# Logging
# -----------------------------------------------------------------------------


@pytest.fixture(autouse=True, scope="session")
def _suite_logging():
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _empty_log_context():
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Callable returning every kernel log line written so far, parsed.

        records = captured_logs()
        assert any(r["message"] == "obligation_paid" for r in records)
    """
    buffer = StringIO()
    handler = logging.StreamHandler(buffer)
    handler.setFormatter(StructuredFormatter())
    kernel_logger = logging.getLogger("franchise_kernel")
    saved_level = kernel_logger.level
    kernel_logger.setLevel(logging.DEBUG)
    kernel_logger.addHandler(handler)

    yield lambda: [json.loads(line) for line in buffer.getvalue().splitlines() if line]

    kernel_logger.removeHandler(handler)
    kernel_logger.setLevel(saved_level)


# -----------------------------------------------------------------------------
# Database
# -----------------------------------------------------------------------------


@pytest.fixture(scope="session")
def db_engine():
    engine = init_engine_from_url(
        os.environ.get("DATABASE_URL", "sqlite:///:memory:"), pool_size=5, max_overflow=5
    )
    yield engine
    reset_engine()


@pytest.fixture(scope="session")
def db_tables(db_engine):
    drop_tables()
    create_tables()
    yield
    drop_tables()


@pytest.fixture
def session(db_tables, db_engine) -> Iterator[Session]:
    """
    Session inside an outer transaction that is rolled back after the test.

    ``join_transaction_mode="create_savepoint"`` turns the services' own
    commit/rollback calls into SAVEPOINT release/rollback, so they behave
    as in production while nothing outlives the test.
    """
    connection = db_engine.connect()
    outer = connection.begin()
    sess = Session(bind=connection, join_transaction_mode="create_savepoint", expire_on_commit=False)
    try:
        yield sess
    finally:
        sess.close()
        outer.rollback()
        connection.close()


# -----------------------------------------------------------------------------
# Billing fixtures
# -----------------------------------------------------------------------------


@pytest.fixture
def test_actor_id():
    return ACTOR_ID


@pytest.fixture
def clock():
    """Clock fixed at 2024-04-01 09:00 UTC (the day after March closes)."""
    return DeterministicClock(datetime(2024, 4, 1, 9, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def policy():
    return BillingPolicy.with_defaults()


@pytest.fixture
def published_events():
    """Publisher plus the list of every event it delivered."""
    publisher = ObligationEventPublisher()
    events: list = []
    publisher.subscribe(ALL_EVENTS, events.append)
    return publisher, events


@pytest.fixture
def obligation_service(session, clock, policy, published_events):
    publisher, _ = published_events
    return ObligationService(session, clock=clock, policy=policy, publisher=publisher)


@pytest.fixture
def recurrence_service(session, clock, policy, published_events):
    publisher, _ = published_events
    return RecurrenceService(session, clock=clock, policy=policy, publisher=publisher)


@pytest.fixture
def billing_sweep(session, clock, policy, published_events):
    publisher, _ = published_events
    return MonthlyBillingSweep(session, clock=clock, policy=policy, publisher=publisher)


@pytest.fixture
def create_franchise(session, test_actor_id):
    """Factory for franchise rows (8% royalty, 2% marketing, 50.00 tech fee)."""
    counter = {"n": 0}

    def _create(**overrides) -> FranchiseModel:
        counter["n"] += 1
        values = {
            "code": f"FR-{counter['n']:03d}",
            "name": f"Franchise {counter['n']}",
            "status": "active",
            "royalty_percentage": Decimal("8"),
            "marketing_fee_percentage": Decimal("2"),
            "technology_fee_amount": Decimal("50.00"),
            "created_by_id": test_actor_id,
        }
        values.update(overrides)
        franchise = FranchiseModel(**values)
        session.add(franchise)
        session.flush()
        return franchise

    return _create


@pytest.fixture
def create_unit(session, test_actor_id):
    """Factory for unit rows."""
    counter = {"n": 0}

    def _create(franchise: FranchiseModel, **overrides) -> UnitModel:
        counter["n"] += 1
        values = {
            "franchise_id": franchise.id,
            "code": f"U-{counter['n']:03d}",
            "name": f"Unit {counter['n']}",
            "status": "active",
            "created_by_id": test_actor_id,
        }
        values.update(overrides)
        unit = UnitModel(**values)
        session.add(unit)
        session.flush()
        return unit

    return _create


@pytest.fixture
def franchise(create_franchise):
    return create_franchise()


@pytest.fixture
def unit(create_unit, franchise):
    return create_unit(franchise)


@pytest.fixture
def royalty_input(franchise, unit):
    """Factory for a March 2024 royalty input on the default franchise/unit."""

    def _build(**overrides) -> ObligationInput:
        values = {
            "kind": ObligationKind.ROYALTY,
            "franchise_id": franchise.id,
            "unit_id": unit.id,
            "period_year": 2024,
            "period_month": 3,
            "gross_amount": Decimal("100000"),
            "royalty_percentage": Decimal("8"),
            "marketing_fee_percentage": Decimal("2"),
            "technology_fee_amount": Decimal("50"),
        }
        values.update(overrides)
        return ObligationInput(**values)

    return _build


@pytest.fixture
def revenue_input(franchise, unit):
    """Factory for a March 2024 revenue input on the default franchise/unit."""

    def _build(**overrides) -> ObligationInput:
        values = {
            "kind": ObligationKind.REVENUE,
            "franchise_id": franchise.id,
            "unit_id": unit.id,
            "period_year": 2024,
            "period_month": 3,
            "gross_amount": Decimal("25000"),
        }
        values.update(overrides)
        return ObligationInput(**values)

    return _build
