"""
Module: franchise_kernel.db.engine
Responsibility: Owns the process-wide SQLAlchemy engine and session factory
    used by the billing CLI and the test suite, plus the ``session_scope``
    unit of work and schema create/drop helpers.
Architecture position: Kernel > DB.  Imports only db/base.py at module
    level; create_tables pulls in the module ORM registry lazily.

Invariants enforced:
    - PostgreSQL runs at READ COMMITTED; obligation rows and sequence
      counters are serialized by explicit FOR UPDATE locks, not by the
      isolation level.
    - SQLite (tests, local runs) shares one connection through StaticPool
      and issues its own BEGIN, so SAVEPOINTs around sweep scopes work.

Failure modes:
    - RuntimeError from get_engine/get_session before init_engine_from_url().
"""

from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from franchise_kernel.logging_config import configure_logging, get_logger

logger = get_logger("db.engine")

_engine: Engine | None = None
_SessionFactory: sessionmaker[Session] | None = None

_NOT_INITIALIZED = "Database engine not initialized; call init_engine_from_url() first."


def _sqlite_engine(database_url: str, echo: bool) -> Engine:
    engine = create_engine(
        database_url,
        echo=echo,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(engine, "connect")
    def _autocommit_driver(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _explicit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    return engine


def init_engine_from_url(
    database_url: str,
    echo: bool = False,
    pool_size: int = 10,
    max_overflow: int = 10,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
) -> Engine:
    """
    Build the engine for ``database_url`` and make it the process default.

    ``database_url`` is a PostgreSQL URL (``postgresql+psycopg2://...``) or
    a SQLite one (``sqlite:///:memory:``, ``sqlite:///billing.db``).  The
    pool settings only apply to PostgreSQL.  Calling again replaces the
    previous engine without disposing it; use ``reset_engine`` for that.
    """
    global _engine, _SessionFactory

    if database_url.startswith("sqlite"):
        _engine = _sqlite_engine(database_url, echo)
    else:
        _engine = create_engine(
            database_url,
            echo=echo,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_pre_ping=True,
            pool_timeout=pool_timeout,
            pool_recycle=pool_recycle,
            isolation_level="READ COMMITTED",
        )
    _SessionFactory = sessionmaker(bind=_engine, expire_on_commit=False)

    configure_logging()
    logger.info(
        "engine_initialized",
        extra={"dialect": _engine.dialect.name, "pool_size": pool_size, "echo": echo},
    )
    return _engine


def get_engine() -> Engine:
    if _engine is None:
        raise RuntimeError(_NOT_INITIALIZED)
    return _engine


def get_session() -> Session:
    """New session from the default factory.  The caller closes it."""
    if _SessionFactory is None:
        raise RuntimeError(_NOT_INITIALIZED)
    return _SessionFactory()


@contextmanager
def session_scope() -> Iterator[Session]:
    """
    One unit of work: commit on clean exit, roll back and re-raise otherwise.

    Usage:
        with session_scope() as session:
            report = MonthlyBillingSweep(session).generate_monthly_obligations(2024, 3)
    """
    session = get_session()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        logger.warning("transaction_rolled_back", exc_info=True)
        raise
    finally:
        session.close()


def create_tables() -> None:
    """Create the kernel and obligation module tables that do not exist yet."""
    from franchise_kernel.db.base import Base
    from franchise_modules._orm_registry import import_all_orm_models

    import_all_orm_models()
    Base.metadata.create_all(get_engine())
    logger.info("tables_created", extra={"table_count": len(Base.metadata.tables)})


def drop_tables() -> None:
    """Drop every mapped table.  Tests only."""
    from franchise_kernel.db.base import Base

    Base.metadata.drop_all(get_engine())


def reset_engine() -> None:
    """Dispose the default engine and forget the session factory."""
    global _engine, _SessionFactory

    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionFactory = None
