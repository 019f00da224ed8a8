"""DB connection, ORM tables and session helpers for the ledger import pipeline."""

from collections.abc import Iterator
from contextlib import contextmanager
from functools import lru_cache
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    create_engine,
)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from app.core.models import JobPhase, JobStatus
from app.core.utils import utcnow

Base = declarative_base()


class ImportJob(Base):
    """One import attempt: phase, counters, timestamps and terminal outcome."""

    __tablename__ = "import_jobs"
    id = Column(String(36), primary_key=True)
    account_id = Column(String(64), nullable=False, index=True)
    channel = Column(String(64), nullable=False)
    file_name = Column(String(255), nullable=False)
    file_locator = Column(String(512), nullable=False)
    file_hash = Column(String(64), nullable=True, index=True)
    declared_format = Column(String(32), nullable=True)
    detected_format = Column(String(32), nullable=True)
    phase = Column(String(32), nullable=False, default=JobPhase.STARTING.value)
    status = Column(String(16), nullable=False, default=JobStatus.RUNNING.value)
    total_rows = Column(Integer, nullable=False, default=0)
    processed_rows = Column(Integer, nullable=False, default=0)
    imported_count = Column(Integer, nullable=False, default=0)
    duplicate_count = Column(Integer, nullable=False, default=0)
    error_count = Column(Integer, nullable=False, default=0)
    cancel_requested = Column(Boolean, nullable=False, default=False)
    error_message = Column(Text, nullable=True)
    result = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
    finished_at = Column(DateTime(timezone=True), nullable=True)


class LedgerTransaction(Base):
    """A committed canonical transaction, owned by the ledger once inserted."""

    __tablename__ = "ledger_transactions"
    __table_args__ = (
        UniqueConstraint("account_id", "channel", "dedupe_key", name="uq_ledger_tx_account_channel_key"),
        Index("ix_ledger_tx_account_reference", "account_id", "external_reference"),
        Index("ix_ledger_tx_account_date", "account_id", "date"),
    )
    id = Column(Integer, primary_key=True, autoincrement=True)
    account_id = Column(String(64), nullable=False)
    channel = Column(String(64), nullable=False)
    date = Column(Date, nullable=False)
    description = Column(Text, nullable=False)
    amount = Column(Numeric(14, 2), nullable=False)
    direction = Column(String(8), nullable=False)
    external_reference = Column(String(150), nullable=True)
    dedupe_key = Column(String(150), nullable=False)
    import_job_id = Column(String(36), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


@lru_cache
def get_engine(database_url: str | None = None) -> Engine:
    """Create a SQLAlchemy engine using the given or configured database URL."""
    from app.core.settings import get_settings

    url = database_url or get_settings().database_url
    connect_args: dict[str, Any] = {}
    if url.startswith("sqlite"):
        # Worker threads share the engine with the request thread.
        connect_args["check_same_thread"] = False
    return create_engine(url, pool_pre_ping=True, connect_args=connect_args)


def get_session_factory(database_url: str | None = None) -> sessionmaker[Session]:
    """Return a session factory bound to the shared engine."""
    return sessionmaker(bind=get_engine(database_url), autoflush=False, expire_on_commit=False)


def create_tables(engine: Engine) -> None:
    """Create the jobs and ledger tables if they do not exist."""
    Base.metadata.create_all(engine)


@contextmanager
def session_scope(factory: sessionmaker[Session]) -> Iterator[Session]:
    """Provide a transactional scope around a series of operations."""
    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
