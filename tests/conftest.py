"""Shared fixtures: a file-backed SQLite ledger per test and an in-memory file source."""

from collections.abc import Iterable
from datetime import date
from decimal import Decimal

import pytest
from botocore.exceptions import ClientError
from sqlalchemy.orm import Session, sessionmaker

from app.core.db import create_tables, get_engine, get_session_factory
from app.core.models import CanonicalTransaction, Direction
from app.core.settings import Settings
from app.services.file_service import FileService
from app.services.job_store import JobStore
from app.services.transaction_store import TransactionStore, to_record
from app.workers.job_runner import JobRunner


class MemoryBlobStore:
    """Stands in for S3FileService, keeping objects in a dict."""

    def __init__(self) -> None:
        """Start with an empty bucket."""
        self.objects: dict[str, bytes] = {}

    def upload_fileobj(self, key: str, data: bytes) -> None:
        """Store bytes under a key."""
        self.objects[key] = data

    def download_fileobj(self, key: str, bucket: str | None = None) -> bytes:
        """Return stored bytes or fail like S3 does for a missing key."""
        _ = bucket
        if key not in self.objects:
            raise ClientError({"Error": {"Code": "NoSuchKey", "Message": "Not Found"}}, "GetObject")
        return self.objects[key]


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings pointing at a private SQLite database."""
    return Settings(
        database_url=f"sqlite:///{tmp_path / 'ledger.db'}",
        log_file=str(tmp_path / "import_pipeline.log"),
        batch_chunk_size=100,
        progress_flush_rows=50,
        cancel_check_interval_chunks=2,
    )


@pytest.fixture
def session_factory(settings: Settings) -> sessionmaker[Session]:
    """Session factory over a freshly created schema."""
    create_tables(get_engine(settings.database_url))
    return get_session_factory(settings.database_url)


@pytest.fixture
def job_store(session_factory) -> JobStore:
    """Job record store."""
    return JobStore(session_factory)


@pytest.fixture
def tx_store(session_factory) -> TransactionStore:
    """Ledger transaction store."""
    return TransactionStore(session_factory)


@pytest.fixture
def blob_store() -> MemoryBlobStore:
    """Empty in-memory object store."""
    return MemoryBlobStore()


@pytest.fixture
def file_service(blob_store: MemoryBlobStore) -> FileService:
    """File service backed by the in-memory object store."""
    return FileService(blob_store)


@pytest.fixture
def runner(session_factory, file_service, settings) -> JobRunner:
    """Job runner wired to the test database and file source."""
    return JobRunner(session_factory, file_service, settings)


def make_txn(
    day: int,
    amount: str,
    description: str = "Compra",
    reference: str = "",
    channel: str = "banco",
) -> CanonicalTransaction:
    """Build a canonical transaction in January 2024."""
    value = Decimal(amount)
    return CanonicalTransaction(
        date=date(2024, 1, day),
        description=description,
        amount=value,
        direction=Direction.DEBIT if value < 0 else Direction.CREDIT,
        external_reference=reference,
        channel=channel,
    )


def seed(tx_store: TransactionStore, account_id: str, transactions: Iterable[CanonicalTransaction]) -> None:
    """Insert transactions directly into the ledger."""
    tx_store.bulk_insert([to_record(txn, account_id, None) for txn in transactions])


def csv_bytes(header: str, lines: Iterable[str]) -> bytes:
    """Join a header and data lines into a CSV payload."""
    return ("\n".join([header, *lines]) + "\n").encode()
