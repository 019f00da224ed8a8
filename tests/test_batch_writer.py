"""Tests for the chunked batch writer and its single-row fallback."""

import pytest
from conftest import make_txn, seed
from sqlalchemy.exc import OperationalError

from app.core.errors import JobCancelledError
from app.services.batch_writer import BatchWriter

ACCOUNT = "acc-1"


def _batch(count: int, prefix: str = "R") -> list:
    return [make_txn(1 + i % 28, f"{i + 1}.00", reference=f"{prefix}{i}") for i in range(count)]


@pytest.mark.parametrize("chunk_size", [1, 7, 100, 500])
def test_totals_independent_of_chunk_size(tx_store, settings, chunk_size: int) -> None:
    """The same input yields the same counts whatever the chunk size."""
    seed(tx_store, ACCOUNT, _batch(250)[40:60])
    result = BatchWriter(tx_store, ACCOUNT, settings=settings).commit(_batch(250), chunk_size=chunk_size)
    if (result.imported, result.duplicate, result.error) != (230, 20, 0):
        msg = f"chunk_size={chunk_size}: expected (230, 20, 0), got {result}"
        raise AssertionError(msg)
    if tx_store.count(ACCOUNT) != 250:
        msg = f"Expected 250 stored rows, got {tx_store.count(ACCOUNT)}"
        raise AssertionError(msg)


def test_fallback_attributes_duplicates_individually(tx_store, settings) -> None:
    """A uniqueness conflict inside a chunk only marks the conflicting rows."""
    seed(tx_store, ACCOUNT, [make_txn(1, "1.00", reference="R3")])
    result = BatchWriter(tx_store, ACCOUNT, settings=settings).commit(_batch(10), chunk_size=10)
    if (result.imported, result.duplicate, result.error) != (9, 1, 0):
        msg = f"Expected (9, 1, 0), got {result}"
        raise AssertionError(msg)


def test_non_constraint_errors_are_sampled(tx_store, settings, monkeypatch) -> None:
    """Other DB failures count as errors with a bounded message sample."""
    settings.max_error_samples = 2

    def broken(records):
        raise OperationalError("INSERT", {}, Exception("disk I/O error"))

    monkeypatch.setattr(tx_store, "bulk_insert", broken)
    monkeypatch.setattr(tx_store, "insert_one", lambda record: broken([record]))
    result = BatchWriter(tx_store, ACCOUNT, settings=settings).commit(_batch(5), chunk_size=5)
    if (result.imported, result.duplicate, result.error) != (0, 0, 5):
        msg = f"Expected (0, 0, 5), got {result}"
        raise AssertionError(msg)
    if len(result.sample_errors) != 2 or "disk I/O error" not in result.sample_errors[0]:
        msg = f"Expected 2 sampled messages, got {result.sample_errors}"
        raise AssertionError(msg)


def test_checkpoint_can_stop_between_chunks(tx_store, settings) -> None:
    """Raising from the checkpoint stops further chunks; committed rows stay."""
    calls: list[int] = []

    def checkpoint(result, chunk_index: int) -> None:
        calls.append(result.processed)
        if chunk_index == 2:
            raise JobCancelledError("job-x")

    with pytest.raises(JobCancelledError):
        BatchWriter(tx_store, ACCOUNT, settings=settings).commit(_batch(50), chunk_size=10, checkpoint=checkpoint)
    if calls != [10, 20]:
        msg = f"Expected checkpoints after 10 and 20 rows, got {calls}"
        raise AssertionError(msg)
    if tx_store.count(ACCOUNT) != 20:
        msg = f"Expected 20 committed rows, got {tx_store.count(ACCOUNT)}"
        raise AssertionError(msg)
