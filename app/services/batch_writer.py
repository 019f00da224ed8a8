"""Chunked writer for new canonical transactions.

Each chunk is bulk-inserted in one DB transaction. When the bulk insert fails,
the chunk is rolled back and replayed one row at a time so that uniqueness
violations are attributed to "duplicate" and every other failure to "error".
"""

from collections.abc import Callable, Sequence

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from app.core.errors import DuplicateConflict, InsertError
from app.core.models import CanonicalTransaction, WriteResult
from app.core.settings import Settings, get_settings
from app.core.utils import chunked, get_logger, truncate
from app.services.transaction_store import TransactionStore, to_record

logger = get_logger("ledger-import.writer")

MAX_ERROR_MESSAGE_LEN = 300

Checkpoint = Callable[[WriteResult, int], None]


class BatchWriter:
    """Commit canonical transactions in bounded chunks with a single-row fallback."""

    def __init__(
        self, store: TransactionStore, account_id: str, job_id: str | None = None, settings: Settings | None = None
    ) -> None:
        """Bind the writer to a store and the owning account/job."""
        settings = settings or get_settings()
        self.store = store
        self.account_id = account_id
        self.job_id = job_id
        self.max_error_samples = settings.max_error_samples

    def commit(
        self,
        transactions: Sequence[CanonicalTransaction],
        chunk_size: int = 100,
        checkpoint: Checkpoint | None = None,
    ) -> WriteResult:
        """Write all transactions, invoking ``checkpoint`` after every chunk.

        The checkpoint may raise (e.g. ``JobCancelledError``) to stop before the
        next chunk; rows already committed stay committed.
        """
        result = WriteResult()
        for index, chunk in enumerate(chunked(transactions, chunk_size), start=1):
            self.commit_chunk(chunk, result)
            if checkpoint is not None:
                checkpoint(result, index)
        return result

    def commit_chunk(self, chunk: Sequence[CanonicalTransaction], result: WriteResult) -> None:
        """Write one chunk into ``result``, falling back to single rows on failure."""
        records = [to_record(txn, self.account_id, self.job_id) for txn in chunk]
        try:
            result.imported += self.store.bulk_insert(records)
        except IntegrityError:
            logger.info(f"Chunk of {len(records)} hit a uniqueness conflict; retrying row by row")
            self._commit_rows(records, result)
        except SQLAlchemyError as exc:
            logger.warning(f"Bulk insert of {len(records)} rows failed ({exc.__class__.__name__}); retrying row by row")
            self._commit_rows(records, result)

    def _commit_rows(self, records: Sequence[dict], result: WriteResult) -> None:
        for record in records:
            try:
                self._insert_one(record)
            except DuplicateConflict:
                result.duplicate += 1
            except InsertError as exc:
                result.error += 1
                if len(result.sample_errors) < self.max_error_samples:
                    result.sample_errors.append(f"Row {result.processed}: {exc}")
            else:
                result.imported += 1

    def _insert_one(self, record: dict) -> None:
        try:
            self.store.insert_one(record)
        except IntegrityError as exc:
            raise DuplicateConflict(record["dedupe_key"]) from exc
        except SQLAlchemyError as exc:
            raise InsertError(truncate(str(exc.orig if hasattr(exc, "orig") else exc), MAX_ERROR_MESSAGE_LEN)) from exc
