"""Progress accumulation and cancellation polling for a running import job."""

from app.core.errors import JobCancelledError
from app.core.models import WriteResult
from app.core.utils import get_logger
from app.services.job_store import JobStore

logger = get_logger("ledger-import.progress")


class ProgressAccumulator:
    """Own a job's counters and flush them to the job store at a bounded cadence.

    Counters only grow; ``processed`` is always the sum of the three outcome
    counters, so the persisted record satisfies
    ``processed == imported + duplicate + error`` after every flush.
    """

    def __init__(self, job_store: JobStore, job_id: str, flush_rows: int = 50) -> None:
        """Start with zeroed counters for ``job_id``."""
        self.job_store = job_store
        self.job_id = job_id
        self.flush_rows = max(flush_rows, 1)
        self.total = 0
        self.imported = 0
        self.duplicate = 0
        self.error = 0
        self._flushed_processed = 0

    @property
    def processed(self) -> int:
        """Rows with a known outcome."""
        return self.imported + self.duplicate + self.error

    def set_total(self, total: int) -> None:
        """Record the number of canonical rows and persist it immediately."""
        self.total = total
        self.flush(force=True)

    def add_duplicates(self, count: int) -> None:
        """Count rows the detector classified as already persisted."""
        self.duplicate += count

    def absorb(self, base_duplicate: int, result: WriteResult) -> None:
        """Take the writer's running totals on top of detector duplicates."""
        self.imported = result.imported
        self.duplicate = base_duplicate + result.duplicate
        self.error = result.error

    def flush(self, *, force: bool = False) -> bool:
        """Persist counters when enough rows moved since the last flush, or when forced."""
        if not force and self.processed - self._flushed_processed < self.flush_rows:
            return False
        self.job_store.update_counters(
            self.job_id,
            total=self.total,
            processed=self.processed,
            imported=self.imported,
            duplicate=self.duplicate,
            error=self.error,
        )
        self._flushed_processed = self.processed
        return True

    def snapshot(self) -> dict[str, int]:
        """Return the counters as a plain dict."""
        return {
            "total": self.total,
            "processed": self.processed,
            "imported": self.imported,
            "duplicate": self.duplicate,
            "error": self.error,
        }


class CancellationMonitor:
    """Poll the job's cancel flag every N chunks and at phase boundaries."""

    def __init__(self, job_store: JobStore, job_id: str, interval_chunks: int = 2) -> None:
        """Watch ``job_id`` and re-read the flag every ``interval_chunks`` chunks."""
        self.job_store = job_store
        self.job_id = job_id
        self.interval_chunks = max(interval_chunks, 1)

    def check(self) -> None:
        """Raise JobCancelledError when the operator asked to stop."""
        if self.job_store.is_cancel_requested(self.job_id):
            logger.info(f"[{self.job_id}] Cancellation observed")
            raise JobCancelledError(self.job_id)

    def check_chunk(self, chunk_index: int) -> None:
        """Check only on every ``interval_chunks``-th chunk."""
        if chunk_index % self.interval_chunks == 0:
            self.check()
