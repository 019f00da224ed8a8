"""Background job orchestration for ledger imports.

A job walks the phases ``iniciando -> baixando -> parsing ->
verificando_duplicatas -> inserindo -> finalizando`` and ends in exactly one
of ``concluido``, ``erro`` or ``cancelado``. Each phase is persisted before
its work starts, and the cancel flag is re-read at every phase boundary and
every few insert chunks.
"""

import concurrent.futures
import functools
import threading
from typing import Any

from sqlalchemy.orm import Session, sessionmaker

from app.core.db import get_session_factory
from app.core.errors import FileRetrievalError, JobCancelledError, UnsupportedFormatError
from app.core.models import DedupeScope, ImportJobView, JobPhase, JobStatus, WriteResult
from app.core.settings import Settings, get_settings
from app.core.utils import get_logger
from app.parsers import CanonicalMapper, parse
from app.services.batch_writer import BatchWriter
from app.services.dedupe import DuplicateDetector
from app.services.file_service import FileService
from app.services.job_store import JobStore
from app.services.s3_file_service import S3FileService
from app.services.transaction_store import TransactionStore
from app.workers.progress import CancellationMonitor, ProgressAccumulator

logger = get_logger("ledger-import.worker")

NO_TRANSACTIONS_MESSAGE = "Nenhuma transação encontrada no arquivo"

_executor: concurrent.futures.ThreadPoolExecutor | None = None
_executor_lock = threading.Lock()


class JobRunner:
    """JobRunner executes import jobs against a file source and the ledger store."""

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        file_service: FileService,
        settings: Settings | None = None,
    ) -> None:
        """Wire the stores, detector and file source used by every job."""
        self.settings = settings or get_settings()
        self.file_service = file_service
        self.job_store = JobStore(session_factory)
        self.tx_store = TransactionStore(session_factory)
        self.detector = DuplicateDetector(self.tx_store, self.settings)

    def run_job(self, job_id: str) -> ImportJobView | None:
        """Run one job to a terminal status and return its final record."""
        job = self.job_store.get(job_id)
        if job is None:
            logger.error(f"[{job_id}] Job not found; nothing to run")
            return None
        if job.status.is_terminal:
            logger.warning(f"[{job_id}] Job already finished with status {job.status.value}")
            return job

        logger.info(f"Starting job: {job_id}, account: {job.account_id}, file: {job.file_name}")
        progress = ProgressAccumulator(self.job_store, job_id, self.settings.progress_flush_rows)
        monitor = CancellationMonitor(self.job_store, job_id, self.settings.cancel_check_interval_chunks)
        summary: dict[str, Any] = {}
        try:
            self._process(job, progress, monitor, summary)
        except JobCancelledError:
            progress.flush(force=True)
            summary["counters"] = progress.snapshot()
            self.job_store.mark_terminal(job_id, JobStatus.CANCELLED, result=summary)
            logger.info(f"[{job_id}] Cancelled after {progress.processed} of {progress.total} rows")
        except (FileRetrievalError, UnsupportedFormatError) as exc:
            logger.error(f"[{job_id}] Job failed: {exc}")
            summary["counters"] = progress.snapshot()
            self.job_store.mark_terminal(job_id, JobStatus.FAILED, error_message=str(exc), result=summary)
        except Exception as exc:
            logger.exception(f"Error processing job {job_id}")
            summary["counters"] = progress.snapshot()
            self.job_store.mark_terminal(
                job_id, JobStatus.FAILED, error_message=f"{exc.__class__.__name__}: {exc}", result=summary
            )
        return self.job_store.get(job_id)

    def _process(
        self,
        job: ImportJobView,
        progress: ProgressAccumulator,
        monitor: CancellationMonitor,
        summary: dict[str, Any],
    ) -> None:
        job_id = job.id
        monitor.check()

        self._enter(job_id, JobPhase.DOWNLOADING, monitor)
        logger.info(f"[{job_id}] Downloading input: {job.file_locator}")
        data = self.file_service.fetch(job.file_locator)

        self._enter(job_id, JobPhase.PARSING, monitor)
        parsed = parse(data, job.declared_format, job.file_name, job.channel)
        self.job_store.set_detected_format(job_id, parsed.source_format)
        mapper = CanonicalMapper.for_rows(job.channel, parsed.rows)
        candidates = mapper.map_rows(parsed.rows, parsed.stats)
        summary["detected_format"] = parsed.source_format
        summary["parse"] = parsed.stats.model_dump(mode="json")
        logger.info(
            f"[{job_id}] Parsed {parsed.stats.total_lines} lines: {len(candidates)} transactions, "
            f"{parsed.stats.discarded_as_empty} empty, {parsed.stats.discarded_as_malformed} malformed"
        )
        progress.set_total(len(candidates))

        if not candidates:
            self._enter(job_id, JobPhase.FINALIZING, monitor)
            summary["counters"] = progress.snapshot()
            self.job_store.mark_terminal(
                job_id, JobStatus.DONE, error_message=NO_TRANSACTIONS_MESSAGE, result=summary
            )
            logger.info(f"[{job_id}] No transactions found")
            return

        self._enter(job_id, JobPhase.CHECKING_DUPLICATES, monitor)
        scope = DedupeScope(
            account_id=job.account_id,
            channel=mapper.channel,
            cross_channel=self.settings.dedupe_cross_channel,
        )
        new, duplicates = self.detector.partition(candidates, scope)
        progress.add_duplicates(len(duplicates))
        progress.flush(force=True)

        self._enter(job_id, JobPhase.INSERTING, monitor)
        detected_duplicates = progress.duplicate

        def checkpoint(result: WriteResult, chunk_index: int) -> None:
            progress.absorb(detected_duplicates, result)
            progress.flush()
            monitor.check_chunk(chunk_index)

        writer = BatchWriter(self.tx_store, job.account_id, job_id, self.settings)
        written = writer.commit(new, self.settings.batch_chunk_size, checkpoint)
        progress.absorb(detected_duplicates, written)
        progress.flush(force=True)
        summary["sample_errors"] = written.sample_errors

        self._enter(job_id, JobPhase.FINALIZING, monitor)
        summary["counters"] = progress.snapshot()
        error_message = "; ".join(written.sample_errors) if written.sample_errors else None
        self.job_store.mark_terminal(job_id, JobStatus.DONE, error_message=error_message, result=summary)
        logger.info(
            f"[{job_id}] Completed: {progress.imported} imported, {progress.duplicate} duplicates, "
            f"{progress.error} errors of {progress.total}"
        )

    def _enter(self, job_id: str, phase: JobPhase, monitor: CancellationMonitor) -> None:
        monitor.check()
        self.job_store.update_phase(job_id, phase)
        logger.info(f"[{job_id}] Phase: {phase.value}")


def get_executor() -> concurrent.futures.ThreadPoolExecutor:
    """Return the process-wide worker pool, creating it on first use."""
    global _executor  # noqa: PLW0603
    with _executor_lock:
        if _executor is None:
            _executor = concurrent.futures.ThreadPoolExecutor(
                max_workers=get_settings().worker_max_workers, thread_name_prefix="import-job"
            )
        return _executor


def shutdown_executor(wait: bool = True) -> None:
    """Stop accepting jobs and optionally wait for running ones."""
    global _executor  # noqa: PLW0603
    with _executor_lock:
        if _executor is not None:
            _executor.shutdown(wait=wait)
            _executor = None


def run_job(job_id: str) -> ImportJobView | None:
    """Top-level function to run a job using JobRunner (for background workers)."""
    runner = JobRunner(get_session_factory(), FileService(S3FileService()))
    return runner.run_job(job_id)


def _log_failure(job_id: str, future: concurrent.futures.Future) -> None:
    if future.cancelled():
        logger.warning(f"[{job_id}] Job was dropped before it started")
        return
    exc = future.exception()
    if exc is not None:
        logger.error(f"[{job_id}] Job crashed outside the runner: {exc.__class__.__name__}: {exc}", exc_info=exc)


def submit_job(job_id: str) -> concurrent.futures.Future:
    """Fire-and-forget a job on the worker pool; the job record is the result sink."""
    logger.info(f"Submitting job: {job_id}")
    future = get_executor().submit(run_job, job_id)
    future.add_done_callback(functools.partial(_log_failure, job_id))
    return future
