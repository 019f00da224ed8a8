"""Persisted import job records: creation, progress, cancellation and history.

Every mutating call is guarded by ``status == processando`` so a terminal job
never changes again, and phase updates only ever move forward.
"""

import uuid
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.orm import Session, sessionmaker

from app.core.db import ImportJob, session_scope
from app.core.models import ImportJobView, JobPhase, JobStatus
from app.core.utils import get_logger, truncate, utcnow

logger = get_logger("ledger-import.jobs")

MAX_ERROR_MESSAGE_LEN = 1000


class JobStore:
    """Read and update ``import_jobs`` rows through short-lived sessions."""

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        """Bind the store to a session factory."""
        self.session_factory = session_factory

    def create(
        self,
        account_id: str,
        channel: str,
        file_name: str,
        file_locator: str,
        file_hash: str | None = None,
        declared_format: str | None = None,
        job_id: str | None = None,
    ) -> ImportJobView:
        """Insert a new job in phase ``iniciando`` with status ``processando``."""
        job = ImportJob(
            id=job_id or str(uuid.uuid4()),
            account_id=account_id,
            channel=channel,
            file_name=file_name,
            file_locator=file_locator,
            file_hash=file_hash,
            declared_format=declared_format,
            phase=JobPhase.STARTING.value,
            status=JobStatus.RUNNING.value,
        )
        with session_scope(self.session_factory) as session:
            session.add(job)
            session.flush()
            view = ImportJobView.model_validate(job)
        logger.info(f"[{view.id}] Created job for account={account_id} channel={channel} file={file_name}")
        return view

    def get(self, job_id: str) -> ImportJobView | None:
        """Return the job, or None when unknown."""
        with session_scope(self.session_factory) as session:
            job = session.get(ImportJob, job_id)
            return ImportJobView.model_validate(job) if job else None

    def list_for_account(self, account_id: str, limit: int = 20) -> list[ImportJobView]:
        """Return the most recent jobs of an account, newest first."""
        stmt = (
            select(ImportJob)
            .where(ImportJob.account_id == account_id)
            .order_by(ImportJob.created_at.desc())
            .limit(limit)
        )
        with session_scope(self.session_factory) as session:
            return [ImportJobView.model_validate(job) for job in session.scalars(stmt)]

    def update_phase(self, job_id: str, phase: JobPhase) -> bool:
        """Advance the job to ``phase``; regressions and terminal jobs are refused."""
        allowed = [p.value for p in JobPhase if p.order <= phase.order]
        stmt = (
            update(ImportJob)
            .where(
                ImportJob.id == job_id,
                ImportJob.status == JobStatus.RUNNING.value,
                ImportJob.phase.in_(allowed),
            )
            .values(phase=phase.value)
        )
        with session_scope(self.session_factory) as session:
            changed = session.execute(stmt).rowcount > 0
        if not changed:
            logger.warning(f"[{job_id}] Refused phase change to {phase.value}")
        return changed

    def update_counters(
        self,
        job_id: str,
        *,
        total: int | None = None,
        processed: int | None = None,
        imported: int | None = None,
        duplicate: int | None = None,
        error: int | None = None,
    ) -> bool:
        """Persist the given counters of a running job."""
        values: dict[str, Any] = {}
        if total is not None:
            values["total_rows"] = total
        if processed is not None:
            values["processed_rows"] = processed
        if imported is not None:
            values["imported_count"] = imported
        if duplicate is not None:
            values["duplicate_count"] = duplicate
        if error is not None:
            values["error_count"] = error
        if not values:
            return False
        return self._update_running(job_id, values)

    def set_detected_format(self, job_id: str, source_format: str) -> bool:
        """Record which parser adapter handled the file."""
        return self._update_running(job_id, {"detected_format": source_format})

    def mark_terminal(
        self,
        job_id: str,
        status: JobStatus,
        error_message: str | None = None,
        result: dict[str, Any] | None = None,
    ) -> bool:
        """Move a running job to a terminal status; a job finishes only once."""
        if not status.is_terminal:
            msg = f"{status.value} is not a terminal status"
            raise ValueError(msg)
        values: dict[str, Any] = {"status": status.value, "finished_at": utcnow()}
        if error_message is not None:
            values["error_message"] = truncate(error_message, MAX_ERROR_MESSAGE_LEN)
        if result is not None:
            values["result"] = result
        changed = self._update_running(job_id, values)
        if changed:
            logger.info(f"[{job_id}] Finished with status {status.value}")
        return changed

    def is_cancel_requested(self, job_id: str) -> bool:
        """Re-read the cancel flag from the store."""
        stmt = select(ImportJob.cancel_requested).where(ImportJob.id == job_id)
        with session_scope(self.session_factory) as session:
            return bool(session.execute(stmt).scalar_one_or_none())

    def request_cancel(self, job_id: str) -> bool:
        """Flag a running job for cancellation; returns False when it already finished."""
        changed = self._update_running(job_id, {"cancel_requested": True})
        if changed:
            logger.info(f"[{job_id}] Cancellation requested")
        return changed

    def find_previous_import(
        self, account_id: str, channel: str, file_hash: str, exclude_id: str | None = None
    ) -> ImportJobView | None:
        """Return the latest finished import of the same file into the same account and channel."""
        stmt = (
            select(ImportJob)
            .where(
                ImportJob.account_id == account_id,
                ImportJob.channel == channel,
                ImportJob.file_hash == file_hash,
                ImportJob.status == JobStatus.DONE.value,
            )
            .order_by(ImportJob.created_at.desc())
        )
        if exclude_id is not None:
            stmt = stmt.where(ImportJob.id != exclude_id)
        with session_scope(self.session_factory) as session:
            job = session.scalars(stmt).first()
            return ImportJobView.model_validate(job) if job else None

    def _update_running(self, job_id: str, values: dict[str, Any]) -> bool:
        stmt = (
            update(ImportJob)
            .where(ImportJob.id == job_id, ImportJob.status == JobStatus.RUNNING.value)
            .values(**values)
        )
        with session_scope(self.session_factory) as session:
            return session.execute(stmt).rowcount > 0
