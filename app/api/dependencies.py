"""FastAPI dependencies for DI (DB sessions, file source, job submission).

Each provider is resolved lazily so that tests can swap any of them through
``app.dependency_overrides`` without touching S3 or the configured database.
"""

from collections.abc import Callable
from functools import lru_cache

from sqlalchemy.orm import Session, sessionmaker

from app.core.db import get_session_factory as build_session_factory
from app.services.file_service import FileService
from app.services.job_store import JobStore
from app.services.s3_file_service import S3FileService
from app.workers.job_runner import submit_job

JobSubmitter = Callable[[str], object]


def get_session_factory() -> sessionmaker[Session]:
    """Provide the session factory bound to the configured database."""
    return build_session_factory()


def get_job_store() -> JobStore:
    """Provide a JobStore over the configured database."""
    return JobStore(get_session_factory())


@lru_cache
def get_file_service() -> FileService:
    """Provide the S3-backed file service, created once per process."""
    return FileService(S3FileService())


def get_submitter() -> JobSubmitter:
    """Provide the callable that hands a job id to the worker pool."""
    return submit_job
