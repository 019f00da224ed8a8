"""Exception taxonomy for the import pipeline.

Job-fatal errors (``FileRetrievalError``, ``UnsupportedFormatError``) abort a
job and mark it ``erro``. Row-level conditions (``ParseSkip``,
``DuplicateConflict``, ``InsertError``) are counted and never abort a job.
``JobCancelledError`` unwinds a job gracefully after an operator cancel.
``FileStorageError`` rejects an upload before any job exists.
"""


class ImportPipelineError(Exception):
    """Base class for all import pipeline errors."""


class FileRetrievalError(ImportPipelineError):
    """The source file could not be fetched from storage."""

    def __init__(self, locator: str, reason: str) -> None:
        """Record the locator that failed and why."""
        self.locator = locator
        self.reason = reason
        super().__init__(f"Could not retrieve file '{locator}': {reason}")


class UnsupportedFormatError(ImportPipelineError):
    """No parser adapter recognizes the file."""


class ParseSkip(ImportPipelineError):
    """A single row cannot become a canonical transaction."""

    def __init__(self, reason: str) -> None:
        """Store the skip reason."""
        self.reason = reason
        super().__init__(reason)


class DuplicateConflict(ImportPipelineError):
    """A row violated the ledger uniqueness constraint."""


class InsertError(ImportPipelineError):
    """A row failed to insert for a reason other than a duplicate."""


class JobCancelledError(ImportPipelineError):
    """The operator requested cancellation of a running job."""

    def __init__(self, job_id: str) -> None:
        """Remember which job was cancelled."""
        self.job_id = job_id
        super().__init__(f"Job {job_id} was cancelled")


class FileStorageError(ImportPipelineError):
    """An uploaded file could not be written to storage."""
