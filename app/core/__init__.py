"""Core package: provides models, database helpers, settings, errors and shared utilities."""

from .db import Base, ImportJob, LedgerTransaction, get_session_factory  # noqa: F401
from .errors import FileRetrievalError, JobCancelledError, UnsupportedFormatError  # noqa: F401
from .models import CanonicalTransaction, Direction, JobPhase, JobStatus  # noqa: F401
from .settings import Settings, get_settings  # noqa: F401
from .utils import get_logger  # noqa: F401
