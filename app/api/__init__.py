"""API package: provides FastAPI dependencies and route definitions for the application."""

from .dependencies import get_file_service, get_job_store, get_session_factory, get_submitter  # noqa: F401
from .routes import router  # noqa: F401
