"""Main entrypoint and application factory for the Ledger Import Pipeline API.

This module initializes the FastAPI application, configures logging, creates the
job and ledger tables on startup, and exposes the Scalar API reference endpoint
for interactive OpenAPI documentation. It also includes the main entrypoint for
running the app with Uvicorn.
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.responses import HTMLResponse
from scalar_fastapi import get_scalar_api_reference
from sqlalchemy.exc import SQLAlchemyError

from app.api.routes import router
from app.core.db import create_tables, get_engine
from app.core.settings import get_settings
from app.core.utils import ensure_dir
from app.workers.job_runner import shutdown_executor

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


# --- Logging Setup ---
def setup_logging() -> None:
    """Configure the persistent log file for every ``ledger-import.*`` logger."""
    log_file = Path(get_settings().log_file)
    ensure_dir(log_file.parent)
    logger = logging.getLogger("ledger-import")
    logger.setLevel(logging.INFO)
    # Plain file handler for persistent logs; console output is colorized per module.
    if not any(isinstance(h, logging.FileHandler) for h in logger.handlers):
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(logging.INFO)
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(file_handler)
    logger.propagate = False


setup_logging()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Create the import job and ledger tables, and drain the worker pool on shutdown."""
    _ = app  # Silence unused argument warning
    settings = get_settings()
    if settings.database_url.startswith("sqlite:///"):
        ensure_dir(Path(settings.database_url.removeprefix("sqlite:///")).parent)
    try:
        create_tables(get_engine())
    except SQLAlchemyError as exc:
        logging.getLogger("ledger-import").error(f"Failed to create import tables: {exc}")
        raise
    yield
    shutdown_executor(wait=False)


app = FastAPI(
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    title="Ledger Import Pipeline API",
    description="""
    The Ledger Import Pipeline API ingests bank extracts, card invoices and marketplace settlement
    reports into a shared transaction ledger without ever duplicating a financial record.

    **Endpoints:**
    - `POST /imports`: Upload a file and start an import job. Returns a `job_id`.
    - `GET /imports/{{job_id}}`: Poll phase, status and counters of an import job.
    - `GET /imports?account_id=...`: List recent import jobs of an account.
    - `POST /imports/{{job_id}}/cancel`: Request cancellation of a running import.
    - `GET /health`: Health check endpoint.
    - `GET /scalar`: Interactive Scalar OpenAPI documentation.
    """,
    version="1.0.0",
)
app.include_router(router)


@app.get("/scalar", include_in_schema=False)
async def scalar_docs() -> HTMLResponse:
    """Return Scalar API reference."""
    return get_scalar_api_reference(openapi_url=app.openapi_url, title=app.title)


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run("main:app", host=settings.server_host, port=settings.server_port, reload=True)
