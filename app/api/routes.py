"""FastAPI endpoints for the Ledger Import Pipeline API.

This module defines the routes for uploading transaction files, polling import
jobs, listing an account's import history, cancelling a running import and
health checks. It wires together the file service, the job store and the
background job submitter.
"""

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile

from app.api.dependencies import JobSubmitter, get_file_service, get_job_store, get_submitter
from app.core.errors import FileStorageError
from app.core.models import CancelAccepted, ImportAccepted, ImportJobView
from app.core.utils import get_logger, sha256_hex
from app.parsers import normalize_channel
from app.services.file_service import FileService, build_upload_key
from app.services.job_store import JobStore

router = APIRouter()
logger = get_logger("ledger-import.api")


@router.post(
    "/imports",
    status_code=202,
    response_model=ImportAccepted,
    summary="Upload a transaction file and start an import job",
    description=(
        "Upload a bank extract, card invoice or marketplace settlement report. "
        "The file is stored, an import job is created and handed to a background worker. "
        "Duplicates of already-imported transactions are detected and counted, never re-inserted.\n\n"
        "**Request:**\n"
        "- Content-Type: multipart/form-data\n"
        "- Form fields: `file`, `account_id`, `channel`, optional `declared_format` "
        "(`csv`, `xlsx`, `ofx`, `mercado_livre`, `mercado_pago`, `shopee`)\n\n"
        "**Response:**\n"
        "- 202 Accepted: `{ 'job_id': '<uuid>', 'previous_job_id': '<uuid>|null' }`. "
        "`previous_job_id` points at an earlier finished import of the very same file.\n"
        "- 400 Bad Request: If the file is empty.\n"
        "- 502 Bad Gateway: If the file could not be stored."
    ),
    response_description="Job accepted. Returns job_id.",
    responses={
        202: {
            "description": "Job accepted. Returns job_id.",
            "content": {
                "application/json": {
                    "example": {"job_id": "123e4567-e89b-12d3-a456-426614174000", "previous_job_id": None}
                }
            },
        },
        400: {
            "description": "Empty upload.",
            "content": {"application/json": {"example": {"detail": "Uploaded file is empty"}}},
        },
        502: {"description": "Storage unavailable."},
    },
)
async def create_import(
    file: UploadFile = File(...),
    account_id: str = Form(...),
    channel: str = Form(...),
    declared_format: str | None = Form(None),
    file_service: FileService = Depends(get_file_service),
    job_store: JobStore = Depends(get_job_store),
    submit: JobSubmitter = Depends(get_submitter),
) -> ImportAccepted:
    """Store an uploaded file, create its import job and submit it."""
    file_name = file.filename or "upload.bin"
    logger.info(f"Received upload request: filename={file_name} account={account_id} channel={channel}")
    data = await file.read()
    if not data:
        logger.warning(f"Rejected empty upload: {file_name}")
        raise HTTPException(400, "Uploaded file is empty")

    channel_tag = normalize_channel(channel)
    file_hash = sha256_hex(data)
    previous = job_store.find_previous_import(account_id, channel_tag, file_hash)
    if previous is not None:
        logger.info(f"File {file_name} was already imported by job {previous.id}; duplicates will be counted")

    try:
        locator = file_service.save_file(build_upload_key(account_id, file_name), data)
    except FileStorageError as exc:
        raise HTTPException(502, str(exc)) from exc
    job = job_store.create(
        account_id=account_id,
        channel=channel_tag,
        file_name=file_name,
        file_locator=locator,
        file_hash=file_hash,
        declared_format=declared_format or None,
    )
    submit(job.id)
    logger.info(f"Background job started: job_id={job.id}")
    return ImportAccepted(job_id=job.id, previous_job_id=previous.id if previous else None)


@router.get(
    "/imports/{job_id}",
    response_model=ImportJobView,
    summary="Get import job status",
    description=(
        "Poll an import job by job_id: current phase, status, counters and diagnostics.\n\n"
        "**Response:**\n"
        "- 200 OK: The job record.\n"
        "- 404 Not Found: If the job_id does not exist."
    ),
    responses={
        404: {
            "description": "Job not found.",
            "content": {"application/json": {"example": {"detail": "Job not found"}}},
        },
    },
)
async def get_import(job_id: str, job_store: JobStore = Depends(get_job_store)) -> ImportJobView:
    """Get the current state of an import job."""
    job = job_store.get(job_id)
    if job is None:
        raise HTTPException(404, "Job not found")
    return job


@router.get(
    "/imports",
    response_model=list[ImportJobView],
    summary="List recent import jobs of an account",
    description="Return the most recent import jobs of `account_id`, newest first.",
)
async def list_imports(
    account_id: str = Query(...),
    limit: int = Query(20, ge=1, le=100),
    job_store: JobStore = Depends(get_job_store),
) -> list[ImportJobView]:
    """List an account's import history."""
    return job_store.list_for_account(account_id, limit)


@router.post(
    "/imports/{job_id}/cancel",
    status_code=202,
    response_model=CancelAccepted,
    summary="Request cancellation of a running import",
    description=(
        "Flag a running job for cancellation. The worker stops at its next check point; "
        "rows already committed stay committed.\n\n"
        "**Response:**\n"
        "- 202 Accepted: Cancellation flagged.\n"
        "- 404 Not Found: If the job_id does not exist.\n"
        "- 409 Conflict: If the job already finished."
    ),
    responses={
        404: {"description": "Job not found."},
        409: {
            "description": "Job already finished.",
            "content": {"application/json": {"example": {"detail": "Job already finished with status concluido"}}},
        },
    },
)
async def cancel_import(job_id: str, job_store: JobStore = Depends(get_job_store)) -> CancelAccepted:
    """Request cancellation of an import job."""
    job = job_store.get(job_id)
    if job is None:
        raise HTTPException(404, "Job not found")
    if job.status.is_terminal or not job_store.request_cancel(job_id):
        current = job_store.get(job_id)
        raise HTTPException(409, f"Job already finished with status {current.status.value}")
    return CancelAccepted(job_id=job_id)


@router.get(
    "/health",
    summary="Health check",
    description="Simple health check endpoint. Returns status ok.",
    response_description="Status ok.",
    responses={200: {"description": "API is healthy.", "content": {"application/json": {"example": {"status": "ok"}}}}},
)
async def health() -> dict:
    """Health check endpoint."""
    return {"status": "ok"}
