"""File source for the import pipeline.

The pipeline treats files as opaque blobs addressed by a locator:

- a bare key (``imports/<account>/<job>/extrato.csv``) in the configured bucket,
- an ``s3://bucket/key`` URI,
- a ``file://`` path on local disk.

Every transport failure surfaces as ``FileRetrievalError``.
"""

import uuid
from pathlib import Path
from urllib.parse import unquote, urlparse

from botocore.exceptions import BotoCoreError, ClientError

from app.core.errors import FileRetrievalError, FileStorageError
from app.core.settings import get_settings
from app.core.utils import get_logger

from .s3_file_service import S3FileService

logger = get_logger("ledger-import.files")


class FileService:
    """Service for storing uploads and fetching them back by locator."""

    def __init__(self, s3_service: S3FileService) -> None:
        """Initialize FileService with an S3FileService instance."""
        self.s3 = s3_service

    def save_file(self, key: str, data: bytes) -> str:
        """Save bytes under a storage key and return the key as the locator."""
        try:
            self.s3.upload_fileobj(key, data)
        except (ClientError, BotoCoreError) as exc:
            logger.error(f"Failed to store {key}: {exc}")
            msg = f"Could not store upload '{key}': {exc}"
            raise FileStorageError(msg) from exc
        return key

    def fetch(self, locator: str) -> bytes:
        """Retrieve a file by locator; raise FileRetrievalError on any failure."""
        parsed = urlparse(locator)
        try:
            if parsed.scheme == "file":
                return Path(unquote(parsed.path)).read_bytes()
            if parsed.scheme == "s3":
                return self.s3.download_fileobj(parsed.path.lstrip("/"), bucket=parsed.netloc)
            return self.s3.download_fileobj(locator)
        except (ClientError, BotoCoreError, OSError) as exc:
            logger.error(f"Failed to fetch {locator}: {exc}")
            raise FileRetrievalError(locator, str(exc)) from exc


def build_upload_key(account_id: str, file_name: str) -> str:
    """Build a unique storage key for an uploaded file."""
    safe_name = Path(file_name).name or "upload.bin"
    return f"{get_settings().upload_prefix}/{account_id}/{uuid.uuid4()}/{safe_name}"
