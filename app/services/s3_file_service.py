"""S3FileService provides S3-backed blob storage for uploaded import files."""

import boto3
from botocore.exceptions import ClientError

from app.core.settings import Settings, get_settings


class S3FileService:
    """Service for S3 file operations: upload, download, ensure bucket."""

    def __init__(self, settings: Settings | None = None) -> None:
        """Create the S3 client; the bucket is ensured on first upload."""
        settings = settings or get_settings()
        self.s3 = boto3.client(
            "s3",
            endpoint_url=settings.S3_ENDPOINT_URL,
            aws_access_key_id=settings.S3_ACCESS_KEY,
            aws_secret_access_key=settings.S3_SECRET_KEY,
        )
        self.bucket = settings.S3_BUCKET
        self._bucket_ready = False

    def ensure_bucket(self) -> None:
        """Ensure the S3 bucket exists, create if not present."""
        if self._bucket_ready:
            return
        try:
            self.s3.head_bucket(Bucket=self.bucket)
        except ClientError:
            self.s3.create_bucket(Bucket=self.bucket)
        self._bucket_ready = True

    def upload_fileobj(self, key: str, data: bytes) -> None:
        """Upload bytes to S3 under the given key."""
        self.ensure_bucket()
        self.s3.put_object(Bucket=self.bucket, Key=str(key), Body=data)

    def download_fileobj(self, key: str, bucket: str | None = None) -> bytes:
        """Download an object from S3 by key."""
        obj = self.s3.get_object(Bucket=bucket or self.bucket, Key=str(key))
        return obj["Body"].read()

