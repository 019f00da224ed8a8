"""Configuration and environment settings for the ledger import pipeline."""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings for the ledger import pipeline."""

    database_url: str = "sqlite:///jobs/ledger.db"
    S3_ENDPOINT_URL: str | None = None
    S3_ACCESS_KEY: str | None = None
    S3_SECRET_KEY: str | None = None
    S3_BUCKET: str = "ledger-imports"
    upload_prefix: str = "imports"

    batch_chunk_size: int = 100
    dedupe_lookup_chunk_size: int = 500
    dedupe_amount_tolerance: float = 0.01
    # Proximity matches span every channel of the account when enabled.
    dedupe_cross_channel: bool = True
    progress_flush_rows: int = 50
    cancel_check_interval_chunks: int = 2
    max_error_samples: int = 5
    worker_max_workers: int = 4

    log_file: str = "jobs/import_pipeline.log"
    server_host: str = "127.0.0.1"
    server_port: int = 8000

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")


@lru_cache
def get_settings() -> "Settings":
    """Return the cached application settings."""
    return Settings()
