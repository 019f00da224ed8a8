"""Pydantic models shared across the import pipeline.

This module defines the canonical transaction shape every parser row is mapped
into, the job phase/status vocabulary, parser statistics, write results and
the API-facing job representation.
"""

from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

CENT = Decimal("0.01")
DERIVED_KEY_DESCRIPTION_LEN = 30
MAX_REFERENCE_LEN = 150


class Direction(StrEnum):
    """Credit/debit direction of a transaction."""

    CREDIT = "credito"
    DEBIT = "debito"


class JobPhase(StrEnum):
    """Linear phases of an import job, in execution order."""

    STARTING = "iniciando"
    DOWNLOADING = "baixando"
    PARSING = "parsing"
    CHECKING_DUPLICATES = "verificando_duplicatas"
    INSERTING = "inserindo"
    FINALIZING = "finalizando"

    @property
    def order(self) -> int:
        """Position of the phase in the state machine."""
        return list(JobPhase).index(self)


class JobStatus(StrEnum):
    """Running and terminal statuses of an import job."""

    RUNNING = "processando"
    DONE = "concluido"
    FAILED = "erro"
    CANCELLED = "cancelado"

    @property
    def is_terminal(self) -> bool:
        """Whether the job can no longer change."""
        return self is not JobStatus.RUNNING


def quantize_amount(value: Decimal | float | int | str) -> Decimal:
    """Round an amount to minor-unit (cent) precision."""
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


class CanonicalTransaction(BaseModel):
    """A normalized transaction produced by the canonical mapper."""

    model_config = ConfigDict(frozen=True)

    date: date
    description: str
    amount: Decimal
    direction: Direction
    external_reference: str = ""
    channel: str

    @field_validator("amount", mode="before")
    @classmethod
    def _to_cents(cls, value: Any) -> Decimal:
        return quantize_amount(value)

    @field_validator("external_reference", mode="before")
    @classmethod
    def _clean_reference(cls, value: Any) -> str:
        if value is None:
            return ""
        return " ".join(str(value).split())[:MAX_REFERENCE_LEN]

    @property
    def dedupe_key(self) -> str:
        """External reference, or a date + amount + description prefix composite."""
        if self.external_reference:
            return self.external_reference
        prefix = self.description[:DERIVED_KEY_DESCRIPTION_LEN]
        return f"{self.date.isoformat()}_{self.amount}_{prefix}"[:MAX_REFERENCE_LEN]


class ParseStats(BaseModel):
    """File-level statistics collected while parsing and mapping."""

    total_lines: int = 0
    generated: int = 0
    discarded_as_empty: int = 0
    discarded_as_malformed: int = 0
    metadata: dict[str, Any] = Field(default_factory=dict)


class ParseResult(BaseModel):
    """Loosely-typed rows extracted from a file, plus statistics."""

    rows: list[dict[str, Any]]
    stats: ParseStats
    source_format: str


class DedupeScope(BaseModel):
    """Account/channel scope used when looking for existing records."""

    account_id: str
    channel: str
    cross_channel: bool = True


class WriteResult(BaseModel):
    """Outcome counters of a batch write."""

    imported: int = 0
    duplicate: int = 0
    error: int = 0
    sample_errors: list[str] = Field(default_factory=list)

    @property
    def processed(self) -> int:
        """Rows attempted so far."""
        return self.imported + self.duplicate + self.error


class ImportJobView(BaseModel):
    """Public, read-only representation of an import job record."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    account_id: str
    channel: str
    file_name: str
    file_locator: str
    file_hash: str | None = None
    declared_format: str | None = None
    detected_format: str | None = None
    phase: JobPhase
    status: JobStatus
    total_rows: int
    processed_rows: int
    imported_count: int
    duplicate_count: int
    error_count: int
    cancel_requested: bool
    error_message: str | None = None
    result: dict[str, Any] | None = None
    created_at: datetime
    updated_at: datetime
    finished_at: datetime | None = None


class ImportAccepted(BaseModel):
    """Response of an accepted upload."""

    job_id: str
    previous_job_id: str | None = None


class CancelAccepted(BaseModel):
    """Response of an accepted cancellation request."""

    job_id: str
    cancel_requested: bool = True
