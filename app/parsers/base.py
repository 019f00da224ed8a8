"""Base parser abstraction for source-file adapters.

Every adapter turns raw file bytes into loosely-typed rows plus file-level
statistics. Rows whose cells are all blank are dropped here and counted as
empty; everything else is handed to the canonical mapper unchanged.
"""

from abc import ABC, abstractmethod
from collections.abc import Iterable
from enum import StrEnum
from typing import Any, ClassVar

from app.core.models import ParseResult, ParseStats
from app.parsers.values import is_blank


class SourceFormat(StrEnum):
    """Closed set of file formats the pipeline understands."""

    CSV = "csv"
    XLSX = "xlsx"
    OFX = "ofx"
    MERCADO_LIVRE = "mercado_livre"
    MERCADO_PAGO = "mercado_pago"
    SHOPEE = "shopee"


class BaseParser(ABC):
    """Abstract base class for all format adapters."""

    source_format: ClassVar[SourceFormat]

    @abstractmethod
    def parse(self, data: bytes, file_name: str = "") -> ParseResult:
        """Parse raw file bytes into rows and statistics."""

    def build_result(self, rows: Iterable[dict[str, Any]], metadata: dict[str, Any] | None = None) -> ParseResult:
        """Drop blank rows, count them, and wrap the remainder in a ParseResult."""
        stats = ParseStats(metadata=metadata or {})
        kept: list[dict[str, Any]] = []
        for row in rows:
            stats.total_lines += 1
            if all(is_blank(value) for value in row.values()):
                stats.discarded_as_empty += 1
                continue
            kept.append(row)
        return ParseResult(rows=kept, stats=stats, source_format=self.source_format.value)
