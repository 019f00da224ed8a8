"""Parser registry: the single dispatch point from a file to its adapter.

Selection order is explicit tag, then marketplace names in the filename, then
the job channel for marketplace channels, then extension, then content
sniffing. Unknown input raises ``UnsupportedFormatError``; parsing is never
attempted speculatively.
"""

from pathlib import PurePosixPath
from typing import ClassVar

from app.core.errors import UnsupportedFormatError
from app.core.models import ParseResult
from app.core.utils import get_logger
from app.parsers.base import BaseParser, SourceFormat
from app.parsers.mapper import normalize_channel
from app.parsers.marketplace import LAYOUTS, OLE_MAGIC, ZIP_MAGIC, MarketplaceParser
from app.parsers.ofx import OFXParser, looks_like_ofx
from app.parsers.tabular import DelimitedParser, SpreadsheetParser

logger = get_logger("ledger-import.parsers.registry")

FILENAME_HINTS: tuple[tuple[tuple[str, ...], SourceFormat], ...] = (
    (("mercadopago", "mercado_pago", "mercado-pago", "mp_"), SourceFormat.MERCADO_PAGO),
    (("mercadolivre", "mercado_livre", "mercado-livre", "ml_"), SourceFormat.MERCADO_LIVRE),
    (("shopee",), SourceFormat.SHOPEE),
)
CHANNEL_FORMATS: dict[str, SourceFormat] = {
    "mercado_livre": SourceFormat.MERCADO_LIVRE,
    "mercado_pago": SourceFormat.MERCADO_PAGO,
    "shopee": SourceFormat.SHOPEE,
}
EXTENSIONS: dict[str, SourceFormat] = {
    ".csv": SourceFormat.CSV,
    ".txt": SourceFormat.CSV,
    ".tsv": SourceFormat.CSV,
    ".xlsx": SourceFormat.XLSX,
    ".xls": SourceFormat.XLSX,
    ".ofx": SourceFormat.OFX,
    ".qfx": SourceFormat.OFX,
}
FORMAT_ALIASES: dict[str, SourceFormat] = {
    "ml": SourceFormat.MERCADO_LIVRE,
    "mp": SourceFormat.MERCADO_PAGO,
    "xls": SourceFormat.XLSX,
    "qfx": SourceFormat.OFX,
    "txt": SourceFormat.CSV,
}


class ParserRegistry:
    """Registry of the closed set of format adapters."""

    _registry: ClassVar[dict[SourceFormat, BaseParser]] = {
        SourceFormat.CSV: DelimitedParser(),
        SourceFormat.XLSX: SpreadsheetParser(),
        SourceFormat.OFX: OFXParser(),
        **{fmt: MarketplaceParser(layout) for fmt, layout in LAYOUTS.items()},
    }

    @classmethod
    def get(cls, source_format: SourceFormat) -> BaseParser:
        """Retrieve the adapter for a format."""
        return cls._registry[source_format]

    @classmethod
    def available(cls) -> list[str]:
        """List all supported format tags."""
        return [fmt.value for fmt in cls._registry]

    @classmethod
    def select(
        cls, data: bytes, declared_format: str | None = None, file_name: str = "", channel: str | None = None
    ) -> SourceFormat:
        """Choose the format for a file without attempting to parse it.

        A marketplace channel stands in for a filename hint, except for OFX
        statements which are always bank markup.
        """
        if declared_format:
            return cls._from_tag(declared_format)
        lowered = PurePosixPath(file_name).name.lower()
        for hints, fmt in FILENAME_HINTS:
            if any(hint in lowered for hint in hints):
                return fmt
        suffix = PurePosixPath(lowered).suffix
        channel_format = CHANNEL_FORMATS.get(normalize_channel(channel)) if channel else None
        if channel_format and suffix not in {".ofx", ".qfx"} and not looks_like_ofx(data):
            return channel_format
        if suffix in EXTENSIONS:
            return EXTENSIONS[suffix]
        return cls._sniff(data, file_name)

    @staticmethod
    def _from_tag(tag: str) -> SourceFormat:
        key = tag.strip().lower().replace("-", "_").replace(" ", "_")
        if key in FORMAT_ALIASES:
            return FORMAT_ALIASES[key]
        if key in {fmt.value for fmt in SourceFormat}:
            return SourceFormat(key)
        msg = f"Unknown format '{tag}'. Supported: {', '.join(ParserRegistry.available())}"
        raise UnsupportedFormatError(msg)

    @staticmethod
    def _sniff(data: bytes, file_name: str) -> SourceFormat:
        if looks_like_ofx(data):
            return SourceFormat.OFX
        if data.startswith((ZIP_MAGIC, OLE_MAGIC)):
            return SourceFormat.XLSX
        sample = data[:2048]
        if b"\x00" not in sample and any(sep in sample for sep in (b",", b";", b"\t")) and b"\n" in sample:
            return SourceFormat.CSV
        msg = f"Unrecognized file format for '{file_name or 'upload'}'"
        raise UnsupportedFormatError(msg)


def parse(
    data: bytes, declared_format: str | None = None, file_name: str = "", channel: str | None = None
) -> ParseResult:
    """Select the adapter for a file and parse it into rows and statistics."""
    source_format = ParserRegistry.select(data, declared_format, file_name, channel)
    logger.info(f"Parsing {file_name or '<upload>'} as {source_format}")
    return ParserRegistry.get(source_format).parse(data, file_name)
