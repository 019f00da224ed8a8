"""Delimited-text and spreadsheet adapters backed by pandas."""

import csv
import io
import zipfile

import pandas as pd

from app.core.errors import UnsupportedFormatError
from app.core.models import ParseResult
from app.core.utils import get_logger
from app.parsers.base import BaseParser, SourceFormat

logger = get_logger("ledger-import.parsers.tabular")

TEXT_ENCODINGS = ("utf-8-sig", "latin-1")
CANDIDATE_DELIMITERS = ",;\t|"
SNIFF_SAMPLE_LEN = 4096


def decode_text(data: bytes) -> str:
    """Decode file bytes trying UTF-8 (with BOM) before Latin-1."""
    for encoding in TEXT_ENCODINGS:
        try:
            return data.decode(encoding)
        except UnicodeDecodeError:
            continue
    msg = "File is not valid text in any supported encoding"
    raise UnsupportedFormatError(msg)


def sniff_delimiter(text: str) -> str:
    """Pick the field delimiter from a text sample, defaulting to a comma."""
    sample = text[:SNIFF_SAMPLE_LEN]
    try:
        return csv.Sniffer().sniff(sample, delimiters=CANDIDATE_DELIMITERS).delimiter
    except csv.Error:
        first_line = sample.splitlines()[0] if sample else ""
        counts = {delim: first_line.count(delim) for delim in CANDIDATE_DELIMITERS}
        best = max(counts, key=counts.get)
        return best if counts[best] else ","


def read_delimited(data: bytes) -> pd.DataFrame:
    """Load delimited text into a string-typed DataFrame with trimmed headers."""
    text = decode_text(data)
    if not text.strip():
        return pd.DataFrame()
    delimiter = sniff_delimiter(text)
    try:
        frame = pd.read_csv(
            io.StringIO(text),
            sep=delimiter,
            dtype=str,
            keep_default_na=False,
            skip_blank_lines=False,
        )
    except (pd.errors.ParserError, pd.errors.EmptyDataError) as exc:
        msg = f"Could not read delimited text: {exc}"
        raise UnsupportedFormatError(msg) from exc
    frame.columns = [str(column).strip() for column in frame.columns]
    return frame


def read_delimited_grid(data: bytes) -> list[list[str]]:
    """Read delimited text as a ragged grid, keeping preamble lines intact."""
    text = decode_text(data)
    if not text.strip():
        return []
    return [list(line) for line in csv.reader(io.StringIO(text), delimiter=sniff_delimiter(text))]


def read_spreadsheet(data: bytes, sheet_name: str | int = 0, header: int | None = 0) -> pd.DataFrame:
    """Load one sheet of an Excel workbook with every cell as text."""
    try:
        frame = pd.read_excel(io.BytesIO(data), sheet_name=sheet_name, header=header, dtype=str)
    except (ValueError, KeyError, OSError, zipfile.BadZipFile) as exc:
        msg = f"Could not read spreadsheet: {exc}"
        raise UnsupportedFormatError(msg) from exc
    if header is not None:
        frame.columns = [str(column).strip() for column in frame.columns]
    return frame


def sheet_names(data: bytes) -> list[str]:
    """List the sheet names of a workbook."""
    try:
        with pd.ExcelFile(io.BytesIO(data)) as workbook:
            return [str(name) for name in workbook.sheet_names]
    except (ValueError, OSError, zipfile.BadZipFile) as exc:
        msg = f"Could not open workbook: {exc}"
        raise UnsupportedFormatError(msg) from exc


class DelimitedParser(BaseParser):
    """Comma/semicolon/tab separated bank and card extracts."""

    source_format = SourceFormat.CSV

    def parse(self, data: bytes, file_name: str = "") -> ParseResult:
        """Parse delimited text into one row per data line."""
        frame = read_delimited(data)
        logger.info(f"Loaded {len(frame)} delimited rows from {file_name or '<upload>'}")
        return self.build_result(frame.to_dict(orient="records"), {"columns": list(frame.columns)})


class SpreadsheetParser(BaseParser):
    """First sheet of an XLSX/XLS workbook with a header row."""

    source_format = SourceFormat.XLSX

    def parse(self, data: bytes, file_name: str = "") -> ParseResult:
        """Parse the first sheet into one row per data line."""
        frame = read_spreadsheet(data)
        logger.info(f"Loaded {len(frame)} spreadsheet rows from {file_name or '<upload>'}")
        return self.build_result(frame.to_dict(orient="records"), {"columns": list(frame.columns)})
