"""Cell-level value parsing: amounts, dates and text.

Source files mix Brazilian (``1.234,56``) and American (``1,234.56``) number
formats, day-first dates and spreadsheet-native values. Every helper here
returns ``None`` for a value it cannot interpret so the mapper can count the
row as malformed instead of importing a zero.
"""

import math
import re
import unicodedata
from datetime import date, datetime
from decimal import Decimal, InvalidOperation

from app.core.utils import get_logger

logger = get_logger("ledger-import.parsers.values")

SUSPICIOUS_AMOUNT = Decimal("50000")
MAX_AMOUNT = Decimal("100000000")

_DATE_LIKE = (
    re.compile(r"^\d{1,2}/\d{1,2}/\d{2,4}"),
    re.compile(r"^\d{4}-\d{1,2}-\d{1,2}"),
    re.compile(r"^\d{1,2}-\d{1,2}-\d{2,4}$"),
    re.compile(r"^\d{1,2}\.\d{1,2}\.\d{2,4}$"),
)
_CURRENCY = re.compile(r"(R\$|US\$|\$|€|£|¥|BRL|USD|\s)", re.IGNORECASE)
_OFX_DATE = re.compile(r"^(\d{4})(\d{2})(\d{2})")
_DAY_FIRST_FORMATS = ("%d/%m/%Y", "%d/%m/%y", "%d-%m-%Y", "%d-%m-%y", "%d.%m.%Y", "%d.%m.%y")


def is_blank(value: object) -> bool:
    """Whether a cell carries no information (None, NaN or whitespace)."""
    if value is None:
        return True
    if isinstance(value, float) and math.isnan(value):
        return True
    return isinstance(value, str) and not value.strip()


def clean_text(value: object) -> str | None:
    """Collapse whitespace and newlines; empty text becomes None."""
    if is_blank(value):
        return None
    cleaned = " ".join(str(value).split())
    return cleaned or None


def fold(value: str) -> str:
    """Lower-case and strip accents for vocabulary comparisons."""
    decomposed = unicodedata.normalize("NFKD", value.lower())
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch)).strip()


def parse_amount(value: object) -> Decimal | None:
    """Convert a monetary cell into a Decimal, or None when it is not a number."""
    if is_blank(value) or isinstance(value, bool):
        return None
    if isinstance(value, int | float | Decimal):
        number = Decimal(str(value))
    else:
        text = str(value).strip()
        if any(pattern.match(text) for pattern in _DATE_LIKE):
            return None
        negative = text.startswith("(") and text.endswith(")")
        text = _CURRENCY.sub("", text.strip("()"))
        if text.endswith("-"):
            negative, text = True, text[:-1]
        text = _normalize_separators(text)
        text = re.sub(r"[^\d.\-]", "", text)
        if text in ("", "-", ".", "-."):
            return None
        try:
            number = Decimal(text)
        except InvalidOperation:
            return None
        if negative and number > 0:
            number = -number
    if not number.is_finite():
        return None
    if abs(number) > MAX_AMOUNT:
        logger.error(f"Amount rejected as a likely mis-parse: {value!r}")
        return None
    if abs(number) > SUSPICIOUS_AMOUNT:
        logger.warning(f"Unusually large amount: {value!r}")
    return number


def _normalize_separators(text: str) -> str:
    dots = text.count(".")
    commas = text.count(",")
    if dots > 1:
        return text.replace(".", "").replace(",", ".")
    if commas > 1:
        return text.replace(",", "")
    if dots == 1 and commas == 1:
        if text.rfind(",") > text.rfind("."):
            return text.replace(".", "").replace(",", ".")
        return text.replace(",", "")
    if commas == 1:
        return text.replace(",", ".")
    return text


def parse_date(value: object) -> date | None:
    """Parse ISO, day-first, OFX and spreadsheet-native dates."""
    if is_blank(value):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    token = text.split("T")[0].split(" ")[0]
    if re.fullmatch(r"\d{4}-\d{1,2}-\d{1,2}", token):
        year, month, day = (int(part) for part in token.split("-"))
        return _safe_date(year, month, day)
    for fmt in _DAY_FIRST_FORMATS:
        try:
            return datetime.strptime(token, fmt).date()
        except ValueError:
            continue
    match = _OFX_DATE.match(text)
    if match and len(token) >= 8:
        return _safe_date(*(int(group) for group in match.groups()))
    return None


def _safe_date(year: int, month: int, day: int) -> date | None:
    if not 1900 <= year <= 2100:
        return None
    try:
        return date(year, month, day)
    except ValueError:
        return None
