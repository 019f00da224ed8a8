"""Bank-statement markup (OFX/QFX) adapter.

Handles both SGML-style OFX 1.x (tags without closing elements) and XML OFX
2.x, for bank accounts (``BANKMSGSRSV1``) and credit cards
(``CREDITCARDMSGSRSV1``). Each ``<STMTTRN>`` block becomes one row keyed by
the logical field names the canonical mapper understands.
"""

import re
from typing import Any

from app.core.models import ParseResult
from app.core.utils import get_logger
from app.parsers.base import BaseParser, SourceFormat
from app.parsers.tabular import decode_text

logger = get_logger("ledger-import.parsers.ofx")

OFX_MARKER = re.compile(rb"<OFX>|OFXHEADER:", re.IGNORECASE)
_TRANSACTION_BLOCK = re.compile(r"<STMTTRN>(.*?)(?:</STMTTRN>|(?=<STMTTRN>)|(?=</BANKTRANLIST>))", re.I | re.S)
_CHARSET = re.compile(r"CHARSET:\s*(\S+)", re.I)
ACCOUNT_TAGS = ("BANKID", "BRANCHID", "ACCTID", "ACCTTYPE", "CURDEF", "ORG", "FID")


def looks_like_ofx(data: bytes) -> bool:
    """Whether the bytes carry an OFX header or root element."""
    return bool(OFX_MARKER.search(data[:4096]))


def extract_tag(content: str, tag: str) -> str | None:
    """Read a tag value in either XML (``<T>v</T>``) or SGML (``<T>v``) form."""
    xml = re.search(rf"<{tag}>\s*([^<]*?)\s*</{tag}>", content, re.I)
    if xml and xml.group(1).strip():
        return xml.group(1).strip()
    sgml = re.search(rf"<{tag}>\s*([^<\r\n]+)", content, re.I)
    if sgml and sgml.group(1).strip():
        return sgml.group(1).strip()
    return None


def _decode(data: bytes) -> str:
    header = data[:512].decode("ascii", errors="ignore")
    charset = _CHARSET.search(header)
    if charset and charset.group(1) in ("1252", "ISO-8859-1"):
        return data.decode("cp1252", errors="replace")
    return decode_text(data)


class OFXParser(BaseParser):
    """Parse OFX/QFX bank and card statements."""

    source_format = SourceFormat.OFX

    def parse(self, data: bytes, file_name: str = "") -> ParseResult:
        """Extract every STMTTRN block as a row."""
        content = _decode(data)
        rows = [self._row(block) for block in _TRANSACTION_BLOCK.findall(content)]
        account = {tag.lower(): extract_tag(content, tag) for tag in ACCOUNT_TAGS}
        account["kind"] = "credit_card" if re.search(r"CREDITCARDMSGSRSV1", content, re.I) else "bank"
        logger.info(f"Found {len(rows)} OFX transactions in {file_name or '<upload>'} (bank={account.get('bankid')})")
        return self.build_result(rows, {"account": account})

    @staticmethod
    def _row(block: str) -> dict[str, Any]:
        name = extract_tag(block, "NAME")
        memo = extract_tag(block, "MEMO")
        description = name or memo
        if name and memo and memo != name:
            description = f"{name} - {memo}"
        return {
            "date": extract_tag(block, "DTPOSTED"),
            "description": description,
            "amount": extract_tag(block, "TRNAMT"),
            "document": extract_tag(block, "FITID") or extract_tag(block, "REFNUM") or extract_tag(block, "CHECKNUM"),
            "type": extract_tag(block, "TRNTYPE"),
        }
