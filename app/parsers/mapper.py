"""Canonical mapper: turns loosely-typed parser rows into canonical transactions.

Column discovery is declarative. ``FIELD_ALIASES`` lists, per logical field,
the accepted header names in priority order. The aliases are resolved once per
file against its headers; the resulting ``ColumnMap`` is then applied to every
row.
"""

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, ClassVar

from app.core.errors import ParseSkip
from app.core.models import CanonicalTransaction, Direction, ParseStats
from app.core.utils import get_logger
from app.parsers.values import clean_text, fold, parse_amount, parse_date

logger = get_logger("ledger-import.parsers.mapper")

MIN_SUBSTRING_ALIAS_LEN = 4

FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    "date": (
        "date",
        "data",
        "data_transacao",
        "data da transação",
        "data lançamento",
        "data de lançamento",
        "data do movimento",
        "transaction date",
        "posted date",
        "dt",
        "fecha",
    ),
    "description": (
        "description",
        "descricao",
        "descrição",
        "histórico",
        "historico",
        "lançamento",
        "memo",
        "payee",
        "estabelecimento",
        "title",
        "detalhe",
    ),
    "amount": (
        "amount",
        "valor_liquido",
        "valor líquido",
        "net amount",
        "valor (r$)",
        "valor",
        "value",
        "montante",
        "quantia",
    ),
    "document": (
        "document",
        "documento",
        "referencia_externa",
        "referência",
        "referencia",
        "reference",
        "nº documento",
        "numero documento",
        "transaction id",
        "fitid",
        "id",
    ),
    "type": (
        "type",
        "tipo",
        "tipo_lancamento",
        "tipo de lançamento",
        "natureza",
        "d/c",
        "c/d",
        "dc",
        "trntype",
    ),
}

DEBIT_TOKENS = (
    "d",
    "db",
    "deb",
    "debit",
    "debito",
    "saida",
    "despesa",
    "pagamento efetuado",
    "withdrawal",
    "payment",
    "fee",
    "srvchg",
    "atm",
    "pos",
    "check",
    "directdebit",
    "repeatpmt",
)
CREDIT_TOKENS = (
    "c",
    "cr",
    "cred",
    "credit",
    "credito",
    "entrada",
    "receita",
    "deposit",
    "dep",
    "directdep",
    "int",
    "div",
)

CHANNEL_ALIASES: dict[str, str] = {
    "mercado livre": "mercado_livre",
    "mercadolivre": "mercado_livre",
    "ml": "mercado_livre",
    "mercado pago": "mercado_pago",
    "mercadopago": "mercado_pago",
    "mp": "mercado_pago",
    "shopee": "shopee",
    "shein": "shein",
    "tiktok": "tiktok_shop",
    "tiktok shop": "tiktok_shop",
    "amazon": "amazon",
    "magalu": "magalu",
}


def normalize_channel(channel: str) -> str:
    """Map a channel label to its canonical tag (``Mercado Livre`` -> ``mercado_livre``)."""
    folded = fold(channel).replace("_", " ")
    folded = " ".join(folded.split())
    if folded in CHANNEL_ALIASES:
        return CHANNEL_ALIASES[folded]
    return folded.replace(" ", "_")


def infer_direction(amount: Decimal, type_value: str | None) -> Direction:
    """Negative amount means debit; then the type vocabulary; otherwise credit."""
    if amount < 0:
        return Direction.DEBIT
    if type_value:
        token = fold(type_value)
        if _matches(token, DEBIT_TOKENS):
            return Direction.DEBIT
        if _matches(token, CREDIT_TOKENS):
            return Direction.CREDIT
    return Direction.CREDIT


def _matches(token: str, vocabulary: Sequence[str]) -> bool:
    if token in vocabulary:
        return True
    words = set(token.replace("/", " ").replace("-", " ").split())
    return any(word in words or (len(word) >= MIN_SUBSTRING_ALIAS_LEN and word in token) for word in vocabulary)


@dataclass(frozen=True)
class ColumnMap:
    """Header chosen for each logical field (None when the file lacks it)."""

    date: str | None
    description: str | None
    amount: str | None
    document: str | None
    type: str | None

    REQUIRED: ClassVar[tuple[str, ...]] = ("date", "description", "amount")

    @property
    def missing(self) -> list[str]:
        """Required logical fields the file does not provide."""
        return [name for name in self.REQUIRED if getattr(self, name) is None]


def resolve_columns(headers: Iterable[str]) -> ColumnMap:
    """Resolve the alias table against a header list, once per file.

    Exact case-insensitive matches win over substring matches; within each
    pass the first alias in priority order wins. A header is claimed by at
    most one logical field.
    """
    folded = {header: fold(str(header)) for header in headers}
    claimed: set[str] = set()
    chosen: dict[str, str | None] = {}
    for field, aliases in FIELD_ALIASES.items():
        chosen[field] = _find_header(folded, aliases, claimed)
        if chosen[field] is not None:
            claimed.add(chosen[field])
    return ColumnMap(**chosen)


def _find_header(folded: dict[str, str], aliases: Sequence[str], claimed: set[str]) -> str | None:
    candidates = [(header, name) for header, name in folded.items() if header not in claimed]
    for alias in aliases:
        target = fold(alias)
        for header, name in candidates:
            if name == target:
                return header
    for alias in aliases:
        target = fold(alias)
        if len(target) < MIN_SUBSTRING_ALIAS_LEN:
            continue
        for header, name in candidates:
            if target in name:
                return header
    return None


class CanonicalMapper:
    """Map raw rows of one file into canonical transactions for a channel."""

    def __init__(self, channel: str, columns: ColumnMap) -> None:
        """Bind the mapper to a channel and a resolved column map."""
        self.channel = normalize_channel(channel)
        self.columns = columns

    @classmethod
    def for_rows(cls, channel: str, rows: Sequence[dict[str, Any]]) -> "CanonicalMapper":
        """Build a mapper by resolving aliases against the rows' headers."""
        headers: list[str] = []
        for row in rows:
            headers.extend(key for key in row if key not in headers)
        columns = resolve_columns(headers)
        if columns.missing:
            logger.warning(f"Columns not found for {columns.missing}; headers: {headers[:15]}")
        return cls(channel, columns)

    def map(self, row: dict[str, Any]) -> CanonicalTransaction:
        """Map one raw row; raise ParseSkip when it lacks date, description or amount."""
        cols = self.columns
        when = parse_date(row.get(cols.date)) if cols.date else None
        if when is None:
            raise ParseSkip("missing or unparseable date")
        description = clean_text(row.get(cols.description)) if cols.description else None
        if description is None:
            raise ParseSkip("missing description")
        amount = parse_amount(row.get(cols.amount)) if cols.amount else None
        if amount is None:
            raise ParseSkip("missing or non-numeric amount")
        type_value = clean_text(row.get(cols.type)) if cols.type else None
        direction = infer_direction(amount, type_value)
        signed = -abs(amount) if direction is Direction.DEBIT else abs(amount)
        reference = clean_text(row.get(cols.document)) if cols.document else None
        return CanonicalTransaction(
            date=when,
            description=description,
            amount=signed,
            direction=direction,
            external_reference=reference or "",
            channel=self.channel,
        )

    def map_rows(self, rows: Iterable[dict[str, Any]], stats: ParseStats) -> list[CanonicalTransaction]:
        """Map every row, counting skipped rows as malformed in ``stats``."""
        transactions: list[CanonicalTransaction] = []
        for index, row in enumerate(rows, start=1):
            try:
                transactions.append(self.map(row))
            except ParseSkip as skip:
                stats.discarded_as_malformed += 1
                logger.debug(f"Row {index} skipped: {skip.reason}")
        stats.generated = len(transactions)
        return transactions
