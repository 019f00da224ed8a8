"""Marketplace settlement-report adapters (Mercado Livre, Mercado Pago, Shopee).

Each layout is declared as data: the labels that identify its header row, the
source columns for every logical field, and the vocabulary that classifies a
line as debit or credit. ``MarketplaceParser`` applies a layout to a CSV or
XLSX report and emits rows keyed by the logical field names used by the
canonical mapper.
"""

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from app.core.models import ParseResult
from app.core.utils import get_logger
from app.parsers.base import BaseParser, SourceFormat
from app.parsers.tabular import read_delimited_grid, read_spreadsheet, sheet_names
from app.parsers.values import clean_text, fold, is_blank, parse_amount

logger = get_logger("ledger-import.parsers.marketplace")

HEADER_SCAN_ROWS = 30
ZIP_MAGIC = b"PK\x03\x04"
OLE_MAGIC = b"\xd0\xcf\x11\xe0"


@dataclass(frozen=True)
class MarketplaceLayout:
    """Declarative description of one marketplace report layout."""

    source_format: SourceFormat
    header_markers: tuple[str, ...]
    columns: dict[str, tuple[str, ...]]
    debit_terms: tuple[str, ...] = ()
    credit_terms: tuple[str, ...] = ()
    discard_statuses: tuple[str, ...] = ()
    sheet_name: str | None = None
    fee_columns: tuple[str, ...] = field(default_factory=tuple)


MERCADO_LIVRE = MarketplaceLayout(
    source_format=SourceFormat.MERCADO_LIVRE,
    sheet_name="REPORT",
    header_markers=("data da tarifa", "tipo de tarifa", "valor liquido"),
    columns={
        "date": ("data da tarifa", "data tarifa", "fecha", "data"),
        "description": ("tipo de tarifa", "tipo tarifa", "detalhe", "descricao", "type"),
        "amount": ("valor liquido", "subtotal", "net", "total", "valor da tarifa"),
        "gross": ("valor da transacao", "valor transacao", "valor bruto", "gross"),
        "document": ("id da tarifa", "id tarifa", "id da transacao", "transaction id", "id interno", "operation id"),
        "order": ("numero da venda", "order", "pedido", "pack id"),
    },
    credit_terms=("venda", "pagamento", "liberacao", "repasse"),
    debit_terms=(
        "tarifa",
        "comissao",
        "custo por vender",
        "envio",
        "frete",
        "full",
        "publicidade",
        "ads",
        "anuncio",
        "estorno",
        "devolucao",
        "cancelamento",
        "antecipacao",
        "juros",
        "parcelamento",
    ),
)

MERCADO_PAGO = MarketplaceLayout(
    source_format=SourceFormat.MERCADO_PAGO,
    header_markers=("operation_id", "net_received_amount", "date_created", "valor liquido recebido"),
    columns={
        "date": ("date_created", "data de criacao", "date_approved", "money_release_date", "data", "fecha", "date"),
        "description": ("description", "descricao", "reason", "motivo", "detalhe"),
        "type": ("operation_type", "tipo de operacao", "tipo", "type"),
        "amount": ("net_received_amount", "valor liquido recebido", "valor liquido", "net_amount"),
        "gross": ("transaction_amount", "valor da transacao", "valor bruto", "gross_amount"),
        "fee": ("fee_amount", "marketplace_fee", "tarifa", "comissao"),
        "document": ("operation_id", "id da operacao", "id", "reference"),
        "order": ("order_id", "id do pedido", "pedido", "external_reference"),
        "status": ("status", "status_detail", "situacao"),
    },
    debit_terms=("refund", "chargeback", "estorno", "devolucao"),
    discard_statuses=("pending", "cancelled", "rejected"),
)

SHOPEE = MarketplaceLayout(
    source_format=SourceFormat.SHOPEE,
    header_markers=("n° do pedido", "no do pedido", "order id", "receita do vendedor", "seller earnings"),
    columns={
        "date": (
            "data de conclusao",
            "completion date",
            "data do pedido",
            "order date",
            "data da transacao",
            "transaction date",
            "data",
        ),
        "type": ("tipo de transacao", "transaction type", "tipo", "type"),
        "description": ("descricao", "description", "motivo", "detalhes", "nome do produto", "product name"),
        "amount": ("receita do vendedor", "seller earnings", "valor liquido", "net amount", "valor a receber"),
        "gross": ("valor total do pedido", "order total", "total do pedido", "valor bruto", "gross amount"),
        "document": ("id da transacao", "transaction id", "transaction no"),
        "order": ("n° do pedido", "no do pedido", "numero do pedido", "order id", "order no", "id do pedido"),
        "status": ("status do pedido", "order status", "status"),
    },
    fee_columns=("taxa de comissao", "commission fee", "taxa de transacao", "transaction fee", "taxa de servico"),
    debit_terms=("refund", "cancel", "estorno", "devolucao", "return", "taxa", "fee", "ajuste"),
)

LAYOUTS: dict[SourceFormat, MarketplaceLayout] = {
    layout.source_format: layout for layout in (MERCADO_LIVRE, MERCADO_PAGO, SHOPEE)
}


def find_column(headers: Sequence[str], names: Sequence[str]) -> str | None:
    """Return the first header containing any of ``names`` (accent/case-insensitive)."""
    folded = [(header, fold(str(header))) for header in headers]
    for name in names:
        target = fold(name)
        for header, candidate in folded:
            if candidate == target:
                return header
        for header, candidate in folded:
            if target in candidate:
                return header
    return None


class MarketplaceParser(BaseParser):
    """Apply a marketplace layout to a CSV or XLSX settlement report."""

    def __init__(self, layout: MarketplaceLayout) -> None:
        """Bind the parser to one layout."""
        self.layout = layout
        self.source_format = layout.source_format

    def parse(self, data: bytes, file_name: str = "") -> ParseResult:
        """Locate the header row, then emit one logical row per report line."""
        grid = self._load_grid(data)
        header_index = self._header_index(grid)
        header = [clean_text(cell) or f"col_{i}" for i, cell in enumerate(grid[header_index])] if grid else []
        body = grid[header_index + 1 :] if grid else []
        records = [dict(zip(header, line, strict=False)) for line in body]
        columns = {name: find_column(header, aliases) for name, aliases in self.layout.columns.items()}
        fees = [col for col in (find_column(header, [name]) for name in self.layout.fee_columns) if col]
        logger.info(f"{self.source_format} columns detected: {columns} ({len(records)} lines in {file_name or '<upload>'})")

        result = self.build_result(records, {"layout": self.source_format.value, "columns": columns})
        rows: list[dict[str, Any]] = []
        for record in result.rows:
            row = self._logical_row(record, columns, fees)
            if row is None:
                result.stats.discarded_as_malformed += 1
                continue
            rows.append(row)
        result.rows = rows
        return result

    def _load_grid(self, data: bytes) -> list[list[Any]]:
        if data.startswith((ZIP_MAGIC, OLE_MAGIC)):
            sheets = sheet_names(data)
            sheet: str | int = self.layout.sheet_name if self.layout.sheet_name in sheets else 0
            lines = read_spreadsheet(data, sheet_name=sheet, header=None).to_numpy().tolist()
        else:
            lines = read_delimited_grid(data)
        return [[None if is_blank(cell) else cell for cell in line] for line in lines]

    def _header_index(self, grid: list[list[Any]]) -> int:
        markers = [fold(marker) for marker in self.layout.header_markers]
        for index, line in enumerate(grid[:HEADER_SCAN_ROWS]):
            cells = [fold(str(cell)) for cell in line if cell is not None]
            if any(marker in cell for cell in cells for marker in markers):
                return index
        logger.warning(f"{self.source_format} header row not found, using the first line")
        return 0

    def _logical_row(
        self, record: dict[str, Any], columns: dict[str, str | None], fees: list[str]
    ) -> dict[str, Any] | None:
        def get(name: str) -> Any:
            column = columns.get(name)
            return record.get(column) if column else None

        status = fold(str(get("status") or ""))
        if status and any(term in status for term in self.layout.discard_statuses):
            return None

        amount = parse_amount(get("amount"))
        gross = parse_amount(get("gross"))
        if amount is None and gross is not None:
            fee_total = sum((abs(parse_amount(record.get(col)) or 0) for col in fees), start=0)
            fee_total += abs(parse_amount(get("fee")) or 0)
            amount = gross - fee_total

        kind = clean_text(get("type"))
        description = clean_text(get("description")) or kind
        order = clean_text(get("order"))
        if description and order and order not in description:
            description = f"{description} - pedido {order}"

        return {
            "date": get("date"),
            "description": description,
            "amount": amount,
            "document": clean_text(get("document")),
            "type": self._classify(" ".join(filter(None, (kind, description)))),
        }

    def _classify(self, text: str) -> str | None:
        folded = fold(text)
        if not folded:
            return None
        if any(term in folded for term in self.layout.debit_terms):
            return "debito"
        if any(term in folded for term in self.layout.credit_terms):
            return "credito"
        return None
