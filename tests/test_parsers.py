"""Tests for format selection and the file adapters."""

import io

import pandas as pd
import pytest

from app.core.errors import UnsupportedFormatError
from app.parsers import CanonicalMapper, ParserRegistry, SourceFormat, parse

OFX_SGML = b"""OFXHEADER:100
DATA:OFXSGML
CHARSET:1252

<OFX>
<BANKMSGSRSV1><STMTTRNRS><STMTRS>
<BANKACCTFROM>
<BANKID>0001
<ACCTID>12345-6
</BANKACCTFROM>
<BANKTRANLIST>
<STMTTRN>
<TRNTYPE>DEBIT
<DTPOSTED>20240110120000[-3:BRT]
<TRNAMT>-52.30
<FITID>A1001
<MEMO>Padaria Pao Quente
</STMTTRN>
<STMTTRN>
<TRNTYPE>CREDIT
<DTPOSTED>20240111
<TRNAMT>1500.00
<FITID>A1002
<NAME>Transferencia recebida
</STMTTRN>
</BANKTRANLIST>
</STMTRS></STMTTRNRS></BANKMSGSRSV1>
</OFX>
"""


@pytest.mark.parametrize(
    ("data", "declared", "file_name", "expected"),
    [
        (b"a,b\n1,2\n", "ofx", "extrato.csv", SourceFormat.OFX),
        (b"a,b\n1,2\n", "ML", "", SourceFormat.MERCADO_LIVRE),
        (b"a;b\n1;2\n", None, "relatorio_mercadopago_jan.csv", SourceFormat.MERCADO_PAGO),
        (b"a;b\n1;2\n", None, "ml_vendas.xlsx", SourceFormat.MERCADO_LIVRE),
        (b"a;b\n1;2\n", None, "Shopee-Income.csv", SourceFormat.SHOPEE),
        (b"a;b\n1;2\n", None, "extrato_janeiro.csv", SourceFormat.CSV),
        (b"a;b\n1;2\n", None, "vendas_mp_janeiro.csv", SourceFormat.MERCADO_PAGO),
        (b"a;b\n1;2\n", None, "fatura.xls", SourceFormat.XLSX),
        (OFX_SGML, None, "statement", SourceFormat.OFX),
        (b"PK\x03\x04rest", None, "blob", SourceFormat.XLSX),
        (b"data;valor\n01/01/2024;10\n", None, "", SourceFormat.CSV),
    ],
)
def test_select_format(data: bytes, declared: str | None, file_name: str, expected: SourceFormat) -> None:
    """Explicit tag, then filename, then extension, then content decide the adapter."""
    selected = ParserRegistry.select(data, declared, file_name)
    if selected is not expected:
        msg = f"Expected {expected} for ({declared!r}, {file_name!r}), got {selected}"
        raise AssertionError(msg)


@pytest.mark.parametrize(("data", "declared"), [(b"a,b\n1,2\n", "pdf"), (b"\x00\x01\x02binary", None)])
def test_select_format_unsupported(data: bytes, declared: str | None) -> None:
    """Unknown tags and unrecognizable content are rejected."""
    with pytest.raises(UnsupportedFormatError):
        ParserRegistry.select(data, declared, "")


def test_delimited_parser_counts_empty_rows() -> None:
    """Semicolon CSV in latin-1 is decoded and blank rows are counted as empty."""
    content = "Data;Histórico;Valor\n02/01/2024;Tarifa;-12,90\n;;\n03/01/2024;Pix recebido;250,00\n"
    result = parse(content.encode("latin-1"), file_name="extrato.csv")
    if result.source_format != "csv":
        msg = f"Expected csv, got {result.source_format}"
        raise AssertionError(msg)
    if result.stats.total_lines != 3 or result.stats.discarded_as_empty != 1 or len(result.rows) != 2:
        msg = f"Unexpected stats {result.stats} with {len(result.rows)} rows"
        raise AssertionError(msg)
    transactions = CanonicalMapper.for_rows("banco", result.rows).map_rows(result.rows, result.stats)
    if [str(txn.amount) for txn in transactions] != ["-12.90", "250.00"]:
        msg = f"Unexpected amounts {[txn.amount for txn in transactions]}"
        raise AssertionError(msg)


def test_spreadsheet_parser_reads_first_sheet() -> None:
    """XLSX workbooks are read via pandas/openpyxl with every cell as text."""
    buffer = io.BytesIO()
    frame = pd.DataFrame(
        {"Data": ["2024-01-02", "2024-01-03"], "Descrição": ["Aluguel", "Venda"], "Valor": ["-1200,00", "300,50"]}
    )
    frame.to_excel(buffer, index=False)
    result = parse(buffer.getvalue(), file_name="planilha.xlsx")
    transactions = CanonicalMapper.for_rows("banco", result.rows).map_rows(result.rows, result.stats)
    if len(transactions) != 2 or str(transactions[1].amount) != "300.50":
        msg = f"Unexpected spreadsheet transactions {transactions}"
        raise AssertionError(msg)


def test_ofx_parser_extracts_transactions_and_account() -> None:
    """SGML OFX blocks become rows with FITID references; account info is kept."""
    result = parse(OFX_SGML, file_name="extrato.ofx")
    account = result.stats.metadata["account"]
    if account["bankid"] != "0001" or account["acctid"] != "12345-6":
        msg = f"Unexpected account metadata {account}"
        raise AssertionError(msg)
    transactions = CanonicalMapper.for_rows("banco", result.rows).map_rows(result.rows, result.stats)
    if [txn.external_reference for txn in transactions] != ["A1001", "A1002"]:
        msg = f"Unexpected references {[txn.external_reference for txn in transactions]}"
        raise AssertionError(msg)
    if str(transactions[0].amount) != "-52.30" or transactions[0].description != "Padaria Pao Quente":
        msg = f"Unexpected first transaction {transactions[0]}"
        raise AssertionError(msg)
    if transactions[1].direction.value != "credito":
        msg = f"Expected a credit, got {transactions[1].direction}"
        raise AssertionError(msg)


def test_mercado_pago_report_discards_pending_and_nets_fees() -> None:
    """Mercado Pago lines locate their header, skip pending rows and fall back to gross minus fee."""
    content = (
        "Relatorio de liberacoes\n"
        "\n"
        "date_created,operation_id,description,transaction_amount,fee_amount,net_received_amount,status\n"
        "2024-01-05,900001,Venda produto X,100.00,12.00,88.00,approved\n"
        "2024-01-06,900002,Venda produto Y,50.00,6.00,,approved\n"
        "2024-01-06,900003,Venda produto Z,70.00,8.00,62.00,pending\n"
    )
    result = parse(content.encode(), file_name="mercadopago_jan.csv")
    if result.stats.discarded_as_malformed != 1:
        msg = f"Expected 1 discarded pending row, got {result.stats.discarded_as_malformed}"
        raise AssertionError(msg)
    transactions = CanonicalMapper.for_rows("Mercado Pago", result.rows).map_rows(result.rows, result.stats)
    amounts = [str(txn.amount) for txn in transactions]
    if amounts != ["88.00", "44.00"]:
        msg = f"Expected net amounts ['88.00', '44.00'], got {amounts}"
        raise AssertionError(msg)
    if {txn.channel for txn in transactions} != {"mercado_pago"}:
        msg = f"Unexpected channels {[txn.channel for txn in transactions]}"
        raise AssertionError(msg)
    if transactions[0].external_reference != "900001":
        msg = f"Expected operation id as reference, got {transactions[0].external_reference}"
        raise AssertionError(msg)


def test_mercado_livre_fee_lines_are_debits() -> None:
    """Mercado Livre fee lines are classified as debits and tagged with the order number."""
    content = (
        "Data da tarifa;Tipo de tarifa;Número da venda;ID da tarifa;Valor líquido\n"
        "10/01/2024;Tarifa de venda;2000001;T-1;15,90\n"
        "10/01/2024;Venda;2000001;T-2;120,00\n"
    )
    result = parse(content.encode(), declared_format="mercado_livre")
    transactions = CanonicalMapper.for_rows("Mercado Livre", result.rows).map_rows(result.rows, result.stats)
    if [str(txn.amount) for txn in transactions] != ["-15.90", "120.00"]:
        msg = f"Unexpected amounts {[txn.amount for txn in transactions]}"
        raise AssertionError(msg)
    if transactions[0].description != "Tarifa de venda - pedido 2000001":
        msg = f"Unexpected description {transactions[0].description!r}"
        raise AssertionError(msg)


def test_zero_rows_is_not_an_error() -> None:
    """A header-only file parses to an empty result."""
    result = parse(b"data,descricao,valor\n", file_name="vazio.csv")
    if result.rows or result.stats.total_lines != 0:
        msg = f"Expected no rows, got {result.rows} / {result.stats}"
        raise AssertionError(msg)


@pytest.mark.parametrize(
    ("data", "file_name", "channel", "expected"),
    [
        (b"a;b\n1;2\n", "relatorio_janeiro.csv", "mercado_livre", SourceFormat.MERCADO_LIVRE),
        (b"a;b\n1;2\n", "relatorio.xlsx", "Mercado Pago", SourceFormat.MERCADO_PAGO),
        (b"a;b\n1;2\n", "extrato", "shopee", SourceFormat.SHOPEE),
        (b"a;b\n1;2\n", "shopee_jan.csv", "mercado_livre", SourceFormat.SHOPEE),
        (b"a;b\n1;2\n", "extrato.csv", "banco", SourceFormat.CSV),
        (OFX_SGML, "extrato.ofx", "mercado_pago", SourceFormat.OFX),
    ],
)
def test_select_format_by_channel(data: bytes, file_name: str, channel: str, expected: SourceFormat) -> None:
    """Marketplace channels pick their layout when the file name carries no marketplace hint."""
    selected = ParserRegistry.select(data, None, file_name, channel)
    if selected is not expected:
        msg = f"Expected {expected} for ({file_name!r}, {channel!r}), got {selected}"
        raise AssertionError(msg)


def test_mercado_livre_workbook_uses_report_sheet() -> None:
    """The REPORT sheet is read and the preamble above the header row is skipped."""
    buffer = io.BytesIO()
    with pd.ExcelWriter(buffer, engine="openpyxl") as writer:
        pd.DataFrame([["Resumo do periodo"], ["Total", "104,10"]]).to_excel(
            writer, sheet_name="Resumo", header=False, index=False
        )
        pd.DataFrame(
            [
                ["Relatório de tarifas", None, None, None, None],
                ["Período: 01/01/2024 a 31/01/2024", None, None, None, None],
                ["Data da tarifa", "Tipo de tarifa", "Número da venda", "ID da tarifa", "Valor líquido"],
                ["10/01/2024", "Tarifa de venda", "2000001", "T-1", "15,90"],
                ["11/01/2024", "Venda", "2000002", "T-2", "120,00"],
            ]
        ).to_excel(writer, sheet_name="REPORT", header=False, index=False)

    result = parse(buffer.getvalue(), file_name="ml_janeiro.xlsx")
    if result.source_format != "mercado_livre" or result.stats.total_lines != 2:
        msg = f"Expected 2 mercado_livre lines, got {result.source_format} with {result.stats}"
        raise AssertionError(msg)
    transactions = CanonicalMapper.for_rows("Mercado Livre", result.rows).map_rows(result.rows, result.stats)
    if [str(txn.amount) for txn in transactions] != ["-15.90", "120.00"]:
        msg = f"Unexpected amounts {[txn.amount for txn in transactions]}"
        raise AssertionError(msg)
    if [txn.external_reference for txn in transactions] != ["T-1", "T-2"]:
        msg = f"Unexpected references {[txn.external_reference for txn in transactions]}"
        raise AssertionError(msg)


def test_shopee_report_signs_and_order_column() -> None:
    """Shopee refunds become debits and the "Nº do pedido" column tags the description."""
    content = (
        "Nº do pedido,Data de conclusão,Tipo de transação,Descrição,Receita do vendedor\n"
        "240101ABC,05/01/2024,Venda,Pedido concluído,\"89,90\"\n"
        "240102XYZ,06/01/2024,Devolução,Reembolso ao comprador,\"30,00\"\n"
    )
    result = parse(content.encode(), file_name="shopee_income.csv")
    if result.stats.metadata["columns"]["order"] != "Nº do pedido":
        msg = f"Expected the order column to be found, got {result.stats.metadata['columns']}"
        raise AssertionError(msg)
    transactions = CanonicalMapper.for_rows("Shopee", result.rows).map_rows(result.rows, result.stats)
    if [str(txn.amount) for txn in transactions] != ["89.90", "-30.00"]:
        msg = f"Unexpected amounts {[txn.amount for txn in transactions]}"
        raise AssertionError(msg)
    if transactions[0].description != "Pedido concluído - pedido 240101ABC":
        msg = f"Unexpected description {transactions[0].description!r}"
        raise AssertionError(msg)
    if {txn.channel for txn in transactions} != {"shopee"}:
        msg = f"Unexpected channels {[txn.channel for txn in transactions]}"
        raise AssertionError(msg)
