from __future__ import annotations

import pytest
import requests

from portfolio_import.errors import ImportFileError, MappingIncomplete
from portfolio_import.ingest.column_mapping import ColumnMapping
from portfolio_import.ingest.normalize import TradeAction
from portfolio_import.ingest.tables import SOURCE_OCR, build_table
from portfolio_import.providers.ocr import OcrClient, table_from_payload
from portfolio_import.providers.submission import LocalNormalizer, SubmissionClient
from portfolio_import.providers.symbols import SymbolMatch, SymbolSearchClient, rank_symbol_matches


class RecordingFetcher:
    def __init__(self, payload=None, error: Exception | None = None) -> None:
        self.payload = payload
        self.error = error
        self.calls: list[tuple[str, str, dict]] = []

    def __call__(self, method: str, url: str, **kwargs):
        self.calls.append((method, url, kwargs))
        if self.error is not None:
            raise self.error
        return self.payload


def test_ocr_client_posts_image_and_builds_table():
    fetcher = RecordingFetcher({"headers": ["Symbol", "Qty"], "rows": [["AAPL", 2], ["", ""]]})
    client = OcrClient("http://ocr.test", timeout_seconds=3, fetcher=fetcher)

    table = client.extract(b"\x89PNG", "holdings.PNG")

    method, url, kwargs = fetcher.calls[0]
    assert (method, url) == ("POST", "http://ocr.test/extract-table")
    assert kwargs["files"] == {"image": ("holdings.PNG", b"\x89PNG")}
    assert kwargs["timeout_seconds"] == 3
    assert table.source == SOURCE_OCR
    assert table.headers == ("Symbol", "Qty")
    assert table.row_count == 1


def test_ocr_client_rejects_bad_input_and_failures():
    fetcher = RecordingFetcher({"headers": ["A"], "rows": []})
    client = OcrClient("http://ocr.test", fetcher=fetcher)

    with pytest.raises(ImportFileError, match="PNG"):
        client.extract(b"data", "holdings.pdf")
    with pytest.raises(ImportFileError, match="empty"):
        client.extract(b"", "holdings.png")
    assert fetcher.calls == []

    failing = OcrClient("http://ocr.test", fetcher=RecordingFetcher(error=requests.ConnectionError("refused")))
    with pytest.raises(ImportFileError, match="refused"):
        failing.extract(b"data", "holdings.png")


def test_ocr_client_requires_configuration():
    with pytest.raises(ImportFileError, match="OCR_SERVICE_URL"):
        OcrClient(fetcher=RecordingFetcher()).extract(b"data", "holdings.png")


def test_table_from_payload_requires_headers():
    with pytest.raises(ImportFileError, match="No table"):
        table_from_payload({"headers": [], "rows": []})
    with pytest.raises(ImportFileError):
        table_from_payload(["not", "a", "dict"])


def test_submission_client_posts_wire_mapping_and_parses_result():
    fetcher = RecordingFetcher(
        {
            "trades": [
                {
                    "rowIndex": 0,
                    "ticker": "aapl",
                    "date": "2026-01-02",
                    "action": "buy",
                    "shares": "10",
                    "price": "150",
                    "totalAmount": "-1500",
                },
                {"ticker": "BAD"},
            ],
            "warnings": [{"rowNumber": 2, "message": "unrecognized ticker"}],
            "stats": {"totalRows": 2, "validRows": 1, "skippedRows": 1},
            "telemetry": {"durationMs": 12},
        }
    )
    table = build_table(["Symbol", "Amount"], [["AAPL", "-1500"], ["???", "1"]], file_name="trades.csv")
    client = SubmissionClient("http://imports.test", fetcher=fetcher)

    result = client.normalize(table, ColumnMapping(ticker="Symbol", total_amount="Amount"))

    method, url, kwargs = fetcher.calls[0]
    assert (method, url) == ("POST", "http://imports.test/imports/csv")
    assert kwargs["json_body"]["mapping"] == {"ticker": "Symbol", "totalAmount": "Amount"}
    assert kwargs["json_body"]["fileName"] == "trades.csv"
    assert kwargs["json_body"]["csv"].splitlines()[0] == "Symbol,Amount"

    assert len(result.trades) == 1
    assert result.trades[0].ticker == "AAPL"
    assert result.trades[0].action == TradeAction.BUY
    assert (result.stats.total, result.stats.valid, result.stats.skipped) == (2, 1, 1)
    assert result.telemetry == {"durationMs": 12}
    messages = [(w.row_index, w.message) for w in result.warnings]
    assert (1, "unrecognized ticker") in messages
    assert any(w.row_index is None and "malformed trade" in w.message for w in result.warnings)


def test_submission_client_validates_before_sending():
    fetcher = RecordingFetcher({})
    table = build_table(["Symbol"], [["AAPL"]])
    client = SubmissionClient("http://imports.test", fetcher=fetcher)

    with pytest.raises(MappingIncomplete):
        client.normalize(table, ColumnMapping(ticker="Symbol"))
    assert fetcher.calls == []

    with pytest.raises(ImportFileError, match="SUBMISSION_SERVICE_URL"):
        SubmissionClient(fetcher=fetcher).normalize(table, ColumnMapping(ticker="Symbol"))


def test_submission_client_maps_request_errors():
    table = build_table(["Symbol", "Qty"], [["AAPL", "1"]])
    client = SubmissionClient(
        "http://imports.test", fetcher=RecordingFetcher(error=requests.Timeout("slow"))
    )

    with pytest.raises(ImportFileError, match="Upload failed"):
        client.normalize(table, ColumnMapping(ticker="Symbol", shares="Qty"))


def test_local_normalizer_uses_row_cap():
    table = build_table(["Symbol", "Qty"], [["AAPL", "1"], ["MSFT", "2"]])

    result = LocalNormalizer(max_rows=5).normalize(table, ColumnMapping(ticker="Symbol", shares="Qty"))

    assert result.stats.total == 2


def test_symbol_search_ranks_and_dedupes_matches():
    fetcher = RecordingFetcher(
        {
            "results": [
                {"symbol": "AAPLW", "name": "Apple warrants"},
                {"symbol": "aapl", "name": "Apple Inc"},
                {"ticker": "AAPL", "name": "duplicate"},
                {"name": "no symbol"},
            ]
        }
    )
    client = SymbolSearchClient("http://symbols.test", fetcher=fetcher)

    matches = client.search(" aapl ", limit=5)

    assert matches == [SymbolMatch("AAPL", "Apple Inc"), SymbolMatch("AAPLW", "Apple warrants")]
    assert fetcher.calls[0][2]["params"] == {"q": "aapl", "limit": 5}


def test_symbol_search_is_quiet_on_blank_query_and_errors():
    fetcher = RecordingFetcher(error=requests.ConnectionError("down"))
    client = SymbolSearchClient("http://symbols.test", fetcher=fetcher)

    assert client.search("   ") == []
    assert fetcher.calls == []
    assert client.search("msft") == []
    assert SymbolSearchClient(fetcher=fetcher).search("msft") == []


def test_rank_symbol_matches_prefers_exact_then_prefix_then_name():
    matches = [
        SymbolMatch("XYZ", "Microsoft tracker"),
        SymbolMatch("MSFTX", ""),
        SymbolMatch("MSFT", "Microsoft"),
    ]

    ranked = rank_symbol_matches("msft", matches, limit=2)

    assert [m.symbol for m in ranked] == ["MSFT", "MSFTX"]
