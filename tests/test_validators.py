from __future__ import annotations

from datetime import datetime

from portfolio_import.ingest.validators import (
    infer_action_from_sign,
    is_blank,
    normalize_action,
    normalize_ticker,
    parse_float,
    parse_trade_date,
)


def test_parse_float_handles_broker_number_formats():
    assert parse_float("$1,234.56") == 1234.56
    assert parse_float("($1,500.00)") == -1500.0
    assert parse_float("+12.5") == 12.5
    assert parse_float("US$ 10") == 10.0
    assert parse_float("@ 99.10") == 99.1
    assert parse_float("bad") is None
    assert parse_float("bad", default=0.0) == 0.0
    assert parse_float("nan") is None
    assert parse_float("inf") is None
    assert parse_float(None) is None


def test_is_blank_treats_placeholder_tokens_as_empty():
    assert is_blank("")
    assert is_blank("  ")
    assert is_blank("N/A")
    assert is_blank("--")
    assert not is_blank("0")


def test_normalize_ticker_uppercases_and_rejects_prose():
    assert normalize_ticker(" $aapl ") == "AAPL"
    assert normalize_ticker("brk.b") == "BRK.B"
    assert normalize_ticker("Apple Inc") is None
    assert normalize_ticker("") is None
    assert normalize_ticker("N/A") is None


def test_normalize_action_maps_aliases_and_phrases():
    assert normalize_action("Buy") == "buy"
    assert normalize_action("SLD") == "sell"
    assert normalize_action("reinvest_shares") == "buy"
    assert normalize_action("YOU BOUGHT APPLE INC") == "buy"
    assert normalize_action("You Sold") == "sell"
    assert normalize_action("CDIV") is None
    assert normalize_action("Buy/Sell") is None
    assert normalize_action("") is None


def test_infer_action_from_sign_prefers_shares_and_ignores_zero():
    assert infer_action_from_sign(-5, None) == "sell"
    assert infer_action_from_sign(0, 100) == "buy"
    assert infer_action_from_sign(10, -1000) == "buy"
    assert infer_action_from_sign(None, -20) == "sell"
    assert infer_action_from_sign(None, None) is None
    assert infer_action_from_sign(0, 0) is None


def test_parse_trade_date_accepts_us_and_iso_dates():
    assert parse_trade_date("01/15/2026") == datetime(2026, 1, 15)
    assert parse_trade_date("1/5/2026") == datetime(2026, 1, 5)
    assert parse_trade_date("2026-01-15T10:30:00Z") == datetime(2026, 1, 15, 10, 30)
    assert parse_trade_date("someday") is None
    assert parse_trade_date("") is None
