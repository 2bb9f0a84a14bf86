from __future__ import annotations

import re
from datetime import datetime
from typing import Any

from portfolio_import.utils.dates import parse_datetime

TICKER_RE = re.compile(r"^[A-Z0-9][A-Z0-9.\-/]{0,14}$")

BUY_ALIASES = {
    "BUY",
    "B",
    "BOT",
    "BOUGHT",
    "PURCHASE",
    "PURCHASED",
    "BUY TO OPEN",
    "BTO",
    "REINVEST",
    "REINVEST SHARES",
    "REINVESTMENT",
}
SELL_ALIASES = {
    "SELL",
    "S",
    "SLD",
    "SOLD",
    "SALE",
    "SELL TO CLOSE",
    "STC",
}
_BUY_TOKENS = {"BUY", "BOUGHT", "PURCHASE", "PURCHASED", "REINVEST", "REINVESTMENT"}
_SELL_TOKENS = {"SELL", "SOLD", "SALE"}
_NULL_TOKENS = {"N/A", "NA", "--", "-", "NONE", "NULL"}


def _clean_text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def is_blank(value: Any) -> bool:
    text = _clean_text(value)
    return not text or text.upper() in _NULL_TOKENS


def parse_float(value: Any, default: float | None = None) -> float | None:
    if value is None:
        return default
    text = (
        str(value)
        .strip()
        .replace(",", "")
        .replace("US$", "")
        .replace("$", "")
        .replace("@", "")
        .replace("USD", "")
        .replace(" ", "")
        .strip()
    )
    if text == "":
        return default
    if text.startswith("(") and text.endswith(")"):
        text = f"-{text[1:-1]}"
    if text.startswith("+"):
        text = text[1:]
    try:
        parsed = float(text)
    except ValueError:
        return default
    if parsed != parsed or parsed in (float("inf"), float("-inf")):
        return default
    return parsed


def parse_trade_date(value: Any) -> datetime | None:
    text = _clean_text(value)
    if not text:
        return None
    try:
        return parse_datetime(text)
    except ValueError:
        return None


def normalize_ticker(value: Any) -> str | None:
    text = _clean_text(value).upper()
    if not text or text in _NULL_TOKENS:
        return None
    text = text.lstrip("$")
    if not TICKER_RE.match(text):
        return None
    return text


def normalize_action(value: Any) -> str | None:
    """Map a broker action string to "buy"/"sell"; None when it means neither."""
    text = " ".join(_clean_text(value).upper().replace("_", " ").split())
    if not text:
        return None
    if text in BUY_ALIASES:
        return "buy"
    if text in SELL_ALIASES:
        return "sell"

    tokens = set(re.split(r"[^A-Z]+", text))
    is_buy = bool(tokens & _BUY_TOKENS)
    is_sell = bool(tokens & _SELL_TOKENS)
    if is_buy and not is_sell:
        return "buy"
    if is_sell and not is_buy:
        return "sell"
    return None


def infer_action_from_sign(shares: float | None, total_amount: float | None) -> str | None:
    for value in (shares, total_amount):
        if value is None or value == 0:
            continue
        return "sell" if value < 0 else "buy"
    return None
