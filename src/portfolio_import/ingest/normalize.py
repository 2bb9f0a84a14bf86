from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from portfolio_import.config.settings import DEFAULT_MAX_IMPORT_ROWS
from portfolio_import.errors import ImportTooLarge, MappingIncomplete
from portfolio_import.ingest.column_mapping import ColumnMapping, validate_mapping
from portfolio_import.ingest.issues import RowWarning
from portfolio_import.ingest.tables import SOURCE_OCR, RawTable
from portfolio_import.ingest.validators import (
    infer_action_from_sign,
    is_blank,
    normalize_action,
    normalize_ticker,
    parse_float,
    parse_trade_date,
)
from portfolio_import.utils.dates import parse_datetime
from portfolio_import.utils.logging import get_logger

logger = get_logger(__name__)

OCR_REVIEW_NOTICE = (
    "Rows were read from a screenshot; check tickers and numbers before importing."
)


class TradeAction(str, Enum):
    BUY = "buy"
    SELL = "sell"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class TradeCandidate:
    row_index: int
    ticker: str
    trade_date: datetime | None
    action: TradeAction
    shares: float | None = None
    price: float | None = None
    total_amount: float | None = None
    warnings: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "row_index": self.row_index,
            "ticker": self.ticker,
            "date": self.trade_date.isoformat() if self.trade_date else None,
            "action": self.action.value,
            "shares": self.shares,
            "price": self.price,
            "total_amount": self.total_amount,
            "warnings": list(self.warnings),
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "TradeCandidate":
        raw_date = payload.get("date")
        try:
            trade_date = parse_datetime(raw_date) if raw_date else None
        except ValueError:
            trade_date = None
        action_text = str(payload.get("action") or "unknown").strip().lower()
        action = TradeAction(action_text) if action_text in {a.value for a in TradeAction} else TradeAction.UNKNOWN
        total_amount = payload.get("total_amount", payload.get("totalAmount"))
        row_index = payload.get("row_index", payload.get("rowIndex"))
        if row_index is None:
            raise ValueError("Trade payload is missing its row index.")
        return cls(
            row_index=int(row_index),
            ticker=str(payload.get("ticker") or "").strip().upper(),
            trade_date=trade_date,
            action=action,
            shares=parse_float(payload.get("shares")),
            price=parse_float(payload.get("price")),
            total_amount=parse_float(total_amount),
            warnings=tuple(str(w) for w in payload.get("warnings") or ()),
        )


@dataclass(frozen=True)
class NormalizeStats:
    total: int
    valid: int
    skipped: int


@dataclass(frozen=True)
class NormalizeResult:
    trades: tuple[TradeCandidate, ...]
    warnings: tuple[RowWarning, ...]
    stats: NormalizeStats
    source: str = "csv"
    needs_review: bool = False
    telemetry: dict[str, Any] = field(default_factory=dict, compare=False)

    @property
    def row_indices(self) -> frozenset[int]:
        return frozenset(trade.row_index for trade in self.trades)


def _parse_numeric(
    table: RawTable,
    row_index: int,
    header: str | None,
    label: str,
    problems: list[str],
) -> float | None:
    if not header:
        return None
    raw = table.value(row_index, header)
    if is_blank(raw):
        return None
    parsed = parse_float(raw)
    if parsed is None:
        problems.append(f"could not read {label} '{raw}'")
    return parsed


def _normalize_row(
    table: RawTable, row_index: int, mapping: ColumnMapping
) -> tuple[TradeCandidate | None, list[str]]:
    problems: list[str] = []

    raw_ticker = table.value(row_index, mapping.ticker)
    ticker = normalize_ticker(raw_ticker)
    if ticker is None:
        if is_blank(raw_ticker):
            problems.append("missing ticker; row skipped")
        else:
            problems.append(f"unrecognized ticker '{raw_ticker.strip()}'; row skipped")
        return None, problems

    trade_date: datetime | None = None
    if mapping.date:
        raw_date = table.value(row_index, mapping.date)
        if not is_blank(raw_date):
            trade_date = parse_trade_date(raw_date)
            if trade_date is None:
                problems.append(f"could not read date '{raw_date.strip()}'; ordered after dated rows")

    shares = _parse_numeric(table, row_index, mapping.shares, "shares", problems)
    price = _parse_numeric(table, row_index, mapping.price, "price", problems)
    total_amount = _parse_numeric(table, row_index, mapping.total_amount, "total amount", problems)

    raw_action = table.value(row_index, mapping.action)
    if not is_blank(raw_action):
        action_text = normalize_action(raw_action)
        if action_text is None:
            problems.append(f"action '{raw_action.strip()}' is not a buy or sell; excluded from positions")
    else:
        action_text = infer_action_from_sign(shares, total_amount)
        if action_text is None:
            problems.append("cannot tell buy from sell; excluded from positions")

    action = TradeAction(action_text) if action_text else TradeAction.UNKNOWN
    candidate = TradeCandidate(
        row_index=row_index,
        ticker=ticker,
        trade_date=trade_date,
        action=action,
        shares=shares,
        price=price,
        total_amount=total_amount,
        warnings=tuple(problems),
    )
    return candidate, problems


def normalize_rows(
    table: RawTable,
    mapping: ColumnMapping | dict[str, Any],
    *,
    max_rows: int = DEFAULT_MAX_IMPORT_ROWS,
) -> NormalizeResult:
    if table.row_count > max_rows:
        raise ImportTooLarge(table.row_count, max_rows)

    cleaned, errors = validate_mapping(mapping, headers=table.headers)
    if errors:
        raise MappingIncomplete(errors)

    trades: list[TradeCandidate] = []
    warnings: list[RowWarning] = []
    if table.source == SOURCE_OCR:
        warnings.append(RowWarning(row_index=None, message=OCR_REVIEW_NOTICE))

    for row_index in range(table.row_count):
        candidate, problems = _normalize_row(table, row_index, cleaned)
        warnings.extend(RowWarning(row_index=row_index, message=problem) for problem in problems)
        if candidate is not None:
            trades.append(candidate)

    valid = sum(1 for trade in trades if trade.action != TradeAction.UNKNOWN)
    stats = NormalizeStats(total=table.row_count, valid=valid, skipped=table.row_count - valid)
    logger.info(
        "Normalized %s rows: %s valid, %s skipped, %s warnings",
        stats.total,
        stats.valid,
        stats.skipped,
        len(warnings),
    )
    return NormalizeResult(
        trades=tuple(trades),
        warnings=tuple(warnings),
        stats=stats,
        source=table.source,
        needs_review=table.source == SOURCE_OCR,
    )
