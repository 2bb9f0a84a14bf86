"""Weighted-average position reconstruction from a normalized trade log."""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime

from portfolio_import.ingest.issues import RowWarning
from portfolio_import.ingest.normalize import TradeAction, TradeCandidate

SHARE_EPSILON = 1e-9


@dataclass(frozen=True)
class Position:
    ticker: str
    shares: float
    average_cost: float

    def to_dict(self) -> dict:
        return {"ticker": self.ticker, "shares": self.shares, "average_cost": self.average_cost}


@dataclass(frozen=True)
class ReplayResult:
    positions: tuple[Position, ...]
    warnings: tuple[RowWarning, ...]
    replayed_rows: int
    closed_tickers: tuple[str, ...] = ()


@dataclass(slots=True)
class _RunningPosition:
    shares: float = 0.0
    average_cost: float = 0.0


def replay_order_key(trade: TradeCandidate) -> tuple[bool, datetime, int]:
    # Undated rows go last; ties fall back to the original row position.
    return (trade.trade_date is None, trade.trade_date or datetime.min, trade.row_index)


def _magnitude(value: float | None) -> float | None:
    if value is None:
        return None
    return abs(value)


def resolve_quantity_and_price(trade: TradeCandidate) -> tuple[float | None, float | None]:
    """Fill in whichever of shares/price is missing from the other two numeric fields."""
    qty = _magnitude(trade.shares)
    price = _magnitude(trade.price)
    total = _magnitude(trade.total_amount)
    if qty == 0:
        qty = None

    if qty is None and total is not None and price:
        qty = total / price
    if price is None and total is not None and qty:
        price = total / qty
    return qty, price


def _apply_buy(
    state: _RunningPosition, trade: TradeCandidate, warnings: list[RowWarning]
) -> bool:
    qty, price = resolve_quantity_and_price(trade)
    if qty is None or price is None:
        warnings.append(
            RowWarning(
                trade.row_index,
                f"{trade.ticker}: buy needs two of shares, price and total amount; ignored",
            )
        )
        return False

    new_shares = state.shares + qty
    if new_shares > SHARE_EPSILON:
        state.average_cost = (state.shares * state.average_cost + qty * price) / new_shares
    state.shares = new_shares
    return True


def _apply_sell(
    state: _RunningPosition, trade: TradeCandidate, warnings: list[RowWarning]
) -> bool:
    qty, _ = resolve_quantity_and_price(trade)
    if qty is None:
        warnings.append(
            RowWarning(trade.row_index, f"{trade.ticker}: sell has no share quantity; ignored")
        )
        return False

    if qty > state.shares + SHARE_EPSILON:
        warnings.append(
            RowWarning(
                trade.row_index,
                f"{trade.ticker}: sold {qty:g} shares but only {state.shares:g} held; "
                "position clamped to 0",
            )
        )
    state.shares = max(0.0, state.shares - qty)
    if state.shares <= SHARE_EPSILON:
        state.shares = 0.0
    return True


def replay_trades(
    trades: Iterable[TradeCandidate],
    excluded: Iterable[int] = (),
) -> ReplayResult:
    excluded_rows = frozenset(excluded)
    groups: dict[str, list[TradeCandidate]] = defaultdict(list)
    for trade in trades:
        if trade.row_index in excluded_rows or trade.action == TradeAction.UNKNOWN:
            continue
        groups[trade.ticker].append(trade)

    positions: list[Position] = []
    closed: list[str] = []
    warnings: list[RowWarning] = []
    replayed = 0

    for ticker in sorted(groups):
        state = _RunningPosition()
        for trade in sorted(groups[ticker], key=replay_order_key):
            if trade.action == TradeAction.BUY:
                applied = _apply_buy(state, trade, warnings)
            else:
                applied = _apply_sell(state, trade, warnings)
            replayed += int(applied)

        if state.shares > SHARE_EPSILON:
            positions.append(
                Position(ticker=ticker, shares=state.shares, average_cost=state.average_cost)
            )
        else:
            closed.append(ticker)

    warnings.sort(key=lambda item: (item.row_index is None, item.row_index or 0))
    return ReplayResult(
        positions=tuple(positions),
        warnings=tuple(warnings),
        replayed_rows=replayed,
        closed_tickers=tuple(closed),
    )
