from __future__ import annotations

from typing import Any

from portfolio_import.analytics.replay import Position, ReplayResult, replay_trades
from portfolio_import.config.settings import DEFAULT_WARNING_DISPLAY_LIMIT
from portfolio_import.ingest.issues import RowWarning, warning_lines
from portfolio_import.ingest.normalize import NormalizeResult, TradeCandidate
from portfolio_import.ingest.validators import normalize_ticker, parse_float
from portfolio_import.utils.logging import get_logger

logger = get_logger(__name__)


def _coerce_number(value: Any) -> float:
    if isinstance(value, (int, float)):
        return float(value)
    return parse_float(value, default=0.0) or 0.0


class ReviewSession:
    """Normalized trades, their replayed positions and the operator's row exclusions.

    Positions are always rebuilt from the full trade list minus the exclusion
    set; hand edits made afterwards apply to the derived rows only and are
    dropped by the next ``recompute``.
    """

    def __init__(self, normalized: NormalizeResult, excluded: set[int] | None = None) -> None:
        self.normalized = normalized
        self.excluded: set[int] = set(excluded or ())
        self.replay: ReplayResult = replay_trades(normalized.trades, self.excluded)
        self.positions: list[Position] = list(self.replay.positions)
        self.edited = False

    @property
    def trades(self) -> tuple[TradeCandidate, ...]:
        return self.normalized.trades

    @property
    def included_trades(self) -> list[TradeCandidate]:
        return [trade for trade in self.trades if trade.row_index not in self.excluded]

    @property
    def warnings(self) -> list[RowWarning]:
        return [*self.normalized.warnings, *self.replay.warnings]

    @property
    def warning_count(self) -> int:
        return len(self.normalized.warnings) + len(self.replay.warnings)

    def warning_lines(self, limit: int | None = DEFAULT_WARNING_DISPLAY_LIMIT) -> list[str]:
        return warning_lines(self.warnings, limit=limit)

    def is_excluded(self, row_index: int) -> bool:
        return row_index in self.excluded

    def toggle_row(self, row_index: int) -> bool:
        if row_index not in self.normalized.row_indices:
            raise KeyError(f"No trade for row index {row_index}.")
        if row_index in self.excluded:
            self.excluded.discard(row_index)
        else:
            self.excluded.add(row_index)
        self.recompute()
        return row_index not in self.excluded

    def toggle_all(self, selected: bool) -> None:
        self.excluded = set() if selected else set(self.normalized.row_indices)
        self.recompute()

    def recompute(self) -> ReplayResult:
        self.replay = replay_trades(self.normalized.trades, self.excluded)
        if self.edited:
            logger.info("Discarding hand edits after recomputing positions")
        self.positions = list(self.replay.positions)
        self.edited = False
        return self.replay

    def edit_position(
        self,
        index: int,
        *,
        ticker: str | None = None,
        shares: Any = None,
        average_cost: Any = None,
    ) -> Position:
        current = self.positions[index]
        updated = Position(
            ticker=current.ticker if ticker is None else str(ticker).strip().upper(),
            shares=current.shares if shares is None else _coerce_number(shares),
            average_cost=current.average_cost if average_cost is None else _coerce_number(average_cost),
        )
        self.positions[index] = updated
        self.edited = True
        return updated

    def apply_symbol_suggestion(self, index: int, symbol: str) -> Position:
        ticker = normalize_ticker(symbol)
        if ticker is None:
            raise ValueError(f"'{symbol}' is not a valid ticker.")
        return self.edit_position(index, ticker=ticker)

    def remove_position(self, index: int) -> Position:
        removed = self.positions.pop(index)
        self.edited = True
        return removed
