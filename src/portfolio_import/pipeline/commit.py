from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from math import isclose
from typing import Protocol

from portfolio_import.analytics.replay import Position
from portfolio_import.db.models import CommitMode
from portfolio_import.errors import CommitError
from portfolio_import.utils.logging import get_logger

logger = get_logger(__name__)

CLEAR_CONFIRMATION_PHRASE = "CLEAR"


@dataclass(frozen=True)
class CommitSummary:
    added: int = 0
    updated: int = 0
    removed: int = 0

    def to_dict(self) -> dict[str, int]:
        return {"added": self.added, "updated": self.updated, "removed": self.removed}


@dataclass(frozen=True)
class HoldingsDiff:
    to_add: tuple[Position, ...]
    to_update: tuple[Position, ...]
    unchanged: tuple[str, ...]
    to_remove: tuple[str, ...]

    def summary(self) -> CommitSummary:
        return CommitSummary(
            added=len(self.to_add),
            updated=len(self.to_update),
            removed=len(self.to_remove),
        )


class HoldingsStore(Protocol):
    def list_holdings(self) -> list[Position]: ...

    def apply_holdings(self, positions: list[Position], mode: CommitMode) -> CommitSummary: ...

    def clear_all(self) -> int: ...


def coerce_mode(mode: CommitMode | str) -> CommitMode:
    try:
        resolved = CommitMode(str(getattr(mode, "value", mode)).strip().lower())
    except ValueError as exc:
        raise ValueError(f"Unsupported commit mode '{mode}'; use replace or merge.") from exc
    if resolved == CommitMode.CLEAR:
        raise ValueError("Use clear_holdings to wipe the portfolio.")
    return resolved


def holdings_differ(existing: Position, incoming: Position) -> bool:
    return not (
        isclose(existing.shares, incoming.shares, rel_tol=1e-9, abs_tol=1e-9)
        and isclose(existing.average_cost, incoming.average_cost, rel_tol=1e-9, abs_tol=1e-9)
    )


def diff_holdings(
    existing: Mapping[str, Position] | Iterable[Position],
    positions: Iterable[Position],
    mode: CommitMode | str,
) -> HoldingsDiff:
    resolved = coerce_mode(mode)
    if not isinstance(existing, Mapping):
        existing = {item.ticker: item for item in existing}

    to_add: list[Position] = []
    to_update: list[Position] = []
    unchanged: list[str] = []
    incoming_tickers: set[str] = set()
    for position in positions:
        incoming_tickers.add(position.ticker)
        current = existing.get(position.ticker)
        if current is None:
            to_add.append(position)
        elif holdings_differ(current, position):
            to_update.append(position)
        else:
            unchanged.append(position.ticker)

    to_remove: list[str] = []
    if resolved == CommitMode.REPLACE:
        to_remove = sorted(ticker for ticker in existing if ticker not in incoming_tickers)

    return HoldingsDiff(
        to_add=tuple(to_add),
        to_update=tuple(to_update),
        unchanged=tuple(unchanged),
        to_remove=tuple(to_remove),
    )


def validate_positions(positions: Iterable[Position]) -> list[str]:
    errors: list[str] = []
    seen: set[str] = set()
    for idx, position in enumerate(positions, start=1):
        ticker = (position.ticker or "").strip()
        if not ticker:
            errors.append(f"Holding {idx}: ticker is required.")
            continue
        if ticker in seen:
            errors.append(f"Holding {idx}: {ticker} appears more than once.")
        seen.add(ticker)
        if not position.shares or position.shares <= 0:
            errors.append(f"Holding {idx}: {ticker} shares must be greater than 0.")
        if position.average_cost is None or position.average_cost < 0:
            errors.append(f"Holding {idx}: {ticker} average cost cannot be negative.")
    return errors


def commit_positions(
    store: HoldingsStore,
    positions: Iterable[Position],
    mode: CommitMode | str,
) -> CommitSummary:
    resolved = coerce_mode(mode)
    items = [
        Position(
            ticker=position.ticker.strip().upper(),
            shares=float(position.shares),
            average_cost=float(position.average_cost),
        )
        for position in positions
    ]
    errors = validate_positions(items)
    if not items:
        errors.append("Nothing to import.")
    if errors:
        raise CommitError("; ".join(errors))

    try:
        summary = store.apply_holdings(items, resolved)
    except CommitError:
        raise
    except Exception as exc:
        logger.exception("Commit of %s holdings failed", len(items))
        raise CommitError(f"Import failed: {exc}") from exc

    logger.info(
        "Committed %s holdings (%s): added=%s updated=%s removed=%s",
        len(items),
        resolved.value,
        summary.added,
        summary.updated,
        summary.removed,
    )
    return summary


def clear_holdings(store: HoldingsStore, confirmation: str) -> int:
    if confirmation != CLEAR_CONFIRMATION_PHRASE:
        raise ValueError(f"Type {CLEAR_CONFIRMATION_PHRASE} to confirm clearing the portfolio.")
    try:
        removed = store.clear_all()
    except Exception as exc:
        logger.exception("Clearing holdings failed")
        raise CommitError(f"Failed to clear: {exc}") from exc
    logger.warning("Cleared portfolio: %s holdings removed", removed)
    return removed
