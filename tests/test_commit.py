from __future__ import annotations

import pytest

from portfolio_import.analytics.replay import Position
from portfolio_import.db.models import CommitMode
from portfolio_import.db.repository import SqlHoldingsStore
from portfolio_import.errors import CommitError
from portfolio_import.pipeline.commit import (
    clear_holdings,
    coerce_mode,
    commit_positions,
    diff_holdings,
)


class FailingStore:
    def __init__(self) -> None:
        self.calls = 0

    def list_holdings(self) -> list[Position]:
        return []

    def apply_holdings(self, positions, mode):
        self.calls += 1
        raise RuntimeError("disk full")

    def clear_all(self) -> int:
        raise RuntimeError("disk full")


def _seed(store: SqlHoldingsStore) -> None:
    commit_positions(
        store,
        [Position("AAPL", 10.0, 100.0), Position("MSFT", 5.0, 50.0)],
        CommitMode.MERGE,
    )


def test_replace_adds_updates_and_removes(holdings_store: SqlHoldingsStore):
    _seed(holdings_store)

    summary = commit_positions(
        holdings_store,
        [Position("AAPL", 12.0, 110.0), Position("TSLA", 1.0, 200.0)],
        "replace",
    )

    assert summary.to_dict() == {"added": 1, "updated": 1, "removed": 1}
    assert holdings_store.list_holdings() == [
        Position("AAPL", 12.0, 110.0),
        Position("TSLA", 1.0, 200.0),
    ]


def test_merge_keeps_holdings_missing_from_import(holdings_store: SqlHoldingsStore):
    _seed(holdings_store)

    summary = commit_positions(holdings_store, [Position("tsla", 1.0, 200.0)], CommitMode.MERGE)

    assert summary.to_dict() == {"added": 1, "updated": 0, "removed": 0}
    assert [p.ticker for p in holdings_store.list_holdings()] == ["AAPL", "MSFT", "TSLA"]


def test_commit_of_identical_positions_changes_nothing(holdings_store: SqlHoldingsStore):
    _seed(holdings_store)

    summary = commit_positions(
        holdings_store,
        [Position("AAPL", 10.0, 100.0), Position("MSFT", 5.0, 50.0)],
        CommitMode.REPLACE,
    )

    assert summary.to_dict() == {"added": 0, "updated": 0, "removed": 0}


def test_commit_records_import_runs(holdings_store: SqlHoldingsStore):
    _seed(holdings_store)
    commit_positions(holdings_store, [Position("AAPL", 1.0, 1.0)], CommitMode.REPLACE)

    runs = holdings_store.import_runs()

    assert [run.mode for run in runs] == [CommitMode.REPLACE, CommitMode.MERGE]
    assert runs[0].removed == 1
    assert runs[0].source == "test"


def test_commit_validation_leaves_store_untouched(holdings_store: SqlHoldingsStore):
    _seed(holdings_store)

    with pytest.raises(CommitError, match="shares must be greater than 0"):
        commit_positions(holdings_store, [Position("AAPL", 0.0, 10.0)], CommitMode.REPLACE)
    with pytest.raises(CommitError, match="appears more than once"):
        commit_positions(
            holdings_store,
            [Position("AAPL", 1.0, 10.0), Position("aapl", 2.0, 10.0)],
            CommitMode.REPLACE,
        )
    with pytest.raises(CommitError, match="Nothing to import"):
        commit_positions(holdings_store, [], CommitMode.REPLACE)

    assert len(holdings_store.list_holdings()) == 2


def test_commit_wraps_store_failures():
    store = FailingStore()

    with pytest.raises(CommitError, match="disk full"):
        commit_positions(store, [Position("AAPL", 1.0, 1.0)], CommitMode.REPLACE)
    assert store.calls == 1


def test_coerce_mode_rejects_clear_and_unknown_modes():
    assert coerce_mode(" Merge ") == CommitMode.MERGE
    with pytest.raises(ValueError):
        coerce_mode("clear")
    with pytest.raises(ValueError):
        coerce_mode("overwrite")


def test_diff_holdings_only_removes_in_replace_mode():
    existing = [Position("AAPL", 1.0, 1.0), Position("MSFT", 1.0, 1.0)]
    incoming = [Position("AAPL", 1.0, 1.0 + 1e-12)]

    replace_diff = diff_holdings(existing, incoming, CommitMode.REPLACE)
    merge_diff = diff_holdings(existing, incoming, CommitMode.MERGE)

    assert replace_diff.unchanged == ("AAPL",)
    assert replace_diff.to_remove == ("MSFT",)
    assert merge_diff.to_remove == ()


def test_clear_holdings_requires_exact_phrase(holdings_store: SqlHoldingsStore):
    _seed(holdings_store)

    with pytest.raises(ValueError):
        clear_holdings(holdings_store, "clear")
    with pytest.raises(ValueError):
        clear_holdings(holdings_store, " CLEAR")
    assert len(holdings_store.list_holdings()) == 2

    assert clear_holdings(holdings_store, "CLEAR") == 2
    assert holdings_store.list_holdings() == []
    assert holdings_store.import_runs()[0].mode == CommitMode.CLEAR


def test_clear_holdings_wraps_store_failures():
    with pytest.raises(CommitError, match="Failed to clear"):
        clear_holdings(FailingStore(), "CLEAR")


def test_replace_and_merge_counts_for_overlapping_sets(holdings_store: SqlHoldingsStore):
    _seed(holdings_store)
    incoming = [Position("AAPL", 10.0, 100.0), Position("GOOG", 3.0, 90.0)]

    merge = diff_holdings(holdings_store.list_holdings(), incoming, CommitMode.MERGE).summary()
    replace = commit_positions(holdings_store, incoming, CommitMode.REPLACE)

    assert merge.to_dict() == {"added": 1, "updated": 0, "removed": 0}
    assert replace.to_dict() == {"added": 1, "updated": 0, "removed": 1}
    assert [p.ticker for p in holdings_store.list_holdings()] == ["AAPL", "GOOG"]
