"""SQL-backed holdings store used by the commit step."""

from __future__ import annotations

from contextlib import contextmanager

from sqlalchemy import delete, func, select
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from portfolio_import.analytics.replay import Position
from portfolio_import.db.migrate import migrate
from portfolio_import.db.models import CommitMode, Holding, ImportRun
from portfolio_import.pipeline.commit import CommitSummary, coerce_mode, diff_holdings


@contextmanager
def session_scope(engine: Engine):
    session = Session(engine)
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def _to_position(row: Holding) -> Position:
    return Position(ticker=row.ticker, shares=float(row.shares), average_cost=float(row.average_cost))


class SqlHoldingsStore:
    def __init__(self, engine: Engine, *, source: str | None = None) -> None:
        self.engine = engine
        self.source = source

    @classmethod
    def from_url(cls, database_url: str | None = None, *, source: str | None = None) -> "SqlHoldingsStore":
        return cls(migrate(database_url), source=source)

    def list_holdings(self) -> list[Position]:
        with Session(self.engine) as session:
            rows = session.scalars(select(Holding).order_by(Holding.ticker)).all()
            return [_to_position(row) for row in rows]

    def apply_holdings(self, positions: list[Position], mode: CommitMode | str) -> CommitSummary:
        resolved = coerce_mode(mode)
        with session_scope(self.engine) as session:
            existing_rows = {
                row.ticker: row for row in session.scalars(select(Holding)).all()
            }
            diff = diff_holdings(
                {ticker: _to_position(row) for ticker, row in existing_rows.items()},
                positions,
                resolved,
            )

            if diff.to_remove:
                session.execute(delete(Holding).where(Holding.ticker.in_(diff.to_remove)))
            for position in diff.to_update:
                row = existing_rows[position.ticker]
                row.shares = position.shares
                row.average_cost = position.average_cost
            session.add_all(
                Holding(ticker=p.ticker, shares=p.shares, average_cost=p.average_cost)
                for p in diff.to_add
            )

            summary = diff.summary()
            session.add(
                ImportRun(
                    mode=resolved,
                    source=self.source,
                    position_count=len(positions),
                    added=summary.added,
                    updated=summary.updated,
                    removed=summary.removed,
                )
            )
        return summary

    def clear_all(self) -> int:
        with session_scope(self.engine) as session:
            count = int(session.scalar(select(func.count()).select_from(Holding)) or 0)
            session.execute(delete(Holding))
            session.add(ImportRun(mode=CommitMode.CLEAR, source=self.source, removed=count))
        return count

    def import_runs(self, limit: int = 20) -> list[ImportRun]:
        with Session(self.engine, expire_on_commit=False) as session:
            return list(
                session.scalars(
                    select(ImportRun).order_by(ImportRun.created_at.desc(), ImportRun.id.desc()).limit(limit)
                ).all()
            )
