from __future__ import annotations

from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine

from portfolio_import.db.models import Base
from portfolio_import.db.repository import SqlHoldingsStore

ROBINHOOD_CSV = """Activity Date,Process Date,Settle Date,Instrument,Description,Trans Code,Quantity,Price,Amount
1/2/2026,1/2/2026,1/5/2026,AAPL,Apple,Buy,10,$150.00,($1500.00)
1/3/2026,1/3/2026,1/6/2026,AAPL,Apple,Sell,4,$160.00,$640.00
1/4/2026,1/4/2026,1/4/2026,MSFT,Microsoft,CDIV,,,$2.00
"""

GENERIC_CSV = """Symbol,Qty,Price
AAPL,10,100
MSFT,5,300
"""


@pytest.fixture(autouse=True)
def isolated_environment(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    data_dir = tmp_path / "data"
    monkeypatch.setenv("PORTFOLIO_IMPORT_DATA_DIR", str(data_dir))
    for name in (
        "DATABASE_URL",
        "IMPORT_MAX_ROWS",
        "IMPORT_WARNING_DISPLAY_LIMIT",
        "OCR_SERVICE_URL",
        "SUBMISSION_SERVICE_URL",
        "SYMBOL_SEARCH_URL",
        "HTTP_TIMEOUT_SECONDS",
        "SAVE_COLUMN_MAPPINGS",
    ):
        monkeypatch.delenv(name, raising=False)
    return data_dir


@pytest.fixture
def db_engine() -> Engine:
    engine = create_engine("sqlite:///:memory:", future=True)
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def holdings_store(db_engine: Engine) -> SqlHoldingsStore:
    return SqlHoldingsStore(db_engine, source="test")


@pytest.fixture
def robinhood_csv() -> bytes:
    return ROBINHOOD_CSV.encode("utf-8")


@pytest.fixture
def generic_csv() -> bytes:
    return GENERIC_CSV.encode("utf-8")
