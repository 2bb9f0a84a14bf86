"""Where the importer keeps its database and remembered column mappings."""

from __future__ import annotations

import os
from pathlib import Path


PROJECT_ROOT = Path(__file__).resolve().parents[3]
DATA_DIR_ENV = "PORTFOLIO_IMPORT_DATA_DIR"
DB_FILENAME = "portfolio_import.sqlite"
MAPPING_STORE_FILENAME = "column_mappings.json"


def _ensure(directory: Path) -> Path:
    directory.mkdir(parents=True, exist_ok=True)
    return directory


def data_dir() -> Path:
    """Root of local state; ``PORTFOLIO_IMPORT_DATA_DIR`` relocates it (tests do)."""
    override = os.getenv(DATA_DIR_ENV, "").strip()
    if override:
        return _ensure(Path(override).expanduser())
    return _ensure(PROJECT_ROOT / "data")


def private_dir() -> Path:
    return _ensure(data_dir() / "private")


def mapping_store_path() -> Path:
    return _ensure(private_dir() / "mappings") / MAPPING_STORE_FILENAME


def default_db_path() -> Path:
    return data_dir() / DB_FILENAME
