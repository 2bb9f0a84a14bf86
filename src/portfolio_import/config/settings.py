from __future__ import annotations

import os
from dataclasses import dataclass

from portfolio_import.config.paths import default_db_path

DEFAULT_MAX_IMPORT_ROWS = 2000
DEFAULT_WARNING_DISPLAY_LIMIT = 5


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "t", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = str(os.getenv(name, "") or "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return value if value > 0 else default


def _env_float(name: str, default: float) -> float:
    raw = str(os.getenv(name, "") or "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    return value if value > 0 else default


def _env_url(name: str) -> str | None:
    raw = str(os.getenv(name, "") or "").strip()
    return raw.rstrip("/") or None


@dataclass(frozen=True)
class Settings:
    app_env: str
    database_url: str
    max_import_rows: int
    warning_display_limit: int
    ocr_service_url: str | None
    submission_service_url: str | None
    symbol_search_url: str | None
    http_timeout_seconds: float
    save_column_mappings: bool


def get_settings() -> Settings:
    db_default = f"sqlite:///{default_db_path().as_posix()}"
    return Settings(
        app_env=os.getenv("APP_ENV", "development"),
        database_url=os.getenv("DATABASE_URL", db_default),
        max_import_rows=_env_int("IMPORT_MAX_ROWS", DEFAULT_MAX_IMPORT_ROWS),
        warning_display_limit=_env_int(
            "IMPORT_WARNING_DISPLAY_LIMIT", DEFAULT_WARNING_DISPLAY_LIMIT
        ),
        ocr_service_url=_env_url("OCR_SERVICE_URL"),
        submission_service_url=_env_url("SUBMISSION_SERVICE_URL"),
        symbol_search_url=_env_url("SYMBOL_SEARCH_URL"),
        http_timeout_seconds=_env_float("HTTP_TIMEOUT_SECONDS", 10.0),
        save_column_mappings=_env_bool("SAVE_COLUMN_MAPPINGS", True),
    )
