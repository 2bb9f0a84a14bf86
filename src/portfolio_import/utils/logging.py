"""Process-wide logging setup for the importer and its CLI."""

from __future__ import annotations

import logging
import os


_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
_NOISY_LOGGERS = ("urllib3", "sqlalchemy.engine")
_CONFIGURED = False


def _resolve_level(level: str | int | None) -> str | int:
    if level is not None:
        return level
    value = os.getenv("PORTFOLIO_IMPORT_LOG_LEVEL") or os.getenv("LOG_LEVEL") or "INFO"
    return value.strip().upper()


def configure_logging(level: str | int | None = None) -> None:
    """Install the root handler once; an explicit ``level`` still adjusts it later."""
    global _CONFIGURED
    resolved = _resolve_level(level)
    if _CONFIGURED:
        if level is not None:
            logging.getLogger().setLevel(resolved)
        return
    logging.basicConfig(level=resolved, format=_FORMAT)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    _CONFIGURED = True


def get_logger(name: str) -> logging.Logger:
    configure_logging()
    return logging.getLogger(name)
