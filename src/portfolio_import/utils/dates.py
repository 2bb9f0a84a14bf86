"""Parsing for the date cells brokers put in their exports."""

from __future__ import annotations

import re
from datetime import date, datetime, timezone


# Month-first before day-first: every supported broker exports US dates.
BROKER_DATE_FORMATS = (
    "%m/%d/%Y",
    "%m/%d/%y",
    "%m-%d-%Y",
    "%Y/%m/%d",
    "%b %d, %Y",
    "%d-%b-%Y",
)
BROKER_TIME_SUFFIXES = ("", " %H:%M:%S", " %H:%M", " %I:%M %p", " %I:%M:%S %p")

# Schwab settles some rows as "02/03/2026 as of 01/30/2026"; the leading date is the trade date.
_AS_OF = re.compile(r"\s+as\s+of\s+.*$", re.IGNORECASE)


def _clean(text: str) -> str:
    text = _AS_OF.sub("", text.strip())
    return " ".join(text.split())


def _naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def parse_datetime(raw: str | datetime | date) -> datetime:
    """Naive datetime; offset-aware inputs are converted to UTC first."""
    if isinstance(raw, datetime):
        return _naive_utc(raw)
    if isinstance(raw, date):
        return datetime(raw.year, raw.month, raw.day)
    text = _clean(raw)
    if not text:
        raise ValueError("Empty date value.")
    try:
        return _naive_utc(datetime.fromisoformat(text.replace("Z", "+00:00")))
    except ValueError:
        pass
    for date_fmt in BROKER_DATE_FORMATS:
        for time_fmt in BROKER_TIME_SUFFIXES:
            try:
                return datetime.strptime(text, date_fmt + time_fmt)
            except ValueError:
                continue
    raise ValueError(f"Unrecognized date: {raw!r}")


def parse_date(raw: str | datetime | date) -> date:
    return parse_datetime(raw).date()
