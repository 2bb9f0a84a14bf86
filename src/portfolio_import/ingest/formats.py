"""Broker export detection from column headers.

Known exports carry a fixed set of discriminating headers; anything else goes
through the column-mapping wizard.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

from portfolio_import.ingest.column_mapping import ColumnMapping

ROBINHOOD = "robinhood"
FIDELITY = "fidelity"
SCHWAB = "schwab"

# Checked in order; the first broker whose required headers are all present wins.
BROKER_SIGNATURES: list[tuple[str, frozenset[str], frozenset[str]]] = [
    (ROBINHOOD, frozenset({"activity date", "trans code", "instrument"}), frozenset()),
    (FIDELITY, frozenset({"run date", "action", "symbol"}), frozenset()),
    (SCHWAB, frozenset({"date", "action", "symbol"}), frozenset({"trans code"})),
]

BROKER_COLUMNS: dict[str, dict[str, str]] = {
    ROBINHOOD: {
        "ticker": "instrument",
        "date": "activity date",
        "action": "trans code",
        "shares": "quantity",
        "price": "price",
        "total_amount": "amount",
    },
    FIDELITY: {
        "ticker": "symbol",
        "date": "run date",
        "action": "action",
        "shares": "quantity",
        "price": "price",
        "total_amount": "amount",
    },
    SCHWAB: {
        "ticker": "symbol",
        "date": "date",
        "action": "action",
        "shares": "quantity",
        "price": "price",
        "total_amount": "amount",
    },
}

BROKER_LABELS = {
    ROBINHOOD: "Robinhood",
    FIDELITY: "Fidelity",
    SCHWAB: "Charles Schwab",
}


def _normalize(text: Any) -> str:
    return " ".join(str(text).strip().lower().split())


def _header_lookup(headers: Iterable[Any]) -> dict[str, str]:
    lookup: dict[str, str] = {}
    for header in headers:
        if header is None:
            continue
        key = _normalize(header)
        if key and key not in lookup:
            lookup[key] = str(header)
    return lookup


def detect_broker(headers: Iterable[Any] | None) -> str | None:
    if not headers:
        return None
    try:
        present = set(_header_lookup(headers))
    except TypeError:
        return None
    if not present:
        return None

    for broker, required, forbidden in BROKER_SIGNATURES:
        if required.issubset(present) and not forbidden.intersection(present):
            return broker
    return None


def builtin_mapping(broker: str, headers: Iterable[Any]) -> ColumnMapping:
    columns = BROKER_COLUMNS.get(broker)
    if columns is None:
        raise ValueError(f"Unknown broker '{broker}'.")
    lookup = _header_lookup(headers)
    mapping = ColumnMapping()
    for field_name, header_key in columns.items():
        source = lookup.get(header_key)
        if source:
            mapping = mapping.with_field(field_name, source)
    return mapping
