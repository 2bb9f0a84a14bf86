from __future__ import annotations

import json
import re
from dataclasses import dataclass, fields, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any
from uuid import uuid4

from portfolio_import.config.paths import mapping_store_path
from portfolio_import.errors import MappingIncomplete
from portfolio_import.utils.logging import get_logger

logger = get_logger(__name__)

MAPPING_FIELDS = ("ticker", "date", "price", "shares", "total_amount", "action")
REQUIRED_FIELD = "ticker"
NUMERIC_FIELDS = ("price", "shares", "total_amount")

FIELD_ALIASES: dict[str, list[str]] = {
    "ticker": ["ticker", "symbol", "instrument", "security", "stock", "underlying"],
    "date": [
        "date",
        "trade date",
        "activity date",
        "run date",
        "transaction date",
        "settlement date",
        "filled time",
        "executed at",
    ],
    "price": ["price", "unit price", "avg price", "average price", "price per share", "cost per share", "average cost"],
    "shares": ["shares", "quantity", "qty", "units", "filled"],
    "total_amount": ["amount", "total amount", "total", "total cost", "net amount", "market value", "value"],
    "action": ["action", "side", "buy/sell", "trans code", "transaction type", "type", "activity"],
}

# Camel-case spellings used by remote collaborators.
_WIRE_NAMES = {"totalAmount": "total_amount"}

FIELD_HELP: dict[str, str] = {
    "ticker": "Which column contains the ticker symbols? e.g. AAPL, MSFT, GOOG",
    "date": "Which column contains the trade dates? e.g. 01/15/2026, 2026-01-15",
    "price": "Which column contains the price per share? e.g. 150.00, $1,234.56",
    "shares": "Which column contains the number of shares? e.g. 10, 25.5",
    "total_amount": "Which column contains the total amount? e.g. $1,500.00 (price x shares)",
    "action": "Which column contains the action type? e.g. Buy, Sell, Purchase, Sold",
}


def _normalize(text: str) -> str:
    return " ".join(str(text).strip().lower().replace("_", " ").split())


def _match_key(text: str) -> str:
    return "".join(ch for ch in str(text).strip().lower() if ch.isalnum())


def _tokenize(text: str) -> list[str]:
    return [token for token in re.split(r"[^a-z0-9]+", str(text).strip().lower()) if token]


def canonical_field(name: str) -> str | None:
    text = str(name).strip()
    if text in _WIRE_NAMES:
        return _WIRE_NAMES[text]
    normalized = _normalize(text).replace(" ", "_")
    if normalized in MAPPING_FIELDS:
        return normalized
    return None


@dataclass(frozen=True)
class ColumnMapping:
    ticker: str = ""
    date: str | None = None
    price: str | None = None
    shares: str | None = None
    total_amount: str | None = None
    action: str | None = None

    def get(self, field: str) -> str | None:
        value = getattr(self, field)
        return value or None

    def assigned(self) -> dict[str, str]:
        return {f.name: getattr(self, f.name) for f in fields(self) if getattr(self, f.name)}

    def field_for(self, header: str) -> str | None:
        for field_name, source in self.assigned().items():
            if source == header:
                return field_name
        return None

    def with_field(self, field: str, header: str | None) -> "ColumnMapping":
        if field not in MAPPING_FIELDS:
            raise ValueError(f"Unsupported mapping field '{field}'.")
        if field == REQUIRED_FIELD:
            return replace(self, ticker=header or "")
        return replace(self, **{field: header or None})

    def problems(self) -> list[str]:
        issues: list[str] = []
        if not self.ticker:
            issues.append("A ticker column is required.")
        if not any(self.get(name) for name in NUMERIC_FIELDS):
            issues.append("Map at least one of price, shares or total amount.")
        return issues

    @property
    def is_submittable(self) -> bool:
        return not self.problems()

    def require_submittable(self) -> None:
        problems = self.problems()
        if problems:
            raise MappingIncomplete(problems)

    def to_dict(self) -> dict[str, str]:
        return self.assigned()

    def to_wire(self) -> dict[str, str]:
        reverse = {value: key for key, value in _WIRE_NAMES.items()}
        return {reverse.get(key, key): value for key, value in self.assigned().items()}

    @classmethod
    def from_dict(cls, mapping: dict[str, Any] | None) -> "ColumnMapping":
        values: dict[str, str] = {}
        for key, source in (mapping or {}).items():
            field_name = canonical_field(key)
            if field_name is None:
                raise ValueError(f"Unsupported mapping field '{key}'.")
            text = str(source or "").strip()
            if text:
                values[field_name] = text
        return cls(**values)


def validate_mapping(
    mapping: ColumnMapping | dict[str, Any] | None,
    *,
    headers: list[str] | tuple[str, ...] | None = None,
) -> tuple[ColumnMapping, list[str]]:
    """Resolve mapped header names against the table and report every problem found."""
    errors: list[str] = []
    if mapping is None:
        mapping = ColumnMapping()
    if isinstance(mapping, dict):
        try:
            mapping = ColumnMapping.from_dict(mapping)
        except ValueError as exc:
            return ColumnMapping(), [str(exc)]

    exact_columns: dict[str, str] = {}
    normalized_columns: dict[str, str] = {}
    ambiguous_normalized: set[str] = set()
    for col in headers or []:
        col_text = str(col)
        exact_columns[col_text] = col_text
        normalized_col = _normalize(col_text)
        previous = normalized_columns.get(normalized_col)
        if previous is None:
            normalized_columns[normalized_col] = col_text
        elif previous != col_text:
            ambiguous_normalized.add(normalized_col)

    resolved = ColumnMapping()
    for field_name, source in mapping.assigned().items():
        source_text = str(source).strip()
        if headers is not None:
            if source_text in exact_columns:
                resolved_source = exact_columns[source_text]
            else:
                normalized_source = _normalize(source_text)
                if normalized_source in ambiguous_normalized:
                    errors.append(
                        f"Column '{source_text}' for field '{field_name}' is ambiguous in the file."
                    )
                    continue
                resolved_source = normalized_columns.get(normalized_source)
                if resolved_source is None:
                    errors.append(
                        f"Column '{source_text}' for field '{field_name}' is not present in the file."
                    )
                    continue
        else:
            resolved_source = source_text
        resolved = resolved.with_field(field_name, resolved_source)

    source_to_field: dict[str, str] = {}
    for field_name, source in resolved.assigned().items():
        previous = source_to_field.get(source)
        if previous:
            errors.append(
                f"Column '{source}' is mapped to multiple fields ('{previous}' and '{field_name}')."
            )
        else:
            source_to_field[source] = field_name

    errors.extend(resolved.problems())
    return resolved, errors


def suggest_columns(
    headers: list[str] | tuple[str, ...],
    field: str,
    *,
    limit: int = 3,
    exclude: set[str] | None = None,
) -> list[str]:
    if field not in MAPPING_FIELDS:
        return []

    alias_pool = [field.replace("_", " "), *FIELD_ALIASES.get(field, [])]
    alias_normalized = {_normalize(alias) for alias in alias_pool}
    alias_match_keys = {_match_key(alias) for alias in alias_pool if _match_key(alias)}
    alias_tokens = {token for alias in alias_pool for token in _tokenize(alias)}
    skip = exclude or set()

    candidates: list[tuple[int, int, str]] = []
    for idx, column in enumerate(headers):
        if column in skip:
            continue
        normalized_column = _normalize(column)
        match_key = _match_key(column)
        column_tokens = set(_tokenize(column))
        score = 0
        if normalized_column in alias_normalized:
            score += 200
        if match_key and match_key in alias_match_keys:
            score += 180
        shared_tokens = alias_tokens.intersection(column_tokens)
        if shared_tokens:
            score += len(shared_tokens) * 25
        if score > 0:
            candidates.append((score, -idx, column))

    candidates.sort(reverse=True)
    ordered: list[str] = []
    for _, _, column in candidates:
        if column in ordered:
            continue
        ordered.append(column)
        if len(ordered) >= limit:
            break
    return ordered


def infer_mapping(headers: list[str] | tuple[str, ...]) -> ColumnMapping:
    """Best-guess mapping used to pre-select wizard columns; never assigns a header twice."""
    mapping = ColumnMapping()
    used: set[str] = set()
    for field_name in MAPPING_FIELDS:
        suggestions = suggest_columns(headers, field_name, limit=1, exclude=used)
        if not suggestions:
            continue
        header = suggestions[0]
        normalized = _normalize(header)
        aliases = {_normalize(alias) for alias in [field_name, *FIELD_ALIASES[field_name]]}
        if normalized not in aliases:
            continue
        mapping = mapping.with_field(field_name, header)
        used.add(header)
    return mapping


def load_mapping_store() -> dict[str, Any]:
    path = mapping_store_path()
    if not path.exists():
        return {}
    try:
        loaded = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError:
        logger.warning("Ignoring unreadable mapping store at %s", path)
        return {}
    if not isinstance(loaded, dict):
        return {}
    return {key: value for key, value in loaded.items() if isinstance(key, str) and isinstance(value, dict)}


def _write_json_atomic(path: Path, payload: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = path.parent / f".{path.name}.{uuid4().hex}.tmp"
    temp_path.write_text(
        json.dumps(payload, indent=2, sort_keys=True),
        encoding="utf-8",
    )
    temp_path.replace(path)


def save_mapping(signature: str, headers: list[str] | tuple[str, ...], mapping: ColumnMapping) -> None:
    signature_text = signature.strip()
    if not signature_text:
        raise ValueError("Signature is required.")

    cleaned, errors = validate_mapping(mapping, headers=list(headers))
    if errors:
        raise ValueError("; ".join(errors))

    store = load_mapping_store()
    store[signature_text] = {
        "headers": [str(h) for h in headers],
        "mapping": cleaned.to_dict(),
        "updated_at": datetime.now(timezone.utc).replace(tzinfo=None).isoformat(timespec="seconds"),
    }
    _write_json_atomic(mapping_store_path(), store)


def get_saved_mapping(signature: str, headers: list[str] | tuple[str, ...]) -> ColumnMapping | None:
    signature_text = signature.strip()
    if not signature_text:
        return None
    record = load_mapping_store().get(signature_text)
    if not record or not isinstance(record.get("mapping"), dict):
        return None
    cleaned, errors = validate_mapping(record["mapping"], headers=list(headers))
    if errors:
        return None
    return cleaned
