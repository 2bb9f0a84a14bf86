from __future__ import annotations

import io
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from hashlib import sha256
from pathlib import Path
from typing import Any, BinaryIO

import pandas as pd

from portfolio_import.config.settings import DEFAULT_MAX_IMPORT_ROWS
from portfolio_import.errors import ImportFileError, ImportTooLarge
from portfolio_import.utils.logging import get_logger

logger = get_logger(__name__)

SOURCE_CSV = "csv"
SOURCE_OCR = "ocr"


def _normalize(text: str) -> str:
    return " ".join(str(text).strip().lower().replace("_", " ").split())


def header_signature(headers: Iterable[str]) -> str:
    canonical = "|".join(_normalize(h) for h in headers)
    return sha256(canonical.encode("utf-8")).hexdigest()


def _unique_headers(raw_headers: Iterable[Any]) -> tuple[str, ...]:
    seen: dict[str, int] = {}
    out: list[str] = []
    for idx, raw in enumerate(raw_headers, start=1):
        text = str(raw if raw is not None else "").strip()
        if not text or text.lower().startswith("unnamed:"):
            text = f"Column {idx}"
        count = seen.get(text, 0) + 1
        seen[text] = count
        out.append(text if count == 1 else f"{text} ({count})")
    return tuple(out)


@dataclass(frozen=True)
class RawTable:
    headers: tuple[str, ...]
    rows: tuple[Mapping[str, str], ...]
    source: str = SOURCE_CSV
    file_name: str | None = None
    signature: str = field(default="", compare=False)

    def __post_init__(self) -> None:
        if not self.signature:
            object.__setattr__(self, "signature", header_signature(self.headers))

    @property
    def row_count(self) -> int:
        return len(self.rows)

    def value(self, row_index: int, header: str | None) -> str:
        if not header:
            return ""
        return self.rows[row_index].get(header, "")

    def to_csv_text(self) -> str:
        frame = pd.DataFrame(list(self.rows), columns=list(self.headers))
        return frame.to_csv(index=False)


def build_table(
    headers: Iterable[Any],
    records: Iterable[Mapping[str, Any] | Iterable[Any]],
    *,
    source: str = SOURCE_CSV,
    file_name: str | None = None,
) -> RawTable:
    """Build a RawTable from headers plus dict rows or positional rows."""
    raw_headers = list(headers)
    clean_headers = _unique_headers(raw_headers)
    rows: list[dict[str, str]] = []
    for record in records:
        if isinstance(record, Mapping):
            values = [record.get(raw, record.get(str(raw).strip(), "")) for raw in raw_headers]
        else:
            values = list(record)
        row: dict[str, str] = {}
        for idx, header in enumerate(clean_headers):
            value = values[idx] if idx < len(values) else ""
            row[header] = "" if value is None else str(value).strip()
        if any(row.values()):
            rows.append(row)
    return RawTable(
        headers=clean_headers,
        rows=tuple(rows),
        source=source,
        file_name=file_name,
    )


def read_csv_table(
    file_obj: str | Path | BinaryIO,
    *,
    file_name: str | None = None,
    max_rows: int = DEFAULT_MAX_IMPORT_ROWS,
) -> RawTable:
    if file_name is None and isinstance(file_obj, (str, Path)):
        file_name = Path(file_obj).name
    if file_name and not file_name.lower().endswith(".csv"):
        raise ImportFileError("Please upload a CSV file.")

    if isinstance(file_obj, (bytes, bytearray)):
        file_obj = io.BytesIO(bytes(file_obj))

    try:
        df = pd.read_csv(
            file_obj,
            dtype=str,
            keep_default_na=False,
            skip_blank_lines=True,
            encoding="utf-8-sig",
        )
    except pd.errors.EmptyDataError as exc:
        raise ImportFileError("The file is empty or has no header row.") from exc
    except (pd.errors.ParserError, UnicodeDecodeError) as exc:
        raise ImportFileError(f"Could not parse CSV: {exc}") from exc

    if len(df.columns) == 0:
        raise ImportFileError("The file is empty or has no header row.")

    table = build_table(
        list(df.columns),
        df.itertuples(index=False, name=None),
        source=SOURCE_CSV,
        file_name=file_name,
    )
    if table.row_count > max_rows:
        raise ImportTooLarge(table.row_count, max_rows)
    logger.info(
        "Loaded %s rows x %s columns from %s",
        table.row_count,
        len(table.headers),
        file_name or "upload",
    )
    return table
