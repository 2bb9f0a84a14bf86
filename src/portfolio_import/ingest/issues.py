from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass


@dataclass(frozen=True)
class RowWarning:
    row_index: int | None
    message: str

    @property
    def row_number(self) -> int | None:
        return None if self.row_index is None else self.row_index + 1

    def display(self) -> str:
        if self.row_index is None:
            return self.message
        return f"Row {self.row_number}: {self.message}"

    def to_dict(self) -> dict:
        return {"row_index": self.row_index, "message": self.message}

    @classmethod
    def from_dict(cls, payload: dict) -> "RowWarning":
        row_index = payload.get("row_index")
        if row_index is None and payload.get("rowNumber"):
            # Remote payloads count rows from 1 and use 0 for file-level notes.
            row_index = int(payload["rowNumber"]) - 1
        return cls(
            row_index=int(row_index) if row_index is not None else None,
            message=str(payload.get("message", "")).strip(),
        )


def warning_lines(warnings: Iterable[RowWarning], limit: int | None = 5) -> list[str]:
    """Render warnings for display, capping the list and noting how many were hidden."""
    items = list(warnings)
    if limit is None or limit < 0 or len(items) <= limit:
        return [item.display() for item in items]
    shown = [item.display() for item in items[:limit]]
    shown.append(f"+{len(items) - limit} more")
    return shown


def warnings_for_row(warnings: Iterable[RowWarning], row_index: int) -> list[RowWarning]:
    return [item for item in warnings if item.row_index == row_index]
