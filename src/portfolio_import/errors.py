"""Exceptions raised by the import pipeline."""

from __future__ import annotations


class ImportFileError(ValueError):
    """The uploaded file cannot be used at all; the operator must pick another."""


class ImportTooLarge(ImportFileError):
    def __init__(self, row_count: int, max_rows: int) -> None:
        super().__init__(
            f"File has {row_count} data rows; the maximum per import is {max_rows}."
        )
        self.row_count = row_count
        self.max_rows = max_rows


class MappingIncomplete(ValueError):
    def __init__(self, problems: list[str]) -> None:
        super().__init__("; ".join(problems) or "Column mapping is incomplete.")
        self.problems = list(problems)


class ColumnAlreadyMapped(ValueError):
    def __init__(self, header: str, field: str) -> None:
        super().__init__(f"Column '{header}' is already mapped to '{field}'.")
        self.header = header
        self.field = field


class InvalidTransition(RuntimeError):
    pass


class CommitError(RuntimeError):
    pass
