"""Row normalization collaborators for the mapped-CSV path.

The wizard hands the raw table plus the finished mapping to a normalizer.
``LocalNormalizer`` runs it in process; ``SubmissionClient`` posts it to the
import service, which answers with the same trades/warnings/stats contract.
"""

from __future__ import annotations

from typing import Any, Protocol

import requests

from portfolio_import.config.settings import get_settings
from portfolio_import.errors import ImportFileError, ImportTooLarge, MappingIncomplete
from portfolio_import.ingest.column_mapping import ColumnMapping, validate_mapping
from portfolio_import.ingest.issues import RowWarning
from portfolio_import.ingest.normalize import (
    NormalizeResult,
    NormalizeStats,
    TradeAction,
    TradeCandidate,
    normalize_rows,
)
from portfolio_import.ingest.tables import SOURCE_OCR, RawTable
from portfolio_import.providers.http import JsonFetcher, request_json
from portfolio_import.utils.logging import get_logger

logger = get_logger(__name__)


class TradeNormalizer(Protocol):
    def normalize(self, table: RawTable, mapping: ColumnMapping) -> NormalizeResult: ...


class LocalNormalizer:
    def __init__(self, max_rows: int | None = None) -> None:
        self.max_rows = max_rows or get_settings().max_import_rows

    def normalize(self, table: RawTable, mapping: ColumnMapping) -> NormalizeResult:
        return normalize_rows(table, mapping, max_rows=self.max_rows)


def _result_from_payload(payload: Any, table: RawTable) -> NormalizeResult:
    if not isinstance(payload, dict):
        raise ImportFileError("Import service returned an unexpected response.")

    trades: list[TradeCandidate] = []
    warnings: list[RowWarning] = []
    for item in payload.get("trades") or []:
        try:
            trades.append(TradeCandidate.from_dict(item))
        except (TypeError, ValueError) as exc:
            warnings.append(RowWarning(None, f"Ignored malformed trade from import service: {exc}"))
    warnings.extend(RowWarning.from_dict(item) for item in payload.get("warnings") or [] if isinstance(item, dict))

    valid = sum(1 for trade in trades if trade.action != TradeAction.UNKNOWN)
    stats_payload = payload.get("stats") or {}
    total = int(stats_payload.get("total", stats_payload.get("totalRows", table.row_count)) or 0)
    stats = NormalizeStats(
        total=total,
        valid=int(stats_payload.get("valid", stats_payload.get("validRows", valid)) or 0),
        skipped=int(stats_payload.get("skipped", stats_payload.get("skippedRows", total - valid)) or 0),
    )
    return NormalizeResult(
        trades=tuple(trades),
        warnings=tuple(warnings),
        stats=stats,
        source=table.source,
        needs_review=table.source == SOURCE_OCR,
        telemetry=dict(payload.get("telemetry") or {}),
    )


class SubmissionClient:
    def __init__(
        self,
        base_url: str | None = None,
        *,
        timeout_seconds: float | None = None,
        max_rows: int | None = None,
        fetcher: JsonFetcher | None = None,
    ) -> None:
        settings = get_settings()
        self.base_url = base_url or settings.submission_service_url
        self.timeout_seconds = timeout_seconds or settings.http_timeout_seconds
        self.max_rows = max_rows or settings.max_import_rows
        self.fetcher = fetcher or request_json

    def normalize(self, table: RawTable, mapping: ColumnMapping) -> NormalizeResult:
        if not self.base_url:
            raise ImportFileError("Import service is not configured (SUBMISSION_SERVICE_URL).")
        if table.row_count > self.max_rows:
            raise ImportTooLarge(table.row_count, self.max_rows)
        cleaned, errors = validate_mapping(mapping, headers=table.headers)
        if errors:
            raise MappingIncomplete(errors)

        try:
            payload = self.fetcher(
                "POST",
                f"{self.base_url}/imports/csv",
                timeout_seconds=self.timeout_seconds,
                json_body={
                    "fileName": table.file_name,
                    "csv": table.to_csv_text(),
                    "mapping": cleaned.to_wire(),
                },
            )
        except requests.RequestException as exc:
            logger.warning("Import service request failed: %s", exc)
            raise ImportFileError(f"Upload failed: {exc}") from exc

        result = _result_from_payload(payload, table)
        logger.info(
            "Import service normalized %s rows (%s valid)", result.stats.total, result.stats.valid
        )
        return result
