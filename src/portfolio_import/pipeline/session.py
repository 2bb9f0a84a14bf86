"""Import session: one operator-driven pass from an uploaded file to committed holdings.

Every slow step (file read or OCR, row normalization, commit) is split into a
``begin_*`` call that moves the session into a waiting step and returns a
token, and a ``complete_*``/``fail_*`` call that only applies its result
while that token is still current. Cancelling or starting over issues a new
token, so late results from abandoned work are ignored.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Any, BinaryIO
from uuid import uuid4

from portfolio_import.analytics.replay import Position
from portfolio_import.config.settings import Settings, get_settings
from portfolio_import.db.models import CommitMode
from portfolio_import.errors import (
    CommitError,
    ImportFileError,
    ImportTooLarge,
    InvalidTransition,
)
from portfolio_import.ingest.column_mapping import (
    ColumnMapping,
    get_saved_mapping,
    infer_mapping,
    save_mapping,
)
from portfolio_import.ingest.formats import BROKER_LABELS, builtin_mapping, detect_broker
from portfolio_import.ingest.normalize import NormalizeResult, normalize_rows
from portfolio_import.ingest.tables import RawTable, read_csv_table
from portfolio_import.ingest.wizard import ColumnMappingWizard, WizardStep
from portfolio_import.pipeline.commit import (
    CommitSummary,
    HoldingsStore,
    clear_holdings,
    coerce_mode,
    commit_positions,
)
from portfolio_import.pipeline.review import ReviewSession
from portfolio_import.providers.ocr import TableExtractor
from portfolio_import.providers.submission import LocalNormalizer, TradeNormalizer
from portfolio_import.utils.logging import get_logger

logger = get_logger(__name__)


class ImportStep(str, Enum):
    CHOOSE = "choose"
    UPLOADING = "uploading"
    MAPPING = "mapping"
    PROCESSING = "processing"
    REVIEW = "review"
    CONFIRMING = "confirming"
    DONE = "done"
    CANCELLED = "cancelled"


WAITING_STEPS = frozenset({ImportStep.UPLOADING, ImportStep.PROCESSING, ImportStep.CONFIRMING})


class ImportSession:
    def __init__(
        self,
        store: HoldingsStore,
        *,
        normalizer: TradeNormalizer | None = None,
        extractor: TableExtractor | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.store = store
        self.normalizer = normalizer or LocalNormalizer(max_rows=self.settings.max_import_rows)
        self.extractor = extractor
        self._reset(ImportStep.CHOOSE)

    def _reset(self, step: ImportStep) -> None:
        self.token = uuid4().hex
        self.step = step
        self.table: RawTable | None = None
        self.broker: str | None = None
        self.mapping: ColumnMapping | None = None
        self.wizard: ColumnMappingWizard | None = None
        self.review: ReviewSession | None = None
        self.commit_mode = CommitMode.REPLACE
        self.error: str | None = None
        self.result: CommitSummary | None = None

    def _require(self, *steps: ImportStep) -> None:
        if self.step not in steps:
            allowed = ", ".join(step.value for step in steps)
            raise InvalidTransition(f"Not allowed while {self.step.value} (needs {allowed}).")

    def is_live(self, token: str) -> bool:
        return token == self.token and self.step != ImportStep.CANCELLED

    def _accepts(self, token: str, step: ImportStep, action: str) -> bool:
        if self.is_live(token) and self.step == step:
            return True
        logger.info("Ignoring stale %s result (session is %s)", action, self.step.value)
        return False

    @property
    def is_busy(self) -> bool:
        return self.step in WAITING_STEPS

    @property
    def used_wizard(self) -> bool:
        return self.broker is None

    # Upload -------------------------------------------------------------

    def begin_upload(self) -> str:
        self._require(ImportStep.CHOOSE)
        self.step = ImportStep.UPLOADING
        self.error = None
        return self.token

    def complete_upload(self, token: str, table: RawTable) -> bool:
        if not self._accepts(token, ImportStep.UPLOADING, "upload"):
            return False
        if table.row_count > self.settings.max_import_rows:
            return self.fail_upload(token, ImportTooLarge(table.row_count, self.settings.max_import_rows))
        if table.row_count == 0:
            return self.fail_upload(token, ImportFileError("The file has no data rows."))

        self.table = table
        self.broker = detect_broker(table.headers)
        if self.broker is not None:
            mapping = builtin_mapping(self.broker, table.headers)
            if mapping.is_submittable:
                logger.info("Detected %s export", BROKER_LABELS.get(self.broker, self.broker))
                self._process_builtin(mapping)
                return True
            self.broker = None

        remembered = get_saved_mapping(table.signature, table.headers)
        self.wizard = ColumnMappingWizard(table.headers, mapping=remembered or infer_mapping(table.headers))
        self.step = ImportStep.MAPPING
        return True

    def fail_upload(self, token: str, exc: Exception) -> bool:
        if not self._accepts(token, ImportStep.UPLOADING, "upload failure"):
            return False
        self._reset(ImportStep.CHOOSE)
        self.error = str(exc)
        return True

    def load_csv(self, file_obj: str | Path | BinaryIO, file_name: str | None = None) -> ImportStep:
        token = self.begin_upload()
        try:
            table = read_csv_table(file_obj, file_name=file_name, max_rows=self.settings.max_import_rows)
        except Exception as exc:
            self.fail_upload(token, exc)
            raise
        self.complete_upload(token, table)
        if self.error:
            raise ImportFileError(self.error)
        return self.step

    def load_screenshot(self, image: Any, file_name: str = "screenshot.png") -> ImportStep:
        if self.extractor is None:
            raise ImportFileError("Screenshot import is not available.")
        token = self.begin_upload()
        try:
            table = self.extractor.extract(image, file_name)
        except Exception as exc:
            self.fail_upload(token, exc)
            raise
        self.complete_upload(token, table)
        if self.error:
            raise ImportFileError(self.error)
        return self.step

    # Mapping and processing ----------------------------------------------

    def _process_builtin(self, mapping: ColumnMapping) -> None:
        self.step = ImportStep.PROCESSING
        self.mapping = mapping
        result = normalize_rows(self.table, mapping, max_rows=self.settings.max_import_rows)
        self._enter_review(result)

    def _enter_review(self, result: NormalizeResult) -> None:
        self.review = ReviewSession(result)
        self.wizard = None
        self.step = ImportStep.REVIEW

    def back(self) -> ImportStep:
        """Step the wizard back; leaving its first field returns to the file chooser."""
        self._require(ImportStep.MAPPING)
        if self.wizard.retreat() == WizardStep.CANCELLED:
            self._reset(ImportStep.CHOOSE)
        return self.step

    def begin_processing(self) -> str:
        self._require(ImportStep.MAPPING)
        # Advancing past the last field already finished the wizard.
        if self.wizard.step == WizardStep.PROCESSING:
            self.mapping = self.wizard.mapping
        else:
            self.mapping = self.wizard.finish()
        self.step = ImportStep.PROCESSING
        self.error = None
        return self.token

    def complete_processing(self, token: str, result: NormalizeResult) -> bool:
        if not self._accepts(token, ImportStep.PROCESSING, "processing"):
            return False
        if self.settings.save_column_mappings and self.used_wizard:
            try:
                save_mapping(self.table.signature, self.table.headers, self.mapping)
            except (OSError, ValueError) as exc:
                logger.warning("Could not remember column mapping: %s", exc)
        self._enter_review(result)
        return True

    def fail_processing(self, token: str, exc: Exception) -> bool:
        if not self._accepts(token, ImportStep.PROCESSING, "processing failure"):
            return False
        if isinstance(exc, ImportTooLarge):
            self._reset(ImportStep.CHOOSE)
        else:
            self.wizard = ColumnMappingWizard(self.table.headers, mapping=self.mapping)
            self.step = ImportStep.MAPPING
        self.error = str(exc)
        return True

    def finish_mapping(self) -> ReviewSession:
        token = self.begin_processing()
        try:
            result = self.normalizer.normalize(self.table, self.mapping)
        except Exception as exc:
            self.fail_processing(token, exc)
            raise
        self.complete_processing(token, result)
        return self.review

    def remap(self) -> ColumnMappingWizard:
        """Return from review to the wizard, seeded with the mapping in use."""
        self._require(ImportStep.REVIEW)
        self.wizard = ColumnMappingWizard(self.table.headers, mapping=self.mapping)
        self.broker = None
        self.review = None
        self.step = ImportStep.MAPPING
        return self.wizard

    # Review and commit ---------------------------------------------------

    def set_commit_mode(self, mode: CommitMode | str) -> CommitMode:
        self._require(ImportStep.REVIEW)
        self.commit_mode = coerce_mode(mode)
        return self.commit_mode

    @property
    def positions(self) -> list[Position]:
        return list(self.review.positions) if self.review else []

    def begin_commit(self) -> str:
        self._require(ImportStep.REVIEW)
        if not self.review.positions:
            raise CommitError("Nothing to import.")
        self.step = ImportStep.CONFIRMING
        self.error = None
        return self.token

    def complete_commit(self, token: str, summary: CommitSummary) -> bool:
        if not self._accepts(token, ImportStep.CONFIRMING, "commit"):
            return False
        self.result = summary
        self.step = ImportStep.DONE
        return True

    def fail_commit(self, token: str, exc: Exception) -> bool:
        if not self._accepts(token, ImportStep.CONFIRMING, "commit failure"):
            return False
        self.error = str(exc)
        self.step = ImportStep.REVIEW
        return True

    def commit(self) -> CommitSummary:
        token = self.begin_commit()
        try:
            summary = commit_positions(self.store, self.review.positions, self.commit_mode)
        except Exception as exc:
            self.fail_commit(token, exc)
            raise
        self.complete_commit(token, summary)
        return summary

    # Lifecycle -----------------------------------------------------------

    def clear_portfolio(self, confirmation: str) -> int:
        self._require(ImportStep.CHOOSE)
        return clear_holdings(self.store, confirmation)

    def start_over(self) -> None:
        if self.is_busy:
            raise InvalidTransition(f"Not allowed while {self.step.value}.")
        self._reset(ImportStep.CHOOSE)

    def cancel(self) -> None:
        self._reset(ImportStep.CANCELLED)
