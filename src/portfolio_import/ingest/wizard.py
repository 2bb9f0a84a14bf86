"""Column-mapping wizard.

One step per mappable field, in a fixed order, plus the terminal
``processing`` and ``cancelled`` steps. Every transition checks its own
preconditions against the current ``WizardState``.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum

from portfolio_import.errors import ColumnAlreadyMapped, InvalidTransition, MappingIncomplete
from portfolio_import.ingest.column_mapping import (
    FIELD_HELP,
    MAPPING_FIELDS,
    REQUIRED_FIELD,
    ColumnMapping,
    suggest_columns,
    validate_mapping,
)
from portfolio_import.utils.logging import get_logger

logger = get_logger(__name__)


class WizardStep(str, Enum):
    TICKER = "ticker"
    DATE = "date"
    PRICE = "price"
    SHARES = "shares"
    TOTAL_AMOUNT = "total_amount"
    ACTION = "action"
    PROCESSING = "processing"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (WizardStep.PROCESSING, WizardStep.CANCELLED)


FIELD_STEPS = tuple(WizardStep(name) for name in MAPPING_FIELDS)


@dataclass(frozen=True)
class WizardState:
    step: WizardStep
    mapping: ColumnMapping
    completed: frozenset[str] = frozenset()
    skipped: frozenset[str] = frozenset()


class ColumnMappingWizard:
    def __init__(self, headers: list[str] | tuple[str, ...], mapping: ColumnMapping | None = None) -> None:
        self.headers = tuple(headers)
        self.state = WizardState(step=WizardStep.TICKER, mapping=ColumnMapping())
        if mapping is not None:
            self.prefill(mapping)

    @property
    def step(self) -> WizardStep:
        return self.state.step

    @property
    def mapping(self) -> ColumnMapping:
        return self.state.mapping

    @property
    def current_field(self) -> str:
        self._require_field_step()
        return self.state.step.value

    @property
    def prompt(self) -> str:
        return FIELD_HELP[self.current_field]

    @property
    def can_finish(self) -> bool:
        return not self.state.step.is_terminal and self.state.mapping.is_submittable

    def _require_field_step(self) -> None:
        if self.state.step.is_terminal:
            raise InvalidTransition(f"Wizard is already {self.state.step.value}.")

    def _index(self) -> int:
        return FIELD_STEPS.index(self.state.step)

    def prefill(self, mapping: ColumnMapping) -> None:
        """Seed the wizard with a remembered or inferred mapping; unknown headers are dropped."""
        self._require_field_step()
        cleaned = ColumnMapping()
        used: set[str] = set()
        for field_name, header in mapping.assigned().items():
            if header in self.headers and header not in used:
                cleaned = cleaned.with_field(field_name, header)
                used.add(header)
        self.state = replace(self.state, mapping=cleaned)

    def suggestions(self, limit: int = 3) -> list[str]:
        taken = set(self.state.mapping.assigned().values())
        return suggest_columns(self.headers, self.current_field, limit=limit, exclude=taken)

    def select_column(self, header: str, field: str | None = None) -> ColumnMapping:
        self._require_field_step()
        target = field or self.current_field
        if target not in MAPPING_FIELDS:
            raise ValueError(f"Unsupported mapping field '{target}'.")
        if header not in self.headers:
            raise ValueError(f"Column '{header}' is not in the file.")

        mapping = self.state.mapping
        owner = mapping.field_for(header)
        if owner == target:
            mapping = mapping.with_field(target, None)
        elif owner is not None:
            raise ColumnAlreadyMapped(header, owner)
        else:
            mapping = mapping.with_field(target, header)
        self.state = replace(self.state, mapping=mapping)
        return mapping

    def advance(self) -> WizardStep:
        self._require_field_step()
        field_name = self.current_field
        mapping = self.state.mapping
        if field_name == REQUIRED_FIELD and not mapping.ticker:
            raise MappingIncomplete(["Select the ticker column before continuing."])

        completed = set(self.state.completed)
        skipped = set(self.state.skipped)
        if mapping.get(field_name):
            completed.add(field_name)
            skipped.discard(field_name)
        else:
            skipped.add(field_name)
            completed.discard(field_name)
        self.state = replace(
            self.state, completed=frozenset(completed), skipped=frozenset(skipped)
        )

        idx = self._index()
        if idx + 1 >= len(FIELD_STEPS):
            self.finish()
        else:
            self.state = replace(self.state, step=FIELD_STEPS[idx + 1])
        return self.state.step

    def retreat(self) -> WizardStep:
        self._require_field_step()
        idx = self._index()
        if idx == 0:
            self.state = replace(self.state, step=WizardStep.CANCELLED)
        else:
            self.state = replace(self.state, step=FIELD_STEPS[idx - 1])
        return self.state.step

    def finish(self) -> ColumnMapping:
        self._require_field_step()
        cleaned, errors = validate_mapping(self.state.mapping, headers=self.headers)
        if errors:
            raise MappingIncomplete(errors)
        self.state = replace(self.state, step=WizardStep.PROCESSING, mapping=cleaned)
        logger.info("Column mapping finished: %s", cleaned.to_dict())
        return cleaned

    def cancel(self) -> None:
        self._require_field_step()
        self.state = replace(self.state, step=WizardStep.CANCELLED)
