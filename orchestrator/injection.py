"""Substitutes per-row CSV values into recorded steps."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Literal, Mapping, Optional, Sequence

from .records.models import FieldMapping, Step

log = logging.getLogger(__name__)

InjectionSource = Literal["direct", "mapped", "original"]
INJECTABLE_EVENTS = frozenset({"input", "click"})

Row = Mapping[str, Any]


@dataclass(slots=True)
class InjectionResult:
    original_step: Step
    injected_step: Step
    was_injected: bool
    source: InjectionSource
    csv_column: Optional[str] = None
    skipped: bool = False

    def as_dict(self) -> Dict[str, Any]:
        return {
            "step_id": self.original_step.id,
            "value": self.injected_step.value,
            "was_injected": self.was_injected,
            "source": self.source,
            "csv_column": self.csv_column,
            "skipped": self.skipped,
        }


@dataclass(slots=True)
class RowInjection:
    results: List[InjectionResult] = field(default_factory=list)
    injected_count: int = 0
    original_count: int = 0
    skipped_count: int = 0

    @property
    def steps(self) -> List[Step]:
        return [result.injected_step for result in self.results]


class ValueInjector:
    """Resolves values for a step from a data row.

    Both lookup tables are built once from the mapped entries. When matching
    is case-insensitive the keys are lowered at build time and every probe is
    lowered the same way, so a table is only ever queried with the
    sensitivity it was built with.
    """

    def __init__(
        self,
        mappings: Iterable[FieldMapping] = (),
        *,
        skip_inputs_without_value: bool = True,
        case_sensitive: bool = True,
    ) -> None:
        self.skip_inputs_without_value = skip_inputs_without_value
        self.case_sensitive = case_sensitive
        self._column_to_label: Dict[str, str] = {}
        self._label_to_column: Dict[str, str] = {}
        self._mappings: List[FieldMapping] = []
        self._build(mappings)

    def _key(self, value: str) -> str:
        return value if self.case_sensitive else value.lower()

    def _build(self, mappings: Iterable[FieldMapping]) -> None:
        self._mappings = list(mappings)
        self._column_to_label.clear()
        self._label_to_column.clear()
        for mapping in self._mappings:
            if not mapping.mapped or not mapping.inputvarfields:
                continue
            self._column_to_label[self._key(mapping.field_name)] = mapping.inputvarfields
            self._label_to_column[self._key(mapping.inputvarfields)] = mapping.field_name

    def update_mappings(
        self,
        mappings: Iterable[FieldMapping],
        *,
        case_sensitive: Optional[bool] = None,
    ) -> None:
        if case_sensitive is not None:
            self.case_sensitive = case_sensitive
        self._build(mappings)

    @property
    def mapping_count(self) -> int:
        return len(self._label_to_column)

    def has_mapping(self, label: str) -> bool:
        return self._key(label) in self._label_to_column

    def mapped_column(self, label: str) -> Optional[str]:
        return self._label_to_column.get(self._key(label))

    def mapped_label(self, column: str) -> Optional[str]:
        return self._column_to_label.get(self._key(column))

    def _row_lookup(self, row: Row, column: str) -> tuple[bool, Any]:
        if column in row:
            return True, row[column]
        if not self.case_sensitive:
            wanted = column.lower()
            for key, value in row.items():
                if str(key).lower() == wanted:
                    return True, value
        return False, None

    def inject_step(self, row: Row, step: Step) -> InjectionResult:
        if step.event not in INJECTABLE_EVENTS or not step.label:
            return InjectionResult(step, step.model_copy(), False, "original")

        found, value = self._row_lookup(row, step.label)
        if found:
            log.debug("Step %s: direct column '%s'", step.id, step.label)
            injected = step.model_copy(update={"value": _as_text(value)})
            return InjectionResult(step, injected, True, "direct", csv_column=step.label)

        column = self.mapped_column(step.label)
        if column is not None:
            found, value = self._row_lookup(row, column)
            if found:
                log.debug("Step %s: mapped column '%s' -> label '%s'", step.id, column, step.label)
                injected = step.model_copy(update={"value": _as_text(value)})
                return InjectionResult(step, injected, True, "mapped", csv_column=column)

        return InjectionResult(step, step.model_copy(), False, "original")

    def resolve(self, row: Row, step: Step) -> InjectionResult:
        """Inject one step and apply the skip policy for empty inputs."""

        result = self.inject_step(row, step)
        if (
            self.skip_inputs_without_value
            and step.event == "input"
            and not result.was_injected
            and not step.value
        ):
            result.skipped = True
        return result

    def inject_row(self, row: Row, steps: Sequence[Step]) -> RowInjection:
        batch = RowInjection()
        for step in steps:
            result = self.resolve(row, step)
            if result.skipped:
                batch.skipped_count += 1
            elif result.was_injected:
                batch.injected_count += 1
            else:
                batch.original_count += 1
            batch.results.append(result)
        return batch


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    return value if isinstance(value, str) else str(value)
