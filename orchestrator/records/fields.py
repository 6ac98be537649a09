"""Helpers that keep the mapped/label pairing of field mappings intact.

Every mutation returns new ``FieldMapping`` values; the input sequences are
left untouched.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence

from .models import MAX_FIELD_NAME_LENGTH, FieldMapping


@dataclass(slots=True)
class FieldIssue:
    index: Optional[int]
    field: str
    message: str

    def as_dict(self) -> Dict[str, Any]:
        return {"index": self.index, "field": self.field, "message": self.message}


def create_field(field_name: str, target: str = "") -> FieldMapping:
    target = target.strip()
    return FieldMapping(field_name=field_name.strip(), mapped=bool(target), inputvarfields=target)


def create_fields_from_headers(headers: Iterable[str]) -> List[FieldMapping]:
    seen: set[str] = set()
    fields: List[FieldMapping] = []
    for header in headers:
        name = (header or "").strip()
        if not name or name in seen:
            continue
        seen.add(name)
        fields.append(create_field(name))
    return fields


def map_field(field: FieldMapping, target: str) -> FieldMapping:
    target = target.strip()
    if not target:
        return unmap_field(field)
    return field.model_copy(update={"mapped": True, "inputvarfields": target})


def unmap_field(field: FieldMapping) -> FieldMapping:
    return field.model_copy(update={"mapped": False, "inputvarfields": ""})


def toggle_field_mapping(field: FieldMapping, target: str = "") -> FieldMapping:
    """Unmap a mapped field, or map an unmapped one to ``target``.

    Toggling an unmapped field without a target leaves it unmapped.
    """

    if field.mapped:
        return unmap_field(field)
    return map_field(field, target)


def update_field_in_array(
    fields: Sequence[FieldMapping], field_name: str, **changes: Any
) -> List[FieldMapping]:
    """Apply ``changes`` to the named field, re-deriving the pairing.

    A change that sets ``mapped`` without a target (or a target without
    ``mapped``) is normalised instead of producing an inconsistent entry.
    """

    updated: List[FieldMapping] = []
    for field in fields:
        if field.field_name != field_name:
            updated.append(field)
            continue
        data = field.model_dump()
        data.update(changes)
        target = str(data.get("inputvarfields") or "").strip()
        mapped = bool(data.get("mapped")) and bool(target)
        if "inputvarfields" in changes and target and "mapped" not in changes:
            mapped = True
        data["mapped"] = mapped
        data["inputvarfields"] = target if mapped else ""
        updated.append(FieldMapping.model_validate(data))
    return updated


def mapped_fields(fields: Iterable[FieldMapping]) -> List[FieldMapping]:
    return [field for field in fields if field.mapped]


def unmapped_fields(fields: Iterable[FieldMapping]) -> List[FieldMapping]:
    return [field for field in fields if not field.mapped]


def field_by_name(fields: Iterable[FieldMapping], field_name: str) -> Optional[FieldMapping]:
    return next((field for field in fields if field.field_name == field_name), None)


def field_by_target(fields: Iterable[FieldMapping], target: str) -> Optional[FieldMapping]:
    return next((field for field in fields if field.mapped and field.inputvarfields == target), None)


def is_target_mapped(fields: Iterable[FieldMapping], target: str) -> bool:
    return field_by_target(fields, target) is not None


def available_targets(fields: Iterable[FieldMapping], labels: Iterable[str]) -> List[str]:
    taken = {field.inputvarfields for field in fields if field.mapped}
    return [label for label in labels if label and label not in taken]


def mapping_stats(fields: Sequence[FieldMapping]) -> Dict[str, Any]:
    total = len(fields)
    mapped = sum(1 for field in fields if field.mapped)
    return {
        "total": total,
        "mapped": mapped,
        "unmapped": total - mapped,
        "percentage": round(mapped / total * 100) if total else 0,
    }


def validate_field_set(fields: Sequence[Any]) -> List[FieldIssue]:
    """Validate raw or typed mapping entries as one mapping set."""

    issues: List[FieldIssue] = []
    names: Dict[str, int] = {}
    targets: Dict[str, int] = {}
    for index, entry in enumerate(fields):
        if isinstance(entry, FieldMapping):
            field = entry
        else:
            try:
                field = FieldMapping.model_validate(entry)
            except ValueError as exc:
                issues.append(FieldIssue(index, "field", _first_message(exc)))
                continue
        if len(field.field_name) > MAX_FIELD_NAME_LENGTH:
            issues.append(FieldIssue(index, "field_name", "field_name is too long"))
        if field.field_name in names:
            issues.append(
                FieldIssue(index, "field_name", f"duplicate field_name '{field.field_name}' (first at {names[field.field_name]})")
            )
        else:
            names[field.field_name] = index
        if field.mapped:
            if field.inputvarfields in targets:
                issues.append(
                    FieldIssue(
                        index,
                        "inputvarfields",
                        f"target '{field.inputvarfields}' already mapped at {targets[field.inputvarfields]}",
                    )
                )
            else:
                targets[field.inputvarfields] = index
    return issues


def _first_message(exc: ValueError) -> str:
    errors = getattr(exc, "errors", None)
    if callable(errors):
        details = errors()
        if details:
            return str(details[0].get("msg", exc))
    return str(exc)
