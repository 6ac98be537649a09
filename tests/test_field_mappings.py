from __future__ import annotations

import pytest
from pydantic import ValidationError

from orchestrator.records import (
    FieldMapping,
    available_targets,
    create_field,
    create_fields_from_headers,
    field_by_target,
    map_field,
    mapping_stats,
    toggle_field_mapping,
    unmap_field,
    update_field_in_array,
    validate_field_set,
)


def _consistent(field: FieldMapping) -> bool:
    return field.mapped == bool(field.inputvarfields)


def test_mapped_field_requires_target() -> None:
    with pytest.raises(ValidationError):
        FieldMapping(field_name="email", mapped=True, inputvarfields="")


def test_unmapped_field_rejects_target() -> None:
    with pytest.raises(ValidationError):
        FieldMapping(field_name="email", mapped=False, inputvarfields="Email Field")


def test_camel_case_payload_is_accepted() -> None:
    field = FieldMapping.model_validate({"fieldName": "email", "mapped": True, "inputvarfields": "Email"})

    assert field.field_name == "email"
    assert field.inputvarfields == "Email"


def test_mutation_helpers_keep_pairing() -> None:
    field = create_field("email")
    assert not field.mapped

    mapped = map_field(field, "Email Field")
    unmapped = unmap_field(mapped)
    toggled_on = toggle_field_mapping(field, "Email Field")
    toggled_off = toggle_field_mapping(toggled_on)
    blank_target = map_field(field, "   ")
    toggled_without_target = toggle_field_mapping(field)

    for candidate in (field, mapped, unmapped, toggled_on, toggled_off, blank_target, toggled_without_target):
        assert _consistent(candidate)
    assert mapped.inputvarfields == "Email Field"
    assert not toggled_off.mapped
    assert not blank_target.mapped
    # originals are untouched
    assert field.inputvarfields == ""


def test_update_field_in_array_normalises_pairing() -> None:
    fields = [create_field("email", "Email"), create_field("name")]

    updated = update_field_in_array(fields, "name", mapped=True)
    assert not updated[1].mapped

    updated = update_field_in_array(updated, "name", inputvarfields="Full Name")
    assert updated[1].mapped and updated[1].inputvarfields == "Full Name"

    updated = update_field_in_array(updated, "email", mapped=False)
    assert updated[0] == FieldMapping(field_name="email", mapped=False, inputvarfields="")
    assert all(_consistent(field) for field in updated)
    assert fields[0].mapped


def test_validate_field_set_reports_duplicates() -> None:
    fields = [
        {"field_name": "email", "mapped": True, "inputvarfields": "Email"},
        {"field_name": "email", "mapped": False, "inputvarfields": ""},
        {"field_name": "work_email", "mapped": True, "inputvarfields": "Email"},
        {"field_name": "broken", "mapped": True, "inputvarfields": ""},
    ]

    issues = validate_field_set(fields)

    assert [(issue.index, issue.field) for issue in issues] == [
        (1, "field_name"),
        (2, "inputvarfields"),
        (3, "field"),
    ]


def test_queries_and_stats() -> None:
    fields = create_fields_from_headers(["email", "name", "", "email"])
    fields = update_field_in_array(fields, "email", inputvarfields="Email")

    assert [field.field_name for field in fields] == ["email", "name"]
    assert field_by_target(fields, "Email").field_name == "email"
    assert available_targets(fields, ["Email", "Name", "Phone"]) == ["Name", "Phone"]
    assert mapping_stats(fields) == {"total": 2, "mapped": 1, "unmapped": 1, "percentage": 50}
