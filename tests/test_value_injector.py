from __future__ import annotations

from orchestrator.injection import ValueInjector
from orchestrator.records import FieldMapping, Step


def _input(label: str, value: str = "", step_id: str = "s1") -> Step:
    return Step(id=step_id, event="input", path="/html/body/input", label=label, value=value)


def test_mapped_email_is_injected() -> None:
    injector = ValueInjector([FieldMapping(field_name="email", mapped=True, inputvarfields="Email Field")])
    step = _input("Email Field")

    result = injector.inject_step({"email": "a@b.com"}, step)

    assert result.injected_step.value == "a@b.com"
    assert result.source == "mapped"
    assert result.csv_column == "email"
    assert step.value == ""


def test_direct_column_wins_over_mapping() -> None:
    injector = ValueInjector([FieldMapping(field_name="email", mapped=True, inputvarfields="Email Field")])

    result = injector.inject_step({"Email Field": "direct@x.io", "email": "mapped@x.io"}, _input("Email Field"))

    assert result.source == "direct"
    assert result.injected_step.value == "direct@x.io"


def test_non_injectable_events_pass_through() -> None:
    injector = ValueInjector()
    step = Step(event="enter", path="//input", label="Email Field", value="keep")

    result = injector.inject_step({"Email Field": "ignored"}, step)

    assert result.source == "original"
    assert result.injected_step.value == "keep"
    assert not result.was_injected


def test_unmapped_labels_keep_recorded_value() -> None:
    injector = ValueInjector([FieldMapping(field_name="email", mapped=False)])

    result = injector.inject_step({"email": "a@b.com"}, _input("Email Field", "recorded"))

    assert result.source == "original"
    assert result.injected_step.value == "recorded"


def test_inject_row_marks_empty_inputs_skipped_and_never_mutates() -> None:
    injector = ValueInjector([FieldMapping(field_name="email", mapped=True, inputvarfields="Email")])
    steps = [
        _input("Email", step_id="a"),
        _input("Phone", step_id="b"),
        _input("Name", "Jo", step_id="c"),
        Step(id="d", event="click", path="//button", label="Submit"),
    ]
    before = [step.model_dump() for step in steps]

    batch = injector.inject_row({"email": "a@b.com"}, steps)

    assert [result.skipped for result in batch.results] == [False, True, False, False]
    assert (batch.injected_count, batch.original_count, batch.skipped_count) == (1, 2, 1)
    assert [step.model_dump() for step in steps] == before
    for original, result in zip(steps, batch.results):
        assert result.injected_step is not original


def test_skip_policy_can_be_disabled() -> None:
    injector = ValueInjector(skip_inputs_without_value=False)

    batch = injector.inject_row({}, [_input("Phone")])

    assert batch.skipped_count == 0
    assert batch.original_count == 1


def test_case_sensitivity_must_match_between_mapping_and_label() -> None:
    mappings = [FieldMapping(field_name="Email", mapped=True, inputvarfields="Email Field")]
    step = _input("email field")

    strict = ValueInjector(mappings, case_sensitive=True)
    relaxed = ValueInjector(mappings, case_sensitive=False)

    assert strict.inject_step({"Email": "a@b.com"}, step).source == "original"
    relaxed_result = relaxed.inject_step({"email": "a@b.com"}, step)
    assert relaxed_result.source == "mapped"
    assert relaxed_result.injected_step.value == "a@b.com"


def test_update_mappings_rebuilds_lookups() -> None:
    injector = ValueInjector()
    assert not injector.has_mapping("Email")

    injector.update_mappings([FieldMapping(field_name="mail", mapped=True, inputvarfields="Email")])

    assert injector.has_mapping("Email")
    assert injector.mapped_column("Email") == "mail"
    assert injector.mapped_label("mail") == "Email"
    assert injector.mapping_count == 1
