from __future__ import annotations

from datetime import datetime, timezone

import pytest

from orchestrator.records import ReplaySession, StepResult
from orchestrator.run_record import (
    TRUNCATION_SUFFIX,
    RunRecordBuilder,
    RunRecordValidationError,
    create_completed_run,
)

START = datetime(2024, 5, 1, 9, 30, tzinfo=timezone.utc)


def _builder() -> RunRecordBuilder:
    return RunRecordBuilder().set_project_id(12).set_status("completed").set_start_time(START)


def test_counts_exceeding_total_are_rejected() -> None:
    builder = _builder().set_step_counts(total=10, passed=8, failed=5)

    with pytest.raises(RunRecordValidationError) as excinfo:
        builder.build()

    assert [error.field for error in excinfo.value.errors] == ["passed_steps"]


def test_counts_within_total_build() -> None:
    record = _builder().set_step_counts(total=10, passed=6, failed=4).build()

    assert record.total_steps == 10
    assert record.logs == ""


def test_every_failing_field_is_listed() -> None:
    builder = (
        RunRecordBuilder()
        .set_project_id(-1)
        .set_status("finished")
        .set_start_time("not a date")
        .set_total_steps(-2)
        .set_logs(["line one", "line two"])
    )

    with pytest.raises(RunRecordValidationError) as excinfo:
        builder.build()

    fields = {error.field for error in excinfo.value.errors}
    assert fields == {"project_id", "status", "start_time", "total_steps", "logs"}
    assert "logs: must be a single string" in str(excinfo.value)


def test_missing_project_id_is_required() -> None:
    builder = RunRecordBuilder().set_status("pending")

    assert not builder.is_valid()
    assert builder.validate()[0].field == "project_id"


def test_build_unsafe_skips_validation_for_provisional_records() -> None:
    record = RunRecordBuilder.create_pending(3).build_unsafe()

    assert record.status == "pending"
    assert record.project_id == 3
    assert record.results == []


def test_iso_start_time_is_accepted() -> None:
    record = RunRecordBuilder().set_project_id(1).set_start_time("2024-05-01T09:30:00+00:00").build()

    assert record.start_time == START
    assert record.status == "pending"


def test_logs_are_truncated_and_appended() -> None:
    builder = _builder()
    builder.max_log_length = 30
    builder.set_logs("a" * 10).append_logs("b" * 40)

    logs = builder.build().logs
    assert len(logs) == 30
    assert logs.endswith(TRUNCATION_SUFFIX)
    assert logs.startswith("a" * 10 + "\n")


def test_clone_is_independent() -> None:
    original = _builder().set_total_steps(3)
    copy = original.clone().set_total_steps(5)

    assert original.build().total_steps == 3
    assert copy.build().total_steps == 5
    assert original.reset().validate()[0].field == "project_id"


def test_build_for_update_only_checks_set_fields() -> None:
    update = RunRecordBuilder().set_status("running").set_passed_steps(4).build_for_update()

    assert update == {"status": "running", "passed_steps": 4}
    with pytest.raises(RunRecordValidationError):
        RunRecordBuilder().set_status("bogus").build_for_update()


def test_from_session_uses_grid_size_and_results() -> None:
    session = ReplaySession(
        project_id=5,
        target_id=1,
        status="failed",
        total_steps=2,
        total_rows=3,
        passed_steps=4,
        failed_steps=1,
    )
    results = [StepResult(step_index=0, row_index=0, status="passed")]

    record = RunRecordBuilder.from_session(session, results, "log").build()

    assert record.total_steps == 6
    assert record.status == "failed"
    assert record.run_id == session.run_id
    assert record.logs == "log"


def test_create_completed_run_derives_status() -> None:
    results = [
        StepResult(step_index=0, row_index=0, status="passed"),
        StepResult(step_index=1, row_index=0, status="failed", error="nope"),
    ]

    record = create_completed_run(9, START, results, "done")

    assert record.status == "failed"
    assert (record.passed_steps, record.failed_steps, record.total_steps) == (1, 1, 2)
