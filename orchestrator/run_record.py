"""Assembly and validation of the persisted run record."""

from __future__ import annotations

import copy
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from .records.models import ReplaySession, RunRecord, StepResult, utcnow

RUN_STATUSES = ("pending", "running", "completed", "failed")
TRUNCATION_SUFFIX = "... [truncated]"


@dataclass(slots=True)
class FieldError:
    field: str
    message: str

    def as_dict(self) -> Dict[str, str]:
        return {"field": self.field, "message": self.message}


class RunRecordValidationError(ValueError):
    def __init__(self, errors: List[FieldError]) -> None:
        self.errors = errors
        detail = "; ".join(f"{error.field}: {error.message}" for error in errors)
        super().__init__(f"Invalid run record: {detail}")


def _is_count(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= 0


def _parse_time(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str) and value:
        try:
            return datetime.fromisoformat(value)
        except ValueError:
            return None
    return None


class RunRecordBuilder:
    """Incrementally collects run record fields.

    ``build`` validates and raises :class:`RunRecordValidationError` naming
    every bad field; ``build_unsafe`` fills defaults and skips validation for
    provisional records.
    """

    def __init__(self, *, max_log_length: int = 0) -> None:
        self.max_log_length = max_log_length
        self._data: Dict[str, Any] = {}

    def set_project_id(self, project_id: int) -> "RunRecordBuilder":
        self._data["project_id"] = project_id
        return self

    def set_run_id(self, run_id: Optional[str]) -> "RunRecordBuilder":
        self._data["run_id"] = run_id
        return self

    def set_status(self, status: str) -> "RunRecordBuilder":
        self._data["status"] = status
        return self

    def set_start_time(self, value: datetime | str) -> "RunRecordBuilder":
        self._data["start_time"] = value
        return self

    def set_end_time(self, value: datetime | str | None) -> "RunRecordBuilder":
        self._data["end_time"] = value
        return self

    def set_total_steps(self, total: int) -> "RunRecordBuilder":
        self._data["total_steps"] = total
        return self

    def set_passed_steps(self, passed: int) -> "RunRecordBuilder":
        self._data["passed_steps"] = passed
        return self

    def set_failed_steps(self, failed: int) -> "RunRecordBuilder":
        self._data["failed_steps"] = failed
        return self

    def set_step_counts(self, *, total: int, passed: int, failed: int) -> "RunRecordBuilder":
        return self.set_total_steps(total).set_passed_steps(passed).set_failed_steps(failed)

    def set_results(self, results: Iterable[StepResult]) -> "RunRecordBuilder":
        self._data["results"] = list(results)
        return self

    def add_result(self, result: StepResult) -> "RunRecordBuilder":
        self._data.setdefault("results", []).append(result)
        return self

    def set_logs(self, logs: Any) -> "RunRecordBuilder":
        if isinstance(logs, str):
            logs = self._truncate(logs)
        self._data["logs"] = logs
        return self

    def append_logs(self, text: str) -> "RunRecordBuilder":
        current = self._data.get("logs") or ""
        if not isinstance(current, str):
            current = ""
        return self.set_logs(f"{current}\n{text}" if current else text)

    def _truncate(self, logs: str) -> str:
        if self.max_log_length <= 0 or len(logs) <= self.max_log_length:
            return logs
        keep = max(0, self.max_log_length - len(TRUNCATION_SUFFIX))
        return logs[:keep] + TRUNCATION_SUFFIX

    def _with_defaults(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "status": "pending",
            "start_time": utcnow(),
            "end_time": None,
            "run_id": None,
            "total_steps": 0,
            "passed_steps": 0,
            "failed_steps": 0,
            "results": [],
            "logs": "",
        }
        data.update(self._data)
        return data

    def validate(self) -> List[FieldError]:
        data = self._with_defaults()
        errors: List[FieldError] = []

        if "project_id" not in data:
            errors.append(FieldError("project_id", "is required"))
        elif not _is_count(data["project_id"]):
            errors.append(FieldError("project_id", "must be a non-negative integer"))

        if data["status"] not in RUN_STATUSES:
            errors.append(FieldError("status", f"must be one of {', '.join(RUN_STATUSES)}"))

        if _parse_time(data["start_time"]) is None:
            errors.append(FieldError("start_time", "must be a valid timestamp"))
        if data["end_time"] is not None and _parse_time(data["end_time"]) is None:
            errors.append(FieldError("end_time", "must be a valid timestamp"))

        counts_ok = True
        for name in ("total_steps", "passed_steps", "failed_steps"):
            if not _is_count(data[name]):
                errors.append(FieldError(name, "must be a non-negative integer"))
                counts_ok = False
        if counts_ok and data["passed_steps"] + data["failed_steps"] > data["total_steps"]:
            errors.append(FieldError("passed_steps", "passed_steps + failed_steps exceeds total_steps"))

        if not isinstance(data["logs"], str):
            errors.append(FieldError("logs", "must be a single string"))

        results = data["results"]
        if not isinstance(results, list) or not all(isinstance(item, (StepResult, dict)) for item in results):
            errors.append(FieldError("results", "must be a list of step results"))
        return errors

    def is_valid(self) -> bool:
        return not self.validate()

    def build(self) -> RunRecord:
        errors = self.validate()
        if errors:
            raise RunRecordValidationError(errors)
        return RunRecord.model_validate(self._with_defaults())

    def build_unsafe(self) -> RunRecord:
        data = self._with_defaults()
        data.setdefault("project_id", 0)
        return RunRecord.model_construct(**data)

    def build_for_update(self) -> Dict[str, Any]:
        """Validated partial payload containing only the fields that were set."""

        counts_set = all(name in self._data for name in ("total_steps", "passed_steps", "failed_steps"))
        errors = [
            error
            for error in self.validate()
            if error.field in self._data and (counts_set or "exceeds" not in error.message)
        ]
        if errors:
            raise RunRecordValidationError(errors)
        return copy.deepcopy(self._data)

    def reset(self) -> "RunRecordBuilder":
        self._data.clear()
        return self

    def clone(self) -> "RunRecordBuilder":
        other = RunRecordBuilder(max_log_length=self.max_log_length)
        other._data = copy.deepcopy(self._data)
        return other

    @classmethod
    def create_pending(cls, project_id: int, **kwargs: Any) -> "RunRecordBuilder":
        return cls(**kwargs).set_project_id(project_id).set_status("pending").set_start_time(utcnow())

    @classmethod
    def create_running(cls, project_id: int, total_steps: int = 0, **kwargs: Any) -> "RunRecordBuilder":
        return (
            cls(**kwargs)
            .set_project_id(project_id)
            .set_status("running")
            .set_start_time(utcnow())
            .set_total_steps(total_steps)
        )

    @classmethod
    def from_session(
        cls,
        session: ReplaySession,
        results: Iterable[StepResult],
        logs: str = "",
        **kwargs: Any,
    ) -> "RunRecordBuilder":
        status = session.status if session.status in ("completed", "failed") else "running"
        return (
            cls(**kwargs)
            .set_project_id(session.project_id)
            .set_run_id(session.run_id)
            .set_status(status)
            .set_start_time(session.started_at)
            .set_end_time(session.completed_at)
            .set_step_counts(
                total=session.grid_size,
                passed=session.passed_steps,
                failed=session.failed_steps,
            )
            .set_results(results)
            .set_logs(logs)
        )


def create_completed_run(
    project_id: int,
    start_time: datetime,
    results: List[StepResult],
    logs: str = "",
    *,
    total_steps: Optional[int] = None,
    end_time: Optional[datetime] = None,
) -> RunRecord:
    passed = sum(1 for result in results if result.status == "passed")
    failed = sum(1 for result in results if result.status == "failed")
    return (
        RunRecordBuilder()
        .set_project_id(project_id)
        .set_status("failed" if failed else "completed")
        .set_start_time(start_time)
        .set_end_time(end_time or utcnow())
        .set_step_counts(total=len(results) if total_steps is None else total_steps, passed=passed, failed=failed)
        .set_results(results)
        .set_logs(logs)
        .build()
    )
