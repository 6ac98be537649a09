"""Typed records shared by the recording and replay engines."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    StrictStr,
    field_validator,
    model_validator,
)

StepEvent = Literal["click", "input", "enter", "open"]
StepStatus = Literal["pending", "running", "passed", "failed", "skipped"]
RunStatus = Literal["pending", "running", "completed", "failed"]
RecordingStatus = Literal["idle", "recording", "paused", "stopping", "completed", "failed"]
ReplayStatus = Literal["running", "paused", "stopping", "completed", "failed"]

MAX_FIELD_NAME_LENGTH = 255


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return uuid.uuid4().hex


def describe_step(event: str, label: str = "", value: str = "", path: str = "") -> str:
    """Human readable name used when a recorded step arrives without one."""

    target = label or path or "element"
    if event == "input":
        return f'Type Text "{value}" in {target}'
    if event == "click":
        return f"Click {target}"
    if event == "enter":
        return f"Press Enter in {target}"
    return f"Open URL {value or path}".rstrip()


class Step(BaseModel):
    """One recorded user action. Never mutated after recording."""

    model_config = ConfigDict(extra="forbid", frozen=True, populate_by_name=True)

    id: str = Field(default_factory=_new_id)
    name: str = ""
    event: StepEvent
    path: str = Field(default="", validation_alias=AliasChoices("path", "xpath", "selector"))
    value: str = ""
    label: str = ""
    x: float = 0
    y: float = 0
    timestamp: Optional[datetime] = None

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> Any:
        if value is None or value == "":
            return _new_id()
        return str(value)

    @field_validator("value", "label", "path", mode="before")
    @classmethod
    def _none_to_empty(cls, value: Any) -> Any:
        if value is None:
            return ""
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value

    @model_validator(mode="before")
    @classmethod
    def _derive_name(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("name"):
            data = dict(data)
            data["name"] = describe_step(
                str(data.get("event", "")),
                str(data.get("label") or ""),
                str(data.get("value") or ""),
                str(data.get("path") or data.get("xpath") or ""),
            )
        return data

    @model_validator(mode="after")
    def _check_locator(self) -> "Step":
        if self.event != "open" and not self.path.strip():
            raise ValueError(f"{self.event} steps require a non-empty path")
        return self

    @property
    def has_value(self) -> bool:
        return bool(self.value)


class FieldMapping(BaseModel):
    """Association between a data column and a step label."""

    model_config = ConfigDict(extra="forbid", frozen=True, populate_by_name=True)

    field_name: str = Field(
        max_length=MAX_FIELD_NAME_LENGTH,
        validation_alias=AliasChoices("field_name", "fieldName"),
    )
    mapped: bool = False
    inputvarfields: str = Field(
        default="",
        validation_alias=AliasChoices("inputvarfields", "target", "label"),
    )

    @field_validator("field_name")
    @classmethod
    def _require_name(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("field_name must not be empty")
        return value

    @model_validator(mode="after")
    def _check_pairing(self) -> "FieldMapping":
        if self.mapped and not self.inputvarfields.strip():
            raise ValueError("mapped fields require a target label")
        if not self.mapped and self.inputvarfields:
            raise ValueError("unmapped fields must not carry a target label")
        return self


class StepResult(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    step_index: int = Field(ge=0)
    row_index: int = Field(ge=0)
    status: StepStatus
    duration_ms: int = Field(default=0, ge=0)
    error: Optional[str] = None
    step_id: Optional[str] = None
    timestamp: datetime = Field(default_factory=utcnow)


class SessionBase(BaseModel):
    """Fields common to recording and replay sessions.

    Sessions are owned by a single controller which mutates them in place;
    snapshots handed to callers are always ``model_dump`` copies.
    """

    model_config = ConfigDict(extra="forbid")

    project_id: int = Field(ge=0)
    target_id: int = Field(ge=0)
    started_at: datetime = Field(default_factory=utcnow)
    paused_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    total_paused_ms: int = 0

    def fold_pause(self, now: Optional[datetime] = None) -> int:
        """Add the open pause interval to the running total and clear it."""

        if self.paused_at is None:
            return 0
        now = now or utcnow()
        elapsed = max(0, int((now - self.paused_at).total_seconds() * 1000))
        self.total_paused_ms += elapsed
        self.paused_at = None
        return elapsed


class RecordingSession(SessionBase):
    status: RecordingStatus = "recording"
    url: Optional[str] = None
    step_count: int = 0


class ReplaySession(SessionBase):
    status: ReplayStatus = "running"
    run_id: str = Field(default_factory=lambda: f"run-{_new_id()[:12]}")
    current_step_index: int = 0
    total_steps: int = 0
    current_row_index: int = 0
    total_rows: int = 1
    passed_steps: int = 0
    failed_steps: int = 0
    skipped_steps: int = 0

    @property
    def grid_size(self) -> int:
        return self.total_steps * self.total_rows

    @property
    def is_exhausted(self) -> bool:
        return self.current_row_index >= self.total_rows

    def progress(self) -> Dict[str, Any]:
        total = self.grid_size
        done = self.current_row_index * self.total_steps + self.current_step_index
        fraction = min(1.0, done / total) if total else 0.0
        return {
            "current_step_index": self.current_step_index,
            "total_steps": self.total_steps,
            "current_row_index": self.current_row_index,
            "total_rows": self.total_rows,
            "fraction": fraction,
            "percentage": round(fraction * 100, 2),
        }

    def counts(self) -> Dict[str, int]:
        return {
            "passed": self.passed_steps,
            "failed": self.failed_steps,
            "skipped": self.skipped_steps,
            "total": self.grid_size,
        }


class RunRecord(BaseModel):
    """Durable artifact for one replay. ``logs`` is a single string."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    project_id: int = Field(ge=0)
    run_id: Optional[str] = None
    status: RunStatus
    start_time: datetime
    end_time: Optional[datetime] = None
    total_steps: int = Field(default=0, ge=0)
    passed_steps: int = Field(default=0, ge=0)
    failed_steps: int = Field(default=0, ge=0)
    results: List[StepResult] = Field(default_factory=list)
    logs: StrictStr = ""

    @model_validator(mode="after")
    def _check_counts(self) -> "RunRecord":
        if self.passed_steps + self.failed_steps > self.total_steps:
            raise ValueError("passed_steps + failed_steps must not exceed total_steps")
        return self
