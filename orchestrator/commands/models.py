"""Typed command payloads accepted from the command bus."""

from __future__ import annotations

from typing import Any, ClassVar, Dict, List, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from ..records.models import FieldMapping, Step

_PROJECT = AliasChoices("project_id", "projectId")
_TARGET = AliasChoices("target_id", "targetId", "tab_id", "tabId")
_RUN = AliasChoices("run_id", "runId", "test_run_id", "testRunId")


class CommandBase(BaseModel):
    """Base class for all commands."""

    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    __command_name__: ClassVar[str]
    __description__: ClassVar[str] = ""

    def payload(self) -> Dict[str, Any]:
        data = self.model_dump(mode="json", exclude_none=True)
        data.setdefault("type", self.__command_name__)
        return data


class StartRecordingCommand(CommandBase):
    __command_name__ = "start_recording"

    type: Literal["start_recording"] = "start_recording"
    project_id: int = Field(ge=0, validation_alias=_PROJECT)
    target_id: int = Field(ge=0, validation_alias=_TARGET)
    url: Optional[str] = None


class StopRecordingCommand(CommandBase):
    __command_name__ = "stop_recording"

    type: Literal["stop_recording"] = "stop_recording"
    project_id: Optional[int] = Field(default=None, ge=0, validation_alias=_PROJECT)


class PauseRecordingCommand(CommandBase):
    __command_name__ = "pause_recording"

    type: Literal["pause_recording"] = "pause_recording"


class ResumeRecordingCommand(CommandBase):
    __command_name__ = "resume_recording"

    type: Literal["resume_recording"] = "resume_recording"


class GetRecordingStatusCommand(CommandBase):
    __command_name__ = "get_recording_status"

    type: Literal["get_recording_status"] = "get_recording_status"


class RecordStepCommand(CommandBase):
    __command_name__ = "record_step"

    type: Literal["record_step"] = "record_step"
    step: Step
    project_id: Optional[int] = Field(default=None, ge=0, validation_alias=_PROJECT)


class GetRecordedStepsCommand(CommandBase):
    __command_name__ = "get_recorded_steps"

    type: Literal["get_recorded_steps"] = "get_recorded_steps"
    project_id: Optional[int] = Field(default=None, ge=0, validation_alias=_PROJECT)


class ClearRecordedStepsCommand(CommandBase):
    __command_name__ = "clear_recorded_steps"

    type: Literal["clear_recorded_steps"] = "clear_recorded_steps"
    project_id: Optional[int] = Field(default=None, ge=0, validation_alias=_PROJECT)


class StartReplayCommand(CommandBase):
    __command_name__ = "start_replay"

    type: Literal["start_replay"] = "start_replay"
    project_id: int = Field(ge=0, validation_alias=_PROJECT)
    target_id: int = Field(ge=0, validation_alias=_TARGET)
    steps: List[Step] = Field(min_length=1)
    rows: List[Dict[str, Any]] = Field(
        default_factory=list, validation_alias=AliasChoices("rows", "csv_rows", "csvRows")
    )
    mappings: List[FieldMapping] = Field(
        default_factory=list, validation_alias=AliasChoices("mappings", "field_mappings", "fieldMappings")
    )
    run_id: Optional[str] = Field(default=None, validation_alias=_RUN)
    start_from_step: int = Field(default=0, ge=0, validation_alias=AliasChoices("start_from_step", "startFromStep"))
    start_from_row: int = Field(default=0, ge=0, validation_alias=AliasChoices("start_from_row", "startFromRow"))
    auto_run: bool = Field(default=True, validation_alias=AliasChoices("auto_run", "autoRun"))


class StopReplayCommand(CommandBase):
    __command_name__ = "stop_replay"

    type: Literal["stop_replay"] = "stop_replay"


class PauseReplayCommand(CommandBase):
    __command_name__ = "pause_replay"

    type: Literal["pause_replay"] = "pause_replay"


class ResumeReplayCommand(CommandBase):
    __command_name__ = "resume_replay"

    type: Literal["resume_replay"] = "resume_replay"


class GetReplayStatusCommand(CommandBase):
    __command_name__ = "get_replay_status"

    type: Literal["get_replay_status"] = "get_replay_status"


class ExecuteStepCommand(CommandBase):
    __command_name__ = "execute_step"

    type: Literal["execute_step"] = "execute_step"
    step: Step
    step_index: Optional[int] = Field(default=None, ge=0, validation_alias=AliasChoices("step_index", "stepIndex"))
    row_index: Optional[int] = Field(default=None, ge=0, validation_alias=AliasChoices("row_index", "rowIndex"))
    row: Optional[Dict[str, Any]] = Field(default=None, validation_alias=AliasChoices("row", "csv_row", "csvRow"))


class ExecuteNextStepCommand(CommandBase):
    __command_name__ = "execute_next_step"

    type: Literal["execute_next_step"] = "execute_next_step"


class SkipStepCommand(CommandBase):
    __command_name__ = "skip_step"

    type: Literal["skip_step"] = "skip_step"


class GetReplayResultsCommand(CommandBase):
    __command_name__ = "get_replay_results"

    type: Literal["get_replay_results"] = "get_replay_results"
    run_id: Optional[str] = Field(default=None, validation_alias=_RUN)


class SetStepModeCommand(CommandBase):
    __command_name__ = "set_step_mode"

    type: Literal["set_step_mode"] = "set_step_mode"
    enabled: bool


class StepOnceCommand(CommandBase):
    __command_name__ = "step_once"

    type: Literal["step_once"] = "step_once"


class GetStatusCommand(CommandBase):
    __command_name__ = "get_status"

    type: Literal["get_status"] = "get_status"
