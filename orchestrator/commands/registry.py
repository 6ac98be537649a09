"""Command registry decoding raw bus payloads into typed commands."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Annotated, Any, Dict, Iterator, Optional, Type, TypeVar, Union

from pydantic import Field, TypeAdapter

from .models import (
    ClearRecordedStepsCommand,
    CommandBase,
    ExecuteNextStepCommand,
    ExecuteStepCommand,
    GetRecordedStepsCommand,
    GetRecordingStatusCommand,
    GetReplayResultsCommand,
    GetReplayStatusCommand,
    GetStatusCommand,
    PauseRecordingCommand,
    PauseReplayCommand,
    RecordStepCommand,
    ResumeRecordingCommand,
    ResumeReplayCommand,
    SetStepModeCommand,
    SkipStepCommand,
    StartRecordingCommand,
    StartReplayCommand,
    StepOnceCommand,
    StopRecordingCommand,
    StopReplayCommand,
)

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


def normalize_command_name(name: str) -> str:
    """``startReplay`` and ``START_REPLAY`` both become ``start_replay``."""

    name = name.strip().replace("-", "_")
    if name.isupper() or "_" in name:
        return name.lower()
    return _CAMEL_BOUNDARY.sub("_", name).lower()


@dataclass(slots=True)
class CommandSpec:
    name: str
    model: Type[CommandBase]
    description: str | None = None

    def to_metadata(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description or "",
            "fields": sorted(self.model.model_fields),
        }


C = TypeVar("C", bound=CommandBase)


class CommandRegistry:
    """Central registry holding the command union."""

    def __init__(self) -> None:
        self._commands: Dict[str, CommandSpec] = {}
        self._adapter: Optional[TypeAdapter[Any]] = None

    def register(self, model: Type[C], *, description: str | None = None) -> Type[C]:
        if not issubclass(model, CommandBase):
            raise TypeError("model must subclass CommandBase")
        name = model.__command_name__
        self._commands[name] = CommandSpec(name=name, model=model, description=description)
        self._adapter = None
        return model

    def get(self, name: str) -> CommandSpec:
        try:
            return self._commands[normalize_command_name(name)]
        except KeyError as exc:
            raise KeyError(f"Unknown command '{name}'") from exc

    def __contains__(self, name: str) -> bool:  # pragma: no cover - trivial
        return normalize_command_name(name) in self._commands

    def __iter__(self) -> Iterator[CommandSpec]:  # pragma: no cover - trivial
        return iter(self._commands.values())

    def _ensure_adapter(self) -> TypeAdapter[Any]:
        if self._adapter is None:
            if len(self._commands) < 2:
                raise RuntimeError("At least two commands must be registered")
            models = tuple(spec.model for spec in self._commands.values())
            self._adapter = TypeAdapter(Annotated[Union[models], Field(discriminator="type")])
        return self._adapter

    def parse_command(self, data: Any) -> CommandBase:
        if isinstance(data, CommandBase):
            return data
        if isinstance(data, dict):
            data = dict(data)
            name = data.pop("type", None) or data.pop("command", None) or data.pop("action", None)
            if isinstance(name, str):
                data["type"] = normalize_command_name(name)
            payload = data.pop("payload", None)
            if isinstance(payload, dict):
                data = {**payload, **data}
        adapter = self._ensure_adapter()
        return adapter.validate_python(data)

    def parse_json(self, data: str) -> CommandBase:
        return self.parse_command(json.loads(data))

    def schema(self) -> Dict[str, Any]:
        return {name: spec.to_metadata() for name, spec in self._commands.items()}


registry = CommandRegistry()

registry.register(StartRecordingCommand, description="Begin capturing steps on a target")
registry.register(StopRecordingCommand, description="Stop capturing and flush recorded steps")
registry.register(PauseRecordingCommand)
registry.register(ResumeRecordingCommand)
registry.register(GetRecordingStatusCommand)
registry.register(RecordStepCommand, description="Buffer one captured step")
registry.register(GetRecordedStepsCommand)
registry.register(ClearRecordedStepsCommand)
registry.register(StartReplayCommand, description="Replay steps over data rows")
registry.register(StopReplayCommand, description="Stop the replay and flush its results")
registry.register(PauseReplayCommand)
registry.register(ResumeReplayCommand)
registry.register(GetReplayStatusCommand)
registry.register(ExecuteStepCommand, description="Run one ad hoc step in the active replay")
registry.register(ExecuteNextStepCommand, description="Run the step at the replay cursor")
registry.register(SkipStepCommand)
registry.register(GetReplayResultsCommand)
registry.register(SetStepModeCommand)
registry.register(StepOnceCommand)
registry.register(GetStatusCommand)
