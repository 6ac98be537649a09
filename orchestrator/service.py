"""Command dispatch from the bus boundary into the session controllers."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Optional, Type

from pydantic import ValidationError

from .commands import models as cmd
from .commands.registry import CommandRegistry, registry as default_registry
from .config import EngineConfig
from .errors import CommandResponse, ValidationFailure
from .log_collector import LogCollector
from .records.models import RecordingSession, ReplaySession
from .retry import RemoteSurface
from .sessions import RecordingController, ReplayController
from .stores import JsonFileSessionStore

log = logging.getLogger(__name__)

Handler = Callable[[Any], Awaitable[CommandResponse]]


def _describe_validation_error(exc: ValidationError) -> str:
    parts = []
    for error in exc.errors()[:5]:
        location = ".".join(str(item) for item in error.get("loc", ()))
        parts.append(f"{location}: {error.get('msg')}" if location else str(error.get("msg")))
    return "; ".join(parts) or str(exc)


class CommandDispatcher:
    """Decodes bus payloads once and routes them to the owning controller."""

    def __init__(
        self,
        recording: RecordingController,
        replay: ReplayController,
        *,
        registry: CommandRegistry = default_registry,
    ) -> None:
        self.recording = recording
        self.replay = replay
        self.registry = registry
        self._run_task: Optional[asyncio.Task[Any]] = None
        self._handlers: Dict[Type[cmd.CommandBase], Handler] = {
            cmd.StartRecordingCommand: lambda c: self.recording.start(c.project_id, c.target_id, c.url),
            cmd.StopRecordingCommand: lambda c: self.recording.stop(c.project_id),
            cmd.PauseRecordingCommand: lambda c: self.recording.pause(),
            cmd.ResumeRecordingCommand: lambda c: self.recording.resume(),
            cmd.GetRecordingStatusCommand: lambda c: self.recording.get_status(),
            cmd.RecordStepCommand: lambda c: self.recording.record_step(c.step, c.project_id),
            cmd.GetRecordedStepsCommand: lambda c: self.recording.get_steps(c.project_id),
            cmd.ClearRecordedStepsCommand: lambda c: self.recording.clear_steps(c.project_id),
            cmd.StartReplayCommand: self._start_replay,
            cmd.StopReplayCommand: lambda c: self.replay.stop(),
            cmd.PauseReplayCommand: lambda c: self.replay.pause(),
            cmd.ResumeReplayCommand: lambda c: self.replay.resume(),
            cmd.GetReplayStatusCommand: lambda c: self.replay.get_status(),
            cmd.ExecuteStepCommand: lambda c: self.replay.execute_step(
                c.step, step_index=c.step_index, row_index=c.row_index, row=c.row
            ),
            cmd.ExecuteNextStepCommand: lambda c: self.replay.execute_next_step(),
            cmd.SkipStepCommand: lambda c: self.replay.skip_step(),
            cmd.GetReplayResultsCommand: lambda c: self.replay.get_results(c.run_id),
            cmd.SetStepModeCommand: self._set_step_mode,
            cmd.StepOnceCommand: self._step_once,
            cmd.GetStatusCommand: self._get_status,
        }

    @property
    def run_task(self) -> Optional[asyncio.Task[Any]]:
        return self._run_task

    async def dispatch(self, raw: Any) -> Dict[str, Any]:
        """Handle one raw payload and return the ``{success, data|error}`` envelope."""

        try:
            command = self.registry.parse_command(raw)
        except ValidationError as exc:
            message = _describe_validation_error(exc)
            log.info("Rejected command payload: %s", message)
            return CommandResponse.fail(ValidationFailure(f"Invalid command: {message}")).as_dict()
        response = await self.handle(command)
        return response.as_dict()

    async def handle(self, command: cmd.CommandBase) -> CommandResponse:
        handler = self._handlers.get(type(command))
        if handler is None:
            return CommandResponse.fail(ValidationFailure(f"Unsupported command '{command.__command_name__}'"))
        log.debug("Dispatching %s", command.__command_name__)
        return await handler(command)

    async def _start_replay(self, command: cmd.StartReplayCommand) -> CommandResponse:
        response = await self.replay.start(
            command.project_id,
            command.target_id,
            command.steps,
            command.rows,
            command.mappings,
            run_id=command.run_id,
            start_from_step=command.start_from_step,
            start_from_row=command.start_from_row,
        )
        if response.success and command.auto_run:
            self._run_task = asyncio.create_task(self.replay.run())
            self._run_task.add_done_callback(self._on_run_done)
        return response

    async def _set_step_mode(self, command: cmd.SetStepModeCommand) -> CommandResponse:
        return self.replay.set_step_mode(command.enabled)

    async def _step_once(self, command: cmd.StepOnceCommand) -> CommandResponse:
        return self.replay.step_once()

    async def _get_status(self, command: cmd.GetStatusCommand) -> CommandResponse:
        recording = await self.recording.get_status()
        replay = await self.replay.get_status()
        return CommandResponse.ok({"recording": recording.data, "replay": replay.data})

    def _on_run_done(self, task: asyncio.Task[Any]) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            log.error("Replay loop terminated with an error: %s", exc, exc_info=exc)
            return
        result = task.result()
        if result is not None and not result.success:
            log.warning("Replay loop ended: %s", result.error)

    async def shutdown(self) -> None:
        task, self._run_task = self._run_task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass


def _state_file(base: Path, kind: str) -> Path:
    return base.with_name(f"{base.stem}.{kind}{base.suffix or '.json'}")


def build_dispatcher(
    config: EngineConfig,
    surface: RemoteSurface,
    *,
    persist_state: bool = True,
    log_collector: Optional[LogCollector] = None,
) -> CommandDispatcher:
    """Wire controllers, stores and the dispatcher from configuration."""

    recording_store = JsonFileSessionStore(_state_file(config.state_path, "recording"), RecordingSession) if persist_state else None
    replay_store = JsonFileSessionStore(_state_file(config.state_path, "replay"), ReplaySession) if persist_state else None
    recording = RecordingController(state_store=recording_store, surface=surface)
    replay = ReplayController(
        surface=surface,
        config=config,
        state_store=replay_store,
        log_collector=log_collector or LogCollector(),
        event_log_root=config.log_root if persist_state else None,
    )
    return CommandDispatcher(recording, replay)
