"""Recording session state machine."""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Any, Dict, List, Mapping, Optional

from ..errors import CommandResponse, PersistenceFailure, StateConflict, ValidationFailure
from ..records.models import RecordingSession, Step, utcnow
from ..retry import RemoteSurface
from ..stores import InMemoryStepStore, SessionStateStore, StepStore
from .base import SessionController

log = logging.getLogger(__name__)


class RecordingController(SessionController[RecordingSession]):
    kind = "recording"

    def __init__(
        self,
        *,
        state_store: Optional[SessionStateStore[RecordingSession]] = None,
        step_store: Optional[StepStore] = None,
        surface: Optional[RemoteSurface] = None,
        notify_timeout: float = 5.0,
    ) -> None:
        super().__init__(state_store=state_store, surface=surface, notify_timeout=notify_timeout)
        self.step_store: StepStore = step_store or InMemoryStepStore()
        self._buffers: Dict[int, List[Step]] = defaultdict(list)
        self._stats = {"sessions_started": 0, "sessions_completed": 0, "steps_recorded": 0, "steps_rejected": 0}

    async def start(self, project_id: int, target_id: int, url: Optional[str] = None) -> CommandResponse:
        async def operation() -> Dict[str, Any]:
            if self.session is None:
                self.session = await self._load_persisted()
            if self.is_active:
                raise StateConflict(
                    f"A recording session is already {self.session.status} for project {self.session.project_id}"
                )
            session = RecordingSession(project_id=project_id, target_id=target_id, url=url)
            self.session = session
            self._buffers[project_id] = []
            self._stats["sessions_started"] += 1
            await self._persist()
            notified = await self._notify(
                target_id, {"type": "start_recording", "project_id": project_id, "url": url}
            )
            log.info("Recording started for project %s on target %s", project_id, target_id)
            self.events.emit("started", project_id=project_id, target_id=target_id)
            return {"session": self.snapshot(), "notified": notified}

        return await self._guarded(operation, "start")

    async def record_step(
        self, step: Step | Mapping[str, Any], project_id: Optional[int] = None
    ) -> CommandResponse:
        async def operation() -> Dict[str, Any]:
            session = self.session
            if session is None or session.status != "recording":
                self._stats["steps_rejected"] += 1
                state = session.status if session else "idle"
                raise StateConflict(f"Cannot record steps while {state}")
            if project_id is not None and project_id != session.project_id:
                self._stats["steps_rejected"] += 1
                raise ValidationFailure(
                    f"Step for project {project_id} does not match recording project {session.project_id}"
                )
            recorded = step if isinstance(step, Step) else Step.model_validate(step)
            if recorded.timestamp is None:
                recorded = recorded.model_copy(update={"timestamp": utcnow()})
            self._buffers[session.project_id].append(recorded)
            session.step_count += 1
            self._stats["steps_recorded"] += 1
            await self._persist()
            self.events.emit("step_recorded", project_id=session.project_id, step_id=recorded.id)
            return {"step": recorded.model_dump(mode="json"), "step_count": session.step_count}

        return await self._guarded(operation, "record_step")

    async def pause(self) -> CommandResponse:
        async def operation() -> Dict[str, Any]:
            session = self.session
            if session is None or session.status != "recording":
                raise StateConflict("Can only pause an active recording")
            session.status = "paused"
            session.paused_at = utcnow()
            await self._persist()
            notified = await self._notify(session.target_id, {"type": "pause_recording"})
            self.events.emit("paused", project_id=session.project_id)
            return {"session": self.snapshot(), "notified": notified}

        return await self._guarded(operation, "pause")

    async def resume(self) -> CommandResponse:
        async def operation() -> Dict[str, Any]:
            session = self.session
            if session is None or session.status != "paused":
                raise StateConflict("Can only resume a paused recording")
            elapsed = session.fold_pause()
            session.status = "recording"
            await self._persist()
            notified = await self._notify(session.target_id, {"type": "resume_recording"})
            self.events.emit("resumed", project_id=session.project_id, paused_ms=elapsed)
            return {"session": self.snapshot(), "notified": notified}

        return await self._guarded(operation, "resume")

    async def stop(self, project_id: Optional[int] = None) -> CommandResponse:
        async def operation() -> Dict[str, Any]:
            if self.session is None:
                self.session = await self._load_persisted()
            session = self.session
            if session is None or session.status not in ("recording", "paused", "stopping"):
                raise StateConflict("No active recording session")
            if project_id is not None and project_id != session.project_id:
                raise ValidationFailure(
                    f"Project {project_id} does not match recording project {session.project_id}"
                )
            if session.status != "stopping":
                session.fold_pause()
                session.status = "stopping"
                await self._persist()
                await self._notify(session.target_id, {"type": "stop_recording"})

            steps = list(self._buffers.get(session.project_id, []))
            try:
                if steps:
                    await self.step_store.add_steps(session.project_id, steps)
            except Exception as exc:
                log.error("Failed to save %d recorded steps for project %s: %s", len(steps), session.project_id, exc)
                raise PersistenceFailure(f"Failed to save recorded steps: {exc}") from exc

            self._buffers.pop(session.project_id, None)
            session.status = "completed"
            session.completed_at = utcnow()
            final = self.snapshot()
            self.session = None
            await self._persist()
            self._stats["sessions_completed"] += 1
            log.info("Recording stopped for project %s with %d steps", session.project_id, len(steps))
            self.events.emit("completed", project_id=session.project_id, step_count=len(steps))
            return {
                "session": final,
                "steps": [step.model_dump(mode="json") for step in steps],
                "step_count": len(steps),
            }

        return await self._guarded(operation, "stop")

    async def get_status(self) -> CommandResponse:
        async def operation() -> Dict[str, Any]:
            if self.session is None:
                self.session = await self._load_persisted()
            session = self.session
            buffered = len(self._buffers.get(session.project_id, [])) if session else 0
            return {
                "session": self.snapshot(),
                "is_recording": bool(session and session.status == "recording"),
                "buffered_steps": buffered,
            }

        return await self._call(operation, "get_status")

    async def get_steps(self, project_id: Optional[int] = None) -> CommandResponse:
        async def operation() -> Dict[str, Any]:
            pid = self._resolve_project(project_id)
            stored = await self.step_store.get_steps(pid)
            buffered = list(self._buffers.get(pid, []))
            return {
                "project_id": pid,
                "steps": [step.model_dump(mode="json") for step in stored + buffered],
                "stored": len(stored),
                "buffered": len(buffered),
            }

        return await self._guarded(operation, "get_steps")

    async def clear_steps(self, project_id: Optional[int] = None) -> CommandResponse:
        async def operation() -> Dict[str, Any]:
            pid = self._resolve_project(project_id)
            cleared = len(self._buffers.get(pid, []))
            if pid in self._buffers:
                self._buffers[pid] = []
            await self.step_store.clear_steps(pid)
            if self.session is not None and self.session.project_id == pid:
                self.session.step_count = 0
                await self._persist()
            return {"project_id": pid, "cleared_buffered": cleared}

        return await self._guarded(operation, "clear_steps")

    async def restore_session(self) -> CommandResponse:
        async def operation() -> Dict[str, Any]:
            restored = await self._load_persisted()
            if restored is not None:
                self.session = restored
                log.info("Restored %s recording session for project %s", restored.status, restored.project_id)
            return {"session": self.snapshot(), "restored": restored is not None}

        return await self._guarded(operation, "restore_session")

    def stats(self) -> Dict[str, Any]:
        return {**self._stats, "active": self.is_active}

    def _resolve_project(self, project_id: Optional[int]) -> int:
        if project_id is not None:
            return project_id
        if self.session is not None:
            return self.session.project_id
        raise ValidationFailure("project_id is required when no recording is active")
