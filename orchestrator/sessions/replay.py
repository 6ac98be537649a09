"""Replay session state machine and its step/row iteration loop."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from ..config import EngineConfig
from ..errors import CommandResponse, PersistenceFailure, StateConflict, ValidationFailure
from ..injection import ValueInjector
from ..log_collector import LogCollector
from ..pause import PauseController
from ..records.fields import validate_field_set
from ..records.models import FieldMapping, ReplaySession, RunRecord, Step, StepResult, utcnow
from ..retry import RemoteAction, RemoteSurface, RetryingActionExecutor
from ..run_record import RunRecordBuilder
from ..stores import (
    InMemoryResultStore,
    InMemoryRunRecordStore,
    ResultStore,
    RunRecordStore,
    SessionStateStore,
)
from ..structured_logging import StructuredEventLog, prepare_log_paths
from .base import SessionController

log = logging.getLogger(__name__)

Row = Mapping[str, Any]


@dataclass(slots=True)
class ReplayPlan:
    steps: List[Step]
    rows: List[Dict[str, Any]]
    injector: ValueInjector
    row_tally: Dict[str, int] = field(default_factory=lambda: {"passed": 0, "failed": 0, "skipped": 0})


def summarize(results: Iterable[StepResult], total: Optional[int] = None) -> Dict[str, int]:
    results = list(results)
    summary = {
        "passed": sum(1 for result in results if result.status == "passed"),
        "failed": sum(1 for result in results if result.status == "failed"),
        "skipped": sum(1 for result in results if result.status == "skipped"),
    }
    summary["total"] = len(results) if total is None else total
    return summary


class ReplayController(SessionController[ReplaySession]):
    """Drives one replay over a grid of ``rows x steps``.

    The cursor ``(current_row_index, current_step_index)`` always points at
    the next unit of work. Commands hold the session lock for their whole
    duration, so a pause or stop issued while a step is in flight takes
    effect once that step has returned.
    """

    kind = "replay"

    def __init__(
        self,
        *,
        surface: RemoteSurface,
        config: Optional[EngineConfig] = None,
        executor: Optional[RetryingActionExecutor] = None,
        pause_controller: Optional[PauseController] = None,
        log_collector: Optional[LogCollector] = None,
        state_store: Optional[SessionStateStore[ReplaySession]] = None,
        result_store: Optional[ResultStore] = None,
        run_store: Optional[RunRecordStore] = None,
        event_log_root: Optional[Path] = None,
        notify_timeout: float = 5.0,
    ) -> None:
        super().__init__(state_store=state_store, surface=surface, notify_timeout=notify_timeout)
        self.config = config or EngineConfig()
        self.executor = executor or RetryingActionExecutor(
            surface,
            max_retries=self.config.max_retries,
            delay=self.config.retry_delay_s,
            timeout=self.config.action_timeout_s,
            retry=self.config.retry_enabled,
        )
        self.pause_controller = pause_controller or PauseController(pause_on_error=self.config.pause_on_error)
        self.logs = log_collector or LogCollector()
        self.result_store: ResultStore = result_store or InMemoryResultStore()
        self.run_store: RunRecordStore = run_store or InMemoryRunRecordStore()
        self.event_log_root = event_log_root
        self._plan: Optional[ReplayPlan] = None
        self._results: List[StepResult] = []
        self._results_flushed = False
        self._event_log: Optional[StructuredEventLog] = None
        self._started_clock = 0.0
        self._stats = {
            "sessions_started": 0,
            "sessions_completed": 0,
            "sessions_failed": 0,
            "steps_executed": 0,
            "steps_passed": 0,
            "steps_failed": 0,
            "steps_skipped": 0,
        }

    # -- lifecycle -----------------------------------------------------

    async def start(
        self,
        project_id: int,
        target_id: int,
        steps: Sequence[Step | Mapping[str, Any]],
        rows: Optional[Sequence[Row]] = None,
        mappings: Optional[Sequence[FieldMapping | Mapping[str, Any]]] = None,
        *,
        run_id: Optional[str] = None,
        start_from_step: int = 0,
        start_from_row: int = 0,
    ) -> CommandResponse:
        async def operation() -> Dict[str, Any]:
            if self.session is None:
                self.session = await self._load_persisted()
            if self.is_active:
                raise StateConflict(
                    f"A replay is already {self.session.status} for project {self.session.project_id}"
                )
            if not steps:
                raise ValidationFailure("steps must not be empty")
            plan_steps = [item if isinstance(item, Step) else Step.model_validate(item) for item in steps]
            plan_rows = [dict(row) for row in rows] if rows else [{}]
            plan_mappings = self._parse_mappings(mappings or [])
            if not 0 <= start_from_step < len(plan_steps):
                raise ValidationFailure(f"start_from_step must be within 0..{len(plan_steps) - 1}")
            if not 0 <= start_from_row < len(plan_rows):
                raise ValidationFailure(f"start_from_row must be within 0..{len(plan_rows) - 1}")

            extra = {"run_id": run_id} if run_id else {}
            session = ReplaySession(
                project_id=project_id,
                target_id=target_id,
                total_steps=len(plan_steps),
                total_rows=len(plan_rows),
                current_step_index=start_from_step,
                current_row_index=start_from_row,
                **extra,
            )
            injector = ValueInjector(
                plan_mappings,
                skip_inputs_without_value=self.config.skip_inputs_without_value,
                case_sensitive=self.config.case_sensitive_match,
            )
            self.session = session
            self._plan = ReplayPlan(steps=plan_steps, rows=plan_rows, injector=injector)
            self._results = []
            self._results_flushed = False
            self._started_clock = time.perf_counter()
            self.pause_controller.reset()
            self.logs.clear()
            self._open_event_log(session.run_id)
            self._stats["sessions_started"] += 1

            self.logs.execution_started(session.total_steps, session.total_rows)
            await self._persist()
            notified = await self._notify(
                target_id,
                {
                    "type": "start_replay",
                    "project_id": project_id,
                    "run_id": session.run_id,
                    "total_steps": session.total_steps,
                    "total_rows": session.total_rows,
                },
            )
            log.info(
                "Replay %s started for project %s: %d steps x %d rows",
                session.run_id,
                project_id,
                session.total_steps,
                session.total_rows,
            )
            self.events.emit("started", run_id=session.run_id, project_id=project_id, target_id=target_id)
            return {"session": self.snapshot(), "progress": session.progress(), "notified": notified}

        return await self._guarded(operation, "start")

    async def pause(self) -> CommandResponse:
        async def operation() -> Dict[str, Any]:
            session = self.session
            if session is None or session.status != "running":
                raise StateConflict("Can only pause a running replay")
            self._enter_pause(session, "user_requested")
            await self._persist()
            notified = await self._notify(session.target_id, {"type": "pause_replay", "run_id": session.run_id})
            return {"session": self.snapshot(), "notified": notified}

        return await self._guarded(operation, "pause")

    async def resume(self) -> CommandResponse:
        async def operation() -> Dict[str, Any]:
            session = self.session
            if session is None or session.status != "paused":
                raise StateConflict("Can only resume a paused replay")
            elapsed = session.fold_pause()
            session.status = "running"
            self.pause_controller.resume()
            await self._persist()
            notified = await self._notify(session.target_id, {"type": "resume_replay", "run_id": session.run_id})
            self.logs.info("Replay resumed")
            self.events.emit("resumed", run_id=session.run_id, paused_ms=elapsed)
            return {"session": self.snapshot(), "notified": notified}

        return await self._guarded(operation, "resume")

    async def stop(self) -> CommandResponse:
        async def operation() -> Dict[str, Any]:
            if self.session is None:
                self.session = await self._load_persisted()
            session = self.session
            if session is None or session.status not in ("running", "paused", "stopping"):
                raise StateConflict("No active replay session")
            if session.status != "stopping":
                session.fold_pause()
                self.logs.execution_stopped()
                closing = self._prepare_close(session)
                session.status = "stopping"
                await self._persist()
                await self._notify(session.target_id, {"type": "stop_replay", "run_id": session.run_id})
                self.events.emit("stopping", run_id=session.run_id)
            else:
                closing = self._prepare_close(session)
            # Release a loop parked at the suspension point.
            self.pause_controller.reset()
            return await self._close(session, closing)

        return await self._guarded(operation, "stop")

    # -- iteration -----------------------------------------------------

    async def execute_next_step(self) -> CommandResponse:
        async def operation() -> Dict[str, Any]:
            session, plan = self._require_plan()
            if session.status != "running":
                raise StateConflict(f"Replay is {session.status}")
            if session.is_exhausted:
                return {"completed": True, **(await self._close(session))}

            row_index = session.current_row_index
            step_index = session.current_step_index
            if step_index == 0:
                plan.row_tally = {"passed": 0, "failed": 0, "skipped": 0}
                self.logs.row_started(row_index, session.total_rows)
            step = plan.steps[step_index]
            result = await self._run_step(session, plan, step, step_index, row_index, plan.rows[row_index])
            self._advance(session, plan)
            await self._persist()

            data: Dict[str, Any] = {
                "result": result.model_dump(mode="json"),
                "progress": session.progress(),
                "completed": False,
            }
            if session.is_exhausted and session.status == "running":
                data.update(await self._close(session))
                data["completed"] = True
            return data

        return await self._guarded(operation, "execute_next_step")

    async def skip_step(self) -> CommandResponse:
        async def operation() -> Dict[str, Any]:
            session, plan = self._require_plan()
            if session.status not in ("running", "paused"):
                raise StateConflict(f"Cannot skip while {session.status}")
            if session.is_exhausted:
                raise StateConflict("No steps left to skip")
            step_index = session.current_step_index
            row_index = session.current_row_index
            step = plan.steps[step_index]
            result = self._record(session, plan, step, step_index, row_index, "skipped", 0, None)
            self.logs.step_skipped(step_index, row_index, step.name, "skipped by request")
            self._advance(session, plan)
            await self._persist()
            data: Dict[str, Any] = {"result": result.model_dump(mode="json"), "progress": session.progress()}
            if session.is_exhausted and session.status == "running":
                data.update(await self._close(session))
                data["completed"] = True
            return data

        return await self._guarded(operation, "skip_step")

    async def execute_step(
        self,
        step: Step | Mapping[str, Any],
        *,
        step_index: Optional[int] = None,
        row_index: Optional[int] = None,
        row: Optional[Row] = None,
    ) -> CommandResponse:
        """Run one ad hoc step against the active session without moving the cursor.

        The result is buffered with the run's results but stays out of the
        session counters, which only count units of the rows x steps grid.
        """

        async def operation() -> Dict[str, Any]:
            session = self.session
            if session is None or session.status not in ("running", "paused"):
                raise StateConflict("No running replay to execute a step in")
            parsed = step if isinstance(step, Step) else Step.model_validate(step)
            r_index = session.current_row_index if row_index is None else row_index
            s_index = session.current_step_index if step_index is None else step_index
            plan = self._plan
            use_row = row
            if use_row is None and plan is not None and r_index < len(plan.rows):
                use_row = plan.rows[r_index]
            injector = plan.injector if plan is not None else ValueInjector()
            step_plan = plan or ReplayPlan(steps=[parsed], rows=[dict(use_row or {})], injector=injector)
            result = await self._run_step(
                session, step_plan, parsed, s_index, r_index, use_row or {}, counted=False
            )
            await self._persist()
            return {"result": result.model_dump(mode="json"), "progress": session.progress()}

        return await self._guarded(operation, "execute_step")

    async def run(self) -> Optional[CommandResponse]:
        """Iterate until the grid is exhausted or the replay is stopped.

        ``wait_if_suspended`` is the only suspension point; it is awaited
        before every unit of work.
        """

        last: Optional[CommandResponse] = None
        while True:
            session = self.session
            if session is None or session.status not in ("running", "paused"):
                break
            if session.status == "paused" and not self.pause_controller.is_paused:
                self.pause_controller.pause("external", "restored paused session")
            await self.pause_controller.wait_if_suspended()
            if self.session is not session or session.status == "stopping":
                break
            if session.status == "paused":
                continue
            last = await self.execute_next_step()
            if not last.success:
                if last.code == "state_conflict" and self.session is session and session.status == "paused":
                    continue
                break
            if last.data.get("completed"):
                break
        return last

    def set_step_mode(self, enabled: bool) -> CommandResponse:
        if enabled:
            self.pause_controller.enable_step_mode()
        else:
            self.pause_controller.disable_step_mode()
        return CommandResponse.ok({"pause": self.pause_controller.state().as_dict()})

    def step_once(self) -> CommandResponse:
        if not self.pause_controller.step():
            return CommandResponse.fail(StateConflict("Step mode is not enabled"))
        return CommandResponse.ok({"pause": self.pause_controller.state().as_dict()})

    # -- queries -------------------------------------------------------

    async def get_status(self) -> CommandResponse:
        async def operation() -> Dict[str, Any]:
            if self.session is None:
                restored = await self._load_persisted()
                if self.session is None:
                    self.session = restored
            session = self.session
            return {
                "session": self.snapshot(),
                "is_running": bool(session and session.status == "running"),
                "progress": session.progress() if session else None,
                "counts": session.counts() if session else None,
                "pause": self.pause_controller.state().as_dict(),
                "resumable": session is not None and self._plan is not None,
            }

        return await self._call(operation, "get_status")

    async def get_results(self, run_id: Optional[str] = None) -> CommandResponse:
        async def operation() -> Dict[str, Any]:
            rid = run_id or (self.session.run_id if self.session else None)
            if not rid:
                raise ValidationFailure("run_id is required when no replay is active")
            stored = await self.result_store.get_results(rid)
            buffered: List[StepResult] = []
            if self.session is not None and self.session.run_id == rid and not self._results_flushed:
                buffered = list(self._results)
            combined = stored + buffered
            return {
                "run_id": rid,
                "results": [result.model_dump(mode="json") for result in combined],
                "summary": summarize(combined),
            }

        return await self._call(operation, "get_results")

    async def restore_session(self) -> CommandResponse:
        async def operation() -> Dict[str, Any]:
            restored = await self._load_persisted()
            if restored is not None:
                self.session = restored
                self._plan = None
                log.info("Restored %s replay %s without its plan", restored.status, restored.run_id)
            return {"session": self.snapshot(), "restored": restored is not None}

        return await self._guarded(operation, "restore_session")

    def stats(self) -> Dict[str, Any]:
        return {**self._stats, "active": self.is_active, "executor_statuses": len(self.executor.statuses())}

    # -- internals -----------------------------------------------------

    def _require_plan(self) -> tuple[ReplaySession, ReplayPlan]:
        session = self.session
        if session is None:
            raise StateConflict("No active replay session")
        if self._plan is None:
            raise StateConflict("Replay plan is unavailable after restart; stop and start the replay again")
        return session, self._plan

    def _parse_mappings(self, mappings: Sequence[FieldMapping | Mapping[str, Any]]) -> List[FieldMapping]:
        issues = validate_field_set(list(mappings))
        if issues:
            detail = "; ".join(f"[{issue.index}] {issue.field}: {issue.message}" for issue in issues)
            raise ValidationFailure(f"Invalid field mappings: {detail}")
        return [item if isinstance(item, FieldMapping) else FieldMapping.model_validate(item) for item in mappings]

    def _enter_pause(self, session: ReplaySession, reason: str, message: Optional[str] = None) -> None:
        session.status = "paused"
        session.paused_at = utcnow()
        if not self.pause_controller.is_paused:
            self.pause_controller.pause(reason, message)
        self.logs.warning(f"Replay paused ({reason})")
        self.events.emit("paused", run_id=session.run_id, reason=reason, message=message)

    async def _run_step(
        self,
        session: ReplaySession,
        plan: ReplayPlan,
        step: Step,
        step_index: int,
        row_index: int,
        row: Row,
        *,
        counted: bool = True,
    ) -> StepResult:
        self.logs.step_started(step_index, row_index, step.name)
        injection = plan.injector.resolve(row, step)
        if injection.skipped:
            self.logs.step_skipped(step_index, row_index, step.name)
            return self._record(session, plan, step, step_index, row_index, "skipped", 0, None, counted=counted)

        action = RemoteAction(
            action_id=f"step-{step.id}",
            payload={
                "type": "run_step",
                "run_id": session.run_id,
                "step_index": step_index,
                "row_index": row_index,
                "step": injection.injected_step.model_dump(mode="json"),
            },
        )
        outcome = await self.executor.execute(session.target_id, action)
        self._stats["steps_executed"] += 1
        if outcome.success:
            self.logs.step_passed(step_index, row_index, step.name, outcome.duration_ms)
            return self._record(
                session, plan, step, step_index, row_index, "passed", outcome.duration_ms, None, counted=counted
            )

        self.logs.step_failed(step_index, row_index, step.name, outcome.error)
        result = self._record(
            session, plan, step, step_index, row_index, "failed", outcome.duration_ms, outcome.error, counted=counted
        )
        if session.status == "running" and self.pause_controller.on_error(outcome.error or "step failed"):
            self._enter_pause(session, "error_pause", outcome.error)
        return result

    def _record(
        self,
        session: ReplaySession,
        plan: ReplayPlan,
        step: Step,
        step_index: int,
        row_index: int,
        status: str,
        duration_ms: int,
        error: Optional[str],
        *,
        counted: bool = True,
    ) -> StepResult:
        result = StepResult(
            step_index=step_index,
            row_index=row_index,
            status=status,
            duration_ms=duration_ms,
            error=error,
            step_id=step.id,
        )
        self._results.append(result)
        self._stats[f"steps_{status}"] += 1
        if counted:
            if status == "passed":
                session.passed_steps += 1
            elif status == "failed":
                session.failed_steps += 1
            elif status == "skipped":
                session.skipped_steps += 1
            plan.row_tally[status] += 1
        self.events.emit("step_result", run_id=session.run_id, ad_hoc=not counted, **result.model_dump(mode="json"))
        return result

    def _advance(self, session: ReplaySession, plan: ReplayPlan) -> None:
        session.current_step_index += 1
        if session.current_step_index < session.total_steps:
            return
        finished_row = session.current_row_index
        tally = plan.row_tally
        self.logs.row_completed(finished_row, tally["passed"], tally["failed"], tally["skipped"])
        self.events.emit("row_completed", run_id=session.run_id, row_index=finished_row, **tally)
        session.current_row_index += 1
        session.current_step_index = 0

    def _prepare_close(self, session: ReplaySession) -> Tuple[ReplaySession, List[StepResult], RunRecord]:
        """Build the final snapshot and the validated run record.

        Runs before the session leaves its current state, so an invalid
        record is reported without stranding the session in ``stopping``.
        """

        final_status = "failed" if session.failed_steps else "completed"
        duration_ms = int((time.perf_counter() - self._started_clock) * 1000) if self._started_clock else 0
        self.logs.execution_completed(session.passed_steps, session.failed_steps, session.skipped_steps, duration_ms)
        final = session.model_copy(update={"status": final_status, "completed_at": utcnow()})
        results = list(self._results)
        return final, results, self._build_record(final, results)

    async def _close(
        self,
        session: ReplaySession,
        closing: Optional[Tuple[ReplaySession, List[StepResult], RunRecord]] = None,
    ) -> Dict[str, Any]:
        """Flush results and the run record, then forget the session.

        A flush failure leaves the session in ``stopping`` with its buffer
        intact so ``stop`` can be retried.
        """

        final, results, record = closing or self._prepare_close(session)
        final_status = final.status
        if session.status != "stopping":
            session.status = "stopping"
            await self._persist()
        try:
            if not self._results_flushed:
                await self.result_store.add_results(session.run_id, results)
                self._results_flushed = True
            await self.run_store.save_run(record)
        except Exception as exc:
            log.error("Failed to flush results for replay %s: %s", session.run_id, exc)
            raise PersistenceFailure(f"Failed to save replay results: {exc}") from exc

        self.session = None
        self._plan = None
        self._results = []
        self._results_flushed = False
        await self._persist()
        self._stats["sessions_completed" if final_status == "completed" else "sessions_failed"] += 1
        summary = final.counts()
        log.info("Replay %s %s: %s", final.run_id, final_status, summary)
        self.events.emit(final_status, run_id=final.run_id, summary=summary)
        self._close_event_log()
        return {
            "session": final.model_dump(mode="json"),
            "results": [result.model_dump(mode="json") for result in results],
            "summary": summary,
            "run": record.model_dump(mode="json"),
        }

    def _build_record(self, final: ReplaySession, results: List[StepResult]) -> RunRecord:
        builder = RunRecordBuilder.from_session(
            final,
            results,
            max_log_length=self.config.max_log_length,
        )
        return builder.set_logs(self.logs.render()).build()

    def _open_event_log(self, run_id: str) -> None:
        self._close_event_log()
        if self.event_log_root is None:
            return
        try:
            paths = prepare_log_paths(run_id, self.event_log_root)
            self._event_log = StructuredEventLog(run_id, paths).attach(
                self.events, self.executor.events, self.pause_controller.events
            )
        except OSError as exc:
            log.warning("Event log unavailable for replay %s: %s", run_id, exc)
            self._event_log = None

    def _close_event_log(self) -> None:
        if self._event_log is not None:
            self._event_log.close()
            self._event_log = None
