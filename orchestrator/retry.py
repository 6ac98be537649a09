"""Bounded retry around calls to the remote action surface."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple

from .events import EventEmitter
from .records.models import utcnow

log = logging.getLogger(__name__)


@dataclass(slots=True)
class ActionResponse:
    success: bool
    error: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)


class RemoteSurface(Protocol):
    async def perform_action(self, target_id: int, action: Dict[str, Any]) -> ActionResponse:
        ...


@dataclass(slots=True)
class RemoteAction:
    action_id: str
    payload: Dict[str, Any] = field(default_factory=dict)

    def as_message(self) -> Dict[str, Any]:
        return {"action_id": self.action_id, **self.payload}


@dataclass(slots=True)
class ExecutionResult:
    success: bool
    target_id: int
    action_id: str
    error: Optional[str] = None
    duration_ms: int = 0
    retry_count: int = 0
    data: Dict[str, Any] = field(default_factory=dict)

    def as_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "success": self.success,
            "target_id": self.target_id,
            "action_id": self.action_id,
            "duration_ms": self.duration_ms,
            "retry_count": self.retry_count,
        }
        if self.error:
            payload["error"] = self.error
        if self.data:
            payload["data"] = self.data
        return payload


@dataclass(slots=True)
class BatchResult:
    success: bool
    total: int
    succeeded: int
    failed: int
    results: List[ExecutionResult]
    duration_ms: int

    def as_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "total": self.total,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "results": [result.as_dict() for result in self.results],
            "duration_ms": self.duration_ms,
        }


@dataclass(slots=True)
class ActionStatus:
    target_id: int
    action_id: str
    active: bool = False
    last_used_at: Optional[datetime] = None
    use_count: int = 0
    last_error: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "target_id": self.target_id,
            "action_id": self.action_id,
            "active": self.active,
            "last_used_at": self.last_used_at.isoformat() if self.last_used_at else None,
            "use_count": self.use_count,
            "last_error": self.last_error,
        }


class RetryingActionExecutor:
    """Runs remote actions with linear backoff and remembers their status.

    The wait before retry ``n`` is ``delay * n`` seconds. Every attempt is
    bounded by ``timeout`` seconds; a timeout counts as a failed attempt.
    """

    def __init__(
        self,
        surface: RemoteSurface,
        *,
        max_retries: int = 3,
        delay: float = 0.5,
        timeout: Optional[float] = 10.0,
        retry: bool = True,
    ) -> None:
        self.surface = surface
        self.max_retries = max_retries
        self.delay = delay
        self.timeout = timeout
        self.retry = retry
        self.events = EventEmitter("executor")
        self._status: Dict[Tuple[int, str], ActionStatus] = {}

    async def execute(
        self,
        target_id: int,
        action: RemoteAction,
        *,
        retry: Optional[bool] = None,
        max_retries: Optional[int] = None,
        delay: Optional[float] = None,
    ) -> ExecutionResult:
        retry = self.retry if retry is None else retry
        retries_allowed = (self.max_retries if max_retries is None else max_retries) if retry else 0
        base_delay = self.delay if delay is None else delay

        started = time.perf_counter()
        attempt = 0
        last_error: Optional[str] = None
        while True:
            attempt += 1
            self.events.emit("attempt", target_id=target_id, action_id=action.action_id, attempt=attempt)
            response = await self._attempt(target_id, action)
            if response.success:
                retry_count = attempt - 1
                self._record_success(target_id, action.action_id)
                result = ExecutionResult(
                    success=True,
                    target_id=target_id,
                    action_id=action.action_id,
                    duration_ms=_elapsed_ms(started),
                    retry_count=retry_count,
                    data=response.data,
                )
                self.events.emit("succeeded", **result.as_dict())
                return result

            last_error = response.error or "action failed"
            if attempt > retries_allowed:
                break
            wait = base_delay * attempt
            log.info(
                "Action %s on target %s failed (%s); retry %d/%d in %.2fs",
                action.action_id,
                target_id,
                last_error,
                attempt,
                retries_allowed,
                wait,
            )
            self.events.emit(
                "retry",
                target_id=target_id,
                action_id=action.action_id,
                attempt=attempt,
                error=last_error,
                delay=wait,
            )
            if wait > 0:
                await asyncio.sleep(wait)

        self._record_failure(target_id, action.action_id, last_error)
        result = ExecutionResult(
            success=False,
            target_id=target_id,
            action_id=action.action_id,
            error=last_error,
            duration_ms=_elapsed_ms(started),
            retry_count=attempt - 1,
        )
        log.warning("Action %s on target %s failed after %d attempts: %s", action.action_id, target_id, attempt, last_error)
        self.events.emit("failed", **result.as_dict())
        return result

    async def execute_batch(
        self,
        target_id: int,
        actions: Sequence[RemoteAction],
        *,
        stop_on_failure: bool = False,
        **options: Any,
    ) -> BatchResult:
        started = time.perf_counter()
        results: List[ExecutionResult] = []
        for action in actions:
            result = await self.execute(target_id, action, **options)
            results.append(result)
            if not result.success and stop_on_failure:
                break
        succeeded = sum(1 for result in results if result.success)
        failed = len(results) - succeeded
        return BatchResult(
            success=failed == 0 and len(results) == len(actions),
            total=len(actions),
            succeeded=succeeded,
            failed=failed,
            results=results,
            duration_ms=_elapsed_ms(started),
        )

    async def _attempt(self, target_id: int, action: RemoteAction) -> ActionResponse:
        try:
            call = self.surface.perform_action(target_id, action.as_message())
            if self.timeout:
                return await asyncio.wait_for(call, timeout=self.timeout)
            return await call
        except asyncio.TimeoutError:
            return ActionResponse(success=False, error=f"timed out after {self.timeout}s")
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            return ActionResponse(success=False, error=str(exc) or exc.__class__.__name__)

    def _record_success(self, target_id: int, action_id: str) -> None:
        status = self._status.setdefault((target_id, action_id), ActionStatus(target_id, action_id))
        status.active = True
        status.last_used_at = utcnow()
        status.use_count += 1
        status.last_error = None

    def _record_failure(self, target_id: int, action_id: str, error: Optional[str]) -> None:
        status = self._status.setdefault((target_id, action_id), ActionStatus(target_id, action_id))
        status.active = False
        status.last_used_at = utcnow()
        status.last_error = error

    def is_active(self, target_id: int, action_id: str) -> bool:
        status = self._status.get((target_id, action_id))
        return bool(status and status.active)

    def get_status(self, target_id: int, action_id: str) -> Optional[ActionStatus]:
        return self._status.get((target_id, action_id))

    def clear_status(self, target_id: int, action_id: Optional[str] = None) -> int:
        """Forget one action's status, or every action of a target."""

        if action_id is not None:
            return 1 if self._status.pop((target_id, action_id), None) else 0
        keys = [key for key in self._status if key[0] == target_id]
        for key in keys:
            del self._status[key]
        return len(keys)

    def statuses(self) -> List[ActionStatus]:
        return list(self._status.values())


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)
