from __future__ import annotations

import asyncio
from typing import Any, Dict, List

import pytest

from orchestrator.retry import ActionResponse, RemoteAction, RetryingActionExecutor


class FlakySurface:
    def __init__(self, failures: int) -> None:
        self.failures = failures
        self.calls = 0

    async def perform_action(self, target_id: int, action: Dict[str, Any]) -> ActionResponse:
        self.calls += 1
        if self.failures < 0 or self.calls <= self.failures:
            return ActionResponse(success=False, error=f"attempt {self.calls} failed")
        return ActionResponse(success=True, data={"calls": self.calls})


class RaisingSurface:
    async def perform_action(self, target_id: int, action: Dict[str, Any]) -> ActionResponse:
        raise ConnectionError("socket closed")


class SlowSurface:
    async def perform_action(self, target_id: int, action: Dict[str, Any]) -> ActionResponse:
        await asyncio.sleep(1)
        return ActionResponse(success=True)


@pytest.mark.asyncio
async def test_succeeds_after_two_failures() -> None:
    surface = FlakySurface(failures=2)
    executor = RetryingActionExecutor(surface, max_retries=2, delay=0)

    result = await executor.execute(7, RemoteAction("inject"))

    assert result.success
    assert result.retry_count == 2
    assert surface.calls == 3
    assert executor.is_active(7, "inject")
    assert executor.get_status(7, "inject").use_count == 1


@pytest.mark.asyncio
async def test_always_failing_reports_last_error() -> None:
    surface = FlakySurface(failures=-1)
    executor = RetryingActionExecutor(surface, max_retries=2, delay=0)

    result = await executor.execute(7, RemoteAction("inject"))

    assert not result.success
    assert result.retry_count == 2
    assert result.error == "attempt 3 failed"
    status = executor.get_status(7, "inject")
    assert status is not None and not status.active
    assert status.last_error == "attempt 3 failed"


@pytest.mark.asyncio
async def test_retry_disabled_makes_one_attempt() -> None:
    surface = FlakySurface(failures=-1)
    executor = RetryingActionExecutor(surface, max_retries=5, delay=0)

    result = await executor.execute(1, RemoteAction("inject"), retry=False)

    assert not result.success
    assert result.retry_count == 0
    assert surface.calls == 1


@pytest.mark.asyncio
async def test_delay_grows_linearly(monkeypatch: pytest.MonkeyPatch) -> None:
    waits: List[float] = []

    async def fake_sleep(seconds: float) -> None:
        waits.append(seconds)

    monkeypatch.setattr("orchestrator.retry.asyncio.sleep", fake_sleep)
    executor = RetryingActionExecutor(FlakySurface(failures=-1), max_retries=3, delay=0.5)

    await executor.execute(1, RemoteAction("inject"))

    assert waits == [0.5, 1.0, 1.5]


@pytest.mark.asyncio
async def test_exceptions_and_timeouts_count_as_failures() -> None:
    raising = RetryingActionExecutor(RaisingSurface(), max_retries=1, delay=0)
    slow = RetryingActionExecutor(SlowSurface(), max_retries=0, delay=0, timeout=0.05)

    raised = await raising.execute(1, RemoteAction("a"))
    timed_out = await slow.execute(1, RemoteAction("b"))

    assert not raised.success and raised.error == "socket closed"
    assert not timed_out.success and "timed out" in timed_out.error


@pytest.mark.asyncio
async def test_lifecycle_events() -> None:
    executor = RetryingActionExecutor(FlakySurface(failures=1), max_retries=2, delay=0)
    seen: List[str] = []
    executor.events.subscribe(lambda event: seen.append(event.type))

    await executor.execute(3, RemoteAction("inject"))

    assert seen == ["attempt", "retry", "attempt", "succeeded"]


@pytest.mark.asyncio
async def test_batch_stops_on_first_failure_when_asked() -> None:
    class PickySurface:
        async def perform_action(self, target_id: int, action: Dict[str, Any]) -> ActionResponse:
            return ActionResponse(success=action["action_id"] != "bad")

    executor = RetryingActionExecutor(PickySurface(), max_retries=0, delay=0)
    actions = [RemoteAction("one"), RemoteAction("bad"), RemoteAction("three")]

    full = await executor.execute_batch(2, actions)
    stopped = await executor.execute_batch(2, actions, stop_on_failure=True)

    assert (full.total, full.succeeded, full.failed, full.success) == (3, 2, 1, False)
    assert len(stopped.results) == 2
    assert stopped.failed == 1


@pytest.mark.asyncio
async def test_clear_status_for_whole_target() -> None:
    executor = RetryingActionExecutor(FlakySurface(failures=0), delay=0)
    await executor.execute(4, RemoteAction("a"))
    await executor.execute(4, RemoteAction("b"))
    await executor.execute(5, RemoteAction("a"))

    assert executor.clear_status(4) == 2
    assert executor.get_status(4, "a") is None
    assert executor.is_active(5, "a")
    assert executor.clear_status(5, "a") == 1
