from __future__ import annotations

import asyncio
import time

import pytest

from orchestrator.pause import PauseController, pause_aware_iterator


@pytest.mark.asyncio
async def test_wait_returns_immediately_when_running() -> None:
    controller = PauseController()

    started = time.perf_counter()
    await controller.wait_if_suspended()

    assert time.perf_counter() - started < 0.05
    assert not controller.should_wait()


@pytest.mark.asyncio
async def test_wait_blocks_until_resume() -> None:
    controller = PauseController()
    assert controller.pause("user_requested", "hold on")

    waiter = asyncio.create_task(controller.wait_if_suspended())
    await asyncio.sleep(0.05)
    assert not waiter.done()

    assert controller.resume()
    await asyncio.wait_for(waiter, timeout=1)
    assert not controller.is_paused


@pytest.mark.asyncio
async def test_pause_before_waiter_wakes_keeps_it_parked() -> None:
    controller = PauseController()
    controller.pause()
    waiter = asyncio.create_task(controller.wait_if_suspended())
    await asyncio.sleep(0.01)

    controller.resume()
    controller.pause("breakpoint")
    await asyncio.sleep(0.05)
    assert not waiter.done()

    controller.resume()
    await asyncio.wait_for(waiter, timeout=1)


@pytest.mark.asyncio
async def test_all_concurrent_waiters_are_released() -> None:
    controller = PauseController()
    controller.pause()
    waiters = [asyncio.create_task(controller.wait_if_suspended()) for _ in range(3)]
    await asyncio.sleep(0.01)

    controller.resume()

    await asyncio.wait_for(asyncio.gather(*waiters), timeout=1)


@pytest.mark.asyncio
async def test_cancelled_waiter_does_not_break_others() -> None:
    controller = PauseController()
    controller.pause()
    first = asyncio.create_task(controller.wait_if_suspended())
    second = asyncio.create_task(controller.wait_if_suspended())
    await asyncio.sleep(0.01)

    first.cancel()
    await asyncio.sleep(0.01)
    controller.resume()

    await asyncio.wait_for(second, timeout=1)
    assert first.cancelled()


@pytest.mark.asyncio
async def test_pause_duration_accumulates_across_cycles() -> None:
    controller = PauseController()

    controller.pause()
    await asyncio.sleep(0.05)
    controller.resume()
    controller.pause()
    await asyncio.sleep(0.03)
    controller.resume()

    assert controller.total_pause_seconds() >= 0.08
    assert controller.pause_count == 2


def test_total_includes_in_progress_pause() -> None:
    now = [100.0]
    controller = PauseController(clock=lambda: now[0])

    controller.pause()
    now[0] = 102.5

    assert controller.total_pause_seconds() == pytest.approx(2.5)
    assert controller.current_pause_seconds() == pytest.approx(2.5)


def test_double_pause_is_a_noop() -> None:
    controller = PauseController()

    assert controller.pause("debug")
    assert not controller.pause("external")
    assert controller.state().reason == "debug"
    assert controller.pause_count == 1
    assert not PauseController().resume()


def test_unknown_reason_is_rejected() -> None:
    with pytest.raises(ValueError):
        PauseController().pause("coffee")


def test_toggle_flips_state() -> None:
    controller = PauseController()

    assert controller.toggle() is True
    assert controller.toggle() is False


@pytest.mark.asyncio
async def test_step_mode_allows_one_unit_per_step() -> None:
    controller = PauseController()
    controller.enable_step_mode()

    await asyncio.wait_for(controller.wait_if_suspended(), timeout=0.1)
    blocked = asyncio.create_task(controller.wait_if_suspended())
    await asyncio.sleep(0.02)
    assert not blocked.done()
    assert controller.should_wait()

    assert controller.step()
    await asyncio.wait_for(blocked, timeout=1)

    again = asyncio.create_task(controller.wait_if_suspended())
    await asyncio.sleep(0.02)
    assert not again.done()

    controller.disable_step_mode()
    await asyncio.wait_for(again, timeout=1)
    assert not controller.should_wait()


def test_step_without_step_mode_is_rejected() -> None:
    assert not PauseController().step()


def test_listener_failure_is_isolated() -> None:
    controller = PauseController()
    seen = []

    def broken(event):
        raise RuntimeError("listener bug")

    controller.subscribe(broken)
    unsubscribe = controller.subscribe(lambda event: seen.append(event.type))

    controller.pause()
    controller.resume()
    controller.enable_step_mode()
    controller.step()
    unsubscribe()
    controller.pause()

    assert seen == ["paused", "resumed", "step_executed"]
    assert controller.is_paused


def test_on_error_pauses_only_when_configured() -> None:
    assert not PauseController().on_error("boom")

    controller = PauseController(pause_on_error=True)
    assert controller.on_error(RuntimeError("boom"))
    assert controller.state().reason == "error_pause"
    assert controller.state().message == "boom"


@pytest.mark.asyncio
async def test_reset_releases_waiters_and_clears_stats() -> None:
    controller = PauseController()
    controller.pause()
    waiter = asyncio.create_task(controller.wait_if_suspended())
    await asyncio.sleep(0.01)

    controller.reset()

    await asyncio.wait_for(waiter, timeout=1)
    assert controller.pause_count == 0
    assert controller.total_pause_seconds() == 0


@pytest.mark.asyncio
async def test_breakpoint_parks_until_resumed() -> None:
    controller = PauseController()
    task = asyncio.create_task(controller.breakpoint("before submit"))
    await asyncio.sleep(0.01)
    assert controller.state().reason == "breakpoint"
    assert not task.done()

    controller.resume()
    await asyncio.wait_for(task, timeout=1)


@pytest.mark.asyncio
async def test_pause_aware_iterator_waits_between_items() -> None:
    controller = PauseController()
    collected = []

    async def consume():
        async for item in pause_aware_iterator(controller, [1, 2, 3]):
            collected.append(item)
            if item == 1:
                controller.pause()

    task = asyncio.create_task(consume())
    await asyncio.sleep(0.02)
    assert collected == [1]

    controller.resume()
    await asyncio.wait_for(task, timeout=1)
    assert collected == [1, 2, 3]
