"""Cooperative pause/resume primitive for the replay loop.

The loop calls :meth:`PauseController.wait_if_suspended` between units of
work. While paused the coroutine parks on a single shared future that
``resume`` completes, so the event loop stays free for the commands that
eventually resume it. All methods must be called from the loop's thread.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable, Dict, Iterable, Literal, Optional, TypeVar

from .events import EventEmitter, Listener

log = logging.getLogger(__name__)

PauseReason = Literal["user_requested", "breakpoint", "error_pause", "step_mode", "external", "debug"]
PAUSE_REASONS = ("user_requested", "breakpoint", "error_pause", "step_mode", "external", "debug")

T = TypeVar("T")


@dataclass(slots=True)
class PauseState:
    is_paused: bool
    reason: Optional[str]
    message: Optional[str]
    step_mode: bool
    step_pending: bool
    pause_count: int
    total_pause_seconds: float
    current_pause_seconds: float

    def as_dict(self) -> Dict[str, Any]:
        return {
            "is_paused": self.is_paused,
            "reason": self.reason,
            "message": self.message,
            "step_mode": self.step_mode,
            "step_pending": self.step_pending,
            "pause_count": self.pause_count,
            "total_pause_seconds": round(self.total_pause_seconds, 3),
            "current_pause_seconds": round(self.current_pause_seconds, 3),
        }


class PauseController:
    def __init__(self, *, pause_on_error: bool = False, clock: Callable[[], float] = time.monotonic) -> None:
        self.pause_on_error = pause_on_error
        self._clock = clock
        self._paused = False
        self._reason: Optional[str] = None
        self._message: Optional[str] = None
        self._paused_since: Optional[float] = None
        self._step_mode = False
        self._step_pending = False
        self._resume_waiter: Optional[asyncio.Future[None]] = None
        self._step_waiter: Optional[asyncio.Future[None]] = None
        self._total = 0.0
        self._pause_count = 0
        self.events = EventEmitter("pause")

    @property
    def is_paused(self) -> bool:
        return self._paused

    @property
    def step_mode(self) -> bool:
        return self._step_mode

    @property
    def pause_count(self) -> int:
        return self._pause_count

    def subscribe(self, listener: Listener, event_type: Optional[str] = None) -> Callable[[], None]:
        return self.events.subscribe(listener, event_type)

    def pause(self, reason: str = "user_requested", message: Optional[str] = None) -> bool:
        """Enter the paused state. Returns ``False`` when already paused."""

        if reason not in PAUSE_REASONS:
            raise ValueError(f"unknown pause reason '{reason}'")
        if self._paused:
            return False
        self._paused = True
        self._reason = reason
        self._message = message
        self._paused_since = self._clock()
        self._pause_count += 1
        log.debug("Paused (%s): %s", reason, message or "")
        self.events.emit("paused", reason=reason, message=message)
        return True

    def resume(self, message: Optional[str] = None) -> bool:
        if not self._paused:
            return False
        elapsed = self.current_pause_seconds()
        self._total += elapsed
        reason = self._reason
        self._paused = False
        self._reason = None
        self._message = None
        self._paused_since = None
        self._release_resume()
        log.debug("Resumed after %.3fs", elapsed)
        self.events.emit("resumed", reason=reason, message=message, duration=elapsed)
        return True

    def toggle(self) -> bool:
        """Flip between paused and running; returns the new paused flag."""

        if self._paused:
            self.resume()
        else:
            self.pause("user_requested")
        return self._paused

    def should_wait(self) -> bool:
        return self._paused or (self._step_mode and self._step_pending)

    async def wait_if_suspended(self) -> None:
        # A resume followed by a new pause before this task wakes parks it again.
        while self._paused:
            if self._resume_waiter is None or self._resume_waiter.done():
                self._resume_waiter = asyncio.get_running_loop().create_future()
            await asyncio.shield(self._resume_waiter)
        if self._step_mode:
            if self._step_pending:
                if self._step_waiter is None or self._step_waiter.done():
                    self._step_waiter = asyncio.get_running_loop().create_future()
                await asyncio.shield(self._step_waiter)
            # Step mode may have been switched off while parked.
            self._step_pending = self._step_mode

    def enable_step_mode(self) -> None:
        self._step_mode = True
        self._step_pending = False

    def disable_step_mode(self) -> None:
        self._step_mode = False
        self._step_pending = False
        self._release_step()

    def toggle_step_mode(self) -> bool:
        if self._step_mode:
            self.disable_step_mode()
        else:
            self.enable_step_mode()
        return self._step_mode

    def step(self) -> bool:
        """Let exactly one more unit of work through in step mode."""

        if not self._step_mode:
            return False
        self._step_pending = False
        self._release_step()
        self.events.emit("step_executed")
        return True

    async def breakpoint(self, name: str, context: Optional[Dict[str, Any]] = None) -> None:
        self.pause("breakpoint", f"Breakpoint: {name}")
        if context:
            log.debug("Breakpoint %s context: %s", name, context)
        await self.wait_if_suspended()

    def on_error(self, error: BaseException | str) -> bool:
        if not self.pause_on_error:
            return False
        return self.pause("error_pause", str(error))

    def reset(self) -> None:
        """Release every waiter and forget all statistics."""

        self._paused = False
        self._reason = None
        self._message = None
        self._paused_since = None
        self._step_mode = False
        self._step_pending = False
        self._total = 0.0
        self._pause_count = 0
        self._release_resume()
        self._release_step()

    def current_pause_seconds(self) -> float:
        if not self._paused or self._paused_since is None:
            return 0.0
        return max(0.0, self._clock() - self._paused_since)

    def total_pause_seconds(self) -> float:
        return self._total + self.current_pause_seconds()

    def state(self) -> PauseState:
        return PauseState(
            is_paused=self._paused,
            reason=self._reason,
            message=self._message,
            step_mode=self._step_mode,
            step_pending=self._step_pending,
            pause_count=self._pause_count,
            total_pause_seconds=self.total_pause_seconds(),
            current_pause_seconds=self.current_pause_seconds(),
        )

    def _release_resume(self) -> None:
        waiter, self._resume_waiter = self._resume_waiter, None
        if waiter is not None and not waiter.done():
            waiter.set_result(None)

    def _release_step(self) -> None:
        waiter, self._step_waiter = self._step_waiter, None
        if waiter is not None and not waiter.done():
            waiter.set_result(None)


async def pause_aware_iterator(controller: PauseController, items: Iterable[T]) -> AsyncIterator[T]:
    for item in items:
        await controller.wait_if_suspended()
        yield item


async def wait_with_stop_check(controller: PauseController, should_stop: Callable[[], bool]) -> bool:
    """Wait at the suspension point; ``False`` means the caller should stop."""

    await controller.wait_if_suspended()
    return not should_stop()
