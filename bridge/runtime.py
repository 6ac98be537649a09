"""Hosts the engine on a background asyncio loop for synchronous callers."""

from __future__ import annotations

import asyncio
import concurrent.futures
import logging
import threading
from typing import Any, Dict, Optional

from orchestrator.config import EngineConfig
from orchestrator.errors import CommandResponse, TransportFailure
from orchestrator.service import CommandDispatcher, build_dispatcher

from .http_surface import HttpActionSurface

log = logging.getLogger(__name__)


class EngineRuntime:
    """Owns the event loop thread that every engine coroutine runs on.

    Flask request threads hand commands over with ``submit``; the dispatcher
    and controllers only ever run on the runtime's loop.
    """

    def __init__(
        self,
        config: EngineConfig,
        *,
        dispatcher: Optional[CommandDispatcher] = None,
    ) -> None:
        self.config = config
        self._loop = asyncio.new_event_loop()
        self._thread = threading.Thread(target=self._run_loop, name="engine-loop", daemon=True)
        self._thread.start()
        self._lock = threading.Lock()
        self._closed = False
        if dispatcher is None:
            surface = HttpActionSurface(config.surface_url, timeout=config.action_timeout_s)
            dispatcher = build_dispatcher(config, surface)
        self.dispatcher = dispatcher

    def _run_loop(self) -> None:
        asyncio.set_event_loop(self._loop)
        self._loop.run_forever()

    @property
    def running(self) -> bool:
        return not self._closed and self._thread.is_alive()

    def submit(self, raw: Any, *, timeout: Optional[float] = None) -> Dict[str, Any]:
        """Dispatch one raw command and block for its envelope."""

        with self._lock:
            if self._closed:
                return CommandResponse.fail(TransportFailure("engine runtime is shut down")).as_dict()
            future = asyncio.run_coroutine_threadsafe(self.dispatcher.dispatch(raw), self._loop)
        wait = self.config.command_timeout_s if timeout is None else timeout
        try:
            return future.result(timeout=wait)
        except concurrent.futures.TimeoutError:
            future.cancel()
            log.warning("Command timed out after %.1fs", wait)
            return CommandResponse.fail(TransportFailure(f"command timed out after {wait}s")).as_dict()

    def shutdown(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
        future = asyncio.run_coroutine_threadsafe(self.dispatcher.shutdown(), self._loop)
        try:
            future.result(timeout=5)
        except Exception as exc:  # pragma: no cover - best effort
            log.debug("Dispatcher shutdown failed: %s", exc)
        self._loop.call_soon_threadsafe(self._loop.stop)
        self._thread.join(timeout=5)
