"""Shared plumbing for the recording and replay session controllers."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Generic, Optional, TypeVar

from pydantic import BaseModel

from ..errors import CommandResponse, EngineError, ValidationFailure
from ..events import EventEmitter, Listener
from ..retry import RemoteSurface
from ..stores import InMemorySessionStore, SessionStateStore

log = logging.getLogger(__name__)

S = TypeVar("S", bound=BaseModel)

ACTIVE_STATES = frozenset({"recording", "running", "paused", "stopping"})


class SessionController(Generic[S]):
    """Owns at most one session and serializes every command against it."""

    kind = "session"

    def __init__(
        self,
        *,
        state_store: Optional[SessionStateStore[S]] = None,
        surface: Optional[RemoteSurface] = None,
        notify_timeout: float = 5.0,
    ) -> None:
        self.state_store: SessionStateStore[S] = state_store or InMemorySessionStore()
        self.surface = surface
        self.notify_timeout = notify_timeout
        self.events = EventEmitter(self.kind)
        self.session: Optional[S] = None
        self._lock = asyncio.Lock()

    def subscribe(self, listener: Listener, event_type: Optional[str] = None) -> Callable[[], None]:
        return self.events.subscribe(listener, event_type)

    @property
    def is_active(self) -> bool:
        return self.session is not None and getattr(self.session, "status", None) in ACTIVE_STATES

    def snapshot(self) -> Optional[Dict[str, Any]]:
        return self.session.model_dump(mode="json") if self.session is not None else None

    async def _guarded(self, operation: Callable[[], Awaitable[Any]], name: str) -> CommandResponse:
        async with self._lock:
            return await self._call(operation, name)

    async def _call(self, operation: Callable[[], Awaitable[Any]], name: str) -> CommandResponse:
        try:
            data = await operation()
        except EngineError as exc:
            log.info("%s %s rejected (%s): %s", self.kind, name, exc.code, exc)
            return CommandResponse.fail(exc)
        except ValueError as exc:
            # pydantic ValidationError and builder validation both land here.
            log.info("%s %s rejected: %s", self.kind, name, exc)
            return CommandResponse.fail(ValidationFailure(str(exc)))
        except Exception as exc:
            log.exception("%s %s failed unexpectedly", self.kind, name)
            return CommandResponse.fail(EngineError(f"{name} failed: {exc}", code="internal_error"))
        return CommandResponse.ok(data)

    async def _persist(self) -> bool:
        """Best-effort snapshot of the current session (``None`` when idle)."""

        try:
            await self.state_store.save(self.session)
            return True
        except Exception as exc:
            log.warning("Failed to persist %s session snapshot: %s", self.kind, exc)
            return False

    async def _load_persisted(self) -> Optional[S]:
        try:
            return await self.state_store.load()
        except Exception as exc:
            log.warning("Failed to load %s session snapshot: %s", self.kind, exc)
            return None

    async def _notify(self, target_id: int, message: Dict[str, Any]) -> bool:
        """Tell the remote surface about a transition; failures only warn."""

        if self.surface is None:
            return True
        try:
            response = await asyncio.wait_for(
                self.surface.perform_action(target_id, message),
                timeout=self.notify_timeout,
            )
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            log.warning("Failed to notify target %s of %s: %s", target_id, message.get("type"), exc)
            return False
        if not response.success:
            log.warning("Target %s rejected %s: %s", target_id, message.get("type"), response.error)
            return False
        return True
