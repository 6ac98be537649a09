"""Lifecycle event fan-out shared by the engine components."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from .records.models import utcnow

log = logging.getLogger(__name__)


@dataclass(slots=True)
class EngineEvent:
    type: str
    source: str
    payload: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=utcnow)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "source": self.source,
            "payload": self.payload,
            "timestamp": self.timestamp.isoformat(),
        }


Listener = Callable[[EngineEvent], Any]


class EventEmitter:
    """Synchronous fan-out where a failing listener never affects the others."""

    def __init__(self, source: str) -> None:
        self.source = source
        self._listeners: List[tuple[Optional[str], Listener]] = []

    def subscribe(self, listener: Listener, event_type: Optional[str] = None) -> Callable[[], None]:
        entry = (event_type, listener)
        self._listeners.append(entry)

        def unsubscribe() -> None:
            try:
                self._listeners.remove(entry)
            except ValueError:
                pass

        return unsubscribe

    def emit(self, event_type: str, **payload: Any) -> EngineEvent:
        event = EngineEvent(type=event_type, source=self.source, payload=payload)
        for wanted, listener in list(self._listeners):
            if wanted is not None and wanted != event_type:
                continue
            try:
                listener(event)
            except Exception:
                log.exception("%s listener failed while handling %s", self.source, event_type)
        return event

    def clear(self) -> None:
        self._listeners.clear()

    def __len__(self) -> int:
        return len(self._listeners)
