"""JSONL event log for replay runs."""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List

from .events import EngineEvent, EventEmitter

log = logging.getLogger(__name__)


@dataclass(slots=True)
class LogPaths:
    base: Path
    events: Path


class StructuredEventLog:
    """Appends one JSON line per engine event for a single run."""

    def __init__(self, run_id: str, paths: LogPaths) -> None:
        self.run_id = run_id
        self.paths = paths
        self._seq = 0
        self._events_file = paths.events.open("a", encoding="utf-8")
        self._unsubscribers: List[Callable[[], None]] = []

    def attach(self, *emitters: EventEmitter) -> "StructuredEventLog":
        for emitter in emitters:
            self._unsubscribers.append(emitter.subscribe(self.handle))
        return self

    def handle(self, event: EngineEvent) -> None:
        self.log_event(event.type, source=event.source, payload=event.payload)

    def log_event(self, event_type: str, *, source: str, payload: Dict[str, Any] | None = None) -> int:
        if self._events_file.closed:
            return self._seq
        self._seq += 1
        record = {
            "ts": time.time(),
            "run_id": self.run_id,
            "seq": self._seq,
            "source": source,
            "event": event_type,
            "payload": payload or {},
        }
        self._events_file.write(json.dumps(record, ensure_ascii=False, default=str) + "\n")
        self._events_file.flush()
        return self._seq

    def close(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()
        try:
            self._events_file.close()
        except OSError as exc:
            log.warning("Failed to close event log for %s: %s", self.run_id, exc)


def prepare_log_paths(run_id: str, log_root: Path) -> LogPaths:
    base_dir = log_root / run_id
    base_dir.mkdir(parents=True, exist_ok=True)
    return LogPaths(base=base_dir, events=base_dir / "events.jsonl")


def read_events(path: Path) -> List[Dict[str, Any]]:
    if not path.exists():
        return []
    with path.open("r", encoding="utf-8") as fh:
        return [json.loads(line) for line in fh if line.strip()]
