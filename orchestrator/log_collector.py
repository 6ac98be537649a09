"""Per-run execution log, rendered to a single string for the run record."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Literal, Optional

from .events import EventEmitter, Listener
from .records.models import utcnow

LogLevel = Literal["info", "success", "warning", "error", "debug"]
LOG_LEVELS = ("info", "success", "warning", "error", "debug")

DEFAULT_MAX_ENTRIES = 10_000


@dataclass(slots=True)
class LogEntry:
    level: str
    message: str
    timestamp: datetime = field(default_factory=utcnow)
    step_index: Optional[int] = None
    row_index: Optional[int] = None
    data: Dict[str, Any] = field(default_factory=dict)

    def render(self) -> str:
        return f"[{self.timestamp.strftime('%H:%M:%S')}] [{self.level.upper()}] {self.message}"

    def as_dict(self) -> Dict[str, Any]:
        return {
            "level": self.level,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
            "step_index": self.step_index,
            "row_index": self.row_index,
            "data": self.data,
        }


class LogCollector:
    """Bounded, filterable log owned by one engine instance."""

    def __init__(self, *, max_entries: int = DEFAULT_MAX_ENTRIES, include_debug: bool = False) -> None:
        self.max_entries = max_entries
        self.include_debug = include_debug
        self._entries: List[LogEntry] = []
        self.events = EventEmitter("logs")

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        return self.events.subscribe(listener, "entry")

    def log(
        self,
        level: str,
        message: str,
        *,
        step_index: Optional[int] = None,
        row_index: Optional[int] = None,
        **data: Any,
    ) -> Optional[LogEntry]:
        if level not in LOG_LEVELS:
            raise ValueError(f"unknown log level '{level}'")
        if level == "debug" and not self.include_debug:
            return None
        entry = LogEntry(level=level, message=message, step_index=step_index, row_index=row_index, data=data)
        self._entries.append(entry)
        if len(self._entries) > self.max_entries:
            del self._entries[: len(self._entries) - self.max_entries]
        self.events.emit("entry", **entry.as_dict())
        return entry

    def info(self, message: str, **kwargs: Any) -> Optional[LogEntry]:
        return self.log("info", message, **kwargs)

    def success(self, message: str, **kwargs: Any) -> Optional[LogEntry]:
        return self.log("success", message, **kwargs)

    def warning(self, message: str, **kwargs: Any) -> Optional[LogEntry]:
        return self.log("warning", message, **kwargs)

    def error(self, message: str, **kwargs: Any) -> Optional[LogEntry]:
        return self.log("error", message, **kwargs)

    def debug(self, message: str, **kwargs: Any) -> Optional[LogEntry]:
        return self.log("debug", message, **kwargs)

    def execution_started(self, total_steps: int, total_rows: int) -> None:
        self.info(f"Starting replay: {total_steps} steps x {total_rows} rows")

    def row_started(self, row_index: int, total_rows: int) -> None:
        self.info(f"Row {row_index + 1}/{total_rows} started", row_index=row_index)

    def row_completed(self, row_index: int, passed: int, failed: int, skipped: int) -> None:
        level = "success" if failed == 0 else "warning"
        self.log(
            level,
            f"Row {row_index + 1} completed: {passed} passed, {failed} failed, {skipped} skipped",
            row_index=row_index,
        )

    def step_started(self, step_index: int, row_index: int, name: str) -> None:
        self.debug(f"Step {step_index + 1}: {name}", step_index=step_index, row_index=row_index)

    def step_passed(self, step_index: int, row_index: int, name: str, duration_ms: int) -> None:
        self.success(
            f"Step {step_index + 1} passed: {name} ({duration_ms}ms)",
            step_index=step_index,
            row_index=row_index,
        )

    def step_failed(self, step_index: int, row_index: int, name: str, error: Optional[str]) -> None:
        self.error(
            f"Step {step_index + 1} failed: {name}: {error or 'unknown error'}",
            step_index=step_index,
            row_index=row_index,
        )

    def step_skipped(self, step_index: int, row_index: int, name: str, reason: str = "no value") -> None:
        self.warning(
            f"Step {step_index + 1} skipped: {name} ({reason})",
            step_index=step_index,
            row_index=row_index,
        )

    def execution_completed(self, passed: int, failed: int, skipped: int, duration_ms: int) -> None:
        level = "success" if failed == 0 else "error"
        self.log(level, f"Replay finished in {duration_ms}ms: {passed} passed, {failed} failed, {skipped} skipped")

    def execution_stopped(self, reason: str = "stopped by user") -> None:
        self.warning(f"Replay stopped: {reason}")

    @property
    def entries(self) -> List[LogEntry]:
        return list(self._entries)

    def filter(
        self,
        *,
        levels: Optional[Iterable[str]] = None,
        step_index: Optional[int] = None,
        row_index: Optional[int] = None,
        text: Optional[str] = None,
    ) -> List[LogEntry]:
        wanted = set(levels) if levels is not None else None
        needle = text.lower() if text else None
        selected = []
        for entry in self._entries:
            if wanted is not None and entry.level not in wanted:
                continue
            if step_index is not None and entry.step_index != step_index:
                continue
            if row_index is not None and entry.row_index != row_index:
                continue
            if needle and needle not in entry.message.lower():
                continue
            selected.append(entry)
        return selected

    def stats(self) -> Dict[str, int]:
        counts = {level: 0 for level in LOG_LEVELS}
        for entry in self._entries:
            counts[entry.level] += 1
        counts["total"] = len(self._entries)
        return counts

    def render(self, entries: Optional[Iterable[LogEntry]] = None) -> str:
        return "\n".join(entry.render() for entry in (self._entries if entries is None else entries))

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
