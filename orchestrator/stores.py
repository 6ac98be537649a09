"""Persistence contracts the engine consumes, plus simple implementations."""

from __future__ import annotations

import asyncio
import json
import logging
import os
import shutil
from collections import defaultdict
from pathlib import Path
from typing import Dict, Generic, List, Optional, Protocol, Type, TypeVar

from pydantic import BaseModel, ValidationError

from .records.models import RunRecord, Step, StepResult

log = logging.getLogger(__name__)

S = TypeVar("S", bound=BaseModel)


class SessionStateStore(Protocol[S]):
    async def save(self, session: Optional[S]) -> None:
        ...

    async def load(self) -> Optional[S]:
        ...


class StepStore(Protocol):
    async def add_steps(self, project_id: int, steps: List[Step]) -> None:
        ...

    async def get_steps(self, project_id: int) -> List[Step]:
        ...

    async def clear_steps(self, project_id: int) -> None:
        ...


class ResultStore(Protocol):
    async def add_results(self, run_id: str, results: List[StepResult]) -> None:
        ...

    async def get_results(self, run_id: str) -> List[StepResult]:
        ...

    async def clear_results(self, run_id: str) -> None:
        ...


class RunRecordStore(Protocol):
    async def save_run(self, record: RunRecord) -> None:
        ...


class InMemorySessionStore(Generic[S]):
    def __init__(self) -> None:
        self.session: Optional[S] = None
        self.saves = 0

    async def save(self, session: Optional[S]) -> None:
        self.saves += 1
        self.session = session.model_copy(deep=True) if session is not None else None

    async def load(self) -> Optional[S]:
        return self.session.model_copy(deep=True) if self.session is not None else None


class InMemoryStepStore:
    def __init__(self) -> None:
        self._steps: Dict[int, List[Step]] = defaultdict(list)

    async def add_steps(self, project_id: int, steps: List[Step]) -> None:
        self._steps[project_id].extend(steps)

    async def get_steps(self, project_id: int) -> List[Step]:
        return list(self._steps.get(project_id, []))

    async def clear_steps(self, project_id: int) -> None:
        self._steps.pop(project_id, None)


class InMemoryResultStore:
    def __init__(self) -> None:
        self._results: Dict[str, List[StepResult]] = defaultdict(list)

    async def add_results(self, run_id: str, results: List[StepResult]) -> None:
        self._results[run_id].extend(results)

    async def get_results(self, run_id: str) -> List[StepResult]:
        return list(self._results.get(run_id, []))

    async def clear_results(self, run_id: str) -> None:
        self._results.pop(run_id, None)


class InMemoryRunRecordStore:
    def __init__(self) -> None:
        self.records: List[RunRecord] = []

    async def save_run(self, record: RunRecord) -> None:
        self.records.append(record)


class JsonFileSessionStore(Generic[S]):
    """Snapshot store backed by one JSON file.

    Writes go through a temporary file that replaces the target, so a crash
    mid-write leaves the previous snapshot readable. A file that no longer
    parses is moved aside and treated as "no session".
    """

    def __init__(self, path: Path | str, model: Type[S]) -> None:
        self.path = Path(path)
        self.model = model

    async def save(self, session: Optional[S]) -> None:
        payload = session.model_dump(mode="json") if session is not None else None
        await asyncio.to_thread(self._write, payload)

    async def load(self) -> Optional[S]:
        return await asyncio.to_thread(self._read)

    def _write(self, payload: Optional[dict]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        temp_file = self.path.with_name(self.path.name + ".tmp")
        try:
            with temp_file.open("w", encoding="utf-8") as fh:
                json.dump({"session": payload}, fh, ensure_ascii=False, indent=2)
            os.replace(temp_file, self.path)
        finally:
            if temp_file.exists():
                temp_file.unlink()

    def _read(self) -> Optional[S]:
        if not self.path.exists():
            return None
        content = self.path.read_text(encoding="utf-8").strip()
        if not content:
            return None
        try:
            data = json.loads(content)
            raw = data.get("session") if isinstance(data, dict) else None
            return self.model.model_validate(raw) if raw is not None else None
        except (json.JSONDecodeError, ValidationError) as exc:
            backup = self.path.with_name(self.path.name + ".corrupted.bak")
            log.error("Session snapshot %s is unreadable (%s); moving it to %s", self.path, exc, backup)
            shutil.move(str(self.path), str(backup))
            return None
