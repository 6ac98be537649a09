from __future__ import annotations

from pathlib import Path

import pytest

from orchestrator.records import ReplaySession
from orchestrator.stores import JsonFileSessionStore


@pytest.mark.asyncio
async def test_json_store_round_trips_snapshot(tmp_path: Path) -> None:
    store = JsonFileSessionStore(tmp_path / "state" / "replay.json", ReplaySession)
    session = ReplaySession(project_id=1, target_id=2, total_steps=3, current_step_index=1)

    await store.save(session)
    loaded = await store.load()

    assert loaded == session
    assert not (tmp_path / "state" / "replay.json.tmp").exists()


@pytest.mark.asyncio
async def test_saving_none_clears_session(tmp_path: Path) -> None:
    store = JsonFileSessionStore(tmp_path / "replay.json", ReplaySession)
    await store.save(ReplaySession(project_id=1, target_id=2))

    await store.save(None)

    assert await store.load() is None


@pytest.mark.asyncio
async def test_corrupt_snapshot_is_moved_aside(tmp_path: Path) -> None:
    path = tmp_path / "replay.json"
    path.write_text("{not json", encoding="utf-8")
    store = JsonFileSessionStore(path, ReplaySession)

    assert await store.load() is None
    assert not path.exists()
    assert (tmp_path / "replay.json.corrupted.bak").exists()
