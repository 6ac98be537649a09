from __future__ import annotations

import asyncio
from typing import Any, Dict

from bridge.runtime import EngineRuntime
from orchestrator.config import EngineConfig


class EchoDispatcher:
    async def dispatch(self, raw: Any) -> Dict[str, Any]:
        return {"success": True, "data": {"echo": raw, "loop": id(asyncio.get_running_loop())}}

    async def shutdown(self) -> None:
        return None


class SlowDispatcher(EchoDispatcher):
    async def dispatch(self, raw: Any) -> Dict[str, Any]:
        await asyncio.sleep(1)
        return await super().dispatch(raw)


def test_submit_runs_on_the_background_loop() -> None:
    runtime = EngineRuntime(EngineConfig(), dispatcher=EchoDispatcher())
    try:
        first = runtime.submit({"type": "get_status"})
        second = runtime.submit({"type": "get_status"})
    finally:
        runtime.shutdown()

    assert first["data"]["echo"] == {"type": "get_status"}
    assert first["data"]["loop"] == second["data"]["loop"]
    assert not runtime.running


def test_submit_times_out_as_transport_error() -> None:
    runtime = EngineRuntime(EngineConfig(), dispatcher=SlowDispatcher())
    try:
        envelope = runtime.submit({"type": "get_status"}, timeout=0.05)
    finally:
        runtime.shutdown()

    assert envelope["success"] is False
    assert envelope["code"] == "transport_error"


def test_submit_after_shutdown_is_rejected() -> None:
    runtime = EngineRuntime(EngineConfig(), dispatcher=EchoDispatcher())
    runtime.shutdown()

    envelope = runtime.submit({"type": "get_status"})

    assert envelope["code"] == "transport_error"
