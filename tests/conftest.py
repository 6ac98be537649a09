"""Pytest configuration: local packages on sys.path plus a scripted surface."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Any, Dict, List

import pytest

_ROOT = Path(__file__).resolve().parents[1]
if str(_ROOT) not in sys.path:
    sys.path.insert(0, str(_ROOT))

from orchestrator.retry import ActionResponse  # noqa: E402


class ScriptedSurface:
    """Remote surface double recording every call.

    ``step_failures`` maps a step id to how many times its dispatch fails
    before succeeding (``-1`` fails forever). Lifecycle notifications always
    succeed unless ``notify_ok`` is false.
    """

    def __init__(self) -> None:
        self.calls: List[Dict[str, Any]] = []
        self.step_failures: Dict[str, int] = {}
        self.notify_ok = True

    async def perform_action(self, target_id: int, action: Dict[str, Any]) -> ActionResponse:
        self.calls.append({"target_id": target_id, **action})
        if action.get("type") != "run_step":
            if not self.notify_ok:
                raise ConnectionError("tab went away")
            return ActionResponse(success=True)
        step_id = action["step"]["id"]
        remaining = self.step_failures.get(step_id, 0)
        if remaining == 0:
            return ActionResponse(success=True)
        if remaining > 0:
            self.step_failures[step_id] = remaining - 1
        return ActionResponse(success=False, error=f"element {step_id} not found")

    def step_calls(self) -> List[Dict[str, Any]]:
        return [call for call in self.calls if call.get("type") == "run_step"]

    def notifications(self) -> List[str]:
        return [call["type"] for call in self.calls if call.get("type") != "run_step"]


@pytest.fixture
def surface() -> ScriptedSurface:
    return ScriptedSurface()
