from __future__ import annotations

import json

import httpx
import pytest

from bridge.http_surface import HttpActionSurface


def _surface(handler) -> HttpActionSurface:
    return HttpActionSurface("http://surface.test", transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_posts_action_to_target_endpoint() -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"success": True, "elapsed": 12})

    response = await _surface(handler).perform_action(7, {"type": "run_step", "action_id": "step-1"})

    assert response.success
    assert response.data["elapsed"] == 12
    assert seen == {"path": "/targets/7/actions", "body": {"type": "run_step", "action_id": "step-1"}}


@pytest.mark.asyncio
async def test_action_failure_and_http_errors_are_failures() -> None:
    def rejected(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"success": False, "error": "no such element"})

    def server_error(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, text="unavailable")

    def unreachable(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    failed = await _surface(rejected).perform_action(1, {"type": "run_step"})
    broken = await _surface(server_error).perform_action(1, {"type": "run_step"})
    down = await _surface(unreachable).perform_action(1, {"type": "run_step"})

    assert (failed.success, failed.error) == (False, "no such element")
    assert (broken.success, broken.error) == (False, "HTTP 503")
    assert not down.success and "connection refused" in down.error


@pytest.mark.asyncio
async def test_ping_reports_health() -> None:
    up = _surface(lambda request: httpx.Response(200, json={"status": "ok"}))
    down = _surface(lambda request: httpx.Response(500))

    assert await up.ping()
    assert not await down.ping()
