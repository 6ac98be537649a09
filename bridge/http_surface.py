"""Remote action surface reached over HTTP."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from orchestrator.retry import ActionResponse

log = logging.getLogger(__name__)


class HttpActionSurface:
    """Posts actions to ``{base_url}/targets/{target_id}/actions``.

    The far side answers with ``{"success": bool, "error": str?, ...}``. HTTP
    errors and non-2xx answers come back as failed responses instead of
    raising, so the retrying executor sees them as ordinary failures.
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout, transport=self._transport)

    async def perform_action(self, target_id: int, action: Dict[str, Any]) -> ActionResponse:
        url = f"/targets/{target_id}/actions"
        try:
            async with self._client() as client:
                response = await client.post(url, json=action)
        except httpx.HTTPError as exc:
            log.debug("Action %s to target %s failed: %s", action.get("type"), target_id, exc)
            return ActionResponse(success=False, error=f"transport error: {exc}")

        try:
            payload = response.json()
        except ValueError:
            payload = {}
        if not isinstance(payload, dict):
            payload = {"result": payload}

        if response.status_code >= 400:
            error = payload.get("error") or f"HTTP {response.status_code}"
            return ActionResponse(success=False, error=str(error), data=payload)
        success = bool(payload.get("success", True))
        error = payload.get("error")
        return ActionResponse(success=success, error=str(error) if error else None, data=payload)

    async def ping(self) -> bool:
        try:
            async with self._client() as client:
                response = await client.get("/healthz")
        except httpx.HTTPError as exc:
            log.debug("Surface at %s unreachable: %s", self.base_url, exc)
            return False
        return response.status_code == 200
