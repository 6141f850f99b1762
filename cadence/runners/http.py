"""
HTTP TaskRunner — drives an agent host that exposes a small task API.

Endpoints (JSON):
    POST /tasks                 {"mode", "text"}  → {"taskId"}
    GET  /tasks/active                            → {"taskId" | null, "lastActivity"}
    POST /tasks/active/cancel                     → {"cancelled": bool}

"lastActivity" is either an ISO-8601 string or epoch milliseconds.

Error mapping:
- connection failures, timeouts and 5xx → RunnerUnavailableError
- 400/404/422 on POST /tasks            → ValidationError (bad mode)
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

import httpx

from cadence.core.errors import RunnerUnavailableError, TaskRunnerError, ValidationError
from cadence.runners.base import TaskRunner
from cadence.scheduler.schedule import parse_instant

logger = logging.getLogger(__name__)


class HttpTaskRunner(TaskRunner):
    """
    Task runner backed by an HTTP agent host.

    Usage:
        runner = HttpTaskRunner(base_url="http://localhost:8765")
        task_id = await runner.start_task("code", "Review open PRs")
        await runner.close()
    """

    def __init__(
        self,
        base_url: str = "http://localhost:8765",
        timeout: float = 30.0,
        token: str = "",
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._token = token
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None or self._client.is_closed:
            headers = {"Authorization": f"Bearer {self._token}"} if self._token else {}
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                headers=headers,
                timeout=httpx.Timeout(self._timeout, connect=10.0),
                transport=self._transport,
            )
        return self._client

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        client = await self._get_client()
        try:
            response = await client.request(method, path, **kwargs)
        except httpx.TransportError as e:
            raise RunnerUnavailableError(
                f"Task runner at {self._base_url} is not reachable: {e}"
            ) from e
        if response.status_code >= 500:
            raise RunnerUnavailableError(
                f"Task runner error ({response.status_code}): {response.text}",
                details={"status": response.status_code},
            )
        return response

    @staticmethod
    def _json(response: httpx.Response) -> dict:
        try:
            body = response.json()
        except ValueError as e:
            raise TaskRunnerError(f"Task runner returned invalid JSON: {response.text!r}") from e
        return body if isinstance(body, dict) else {}

    # ── TaskRunner ───────────────────────────────────────────────────────────

    async def start_task(self, mode: str, instructions: str) -> str:
        response = await self._request("POST", "/tasks", json={"mode": mode, "text": instructions})
        if response.status_code in (400, 404, 422):
            raise ValidationError(
                f"Invalid mode: {mode} ({response.text})",
                mode=mode,
                details={"status": response.status_code},
            )
        if response.status_code >= 400:
            raise TaskRunnerError(
                f"Task runner rejected task ({response.status_code}): {response.text}"
            )
        task_id = self._json(response).get("taskId")
        if not task_id:
            raise TaskRunnerError("Task runner did not return a task id")
        logger.debug(f"Started task {task_id} with mode {mode!r}")
        return str(task_id)

    async def _active(self) -> dict:
        response = await self._request("GET", "/tasks/active")
        if response.status_code == 404:
            return {}
        if response.status_code >= 400:
            raise TaskRunnerError(f"Task runner status failed ({response.status_code})")
        return self._json(response)

    async def has_active_task(self) -> bool:
        return bool((await self._active()).get("taskId"))

    async def interrupt_active_task(self) -> bool:
        response = await self._request("POST", "/tasks/active/cancel")
        if response.status_code == 404:
            return False
        if response.status_code >= 400:
            raise TaskRunnerError(f"Task runner cancel failed ({response.status_code})")
        return bool(self._json(response).get("cancelled", False))

    async def last_activity_for_active_task(self) -> datetime | None:
        body = await self._active()
        if not body.get("taskId"):
            return None
        raw = body.get("lastActivity")
        if isinstance(raw, (int, float)):
            return datetime.fromtimestamp(raw / 1000, tz=timezone.utc)
        return parse_instant(raw)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
