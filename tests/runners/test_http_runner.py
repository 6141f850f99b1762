"""Tests for the HTTP task runner against a mocked agent host."""

import json
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from cadence.core.errors import RunnerUnavailableError, TaskRunnerError, ValidationError
from cadence.runners.http import HttpTaskRunner

UTC = timezone.utc


def make_runner(handler, **kwargs) -> HttpTaskRunner:
    return HttpTaskRunner(base_url="http://agent.test", transport=httpx.MockTransport(handler), **kwargs)


@pytest.mark.asyncio
class TestStartTask:
    async def test_posts_mode_and_text(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["method"] = request.method
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            seen["auth"] = request.headers.get("authorization")
            return httpx.Response(201, json={"taskId": "t-42"})

        runner = make_runner(handler, token="secret")
        task_id = await runner.start_task("code", "Review open PRs")
        await runner.close()

        assert task_id == "t-42"
        assert seen == {
            "method": "POST",
            "path": "/tasks",
            "body": {"mode": "code", "text": "Review open PRs"},
            "auth": "Bearer secret",
        }

    async def test_unknown_mode_is_validation_error(self):
        runner = make_runner(lambda r: httpx.Response(422, json={"error": "unknown mode"}))
        with pytest.raises(ValidationError) as exc_info:
            await runner.start_task("bogus", "x")
        assert exc_info.value.mode == "bogus"

    async def test_server_error_is_unavailable(self):
        runner = make_runner(lambda r: httpx.Response(503, text="starting up"))
        with pytest.raises(RunnerUnavailableError):
            await runner.start_task("code", "x")

    async def test_connection_failure_is_unavailable(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(RunnerUnavailableError):
            await make_runner(handler).start_task("code", "x")

    async def test_other_client_error(self):
        runner = make_runner(lambda r: httpx.Response(409, text="busy"))
        with pytest.raises(TaskRunnerError) as exc_info:
            await runner.start_task("code", "x")
        assert not isinstance(exc_info.value, ValidationError)

    async def test_missing_task_id(self):
        runner = make_runner(lambda r: httpx.Response(200, json={}))
        with pytest.raises(TaskRunnerError):
            await runner.start_task("code", "x")


@pytest.mark.asyncio
class TestActiveTask:
    async def test_active_with_iso_activity(self):
        runner = make_runner(
            lambda r: httpx.Response(200, json={"taskId": "t-1", "lastActivity": "2025-04-11T10:00:00Z"})
        )
        assert await runner.has_active_task() is True
        assert await runner.last_activity_for_active_task() == datetime(2025, 4, 11, 10, tzinfo=UTC)

    async def test_epoch_millisecond_activity(self):
        stamp = datetime(2025, 4, 11, 10, tzinfo=UTC)
        runner = make_runner(
            lambda r: httpx.Response(
                200, json={"taskId": "t-1", "lastActivity": int(stamp.timestamp() * 1000)}
            )
        )
        assert await runner.last_activity_for_active_task() == stamp

    async def test_idle(self):
        runner = make_runner(lambda r: httpx.Response(200, json={"taskId": None}))
        assert await runner.has_active_task() is False
        assert await runner.last_activity_for_active_task() is None

    async def test_not_found_means_idle(self):
        runner = make_runner(lambda r: httpx.Response(404))
        assert await runner.has_active_task() is False

    async def test_is_active_task_within(self):
        stamp = datetime(2025, 4, 11, 10, tzinfo=UTC)
        runner = make_runner(
            lambda r: httpx.Response(200, json={"taskId": "t-1", "lastActivity": stamp.isoformat()})
        )
        assert await runner.is_active_task_within(60_000, now=stamp + timedelta(seconds=60))
        assert not await runner.is_active_task_within(60_000, now=stamp + timedelta(seconds=61))


@pytest.mark.asyncio
class TestInterrupt:
    async def test_cancel(self):
        def handler(request):
            assert request.url.path == "/tasks/active/cancel"
            return httpx.Response(200, json={"cancelled": True})

        assert await make_runner(handler).interrupt_active_task() is True

    async def test_nothing_to_cancel(self):
        assert await make_runner(lambda r: httpx.Response(404)).interrupt_active_task() is False


@pytest.mark.asyncio
async def test_close_allows_reuse():
    runner = make_runner(lambda r: httpx.Response(201, json={"taskId": "t-1"}))
    await runner.start_task("code", "x")
    await runner.close()
    assert await runner.start_task("code", "y") == "t-1"
    await runner.close()
