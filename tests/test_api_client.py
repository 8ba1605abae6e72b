"""Tests for taskdesk.client.api_client — retry policy and error surfacing."""

from unittest.mock import AsyncMock

import httpx
import pytest

from taskdesk.client.api_client import ApiError, TaskDeskClient


def _client(handler, sleep=None, **kwargs):
    return TaskDeskClient(
        user_id=7,
        base_url="http://taskdesk.test",
        transport=httpx.MockTransport(handler),
        sleep=sleep or AsyncMock(),
        **kwargs,
    )


class Script:
    """Replays a list of responses/exceptions, recording each request."""

    def __init__(self, *steps):
        self.steps = list(steps)
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        step = self.steps.pop(0)
        if isinstance(step, Exception):
            raise step
        return step


class TestRequests:
    @pytest.mark.asyncio
    async def test_sends_identity_header(self):
        script = Script(httpx.Response(200, json=[]))
        async with _client(script) as api:
            assert await api.list_tasks(client_id=3) == []
        request = script.requests[0]
        assert request.headers["X-User-Id"] == "7"
        assert request.url.params["client_id"] == "3"

    @pytest.mark.asyncio
    async def test_complete_task_payload(self):
        script = Script(httpx.Response(200, json={"task": {"id": 1}, "rewards": {"points": 10}}))
        async with _client(script) as api:
            result = await api.complete_task(1, actual_minutes=45)
        assert result["rewards"]["points"] == 10
        assert script.requests[0].method == "POST"
        assert script.requests[0].url.path == "/api/tasks/1/complete"


class TestRetries:
    @pytest.mark.asyncio
    async def test_get_retries_server_errors_then_succeeds(self):
        sleep = AsyncMock()
        script = Script(
            httpx.Response(503),
            httpx.ConnectError("refused"),
            httpx.Response(200, json={"status": "ok"}),
        )
        async with _client(script, sleep=sleep, backoff_base=0.5, backoff_max=8) as api:
            assert await api.health() == {"status": "ok"}

        assert len(script.requests) == 3
        assert sleep.await_count == 2
        first, second = (c.args[0] for c in sleep.await_args_list)
        assert 0.5 <= first <= 1.0
        assert 1.0 <= second <= 1.5

    @pytest.mark.asyncio
    async def test_backoff_is_capped(self):
        sleep = AsyncMock()
        script = Script(*[httpx.Response(500)] * 4, httpx.Response(200, json={}))
        async with _client(script, sleep=sleep, max_retries=4, backoff_base=1, backoff_max=2) as api:
            await api.get_profile()
        delays = [c.args[0] for c in sleep.await_args_list]
        assert all(d <= 3 for d in delays)

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self):
        script = Script(*[httpx.Response(502, json={"detail": "bad gateway"})] * 4)
        async with _client(script, max_retries=3) as api:
            with pytest.raises(ApiError) as excinfo:
                await api.list_clients()
        assert excinfo.value.status_code == 502
        assert excinfo.value.message == "bad gateway"
        assert len(script.requests) == 4

    @pytest.mark.asyncio
    async def test_client_errors_are_not_retried(self):
        script = Script(httpx.Response(404, json={"detail": "Task 9 not found"}))
        async with _client(script) as api:
            with pytest.raises(ApiError) as excinfo:
                await api.get_task(9)
        assert excinfo.value.status_code == 404
        assert len(script.requests) == 1

    @pytest.mark.asyncio
    async def test_writes_are_not_retried(self):
        script = Script(httpx.Response(500, json={"detail": "Internal server error"}))
        async with _client(script) as api:
            with pytest.raises(ApiError):
                await api.create_task(1, "Write brief")
        assert len(script.requests) == 1

    @pytest.mark.asyncio
    async def test_timeouts_exhausted_raise_status_zero(self):
        script = Script(*[httpx.ReadTimeout("slow")] * 2)
        async with _client(script, max_retries=1) as api:
            with pytest.raises(ApiError) as excinfo:
                await api.list_timers()
        assert excinfo.value.status_code == 0
        assert len(script.requests) == 2
