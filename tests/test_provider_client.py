"""Tests for the task provider HTTP client."""

import json

import httpx
import pytest
from tenacity import wait_none

from tasksync.config import get_settings
from tasksync.core.exceptions import ConfigurationError
from tasksync.core.provider_client import (
    MalformedResponseError,
    TaskProviderClient,
    TaskProviderError,
)
from tasksync.schemas.task import CreateTaskInput, UpdateTaskInput

BASE_URL = "https://provider.test/api/v1"

TASK_PAYLOAD = {
    "id": "8001",
    "content": "Buy milk",
    "description": "",
    "project_id": "p-shopping",
    "parent_id": None,
    "priority": 2,
    "labels": ["errand"],
    "due": {"date": "2026-02-01T09:00:00Z", "string": "Feb 1 9am", "is_recurring": False},
    "checked": False,
    "added_at": "2026-01-09T12:00:00Z",
    "updated_at": "2026-01-10T13:00:00Z",
}


@pytest.fixture(autouse=True)
def no_retry_wait(monkeypatch):
    """Retry immediately instead of backing off."""
    monkeypatch.setattr(TaskProviderClient._request.retry, "wait", wait_none())


def make_client(handler) -> TaskProviderClient:
    return TaskProviderClient(
        base_url=BASE_URL,
        api_token="test-token",
        timeout=5,
        page_size=2,
        transport=httpx.MockTransport(handler),
    )


class TestConfiguration:
    """Test client construction."""

    def test_missing_token(self, monkeypatch):
        monkeypatch.delenv("TASK_PROVIDER_API_TOKEN", raising=False)
        get_settings.cache_clear()
        try:
            with pytest.raises(ConfigurationError):
                TaskProviderClient(api_token=None)
        finally:
            get_settings.cache_clear()

    @pytest.mark.asyncio
    async def test_requires_connect(self):
        client = make_client(lambda request: httpx.Response(200, json=[]))

        with pytest.raises(RuntimeError):
            await client.list_tasks()


class TestReads:
    """Test fetches, pagination and conversion."""

    @pytest.mark.asyncio
    async def test_list_tasks_follows_cursor(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(dict(request.url.params))
            assert request.headers["Authorization"] == "Bearer test-token"
            if "cursor" not in request.url.params:
                return httpx.Response(200, json={"results": [TASK_PAYLOAD], "next_cursor": "c2"})
            return httpx.Response(
                200,
                json={"results": [{**TASK_PAYLOAD, "id": "8002"}], "next_cursor": None},
            )

        async with make_client(handler) as client:
            tasks = await client.list_tasks()

        assert [task.id for task in tasks] == ["8001", "8002"]
        assert seen[0]["limit"] == "2"
        assert seen[1]["cursor"] == "c2"

    @pytest.mark.asyncio
    async def test_task_conversion(self):
        def handler(request):
            return httpx.Response(200, json=TASK_PAYLOAD)

        async with make_client(handler) as client:
            task = await client.get_task("8001")

        assert task.priority == 2
        assert task.labels == ["errand"]
        assert task.is_completed is False
        assert task.due.date == "2026-02-01"
        assert task.due.datetime == "2026-02-01T09:00:00Z"
        assert task.created_at.isoformat() == "2026-01-09T12:00:00+00:00"
        assert task.updated_at.isoformat() == "2026-01-10T13:00:00+00:00"

    @pytest.mark.asyncio
    async def test_plain_list_response(self):
        def handler(request):
            return httpx.Response(200, json=[{"id": "l1", "name": "errand", "item_order": 3}])

        async with make_client(handler) as client:
            [label] = await client.list_labels()

        assert label.order == 3

    @pytest.mark.asyncio
    async def test_projects(self):
        def handler(request):
            return httpx.Response(
                200,
                json={"results": [{"id": "p1", "name": "Inbox", "inbox_project": True}]},
            )

        async with make_client(handler) as client:
            [project] = await client.list_projects()

        assert project.is_inbox_project is True


class TestWrites:
    """Test mutations."""

    @pytest.mark.asyncio
    async def test_create_task_prefers_due_string(self):
        bodies = []

        def handler(request):
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json=TASK_PAYLOAD)

        async with make_client(handler) as client:
            await client.create_task(
                CreateTaskInput(content="Buy milk", due_string="tomorrow", due_date="2026-02-01")
            )

        assert bodies[0]["due_string"] == "tomorrow"
        assert "due_date" not in bodies[0]

    @pytest.mark.asyncio
    async def test_update_excludes_project(self):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, json=TASK_PAYLOAD)

        async with make_client(handler) as client:
            await client.update_task("8001", UpdateTaskInput(priority=4, project_id="p-work"))
            await client.move_task("8001", "p-work")

        assert json.loads(requests[0].content) == {"priority": 4}
        assert requests[1].url.path == "/api/v1/tasks/8001/move"
        assert json.loads(requests[1].content) == {"project_id": "p-work"}

    @pytest.mark.asyncio
    async def test_delete_with_no_content(self):
        def handler(request):
            assert request.method == "DELETE"
            return httpx.Response(204)

        async with make_client(handler) as client:
            assert await client.delete_task("8001") is True


class TestErrors:
    """Test error mapping and retries."""

    @pytest.mark.asyncio
    async def test_unauthorized_is_not_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(401, text="bad token")

        async with make_client(handler) as client:
            with pytest.raises(TaskProviderError) as exc_info:
                await client.list_projects()

        assert exc_info.value.status_code == 401
        assert "Invalid task provider API token" in str(exc_info.value)
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_server_error_is_retried(self):
        responses = iter([httpx.Response(503), httpx.Response(502), httpx.Response(200, json=[])])

        def handler(request):
            return next(responses)

        async with make_client(handler) as client:
            assert await client.list_labels() == []

    @pytest.mark.asyncio
    async def test_gives_up_after_three_attempts(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(429)

        async with make_client(handler) as client:
            with pytest.raises(TaskProviderError) as exc_info:
                await client.list_tasks()

        assert exc_info.value.status_code == 429
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_timeout_becomes_provider_error(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        async with make_client(handler) as client:
            with pytest.raises(TaskProviderError) as exc_info:
                await client.get_task("8001")

        assert exc_info.value.status_code is None
        assert exc_info.value.retryable is True

    @pytest.mark.asyncio
    async def test_invalid_task_is_not_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, json={"results": [{**TASK_PAYLOAD, "priority": 7}]})

        async with make_client(handler) as client:
            with pytest.raises(MalformedResponseError, match="Malformed task payload") as exc_info:
                await client.list_tasks()

        assert exc_info.value.retryable is False
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_missing_fields_become_provider_error(self):
        def handler(request):
            return httpx.Response(200, json={"content": "no id", "due": {"string": "tomorrow"}})

        async with make_client(handler) as client:
            with pytest.raises(TaskProviderError, match="Malformed task payload"):
                await client.get_task("8001")

    @pytest.mark.asyncio
    async def test_undecodable_body(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, text="<html>maintenance</html>")

        async with make_client(handler) as client:
            with pytest.raises(MalformedResponseError) as exc_info:
                await client.list_labels()

        assert exc_info.value.status_code == 200
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_connection_check(self):
        async with make_client(lambda request: httpx.Response(403)) as client:
            assert await client.test_connection() is False
