"""
Client for the remote task provider REST API.

The provider is the source of truth for task content, project, labels,
due dates and completion state. This client fetches tasks, projects and
labels and pushes task mutations back.
"""

import logging
from typing import Any, Callable, Optional

import httpx
from tenacity import (
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from tasksync.config import get_settings
from tasksync.core.exceptions import ConfigurationError
from tasksync.schemas.task import (
    CreateTaskInput,
    RemoteLabel,
    RemoteProject,
    RemoteTask,
    TaskDue,
    UpdateTaskInput,
)

logger = logging.getLogger(__name__)


class TaskProviderError(Exception):
    """Exception for remote provider errors."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code

    @property
    def retryable(self) -> bool:
        """Network failures, rate limits and 5xx are worth another attempt."""
        return (
            self.status_code is None
            or self.status_code == 429
            or self.status_code >= 500
        )


class MalformedResponseError(TaskProviderError):
    """The provider answered with a payload that could not be parsed."""

    @property
    def retryable(self) -> bool:
        return False


def _should_retry(error: BaseException) -> bool:
    return isinstance(error, TaskProviderError) and error.retryable


def _parse(converter: Callable[[dict], Any], item: Any, kind: str) -> Any:
    """Convert one provider payload, reporting unusable ones as provider errors."""
    try:
        return converter(item)
    except (AttributeError, KeyError, TypeError, ValueError) as e:
        raise MalformedResponseError(f"Malformed {kind} payload from task provider: {e}") from e


def _error_for_status(status_code: int, body: str) -> TaskProviderError:
    if status_code == 401:
        message = "Invalid task provider API token. Please check your configuration."
    elif status_code == 403:
        message = "Access forbidden. Check API token permissions."
    elif status_code == 404:
        message = "Resource not found. It may have been deleted."
    elif status_code == 429:
        message = "Rate limit exceeded. Please try again later."
    elif status_code >= 500:
        message = "Task provider service error. Please try again later."
    else:
        message = f"API error: {body}"
    return TaskProviderError(message, status_code=status_code)


class TaskProviderClient:
    """
    Async client for the remote task provider.

    Provides methods to:
    - List tasks, projects and labels (cursor paginated)
    - Create, update, move, close, reopen and delete tasks
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_token: Optional[str] = None,
        timeout: Optional[float] = None,
        page_size: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        settings = get_settings()
        self.base_url = base_url or settings.task_provider_base_url
        self.api_token = api_token or settings.task_provider_api_token
        self.timeout = timeout or settings.task_provider_timeout_seconds
        self.page_size = page_size or settings.task_provider_page_size
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

        if not self.api_token:
            raise ConfigurationError("Task provider API token is required")

    async def __aenter__(self) -> "TaskProviderClient":
        await self.connect()
        return self

    async def __aexit__(self, *args) -> None:
        await self.disconnect()

    async def connect(self) -> None:
        """Create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers={
                    "Authorization": f"Bearer {self.api_token}",
                    "Content-Type": "application/json",
                },
                timeout=self.timeout,
                transport=self._transport,
            )

    async def disconnect(self) -> None:
        """Close HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise RuntimeError("Client not connected. Call connect() first.")
        return self._client

    @retry(
        retry=retry_if_exception(_should_retry),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        reraise=True,
    )
    async def _request(
        self,
        method: str,
        endpoint: str,
        **kwargs,
    ) -> Any:
        """Make HTTP request with retry logic."""
        try:
            response = await self.client.request(method, endpoint, **kwargs)
        except httpx.TimeoutException as e:
            raise TaskProviderError(f"Task provider request timed out: {e}") from e
        except httpx.TransportError as e:
            raise TaskProviderError(f"Task provider unreachable: {e}") from e

        if response.status_code >= 400:
            logger.warning(
                f"{method} {endpoint} failed with status {response.status_code}"
            )
            raise _error_for_status(response.status_code, response.text)

        if response.status_code == 204 or not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise MalformedResponseError(
                f"Malformed response from {endpoint}: {e}",
                status_code=response.status_code,
            ) from e

    async def _paginate(self, endpoint: str, params: Optional[dict] = None) -> list[dict]:
        """Follow next_cursor until the provider reports no more pages."""
        params = dict(params or {})
        params["limit"] = self.page_size
        items: list[dict] = []
        cursor = None
        pages = 0

        while True:
            if cursor:
                params["cursor"] = cursor
            data = await self._request("GET", endpoint, params=params)

            # Plain list responses carry no pagination
            if isinstance(data, list):
                items.extend(data)
                break
            if not isinstance(data, dict):
                raise MalformedResponseError(f"Malformed page from {endpoint}: expected an object")

            items.extend(data.get("results", []))
            pages += 1
            cursor = data.get("next_cursor")
            if not cursor:
                break

        logger.debug(f"Fetched {len(items)} items from {endpoint} across {max(pages, 1)} page(s)")
        return items

    # ============== Read Operations ==============

    async def list_tasks(self, project_id: Optional[str] = None) -> list[RemoteTask]:
        """Fetch all active tasks."""
        params = {"project_id": project_id} if project_id else None
        items = await self._paginate("/tasks", params)
        return [_parse(self._to_task, item, "task") for item in items]

    async def get_task(self, task_id: str) -> RemoteTask:
        """Fetch a single task."""
        data = await self._request("GET", f"/tasks/{task_id}")
        return _parse(self._to_task, data, "task")

    async def list_projects(self) -> list[RemoteProject]:
        """Fetch all projects."""
        items = await self._paginate("/projects")
        return [_parse(self._to_project, item, "project") for item in items]

    async def list_labels(self) -> list[RemoteLabel]:
        """Fetch all personal labels."""
        items = await self._paginate("/labels")
        return [_parse(self._to_label, item, "label") for item in items]

    # ============== Write Operations ==============

    async def create_task(self, data: CreateTaskInput) -> RemoteTask:
        """Create a task. due_string wins over due_date."""
        payload = {
            "content": data.content,
            "priority": data.priority or 1,
            "labels": data.labels or [],
        }
        if data.description:
            payload["description"] = data.description
        if data.project_id:
            payload["project_id"] = data.project_id
        if data.parent_id:
            payload["parent_id"] = data.parent_id
        if data.due_string:
            payload["due_string"] = data.due_string
        elif data.due_date:
            payload["due_date"] = data.due_date

        created = await self._request("POST", "/tasks", json=payload)
        task = _parse(self._to_task, created, "task")
        logger.info(f"Created task {task.id}")
        return task

    async def update_task(self, task_id: str, updates: UpdateTaskInput) -> RemoteTask:
        """Update task fields. Project changes go through move_task."""
        payload = updates.model_dump(exclude_none=True, exclude={"project_id"})
        updated = await self._request("POST", f"/tasks/{task_id}", json=payload)
        return _parse(self._to_task, updated, "task")

    async def move_task(self, task_id: str, project_id: str) -> RemoteTask:
        """Move a task to another project."""
        moved = await self._request(
            "POST",
            f"/tasks/{task_id}/move",
            json={"project_id": project_id},
        )
        return _parse(self._to_task, moved, "task")

    async def close_task(self, task_id: str) -> bool:
        """Complete a task."""
        await self._request("POST", f"/tasks/{task_id}/close")
        return True

    async def reopen_task(self, task_id: str) -> bool:
        """Reopen a completed task."""
        await self._request("POST", f"/tasks/{task_id}/reopen")
        return True

    async def delete_task(self, task_id: str) -> bool:
        """Delete a task permanently."""
        await self._request("DELETE", f"/tasks/{task_id}")
        return True

    async def test_connection(self) -> bool:
        """Check credentials with a cheap request."""
        try:
            await self._request("GET", "/projects", params={"limit": 1})
            return True
        except TaskProviderError as e:
            logger.error(f"Connection test failed: {e}")
            return False

    # ============== Conversions ==============

    @staticmethod
    def _to_task(item: dict) -> RemoteTask:
        due = item.get("due")
        return RemoteTask(
            id=str(item["id"]),
            content=item.get("content") or "",
            description=item.get("description") or "",
            project_id=item.get("project_id"),
            parent_id=item.get("parent_id"),
            priority=item.get("priority") or 1,
            labels=item.get("labels") or [],
            due=TaskDue(
                date=due["date"][:10],
                datetime=due.get("datetime") or (due["date"] if "T" in due["date"] else None),
                string=due.get("string"),
                timezone=due.get("timezone"),
                is_recurring=bool(due.get("is_recurring", False)),
            ) if due else None,
            is_completed=bool(item.get("checked", item.get("is_completed", False))),
            completed_at=item.get("completed_at"),
            created_at=item.get("added_at") or item.get("created_at"),
            updated_at=item.get("updated_at"),
        )

    @staticmethod
    def _to_project(item: dict) -> RemoteProject:
        return RemoteProject(
            id=str(item["id"]),
            name=item["name"],
            color=item.get("color"),
            parent_id=item.get("parent_id"),
            order=item.get("child_order", item.get("order")),
            is_favorite=bool(item.get("is_favorite", False)),
            is_inbox_project=bool(item.get("inbox_project", item.get("is_inbox_project", False))),
        )

    @staticmethod
    def _to_label(item: dict) -> RemoteLabel:
        return RemoteLabel(
            id=str(item["id"]),
            name=item["name"],
            color=item.get("color"),
            order=item.get("item_order", item.get("order")),
            is_favorite=bool(item.get("is_favorite", False)),
        )


# Global client instance
_provider_client: Optional[TaskProviderClient] = None


async def get_provider_client() -> Optional[TaskProviderClient]:
    """Get the global provider client, or None in standalone mode."""
    global _provider_client
    if _provider_client is None:
        if get_settings().standalone_mode:
            return None
        _provider_client = TaskProviderClient()
        await _provider_client.connect()
    return _provider_client


async def close_provider_client() -> None:
    """Close the global provider client."""
    global _provider_client
    if _provider_client:
        await _provider_client.disconnect()
        _provider_client = None
