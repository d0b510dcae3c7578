"""Tests for the HTTP routes."""

import httpx
import pytest
import pytest_asyncio

from conftest import AFTER_CLASSIFICATION, PROJECTS
from tasksync.api.deps import get_enrichment_service
from tasksync.core.provider_client import TaskProviderError
from tasksync.database import get_db
from tasksync.main import app
from tasksync.services import get_sync_service
from tasksync.services.enrichment_service import EnrichmentService


@pytest_asyncio.fixture
async def client(session_factory, sync_service, store, reconciler):
    """HTTP client wired to the in-memory store and mocked provider."""

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_sync_service] = lambda: sync_service
    app.dependency_overrides[get_enrichment_service] = lambda: EnrichmentService(
        store=store, reconciler=reconciler
    )

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


class TestHealth:

    @pytest.mark.asyncio
    async def test_health(self, client):
        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"


class TestSyncRoutes:

    @pytest.mark.asyncio
    async def test_trigger_sync(self, client, provider, make_task):
        provider.list_tasks.return_value = [make_task()]

        response = await client.post("/api/v1/sync")

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["tasks_count"] == 1
        assert body["new_tasks_count"] == 1

    @pytest.mark.asyncio
    async def test_sync_status(self, client):
        response = await client.get("/api/v1/sync/status")

        assert response.status_code == 200
        assert response.json()["phase"] == "idle"
        assert response.json()["is_syncing"] is False


class TestTaskRoutes:

    @pytest.mark.asyncio
    async def test_list_and_get(self, client, seed_task, make_task):
        await seed_task(make_task(id="a", project_id="p-work"), category="work")
        await seed_task(make_task(id="b"))

        listed = await client.get("/api/v1/tasks", params={"project_id": "p-work"})
        fetched = await client.get("/api/v1/tasks/a")

        assert [task["id"] for task in listed.json()] == ["a"]
        assert fetched.json()["metadata"]["classifications"]["recommended_category"]["value"] == "work"

    @pytest.mark.asyncio
    async def test_get_missing_task(self, client):
        response = await client.get("/api/v1/tasks/ghost")

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_create_task(self, client, provider, make_task):
        provider.create_task.return_value = make_task(id="remote-1", content="Call plumber")

        response = await client.post("/api/v1/tasks", json={"content": "Call plumber"})

        assert response.status_code == 201
        assert response.json()["id"] == "remote-1"

    @pytest.mark.asyncio
    async def test_create_requires_content(self, client):
        response = await client.post("/api/v1/tasks", json={"content": ""})

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_update_missing_task(self, client):
        response = await client.patch("/api/v1/tasks/ghost", json={"priority": 2})

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_update_provider_failure(self, client, provider, seed_task, make_task):
        await seed_task(make_task())
        provider.update_task.side_effect = TaskProviderError("Task provider service error.", status_code=503)

        response = await client.patch("/api/v1/tasks/task-1", json={"priority": 2})

        assert response.status_code == 502

    @pytest.mark.asyncio
    async def test_delete_task(self, client, seed_task, make_task):
        await seed_task(make_task())

        deleted = await client.delete("/api/v1/tasks/task-1")
        missing = await client.delete("/api/v1/tasks/task-1")

        assert deleted.status_code == 200
        assert missing.status_code == 404

    @pytest.mark.asyncio
    async def test_complete_and_reopen(self, client, seed_task, make_task):
        await seed_task(make_task())

        completed = await client.post(
            "/api/v1/tasks/task-1/complete", json={"actual_duration": 5}
        )
        reopened = await client.post("/api/v1/tasks/task-1/reopen")
        task = await client.get("/api/v1/tasks/task-1")

        assert completed.json()["status"] == "completed"
        assert reopened.json()["status"] == "reopened"
        assert task.json()["is_completed"] is False

    @pytest.mark.asyncio
    async def test_complete_missing_task(self, client):
        response = await client.post("/api/v1/tasks/ghost/complete")

        assert response.status_code == 404


class TestEnrichmentRoutes:

    @pytest.mark.asyncio
    async def test_unclassified(self, client, seed_task, make_task):
        await seed_task(make_task(id="a"))
        await seed_task(make_task(id="b"), category="shopping", snapshot=make_task(id="b"))

        response = await client.get("/api/v1/tasks/unclassified")
        forced = await client.get("/api/v1/tasks/unclassified", params={"force": "true"})

        assert [task["id"] for task in response.json()] == ["a"]
        assert len(forced.json()) == 2

    @pytest.mark.asyncio
    async def test_changes(self, client, seed_task, make_task):
        await seed_task(
            make_task(project_id="p-work", updated_at=AFTER_CLASSIFICATION),
            category="shopping",
            snapshot=make_task(),
        )

        response = await client.get("/api/v1/tasks/task-1/changes")

        body = response.json()
        assert body["project_changed_manually"] is True
        assert body["reason"] == "Manual changes after AI classification: project_id"

    @pytest.mark.asyncio
    async def test_record_classification(self, client, seed_task, make_task):
        await seed_task(make_task())

        response = await client.post(
            "/api/v1/tasks/task-1/classification",
            json={"category": "shopping", "priority_score": 3, "energy_level": "low"},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["classifications"]["recommended_category"]["value"] == "shopping"
        assert body["classifications"]["priority_score"]["value"] == 3
        assert body["energy_level"] == "low"

    @pytest.mark.asyncio
    async def test_classification_errors(self, client, seed_task, make_task):
        await seed_task(make_task())

        unknown = await client.post(
            "/api/v1/tasks/task-1/classification", json={"category": "travel"}
        )
        invalid = await client.post(
            "/api/v1/tasks/task-1/classification", json={"size": "HUGE"}
        )
        missing = await client.post(
            "/api/v1/tasks/ghost/classification", json={"category": "work"}
        )

        assert unknown.status_code == 400
        assert invalid.status_code == 422
        assert missing.status_code == 404

    @pytest.mark.asyncio
    async def test_conflicts(self, client, session_factory, store, seed_task, make_task):
        await seed_task(make_task(project_id="p-work"), category="personal")
        async with session_factory() as session:
            async with session.begin():
                await store.save_projects(session, PROJECTS)

        response = await client.get("/api/v1/conflicts")

        [conflict] = response.json()
        assert conflict["current_project"] == "Work"
        assert conflict["recommended_category"] == "personal"
