"""
Shared fixtures: in-memory store, taxonomy, mocked provider and builders.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import tasksync.models  # noqa: F401
from tasksync.core.taxonomy import TaxonomyService
from tasksync.database import Base
from tasksync.schemas.task import ClassificationSource, RemoteProject, RemoteTask
from tasksync.services.comparison import ContentThresholds
from tasksync.services.reconciliation_service import ReconciliationService
from tasksync.services.sync_service import SyncService
from tasksync.services.task_store import TaskStore

# Moment the AI classified seeded tasks
CLASSIFIED_AT = datetime(2026, 1, 10, 12, 0, tzinfo=timezone.utc)
BEFORE_CLASSIFICATION = CLASSIFIED_AT - timedelta(hours=1)
AFTER_CLASSIFICATION = CLASSIFIED_AT + timedelta(hours=1)

PROJECTS = [
    RemoteProject(id="p-work", name="Work"),
    RemoteProject(id="p-personal", name="Personal"),
    RemoteProject(id="p-shopping", name="Shopping"),
    RemoteProject(id="p-someday", name="Someday"),
]


@pytest_asyncio.fixture
async def engine():
    """In-memory SQLite engine shared by every session of one test."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def taxonomy():
    return TaxonomyService.from_projects(
        [
            {"id": "work", "name": "Work"},
            {"id": "personal", "name": "Personal"},
            {"id": "shopping", "name": "Shopping"},
        ]
    )


@pytest.fixture
def thresholds():
    return ContentThresholds()


@pytest.fixture
def reconciler(taxonomy, thresholds):
    return ReconciliationService(taxonomy_service=taxonomy, thresholds=thresholds)


@pytest.fixture
def store():
    return TaskStore()


@pytest.fixture
def provider():
    """Mock provider client returning no tasks and the standard projects."""
    provider = MagicMock()
    provider.list_tasks = AsyncMock(return_value=[])
    provider.list_projects = AsyncMock(return_value=list(PROJECTS))
    provider.list_labels = AsyncMock(return_value=[])
    provider.create_task = AsyncMock()
    provider.update_task = AsyncMock()
    provider.move_task = AsyncMock()
    provider.close_task = AsyncMock(return_value=True)
    provider.reopen_task = AsyncMock(return_value=True)
    provider.delete_task = AsyncMock(return_value=True)
    return provider


@pytest.fixture
def sync_service(provider, store, reconciler, session_factory):
    return SyncService(
        provider=provider,
        store=store,
        reconciler=reconciler,
        session_factory=session_factory,
        max_concurrency=1,
        interval_seconds=60,
    )


@pytest.fixture
def make_task():
    """Build a RemoteTask, last modified before the classification moment."""

    def _make_task(**overrides) -> RemoteTask:
        values = {
            "id": "task-1",
            "content": "Buy milk",
            "description": "",
            "project_id": "p-shopping",
            "priority": 1,
            "labels": [],
            "created_at": CLASSIFIED_AT - timedelta(days=1),
            "updated_at": BEFORE_CLASSIFICATION,
        }
        values.update(overrides)
        return RemoteTask(**values)

    return _make_task


@pytest.fixture
def seed_task(session_factory, store):
    """Store a task, optionally classified and with a snapshot, and commit."""

    async def _seed_task(
        task: RemoteTask,
        category: Optional[str] = None,
        classified_at: datetime = CLASSIFIED_AT,
        snapshot: Optional[RemoteTask] = None,
        source: ClassificationSource = ClassificationSource.AI,
        time_estimate_minutes: Optional[int] = None,
    ) -> None:
        async with session_factory() as session:
            async with session.begin():
                await store.save_tasks(session, [task])
                if category:
                    await store.save_field_metadata(
                        session, task.id, "recommended_category", category, classified_at
                    )
                    await store.save_field_metadata(
                        session, task.id, "classification_source", source, None
                    )
                if time_estimate_minutes is not None:
                    await store.save_field_metadata(
                        session, task.id, "time_estimate_minutes",
                        time_estimate_minutes, classified_at,
                    )
                if snapshot is not None:
                    await store.save_last_synced_state(
                        session, task.id, snapshot, classified_at
                    )

    return _seed_task
