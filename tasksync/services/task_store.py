"""
Local task store: tasks, projects, labels, classification metadata,
last-synced snapshots and completion history.

Methods never commit; the caller owns the transaction.
"""

import json
import logging
from collections import defaultdict
from datetime import datetime
from typing import Any, Iterable, Optional

from sqlalchemy import select, update, delete, func
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from tasksync.core.exceptions import DataIntegrityError
from tasksync.models import (
    Task,
    Project,
    Label,
    TaskMetadata,
    TaskFieldClassification,
    TaskSnapshot,
    TaskHistory,
    SyncStateEntry,
)
from tasksync.schemas.task import (
    ClassificationSource,
    ClassifiedField,
    FieldClassification,
    RemoteLabel,
    RemoteProject,
    RemoteTask,
    SyncedState,
    TaskMetadataView,
    TaskWithMetadata,
)
from tasksync.services.comparison import ensure_utc, utcnow

logger = logging.getLogger(__name__)

CLASSIFIED_FIELDS = {field.value for field in ClassifiedField}
FLAG_FIELDS = {"recommendation_applied", "classification_source"}
DESCRIPTIVE_FIELDS = {
    "category",
    "time_estimate",
    "size",
    "ai_confidence",
    "ai_reasoning",
    "needs_supplies",
    "can_delegate",
    "energy_level",
}

LAST_SYNC_TIME_KEY = "last_sync_time"
UPSERT_BATCH_SIZE = 100

_INSERTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


def _insert(db: AsyncSession, model):
    dialect = db.get_bind().dialect.name
    try:
        return _INSERTS[dialect](model)
    except KeyError:
        raise NotImplementedError(f"Upserts are not supported on dialect '{dialect}'")


def _task_row(task: RemoteTask) -> dict:
    return {
        "id": task.id,
        "content": task.content,
        "description": task.description,
        "project_id": task.project_id,
        "parent_id": task.parent_id,
        "priority": task.priority,
        "labels": list(task.labels),
        "due": task.due.model_dump(mode="json") if task.due else None,
        "is_completed": task.is_completed,
        "completed_at": ensure_utc(task.completed_at),
        "created_at": ensure_utc(task.created_at),
        "updated_at": ensure_utc(task.updated_at),
    }


def _to_remote_task(row: Task) -> RemoteTask:
    return RemoteTask(
        id=row.id,
        content=row.content,
        description=row.description,
        project_id=row.project_id,
        parent_id=row.parent_id,
        priority=row.priority or 1,
        labels=row.labels or [],
        due=row.due,
        is_completed=bool(row.is_completed),
        completed_at=ensure_utc(row.completed_at),
        created_at=ensure_utc(row.created_at),
        updated_at=ensure_utc(row.updated_at),
    )


def _to_metadata_view(
    row: TaskMetadata,
    classifications: Iterable[TaskFieldClassification],
) -> TaskMetadataView:
    # A value without a timestamp counts as absent
    fields = {
        entry.field_name: FieldClassification(
            value=entry.value,
            classified_at=ensure_utc(entry.classified_at),
        )
        for entry in classifications
        if entry.value is not None and entry.classified_at is not None
    }
    return TaskMetadataView(
        task_id=row.task_id,
        category=row.category,
        time_estimate=row.time_estimate,
        size=row.size,
        ai_confidence=row.ai_confidence,
        ai_reasoning=row.ai_reasoning,
        needs_supplies=bool(row.needs_supplies),
        can_delegate=bool(row.can_delegate),
        energy_level=row.energy_level,
        classification_source=row.classification_source,
        recommendation_applied=bool(row.recommendation_applied),
        classifications=fields,
    )


class TaskStore:
    """Persistence operations for the sync and enrichment services."""

    # ============== Bulk Upserts ==============

    async def _upsert(
        self,
        db: AsyncSession,
        model,
        rows: list[dict],
        index_elements: list[str],
    ) -> int:
        for start in range(0, len(rows), UPSERT_BATCH_SIZE):
            batch = rows[start:start + UPSERT_BATCH_SIZE]
            stmt = _insert(db, model).values(batch)
            update_columns = {
                column: stmt.excluded[column]
                for column in batch[0]
                if column not in index_elements
            }
            if "last_synced_at" in model.__table__.c:
                update_columns["last_synced_at"] = func.now()
            stmt = stmt.on_conflict_do_update(
                index_elements=index_elements,
                set_=update_columns,
            )
            await db.execute(stmt)
        return len(rows)

    async def save_tasks(self, db: AsyncSession, tasks: list[RemoteTask]) -> int:
        """Upsert tasks. Returns the number written."""
        if not tasks:
            return 0
        return await self._upsert(db, Task, [_task_row(t) for t in tasks], ["id"])

    async def save_projects(self, db: AsyncSession, projects: list[RemoteProject]) -> int:
        """Upsert projects. Returns the number written."""
        if not projects:
            return 0
        rows = [project.model_dump() for project in projects]
        return await self._upsert(db, Project, rows, ["id"])

    async def save_labels(self, db: AsyncSession, labels: list[RemoteLabel]) -> int:
        """Upsert labels. Returns the number written."""
        if not labels:
            return 0
        rows = [label.model_dump() for label in labels]
        return await self._upsert(db, Label, rows, ["id"])

    # ============== Tasks ==============

    async def get_task(self, db: AsyncSession, task_id: str) -> Optional[RemoteTask]:
        row = await db.get(Task, task_id, populate_existing=True)
        return _to_remote_task(row) if row else None

    async def get_tasks(
        self,
        db: AsyncSession,
        completed: Optional[bool] = None,
        project_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[RemoteTask]:
        """Get tasks with optional filters."""
        stmt = select(Task).order_by(Task.id).execution_options(populate_existing=True)
        if completed is not None:
            stmt = stmt.where(Task.is_completed == completed)
        if project_id:
            stmt = stmt.where(Task.project_id == project_id)
        if limit:
            stmt = stmt.limit(limit)

        result = await db.execute(stmt)
        return [_to_remote_task(row) for row in result.scalars().all()]

    async def get_task_ids(self, db: AsyncSession) -> set[str]:
        result = await db.execute(select(Task.id))
        return set(result.scalars().all())

    async def get_tasks_with_metadata(
        self,
        db: AsyncSession,
        completed: Optional[bool] = False,
    ) -> list[TaskWithMetadata]:
        """Tasks joined with their metadata, using one query per table."""
        tasks = await self.get_tasks(db, completed=completed)
        if not tasks:
            return []

        task_ids = [task.id for task in tasks]
        metadata_rows = await db.execute(
            select(TaskMetadata).where(TaskMetadata.task_id.in_(task_ids))
        )
        classification_rows = await db.execute(
            select(TaskFieldClassification).where(
                TaskFieldClassification.task_id.in_(task_ids)
            )
        )

        classifications = defaultdict(list)
        for entry in classification_rows.scalars().all():
            classifications[entry.task_id].append(entry)

        views = {
            row.task_id: _to_metadata_view(row, classifications[row.task_id])
            for row in metadata_rows.scalars().all()
        }

        return [
            TaskWithMetadata(**task.model_dump(), metadata=views.get(task.id))
            for task in tasks
        ]

    async def update_task(self, db: AsyncSession, task_id: str, values: dict) -> bool:
        """Apply column values to a task. Returns False if it does not exist."""
        if "due" in values and hasattr(values["due"], "model_dump"):
            values["due"] = values["due"].model_dump(mode="json")
        for column in ("completed_at", "updated_at", "created_at"):
            if column in values:
                values[column] = ensure_utc(values[column])

        result = await db.execute(
            update(Task).where(Task.id == task_id).values(**values)
        )
        return result.rowcount > 0

    async def delete_task(self, db: AsyncSession, task_id: str) -> bool:
        """Delete a task with its metadata, classifications and snapshot."""
        await db.execute(
            delete(TaskFieldClassification).where(
                TaskFieldClassification.task_id == task_id
            )
        )
        await db.execute(delete(TaskSnapshot).where(TaskSnapshot.task_id == task_id))
        await db.execute(delete(TaskMetadata).where(TaskMetadata.task_id == task_id))
        result = await db.execute(delete(Task).where(Task.id == task_id))
        return result.rowcount > 0

    # ============== Projects & Labels ==============

    async def get_projects(self, db: AsyncSession) -> list[RemoteProject]:
        result = await db.execute(select(Project).order_by(Project.order, Project.id))
        return [
            RemoteProject(
                id=row.id,
                name=row.name,
                color=row.color,
                parent_id=row.parent_id,
                order=row.order,
                is_favorite=bool(row.is_favorite),
                is_inbox_project=bool(row.is_inbox_project),
            )
            for row in result.scalars().all()
        ]

    async def get_labels(self, db: AsyncSession) -> list[RemoteLabel]:
        result = await db.execute(select(Label).order_by(Label.order, Label.id))
        return [
            RemoteLabel(
                id=row.id,
                name=row.name,
                color=row.color,
                order=row.order,
                is_favorite=bool(row.is_favorite),
            )
            for row in result.scalars().all()
        ]

    # ============== Metadata ==============

    async def _require_task(self, db: AsyncSession, task_id: str) -> None:
        exists = await db.scalar(select(Task.id).where(Task.id == task_id))
        if exists is None:
            logger.warning(f"Cannot save metadata for task {task_id}: task does not exist")
            raise DataIntegrityError(
                f"Task {task_id} does not exist in storage",
                task_id=task_id,
            )

    async def _ensure_metadata_row(self, db: AsyncSession, task_id: str) -> None:
        stmt = _insert(db, TaskMetadata).values(task_id=task_id)
        await db.execute(stmt.on_conflict_do_nothing(index_elements=["task_id"]))

    async def get_task_metadata(
        self,
        db: AsyncSession,
        task_id: str,
    ) -> Optional[TaskMetadataView]:
        row = await db.get(TaskMetadata, task_id, populate_existing=True)
        if row is None:
            return None

        result = await db.execute(
            select(TaskFieldClassification).where(
                TaskFieldClassification.task_id == task_id
            ).execution_options(populate_existing=True)
        )
        return _to_metadata_view(row, result.scalars().all())

    async def save_field_metadata(
        self,
        db: AsyncSession,
        task_id: str,
        field_name: str,
        value: Any,
        classified_at: Optional[datetime],
    ) -> None:
        """
        Set exactly one metadata value, creating the metadata row if needed.

        For classified fields a None value clears the value and its
        timestamp; a non-None value requires a timestamp.
        """
        if field_name not in CLASSIFIED_FIELDS and field_name not in FLAG_FIELDS:
            raise ValueError(f"Unknown metadata field: {field_name}")

        await self._require_task(db, task_id)
        await self._ensure_metadata_row(db, task_id)

        if field_name in CLASSIFIED_FIELDS:
            if value is None:
                await db.execute(
                    delete(TaskFieldClassification).where(
                        TaskFieldClassification.task_id == task_id,
                        TaskFieldClassification.field_name == field_name,
                    )
                )
                return
            if classified_at is None:
                raise ValueError(f"{field_name} requires a classification timestamp")

            stmt = _insert(db, TaskFieldClassification).values(
                task_id=task_id,
                field_name=field_name,
                value=value,
                classified_at=ensure_utc(classified_at),
            )
            await db.execute(
                stmt.on_conflict_do_update(
                    index_elements=["task_id", "field_name"],
                    set_={
                        "value": stmt.excluded.value,
                        "classified_at": stmt.excluded.classified_at,
                    },
                )
            )
            return

        if field_name == "classification_source" and value is not None:
            value = ClassificationSource(value).value
        elif field_name == "recommendation_applied":
            value = bool(value)

        await db.execute(
            update(TaskMetadata)
            .where(TaskMetadata.task_id == task_id)
            .values({field_name: value, "updated_at": utcnow()})
        )

    async def save_task_metadata(self, db: AsyncSession, task_id: str, values: dict) -> None:
        """Store descriptive (untimestamped) metadata such as size or reasoning."""
        unknown = set(values) - DESCRIPTIVE_FIELDS
        if unknown:
            raise ValueError(f"Unknown metadata fields: {', '.join(sorted(unknown))}")

        await self._require_task(db, task_id)
        await self._ensure_metadata_row(db, task_id)
        if values:
            await db.execute(
                update(TaskMetadata)
                .where(TaskMetadata.task_id == task_id)
                .values(**values, updated_at=utcnow())
            )

    # ============== Snapshots ==============

    async def get_last_synced_state(
        self,
        db: AsyncSession,
        task_id: str,
    ) -> Optional[SyncedState]:
        """
        Last synced snapshot of a task.

        Raises ValueError (json/pydantic) when the stored snapshot is malformed.
        """
        row = await db.get(TaskSnapshot, task_id, populate_existing=True)
        if row is None:
            return None

        state = row.task_state
        if isinstance(state, str):
            state = json.loads(state)
        return SyncedState(
            task_state=RemoteTask.model_validate(state),
            synced_at=ensure_utc(row.synced_at),
        )

    async def save_last_synced_state(
        self,
        db: AsyncSession,
        task_id: str,
        task: RemoteTask,
        synced_at: Optional[datetime] = None,
    ) -> None:
        """Replace the snapshot of a task (never merged)."""
        stmt = _insert(db, TaskSnapshot).values(
            task_id=task_id,
            task_state=task.model_dump(mode="json"),
            synced_at=ensure_utc(synced_at or utcnow()),
        )
        await db.execute(
            stmt.on_conflict_do_update(
                index_elements=["task_id"],
                set_={
                    "task_state": stmt.excluded.task_state,
                    "synced_at": stmt.excluded.synced_at,
                },
            )
        )

    # ============== History ==============

    async def save_task_completion(
        self,
        db: AsyncSession,
        task_id: str,
        content: str,
        category: Optional[str] = None,
        actual_duration: Optional[int] = None,
        context: Optional[str] = None,
        completed_at: Optional[datetime] = None,
    ) -> TaskHistory:
        entry = TaskHistory(
            task_id=task_id,
            content=content,
            completed_at=ensure_utc(completed_at or utcnow()),
            category=category,
            actual_duration=actual_duration,
            context=context,
        )
        db.add(entry)
        await db.flush()
        return entry

    async def get_task_history(
        self,
        db: AsyncSession,
        category: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[TaskHistory]:
        stmt = select(TaskHistory).order_by(TaskHistory.completed_at.desc())
        if category:
            stmt = stmt.where(TaskHistory.category == category)
        if limit:
            stmt = stmt.limit(limit)
        result = await db.execute(stmt)
        return list(result.scalars().all())

    # ============== Sync Bookkeeping ==============

    async def set_last_sync_time(self, db: AsyncSession, timestamp: datetime) -> None:
        stmt = _insert(db, SyncStateEntry).values(
            key=LAST_SYNC_TIME_KEY,
            value=ensure_utc(timestamp).isoformat(),
        )
        await db.execute(
            stmt.on_conflict_do_update(
                index_elements=["key"],
                set_={"value": stmt.excluded.value},
            )
        )

    async def get_last_sync_time(self, db: AsyncSession) -> Optional[datetime]:
        value = await db.scalar(
            select(SyncStateEntry.value).where(SyncStateEntry.key == LAST_SYNC_TIME_KEY)
        )
        return ensure_utc(value) if value else None
