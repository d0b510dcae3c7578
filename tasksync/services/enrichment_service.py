"""
Enrichment service: the consumer side of reconciliation.

Selects tasks that need (re)classification and records classification
results with a timestamp so later syncs can tell AI output from manual edits.
"""

import logging
from typing import Optional

from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from tasksync.core.exceptions import DataIntegrityError
from tasksync.schemas.sync import ChangeAnalysis, ConflictInfo
from tasksync.schemas.task import (
    ClassificationInput,
    ClassificationSource,
    ClassifiedField,
    RemoteTask,
    TaskMetadataView,
)
from tasksync.services.comparison import utcnow
from tasksync.services.reconciliation_service import ReconciliationService
from tasksync.services.task_store import TaskStore

logger = logging.getLogger(__name__)


class EnrichmentService:
    """Service for reading and writing task classifications."""

    def __init__(
        self,
        store: Optional[TaskStore] = None,
        reconciler: Optional[ReconciliationService] = None,
    ):
        self.store = store or TaskStore()
        self.reconciler = reconciler or ReconciliationService()

    async def analyze_task(self, db: AsyncSession, task_id: str) -> ChangeAnalysis:
        """Run change detection for one stored task without side effects."""
        task = await self.store.get_task(db, task_id)
        if task is None:
            raise DataIntegrityError(f"Task {task_id} not found in storage", task_id=task_id)

        metadata = await self.store.get_task_metadata(db, task_id)
        snapshot = await self.store.get_last_synced_state(db, task_id)
        return self.reconciler.detect_changes(task, metadata, snapshot)

    async def get_unclassified_tasks(
        self,
        db: AsyncSession,
        force: bool = False,
    ) -> list[RemoteTask]:
        """
        Active tasks that need classification.

        Args:
            db: Database session
            force: Include manually classified tasks and tasks that are
                already up to date

        Returns:
            Tasks to hand to the classifier
        """
        logger.info(f"Finding unclassified tasks (force={force})")

        unclassified = []
        skipped_manual = 0

        for task in await self.store.get_tasks(db, completed=False):
            metadata = await self.store.get_task_metadata(db, task.id)

            if not force and metadata and metadata.classification_source == ClassificationSource.MANUAL:
                skipped_manual += 1
                continue

            try:
                snapshot = await self.store.get_last_synced_state(db, task.id)
            except (ValidationError, ValueError) as e:
                logger.warning(f"Ignoring unreadable snapshot for task {task.id}: {e}")
                snapshot = None

            analysis = self.reconciler.detect_changes(task, metadata, snapshot)
            if force or analysis.needs_reclassify:
                unclassified.append(task)

        logger.info(
            f"Found {len(unclassified)} unclassified tasks (skipped {skipped_manual} manual)"
        )
        return unclassified

    async def record_classification(
        self,
        db: AsyncSession,
        task_id: str,
        classification: ClassificationInput,
        source: ClassificationSource = ClassificationSource.AI,
    ) -> TaskMetadataView:
        """Store a classification result, timestamping each classified field."""
        if classification.category and classification.category not in self.reconciler.taxonomy_service.categories:
            raise ValueError(f"Unknown category: {classification.category}")

        classified_at = utcnow()
        timestamped = {
            ClassifiedField.RECOMMENDED_CATEGORY: classification.category,
            ClassifiedField.TIME_ESTIMATE_MINUTES: classification.time_estimate_minutes,
            ClassifiedField.PRIORITY_SCORE: classification.priority_score,
        }
        for field, value in timestamped.items():
            if value is not None:
                await self.store.save_field_metadata(db, task_id, field.value, value, classified_at)

        descriptive = classification.model_dump(
            exclude_none=True,
            exclude={"time_estimate_minutes", "priority_score"},
        )
        await self.store.save_task_metadata(db, task_id, descriptive)
        await self.store.save_field_metadata(db, task_id, "classification_source", source, None)

        logger.info(f"Recorded {source.value} classification for task {task_id}")
        return await self.store.get_task_metadata(db, task_id)

    async def find_conflicts(self, db: AsyncSession) -> list[ConflictInfo]:
        """Active tasks filed under a project that disagrees with their recommendation."""
        tasks = await self.store.get_tasks_with_metadata(db, completed=False)
        projects = await self.store.get_projects(db)
        return self.reconciler.find_conflicts(tasks, projects)
