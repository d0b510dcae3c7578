"""
Sync service for synchronizing tasks from the remote provider.

One pass fetches tasks, projects and labels, mirrors them into the local
store, then reconciles each task against its last synced snapshot so that
manual edits made after AI classification are respected.

Phases: IDLE -> FETCHING -> PERSISTING -> RECONCILING -> IDLE
"""

import asyncio
import inspect
import logging
import time
import uuid
from collections import defaultdict
from contextlib import asynccontextmanager
from enum import Enum
from typing import AsyncGenerator, Awaitable, Callable, Optional, Union

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tasksync.config import get_settings
from tasksync.core.exceptions import DataIntegrityError
from tasksync.core.provider_client import (
    TaskProviderClient,
    TaskProviderError,
    get_provider_client,
)
from tasksync.database import get_session_factory
from tasksync.schemas.sync import SyncPhase, SyncResult, SyncStatus
from tasksync.schemas.task import (
    ClassificationSource,
    ClassifiedField,
    CompleteTaskInput,
    CreateTaskInput,
    RemoteLabel,
    RemoteProject,
    RemoteTask,
    TaskDue,
    UpdateTaskInput,
)
from tasksync.services.comparison import utcnow
from tasksync.services.reconciliation_service import ReconciliationService
from tasksync.services.task_store import TaskStore

logger = logging.getLogger(__name__)

NO_PROVIDER_ERROR = "No task provider configured"
LOCAL_ID_PREFIX = "local-"

NewTasksCallback = Callable[[list[RemoteTask]], Union[Awaitable[None], None]]
SyncCompleteCallback = Callable[[SyncResult], Union[Awaitable[None], None]]


class ReconcileOutcome(str, Enum):
    """What reconciliation did to one task."""

    UNCHANGED = "unchanged"
    MANUAL_CHANGE = "manual_change"
    RECOMMENDATION_CLEARED = "recommendation_cleared"
    FAILED = "failed"


async def _invoke(callback: Callable, *args) -> None:
    result = callback(*args)
    if inspect.isawaitable(result):
        await result


class SyncService:
    """
    Service for synchronizing tasks with the remote provider.

    Handles:
    - Sync passes (on demand or on an interval), one at a time
    - Per-task reconciliation of manual changes
    - Task mutations pushed remote first, then mirrored locally
    """

    def __init__(
        self,
        provider: Optional[TaskProviderClient] = None,
        store: Optional[TaskStore] = None,
        reconciler: Optional[ReconciliationService] = None,
        session_factory: Optional[async_sessionmaker] = None,
        max_concurrency: Optional[int] = None,
        interval_seconds: Optional[int] = None,
    ):
        settings = get_settings()
        self.provider = provider
        self.store = store or TaskStore()
        self.reconciler = reconciler or ReconciliationService()
        self._session_factory = session_factory
        self.max_concurrency = max(1, max_concurrency or settings.sync_reconcile_concurrency)
        self.interval_seconds = interval_seconds or settings.sync_interval_seconds

        self.phase = SyncPhase.IDLE
        self.last_error: Optional[str] = None
        self.last_sync_at = None

        self._sync_lock = asyncio.Lock()
        self._task_locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._loop_task: Optional[asyncio.Task] = None
        self._on_new_tasks: Optional[NewTasksCallback] = None
        self._on_sync_complete: Optional[SyncCompleteCallback] = None

    @property
    def session_factory(self) -> async_sessionmaker:
        if self._session_factory is None:
            self._session_factory = get_session_factory()
        return self._session_factory

    @asynccontextmanager
    async def _transaction(self) -> AsyncGenerator[AsyncSession, None]:
        """Session whose work commits on exit and rolls back on error."""
        async with self.session_factory() as db:
            async with db.begin():
                yield db

    def configure(
        self,
        interval_seconds: Optional[int] = None,
        on_new_tasks: Optional[NewTasksCallback] = None,
        on_sync_complete: Optional[SyncCompleteCallback] = None,
    ) -> None:
        """Set the interval and the hooks run after a successful pass."""
        if interval_seconds:
            self.interval_seconds = interval_seconds
        if on_new_tasks:
            self._on_new_tasks = on_new_tasks
        if on_sync_complete:
            self._on_sync_complete = on_sync_complete

    # ============== Sync Pass ==============

    async def sync_now(self) -> SyncResult:
        """
        Run one sync pass.

        Returns immediately with skipped=True if a pass is already running.
        """
        if self._sync_lock.locked():
            logger.info("Sync already in progress, skipping")
            return SyncResult(success=False, skipped=True)

        async with self._sync_lock:
            try:
                result = await self._run_pass()
            finally:
                self.phase = SyncPhase.IDLE

        if result.success:
            await self._notify_complete(result)
        return result

    async def _run_pass(self) -> SyncResult:
        started = time.monotonic()

        def elapsed_ms() -> int:
            return int((time.monotonic() - started) * 1000)

        if self.provider is None:
            self.last_error = NO_PROVIDER_ERROR
            logger.warning("Sync requested but no task provider is configured")
            return SyncResult(success=False, error=NO_PROVIDER_ERROR, duration_ms=elapsed_ms())

        logger.info("Starting sync pass")
        try:
            self.phase = SyncPhase.FETCHING
            tasks, projects, labels = await self._fetch_all()
            logger.info(
                f"Fetched {len(tasks)} tasks, {len(projects)} projects, {len(labels)} labels"
            )

            self.phase = SyncPhase.PERSISTING
            async with self._transaction() as db:
                known_ids = await self.store.get_task_ids(db)
            new_tasks = [task for task in tasks if task.id not in known_ids]
            if new_tasks:
                logger.info(f"Detected {len(new_tasks)} new tasks")

            async with self._transaction() as db:
                await self.store.save_tasks(db, tasks)
            async with self._transaction() as db:
                await self.store.save_projects(db, projects)
            async with self._transaction() as db:
                await self.store.save_labels(db, labels)

            self.phase = SyncPhase.RECONCILING
            outcomes = await self._reconcile_all(tasks, projects)

            synced_at = utcnow()
            async with self._transaction() as db:
                await self.store.set_last_sync_time(db, synced_at)

        except (TaskProviderError, SQLAlchemyError) as e:
            self.last_error = str(e)
            logger.error(f"Sync failed: {e}")
            return SyncResult(success=False, error=str(e), duration_ms=elapsed_ms())

        self.last_error = None
        self.last_sync_at = synced_at

        manual = sum(
            1 for outcome in outcomes
            if outcome in (ReconcileOutcome.MANUAL_CHANGE, ReconcileOutcome.RECOMMENDATION_CLEARED)
        )
        cleared = outcomes.count(ReconcileOutcome.RECOMMENDATION_CLEARED)
        failed = outcomes.count(ReconcileOutcome.FAILED)
        if manual:
            logger.info(
                f"Detected {manual} tasks with manual changes, cleared {cleared} recommendations"
            )
        if failed:
            logger.warning(f"{failed} tasks failed to reconcile and keep their previous snapshot")

        result = SyncResult(
            success=True,
            tasks_count=len(tasks),
            projects_count=len(projects),
            labels_count=len(labels),
            new_tasks_count=len(new_tasks),
            manual_changes_count=manual,
            cleared_recommendations_count=cleared,
            failed_tasks_count=failed,
            duration_ms=elapsed_ms(),
            timestamp=synced_at,
        )
        logger.info(f"Sync completed in {result.duration_ms}ms")

        if new_tasks and self._on_new_tasks:
            await self._notify_new_tasks(new_tasks)
        return result

    async def _fetch_all(self) -> tuple[list[RemoteTask], list[RemoteProject], list[RemoteLabel]]:
        """Fetch tasks, projects and labels concurrently; one failure cancels the rest."""
        fetches = [
            asyncio.ensure_future(self.provider.list_tasks()),
            asyncio.ensure_future(self.provider.list_projects()),
            asyncio.ensure_future(self.provider.list_labels()),
        ]
        try:
            tasks, projects, labels = await asyncio.gather(*fetches)
        except BaseException:
            for fetch in fetches:
                fetch.cancel()
            await asyncio.gather(*fetches, return_exceptions=True)
            raise
        return tasks, projects, labels

    async def _notify_new_tasks(self, new_tasks: list[RemoteTask]) -> None:
        try:
            await _invoke(self._on_new_tasks, new_tasks)
        except Exception:
            logger.exception("New-task hook failed")

    async def _notify_complete(self, result: SyncResult) -> None:
        if not self._on_sync_complete:
            return
        try:
            await _invoke(self._on_sync_complete, result)
        except Exception:
            logger.exception("Sync-complete hook failed")

    # ============== Reconciliation ==============

    async def _reconcile_all(
        self,
        tasks: list[RemoteTask],
        projects: list[RemoteProject],
    ) -> list[ReconcileOutcome]:
        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def bounded(task: RemoteTask) -> ReconcileOutcome:
            async with semaphore:
                return await self.reconcile_task(task, projects)

        outcomes = list(await asyncio.gather(*(bounded(task) for task in tasks)))

        # Tasks gone from the provider no longer need a lock
        fetched_ids = {task.id for task in tasks}
        for task_id in [task_id for task_id in self._task_locks if task_id not in fetched_ids]:
            del self._task_locks[task_id]
        return outcomes

    async def reconcile_task(
        self,
        task: RemoteTask,
        projects: list[RemoteProject],
    ) -> ReconcileOutcome:
        """
        Reconcile one task and replace its snapshot, atomically.

        Errors are logged and leave the task's metadata and snapshot untouched.
        """
        async with self._task_locks[task.id]:
            try:
                async with self._transaction() as db:
                    metadata = await self.store.get_task_metadata(db, task.id)
                    snapshot = await self.store.get_last_synced_state(db, task.id)
                    analysis = self.reconciler.detect_changes(task, metadata, snapshot)

                    outcome = ReconcileOutcome.UNCHANGED
                    if analysis.any_changed_manually:
                        logger.info(f"Task {task.id} changed manually: {analysis.reason}")
                        outcome = await self._apply_manual_changes(
                            db, task, projects, analysis.significant_content_change,
                            analysis.project_changed_manually or analysis.labels_changed_manually,
                        )

                    await self.store.save_last_synced_state(db, task.id, task, utcnow())
                return outcome
            except (ValueError, KeyError, DataIntegrityError, SQLAlchemyError) as e:
                logger.error(f"Failed to reconcile task {task.id}: {e}")
                return ReconcileOutcome.FAILED

    async def _apply_manual_changes(
        self,
        db: AsyncSession,
        task: RemoteTask,
        projects: list[RemoteProject],
        significant_content_change: bool,
        filing_changed: bool,
    ) -> ReconcileOutcome:
        if significant_content_change:
            # Rewritten task: every AI recommendation is stale
            for field in ClassifiedField:
                await self.store.save_field_metadata(db, task.id, field.value, None, None)
            await self.store.save_field_metadata(db, task.id, "recommendation_applied", False, None)
            await self.store.save_field_metadata(db, task.id, "classification_source", None, None)
            return ReconcileOutcome.RECOMMENDATION_CLEARED

        if filing_changed:
            category = self.reconciler.category_from_project(task.project_id, projects)
            if category:
                await self.store.save_field_metadata(
                    db, task.id, ClassifiedField.RECOMMENDED_CATEGORY.value, category, utcnow()
                )
                await self.store.save_field_metadata(db, task.id, "recommendation_applied", True, None)
                await self.store.save_field_metadata(
                    db, task.id, "classification_source", ClassificationSource.MANUAL, None
                )

        return ReconcileOutcome.MANUAL_CHANGE

    # ============== Task Mutations ==============

    async def _require_task(self, db: AsyncSession, task_id: str) -> RemoteTask:
        task = await self.store.get_task(db, task_id)
        if task is None:
            raise DataIntegrityError(f"Task {task_id} not found in storage", task_id=task_id)
        return task

    async def push_update(self, task_id: str, updates: UpdateTaskInput) -> RemoteTask:
        """Push task changes to the provider, then mirror them locally."""
        logger.info(f"Pushing updates for task {task_id}")

        async with self._transaction() as db:
            current = await self._require_task(db, task_id)

        if self.provider is None:
            values = updates.model_dump(exclude_none=True, exclude={"due_string", "due_date"})
            if updates.due_date:
                values["due"] = TaskDue(date=updates.due_date, string=updates.due_string)
            values["updated_at"] = utcnow()
            async with self._transaction() as db:
                await self.store.update_task(db, task_id, values)
                return await self.store.get_task(db, task_id)

        updated = current
        if updates.project_id and updates.project_id != current.project_id:
            updated = await self.provider.move_task(task_id, updates.project_id)
        if updates.model_dump(exclude_none=True, exclude={"project_id"}):
            updated = await self.provider.update_task(task_id, updates)

        async with self._transaction() as db:
            await self.store.save_tasks(db, [updated])

        logger.info(f"Successfully pushed updates for task {task_id}")
        return updated

    async def create_task(self, data: CreateTaskInput) -> RemoteTask:
        """Create a task at the provider (or locally in standalone mode)."""
        logger.info(f"Creating new task: {data.content}")

        if self.provider is None:
            now = utcnow()
            task = RemoteTask(
                id=f"{LOCAL_ID_PREFIX}{uuid.uuid4().hex}",
                content=data.content,
                description=data.description or "",
                project_id=data.project_id,
                parent_id=data.parent_id,
                priority=data.priority or 1,
                labels=data.labels or [],
                due=TaskDue(date=data.due_date, string=data.due_string) if data.due_date else None,
                created_at=now,
                updated_at=now,
            )
        else:
            task = await self.provider.create_task(data)

        async with self._transaction() as db:
            await self.store.save_tasks(db, [task])

        logger.info(f"Created task {task.id}")
        return task

    async def delete_task(self, task_id: str) -> bool:
        """Delete a task remotely and locally. Returns False if unknown locally."""
        logger.info(f"Deleting task {task_id}")

        if self.provider is not None:
            await self.provider.delete_task(task_id)

        async with self._transaction() as db:
            deleted = await self.store.delete_task(db, task_id)

        if deleted:
            self._task_locks.pop(task_id, None)
            logger.info(f"Task {task_id} deleted successfully")
        return deleted

    async def complete_task(
        self,
        task_id: str,
        completion: Optional[CompleteTaskInput] = None,
    ) -> bool:
        """Complete a task and record it in the completion history."""
        completion = completion or CompleteTaskInput()
        logger.info(f"Completing task {task_id}")

        async with self._transaction() as db:
            task = await self._require_task(db, task_id)
            metadata = await self.store.get_task_metadata(db, task_id)

        if self.provider is not None:
            await self.provider.close_task(task_id)

        completed_at = utcnow()
        category = None
        if metadata:
            category = metadata.category or metadata.recommended_category

        async with self._transaction() as db:
            await self.store.update_task(
                db, task_id, {"is_completed": True, "completed_at": completed_at}
            )
            await self.store.save_task_completion(
                db,
                task_id,
                content=task.content,
                category=category,
                actual_duration=completion.actual_duration,
                context=completion.context,
                completed_at=completed_at,
            )

        logger.info(f"Task {task_id} completed successfully")
        return True

    async def reopen_task(self, task_id: str) -> bool:
        """Undo a completion, remotely then locally."""
        logger.info(f"Reopening task {task_id}")

        async with self._transaction() as db:
            await self._require_task(db, task_id)

        if self.provider is not None:
            await self.provider.reopen_task(task_id)

        async with self._transaction() as db:
            await self.store.update_task(
                db, task_id, {"is_completed": False, "completed_at": None}
            )

        logger.info(f"Task {task_id} reopened successfully")
        return True

    # ============== Status & Scheduling ==============

    def get_status(self) -> SyncStatus:
        return SyncStatus(
            phase=self.phase,
            is_running=self.is_running,
            is_syncing=self._sync_lock.locked(),
            interval_seconds=self.interval_seconds,
            last_error=self.last_error,
            last_sync_at=self.last_sync_at,
        )

    @property
    def is_running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    def start(self) -> None:
        """Start the background loop: one pass now, then every interval."""
        if self.is_running:
            logger.warning("Sync loop already running")
            return
        logger.info(f"Starting sync loop (interval: {self.interval_seconds}s)")
        self._loop_task = asyncio.create_task(self._loop())

    async def stop(self) -> None:
        """Stop the background loop, waiting for it to wind down."""
        if self._loop_task is None:
            return
        self._loop_task.cancel()
        try:
            await self._loop_task
        except asyncio.CancelledError:
            pass
        self._loop_task = None
        logger.info("Sync loop stopped")

    async def _loop(self) -> None:
        while True:
            try:
                result = await self.sync_now()
            except Exception as e:
                self.last_error = str(e)
                logger.exception("Scheduled sync crashed")
            else:
                if result.error:
                    logger.warning(f"Scheduled sync failed: {result.error}")
            await asyncio.sleep(self.interval_seconds)


# Global service instance
_sync_service: Optional[SyncService] = None


async def get_sync_service() -> SyncService:
    """Get the global sync service, wired to the global provider client."""
    global _sync_service
    if _sync_service is None:
        _sync_service = SyncService(provider=await get_provider_client())
    return _sync_service


async def close_sync_service() -> None:
    """Stop the global sync service's loop and drop the instance."""
    global _sync_service
    if _sync_service:
        await _sync_service.stop()
        _sync_service = None
