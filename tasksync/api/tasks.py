"""
Task API endpoints.

Reads come from the local store; mutations go through the sync service so
the provider is updated first.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from tasksync.api.deps import provider_http_error
from tasksync.core.exceptions import DataIntegrityError
from tasksync.core.provider_client import TaskProviderError
from tasksync.database import get_db
from tasksync.schemas.task import (
    CompleteTaskInput,
    CreateTaskInput,
    RemoteTask,
    TaskWithMetadata,
    UpdateTaskInput,
)
from tasksync.services import SyncService, TaskStore, get_sync_service

router = APIRouter(prefix="/tasks")

store = TaskStore()


@router.get("", response_model=list[RemoteTask])
async def list_tasks(
    completed: Optional[bool] = Query(default=None),
    project_id: Optional[str] = Query(default=None),
    limit: Optional[int] = Query(default=None, ge=1, le=1000),
    db: AsyncSession = Depends(get_db),
):
    """List locally mirrored tasks."""
    return await store.get_tasks(db, completed=completed, project_id=project_id, limit=limit)


@router.get("/{task_id}", response_model=TaskWithMetadata)
async def get_task(task_id: str, db: AsyncSession = Depends(get_db)):
    """Get a task with its classification metadata."""
    task = await store.get_task(db, task_id)
    if task is None:
        raise HTTPException(status_code=404, detail=f"Task {task_id} not found")

    metadata = await store.get_task_metadata(db, task_id)
    return TaskWithMetadata(**task.model_dump(), metadata=metadata)


@router.post("", response_model=RemoteTask, status_code=201)
async def create_task(
    request: CreateTaskInput,
    sync_service: SyncService = Depends(get_sync_service),
):
    """Create a task at the provider and mirror it locally."""
    try:
        return await sync_service.create_task(request)
    except TaskProviderError as e:
        raise provider_http_error(e)


@router.patch("/{task_id}", response_model=RemoteTask)
async def update_task(
    task_id: str,
    request: UpdateTaskInput,
    sync_service: SyncService = Depends(get_sync_service),
):
    """Push a partial update to the provider."""
    try:
        return await sync_service.push_update(task_id, request)
    except DataIntegrityError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except TaskProviderError as e:
        raise provider_http_error(e)


@router.delete("/{task_id}")
async def delete_task(
    task_id: str,
    sync_service: SyncService = Depends(get_sync_service),
):
    """Delete a task remotely and locally."""
    try:
        deleted = await sync_service.delete_task(task_id)
    except TaskProviderError as e:
        raise provider_http_error(e)

    if not deleted:
        raise HTTPException(status_code=404, detail=f"Task {task_id} not found")
    return {"status": "deleted", "task_id": task_id}


@router.post("/{task_id}/complete")
async def complete_task(
    task_id: str,
    request: Optional[CompleteTaskInput] = None,
    sync_service: SyncService = Depends(get_sync_service),
):
    """Complete a task and record it in the completion history."""
    try:
        await sync_service.complete_task(task_id, request)
    except DataIntegrityError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except TaskProviderError as e:
        raise provider_http_error(e)
    return {"status": "completed", "task_id": task_id}


@router.post("/{task_id}/reopen")
async def reopen_task(
    task_id: str,
    sync_service: SyncService = Depends(get_sync_service),
):
    """Undo a task completion."""
    try:
        await sync_service.reopen_task(task_id)
    except DataIntegrityError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except TaskProviderError as e:
        raise provider_http_error(e)
    return {"status": "reopened", "task_id": task_id}
