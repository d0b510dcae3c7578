"""
Enrichment API endpoints: classification write-back and change inspection.
"""

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from tasksync.api.deps import get_enrichment_service
from tasksync.core.exceptions import DataIntegrityError
from tasksync.database import get_db
from tasksync.schemas.sync import ChangeAnalysis, ConflictInfo
from tasksync.schemas.task import (
    ClassificationInput,
    ClassificationSource,
    RemoteTask,
    TaskMetadataView,
)
from tasksync.services import EnrichmentService

router = APIRouter()


@router.get("/tasks/unclassified", response_model=list[RemoteTask])
async def list_unclassified_tasks(
    force: bool = Query(default=False, description="Include manual and up-to-date tasks"),
    db: AsyncSession = Depends(get_db),
    enrichment: EnrichmentService = Depends(get_enrichment_service),
):
    """Active tasks that need (re)classification."""
    return await enrichment.get_unclassified_tasks(db, force=force)


@router.get("/tasks/{task_id}/changes", response_model=ChangeAnalysis)
async def get_task_changes(
    task_id: str,
    db: AsyncSession = Depends(get_db),
    enrichment: EnrichmentService = Depends(get_enrichment_service),
):
    """Drift between the stored task and its last synced snapshot."""
    try:
        return await enrichment.analyze_task(db, task_id)
    except DataIntegrityError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.post("/tasks/{task_id}/classification", response_model=TaskMetadataView)
async def record_classification(
    task_id: str,
    request: ClassificationInput,
    source: ClassificationSource = Query(default=ClassificationSource.AI),
    db: AsyncSession = Depends(get_db),
    enrichment: EnrichmentService = Depends(get_enrichment_service),
):
    """Store a classification result for a task."""
    try:
        return await enrichment.record_classification(db, task_id, request, source=source)
    except DataIntegrityError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/conflicts", response_model=list[ConflictInfo])
async def list_conflicts(
    db: AsyncSession = Depends(get_db),
    enrichment: EnrichmentService = Depends(get_enrichment_service),
):
    """Tasks filed under a project that disagrees with their recommended category."""
    return await enrichment.find_conflicts(db)
