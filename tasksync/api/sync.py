"""
Sync API endpoints.
"""

from fastapi import APIRouter, Depends

from tasksync.schemas.sync import SyncResult, SyncStatus
from tasksync.services import SyncService, get_sync_service

router = APIRouter(prefix="/sync")


@router.post("", response_model=SyncResult)
async def trigger_sync(sync_service: SyncService = Depends(get_sync_service)):
    """
    Run a sync pass now.

    If a pass is already running the response has skipped=true and no
    second pass is started.
    """
    return await sync_service.sync_now()


@router.get("/status", response_model=SyncStatus)
async def get_sync_status(sync_service: SyncService = Depends(get_sync_service)):
    """Current phase, last error and schedule of the sync engine."""
    return sync_service.get_status()
