"""
API routes for the task sync service.
"""

from fastapi import APIRouter

from tasksync.api.sync import router as sync_router
from tasksync.api.enrichment import router as enrichment_router
from tasksync.api.tasks import router as tasks_router

# Main API router
api_router = APIRouter(prefix="/api/v1")

# Include sub-routers
api_router.include_router(sync_router, tags=["Sync"])
# Before tasks_router so /tasks/unclassified is not taken for a task id
api_router.include_router(enrichment_router, tags=["Enrichment"])
api_router.include_router(tasks_router, tags=["Tasks"])

__all__ = ["api_router"]
