"""
Business logic services.
"""

from tasksync.services.task_store import TaskStore
from tasksync.services.reconciliation_service import ReconciliationService
from tasksync.services.sync_service import SyncService, get_sync_service
from tasksync.services.enrichment_service import EnrichmentService

__all__ = [
    "TaskStore",
    "ReconciliationService",
    "SyncService",
    "get_sync_service",
    "EnrichmentService",
]
