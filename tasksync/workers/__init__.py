"""
Celery workers for background tasks.
"""

from tasksync.workers.celery_app import celery_app
from tasksync.workers.sync_tasks import sync_now_task, periodic_sync

__all__ = [
    "celery_app",
    "sync_now_task",
    "periodic_sync",
]
