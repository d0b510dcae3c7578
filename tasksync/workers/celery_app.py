"""
Celery application configuration.
"""

from celery import Celery

from tasksync.config import get_settings

settings = get_settings()

# Create Celery app
celery_app = Celery(
    "tasksync",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["tasksync.workers.sync_tasks"],
)

# Configure Celery
celery_app.conf.update(
    # Task settings
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,

    # Task execution
    task_track_started=True,
    task_time_limit=1800,  # 30 min max per pass
    task_soft_time_limit=1500,

    # Result backend
    result_expires=86400,  # Results expire after 24 hours

    # One pass at a time per worker process
    worker_prefetch_multiplier=1,
    worker_concurrency=1,

    # Task routes
    task_routes={
        "tasksync.workers.sync_tasks.sync_now_task": {"queue": "sync"},
        "tasksync.workers.sync_tasks.periodic_sync": {"queue": "sync"},
    },

    # Beat schedule for periodic tasks
    beat_schedule={
        "task-sync-every-interval": {
            "task": "tasksync.workers.sync_tasks.periodic_sync",
            "schedule": float(settings.sync_interval_seconds),
        },
    },
)
