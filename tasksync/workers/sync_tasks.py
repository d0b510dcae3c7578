"""
Celery tasks for task synchronization.
"""

import asyncio
import logging

from tasksync.workers.celery_app import celery_app

logger = logging.getLogger(__name__)

RETRY_COUNTDOWN_SECONDS = 30


def run_async(coro):
    """Run async function in Celery task."""
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


async def run_sync_pass() -> dict:
    """
    Run one sync pass with resources scoped to the current event loop.

    Each Celery invocation gets a fresh loop, so the provider client, the
    database engine and the service's locks are created and disposed here
    rather than shared through the process-wide singletons.
    """
    from tasksync.config import get_settings
    from tasksync.core.provider_client import TaskProviderClient
    from tasksync.database import close_db
    from tasksync.services import SyncService

    try:
        if get_settings().standalone_mode:
            result = await SyncService(provider=None).sync_now()
        else:
            async with TaskProviderClient() as provider:
                result = await SyncService(provider=provider).sync_now()
    finally:
        await close_db()

    return result.model_dump(mode="json")


@celery_app.task(bind=True, max_retries=3)
def sync_now_task(self):
    """
    On-demand sync pass, queued from outside the API process.

    A failed pass is retried; a skipped pass or a missing provider is not.
    """
    from tasksync.services.sync_service import NO_PROVIDER_ERROR

    result = run_async(run_sync_pass())
    if not result["success"] and not result["skipped"] and result.get("error") != NO_PROVIDER_ERROR:
        logger.warning(f"Sync pass failed, retrying: {result.get('error')}")
        raise self.retry(countdown=RETRY_COUNTDOWN_SECONDS)
    return result


@celery_app.task
def periodic_sync():
    """
    Periodic sync pass.

    Run every sync_interval_seconds via Celery Beat.
    """
    result = run_async(run_sync_pass())
    if not result["success"]:
        logger.warning(f"Periodic sync did not complete: {result.get('error')}")
    return result
