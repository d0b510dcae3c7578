"""
Run one sync pass from the command line.

Run with: python -m scripts.sync_now [--init-db] [--unclassified]
"""

import argparse
import asyncio
import json
import logging
import sys

from tasksync.config import get_settings
from tasksync.core.provider_client import TaskProviderClient
from tasksync.database import close_db, get_db_context, init_db
from tasksync.schemas.sync import SyncResult
from tasksync.services import EnrichmentService, SyncService


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Sync tasks from the remote provider")
    parser.add_argument(
        "--init-db",
        action="store_true",
        help="Create the local tables before syncing",
    )
    parser.add_argument(
        "--unclassified",
        action="store_true",
        help="After syncing, list tasks that need classification",
    )
    parser.add_argument(
        "--log-level",
        default=get_settings().log_level,
        help="Logging level (default: from settings)",
    )
    return parser.parse_args(argv)


async def run(args: argparse.Namespace) -> SyncResult:
    try:
        if args.init_db:
            await init_db()

        if get_settings().standalone_mode:
            result = await SyncService(provider=None).sync_now()
        else:
            async with TaskProviderClient() as provider:
                result = await SyncService(provider=provider).sync_now()

        print(json.dumps(result.model_dump(mode="json"), indent=2))

        if args.unclassified and result.success:
            async with get_db_context() as db:
                tasks = await EnrichmentService().get_unclassified_tasks(db)
            print(f"\n{len(tasks)} tasks need classification:")
            for task in tasks:
                print(f"  {task.id}  {task.content}")
    finally:
        await close_db()

    return result


def main(argv=None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    result = asyncio.run(run(args))
    return 0 if result.success else 1


if __name__ == "__main__":
    sys.exit(main())
