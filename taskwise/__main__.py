"""Entry point for TaskWise.

Opens the configured task store, waits for the first snapshot and prints
the derived view:
    python -m taskwise [--sort priority] [--filter all] [--category Math]
"""

import argparse
import asyncio
import sys
from typing import Optional

from taskwise.config import Config
from taskwise.database import DatabaseManager
from taskwise.logging_config import setup_logging, get_logger
from taskwise.models import FilterConfig, SortOption, StatusFilter
from taskwise.services.remote_store import TaskQuery
from taskwise.services.sql_store import SqlTaskStore
from taskwise.services.view_session import TaskViewSession, ViewStatus
from taskwise.ui.console import print_view

logger = get_logger(__name__)


def build_parser(config: Config) -> argparse.ArgumentParser:
    view_config = config.get_view_config()
    parser = argparse.ArgumentParser(prog="taskwise", description="Show your TaskWise task view.")
    parser.add_argument("--sort", choices=[o.value for o in SortOption], default=view_config['default_sort'])
    parser.add_argument("--filter", choices=[f.value for f in StatusFilter], default=view_config['default_filter'])
    parser.add_argument("--category", default="all")
    return parser


async def show_view(config: Config, args: argparse.Namespace) -> int:
    """Load the view once and print it."""
    store_config = config.get_store_config()
    view_config = config.get_view_config()

    db_manager = DatabaseManager(store_config['database_url'])
    await db_manager.initialize()
    store = SqlTaskStore(db_manager, owner_id=store_config['owner_id'])
    try:
        async with TaskViewSession(
            store,
            filter_config=FilterConfig(status=args.filter, category=args.category),
            sort=args.sort,
            upcoming_limit=view_config['upcoming_limit'],
        ) as session:
            await session.watch(TaskQuery(owner_id=store_config['owner_id']))
            await session.wait_until_loaded()

            if session.status is ViewStatus.UNAVAILABLE:
                logger.error(f"Task view unavailable: {session.error}")
                print(f"Failed to load tasks: {session.error}", file=sys.stderr)
                return 1

            print_view(session.view, session.clock(), config.get_display_config()['timezone'])
            return 0
    finally:
        store.close()
        await db_manager.close()


def main(args: Optional[list[str]] = None) -> int:
    """Main entry point for TaskWise.

    Args:
        args: Command-line arguments (defaults to sys.argv)

    Returns:
        Exit code (0 for success, non-zero for error)
    """
    if args is None:
        args = sys.argv[1:]

    setup_logging()
    config = Config()
    parsed = build_parser(config).parse_args(args)

    try:
        return asyncio.run(show_view(config, parsed))
    except KeyboardInterrupt:
        logger.info("TaskWise closed by user (Ctrl+C)")
        return 0
    except Exception:
        logger.error("Error running TaskWise", exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
