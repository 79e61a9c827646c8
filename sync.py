#!/usr/bin/env python3
"""Main entry point for 3DCart-NetSuite order sync.

Usage:
    python sync.py --order 1001                          # Sync one order
    python sync.py --order 1001 --order 1002             # Sync several orders
    python sync.py --start 2024-01-01 --end 2024-01-31   # Sync a date range
    python sync.py --check 1001 1002                     # Show sync status
    python sync.py --stats                               # Show sync statistics
"""

import argparse
import asyncio
import logging
import sys
from datetime import date

from pythonjsonlogger import jsonlogger

from ordersync.cart_client import CartClient
from ordersync.config import get_settings, Settings
from ordersync.database import Database
from ordersync.exceptions import OrderSyncError
from ordersync.models import BulkSyncResult
from ordersync.netsuite_client import NetSuiteClient
from ordersync.sync_engine import OrderSyncOrchestrator
from ordersync.sync_status import SyncStatusGuard


def setup_logging(settings: Settings) -> None:
    """Configure logging for the application.

    Args:
        settings: Application settings
    """
    # Ensure log directory exists
    settings.log_file.parent.mkdir(parents=True, exist_ok=True)

    console_formatter = logging.Formatter(
        "%(asctime)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    json_formatter = jsonlogger.JsonFormatter(
        "%(asctime)s %(levelname)s %(name)s %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
    )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(console_formatter)
    console_handler.setLevel(logging.DEBUG)

    # File handler (JSON format for parsing)
    file_handler = logging.FileHandler(settings.log_file)
    file_handler.setFormatter(json_formatter)
    file_handler.setLevel(logging.DEBUG)

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, settings.log_level))
    root_logger.addHandler(console_handler)
    root_logger.addHandler(file_handler)

    # Reduce noise from httpx
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def parse_date(value: str) -> date:
    """argparse type for YYYY-MM-DD dates."""
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid date '{value}', expected YYYY-MM-DD")


def report_bulk(result: BulkSyncResult, logger: logging.Logger) -> int:
    """Log a bulk result summary and return the exit code."""
    logger.info("=" * 60)
    logger.info("Sync Complete")
    logger.info("=" * 60)
    logger.info(f"  Synced: {result.succeeded}")
    logger.info(f"  Already synced: {result.already_synced}")
    logger.info(f"  Failed: {result.failed}")

    for item in result.results:
        logger.info(
            f"  {item.order_id}: {item.outcome.value}"
            + (f" -> {item.netsuite_id}" if item.netsuite_id else "")
        )

    if result.errors:
        logger.warning("Errors encountered:")
        for error in result.errors[:10]:  # Show first 10 errors
            logger.warning(f"  - {error}")
        if len(result.errors) > 10:
            logger.warning(f"  ... and {len(result.errors) - 10} more")

    return 0 if result.success else 1


async def run_sync(args: argparse.Namespace) -> int:
    """Run the requested operation.

    Args:
        args: Command line arguments

    Returns:
        Exit code (0 for success, 1 for failure)
    """
    logger = logging.getLogger(__name__)

    try:
        settings = get_settings()
    except Exception as e:
        logger.error(f"Failed to load settings: {e}")
        logger.error("Make sure .env file exists with required environment variables")
        return 1

    setup_logging(settings)

    database = Database(settings.database_path)

    if args.stats:
        stats = database.get_stats()
        logger.info("Sync Statistics:")
        logger.info(f"  Attempts by outcome: {stats.get('attempts', {})}")
        logger.info(f"  Orders currently failing: {stats.get('failing_orders', 0)}")
        logger.info(f"  Last bulk run: {stats.get('last_run') or 'Never'}")
        if stats.get("last_run_status"):
            logger.info(f"  Last bulk run status: {stats['last_run_status']}")
        return 0

    logger.info("=" * 60)
    logger.info("3DCart-NetSuite Order Sync Starting")
    logger.info("=" * 60)

    async with CartClient(settings) as cart_client:
        async with NetSuiteClient(settings) as netsuite_client:
            guard = SyncStatusGuard(netsuite_client, database)
            orchestrator = OrderSyncOrchestrator(
                settings=settings,
                cart=cart_client,
                netsuite=netsuite_client,
                guard=guard,
                database=database,
            )

            if args.check:
                try:
                    statuses = await orchestrator.check_status(args.check)
                except OrderSyncError as e:
                    logger.error(f"Status check failed: {e}")
                    return 1
                for order_id, status in statuses.items():
                    if status.synced:
                        logger.info(
                            f"  {order_id}: synced as {status.netsuite_id} "
                            f"({status.tran_id}, {status.status})"
                        )
                    else:
                        detail = f" (last error: {status.last_error})" if status.last_error else ""
                        logger.info(f"  {order_id}: not synced{detail}")
                return 0

            logger.info("Verifying API connections...")
            if not await cart_client.check_connection():
                logger.error("Cannot connect to 3DCart API")
                return 1
            if not await netsuite_client.check_connection():
                logger.error("Cannot connect to NetSuite API")
                logger.error("Check the token-based authentication credentials and account ID")
                return 1
            logger.info("API connections verified successfully")

            if args.order:
                result = await orchestrator.sync_orders(args.order, max_batch=args.max_batch)
            else:
                try:
                    result = await orchestrator.sync_date_range(
                        args.start, args.end, status=args.status, max_batch=args.max_batch
                    )
                except OrderSyncError as e:
                    logger.error(f"Date range sync failed: {e}")
                    return 1

            return report_bulk(result, logger)


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Sync orders from 3DCart to NetSuite sales orders",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python sync.py --order 1001                          Sync one order
  python sync.py --start 2024-01-01 --end 2024-01-31   Sync orders in a date range
  python sync.py --start 2024-01-01 --end 2024-01-31 --status 1
  python sync.py --check 1001 1002                     Show whether orders are in NetSuite
  python sync.py --stats                               Show sync statistics
        """,
    )

    parser.add_argument(
        "--order",
        action="append",
        metavar="ID",
        help="3DCart order ID to sync (repeatable)",
    )

    parser.add_argument(
        "--start",
        type=parse_date,
        help="First order date to sync (YYYY-MM-DD)",
    )

    parser.add_argument(
        "--end",
        type=parse_date,
        help="Last order date to sync (YYYY-MM-DD)",
    )

    parser.add_argument(
        "--status",
        type=int,
        help="Only sync date-range orders with this 3DCart status ID",
    )

    parser.add_argument(
        "--max-batch",
        type=int,
        help="Maximum orders to sync in one run (capped by BULK_MAX_BATCH)",
    )

    parser.add_argument(
        "--check",
        nargs="+",
        metavar="ID",
        help="Show NetSuite sync status for order IDs and exit",
    )

    parser.add_argument(
        "--stats",
        action="store_true",
        help="Show sync statistics and exit",
    )

    args = parser.parse_args()

    if not (args.order or args.check or args.stats or args.start or args.end):
        parser.error("one of --order, --start/--end, --check or --stats is required")
    if (args.start or args.end) and not (args.start and args.end):
        parser.error("--start and --end must be given together")
    if args.start and args.end and args.start > args.end:
        parser.error("--start must not be after --end")

    exit_code = asyncio.run(run_sync(args))
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
