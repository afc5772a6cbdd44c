"""
Main CLI module for the donor sync service.

Example: python -m services.donor_sync --csv-path donors.csv
"""

import argparse
import asyncio
import sys
from datetime import date, datetime
from typing import List, Optional

import structlog

from . import __version__
from .client import MollieClient
from .fetcher import FetchError
from .log_config import configure_logging
from .maintenance import delete_customers, find_customers_created_since
from .pipeline import run_donor_sync
from .settings import ConfigurationError, DonorSyncSettings, load_settings
from .stage import DuplicateKeyError

logger = structlog.get_logger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CONFIG_ERROR = 2


def parse_date(date_string: str) -> date:
    """
    Parse date string in YYYY-MM-DD format.

    Raises:
        ValueError: If date format is invalid
    """
    try:
        return datetime.strptime(date_string, "%Y-%m-%d").date()
    except ValueError as e:
        raise ValueError(f"Invalid date format '{date_string}'. Expected YYYY-MM-DD") from e


def _date_argument(value: str) -> date:
    try:
        return parse_date(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e)) from e


async def cleanup(config: DonorSyncSettings, since: date, confirm: bool) -> int:
    """List customers created since a date and delete them when confirmed."""
    async with MollieClient.from_settings(config) as client:
        candidates = await find_customers_created_since(
            client, since, page_size=config.customer_page_size
        )
        logger.info("Customers to delete", count=len(candidates), since=since.isoformat())

        if not confirm:
            for customer in candidates:
                logger.info(
                    "Would delete customer",
                    customer_id=customer.id,
                    name=customer.name,
                    email=customer.email,
                )
            return EXIT_OK

        deleted = await delete_customers(client, candidates)
        logger.info("Customers deleted", count=len(deleted))
        return EXIT_OK if len(deleted) == len(candidates) else EXIT_FAILURE


def create_parser() -> argparse.ArgumentParser:
    """Create command line argument parser."""
    parser = argparse.ArgumentParser(
        description="Reconcile a donor roster with Mollie customers, mandates and subscriptions",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m services.donor_sync --csv-path donors.csv
  python -m services.donor_sync --log-level DEBUG --log-format text
  python -m services.donor_sync --cleanup-since 2024-05-03
  python -m services.donor_sync --cleanup-since 2024-05-03 --confirm-delete
        """
    )

    parser.add_argument(
        "--csv-path",
        help="Donor roster to reconcile (overrides CSV_PATH)"
    )

    parser.add_argument(
        "--cleanup-since",
        type=_date_argument,
        metavar="YYYY-MM-DD",
        help="Instead of syncing, list customers created since this date"
    )

    parser.add_argument(
        "--confirm-delete",
        action="store_true",
        help="With --cleanup-since: actually delete the listed customers"
    )

    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Override log level from configuration"
    )

    parser.add_argument(
        "--log-format",
        choices=["json", "text"],
        help="Override log format from configuration"
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"Donor Sync {__version__}"
    )

    return parser


async def main(argv: Optional[List[str]] = None) -> int:
    """
    Main entry point for the CLI application.

    Returns:
        Exit code (0 success, 1 failures, 2 configuration error)
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    try:
        config = load_settings(
            csv_path=args.csv_path,
            log_level=args.log_level,
            log_format=args.log_format,
        )
    except ConfigurationError as e:
        configure_logging(args.log_level or "INFO", args.log_format or "text")
        logger.error("Configuration error", error=str(e))
        return EXIT_CONFIG_ERROR

    configure_logging(
        config.log_level, config.log_format, config.service_name, config.environment
    )

    logger.info(
        "Service starting",
        service_name=config.service_name,
        version=__version__,
        environment=config.environment,
        test_mode=config.is_test_mode(),
    )

    try:
        if args.cleanup_since:
            return await cleanup(config, args.cleanup_since, args.confirm_delete)

        report = await run_donor_sync(config)

    except KeyboardInterrupt:
        logger.warning("Service interrupted by user")
        return EXIT_FAILURE
    except (FileNotFoundError, FetchError) as e:
        logger.error("Could not read donor roster", error=str(e), error_type=type(e).__name__)
        return EXIT_FAILURE
    except DuplicateKeyError as e:
        logger.critical("Reconciliation invariant violated", error=str(e), exc_info=True)
        return EXIT_FAILURE
    except Exception as e:
        logger.error(
            "Service failed with unexpected error",
            error=str(e),
            error_type=type(e).__name__
        )
        return EXIT_FAILURE

    if report.success:
        logger.info("Service completed successfully")
        return EXIT_OK

    logger.warning("Service completed with errors", failed=report.failed, parse_errors=report.parse_errors)
    return EXIT_FAILURE


def cli_main() -> int:
    """Synchronous entry point for console scripts."""
    return asyncio.run(main())


if __name__ == "__main__":
    sys.exit(cli_main())
