"""
Warehouse Rebuild Entry Point

Runs one full rebuild of the star schema from the Raw Store.
Usage:
    warehouse-run --raw-store ./data/raw --target ./data/warehouse
    warehouse-run --run-id 2024-06-01 --stable-keys --log-level DEBUG

The run report is printed to stdout as JSON, with the itemized quality
issues when the run was not published. Exit code is 0 when every
entity family succeeded and the release was published, 1 otherwise, and 2
when another run holds the target lock.
"""

import argparse
import sys
from datetime import datetime, timezone
from typing import List, Optional

import structlog

from warehouse.config import get_settings
from warehouse.config.logging import configure_logging
from warehouse.errors import ConcurrentRunError
from warehouse.pipeline import run_pipeline

logger = structlog.get_logger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_LOCKED = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Sales Warehouse rebuild")
    parser.add_argument(
        "--raw-store",
        default=None,
        help="Raw Store directory (default: RAW_STORE_PATH)"
    )
    parser.add_argument(
        "--run-id",
        default=None,
        help="Run identifier (default: UTC timestamp)"
    )
    parser.add_argument(
        "--target",
        default=None,
        help="Warehouse target directory (default: WAREHOUSE_OUTPUT_PATH)"
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Log level override (DEBUG, INFO, WARNING, ERROR)"
    )
    parser.add_argument(
        "--stable-keys",
        action="store_true",
        help="Reuse surrogate keys from the published key registry"
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(log_level=args.log_level)

    settings = get_settings()
    if args.stable_keys:
        settings = settings.model_copy(
            update={"warehouse": settings.warehouse.model_copy(update={"stable_surrogate_keys": True})}
        )

    run_id = args.run_id or datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
    try:
        result = run_pipeline(args.raw_store, run_id=run_id, settings=settings, target=args.target)
    except ConcurrentRunError as e:
        logger.error("Run refused", run_id=run_id, error=str(e))
        return EXIT_LOCKED

    if result.succeeded:
        print(result.report.model_dump_json(indent=2, exclude={"issues"}))
        return EXIT_OK

    logger.error("Run not published", run_id=run_id, status=result.status.value, archive=result.archive)
    print(result.report.model_dump_json(indent=2))
    return EXIT_FAILED


if __name__ == "__main__":
    sys.exit(main())
