# ==============================================
# CLI: Command Line Entry Point
# ==============================================
#
# COMMANDS:
# ---------
# 1. Normalize reviews (dry-run is the default):
#    review-reconcile normalize --dry-run
#    review-reconcile normalize --commit --batch 400 --pageSize 1000
#    review-reconcile normalize --commit --startAfter <docId>
#
# 2. Read-only census:
#    review-reconcile census --limit 2000
#    review-reconcile census --dish "Drunken Noodles" --cuisine thai
#    review-reconcile census --where dishId=abc123 --contains tags=spicy
#
# 3. Feed probes after a commit:
#    review-reconcile probe --dish "Drunken Noodles"
#
# EXIT CODES:
# -----------
#   0  clean completion (quarantined reviews included)
#   1  bad flags, connection failure, or an aborted run
#
# ==============================================

import argparse
import logging
import sys
from typing import List, Optional, Tuple

from .census import ArrayContains, CensusReporter, FieldEquals, dish_lookups, format_report
from .config import (
    LOG_FORMAT,
    MAX_CENSUS_LIMIT,
    MAX_PAGE_SIZE,
    MAX_WRITE_GROUP_SIZE,
    AppConfig,
    clamp_int,
    get_config,
)
from .errors import ConfigurationError, ReconcileError, ScanAbortedError
from .migration_driver import MigrationDriver, RunMode
from .probe import FeedProbe
from .storage.mongo_client import MongoClient


logger = logging.getLogger(__name__)


def setup_logging(log_level: str = "INFO") -> None:
    """Configure logging for the entire application."""
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=[logging.StreamHandler(sys.stdout)]
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="review-reconcile",
        description="Classify, repair and audit review documents across schema generations."
    )
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL (default INFO)")
    subparsers = parser.add_subparsers(dest="command")

    normalize = subparsers.add_parser("normalize", help="Repair reviews into the v2 shape")
    normalize.add_argument("--dry-run", dest="dry_run", action="store_true",
                           help="Log planned patches, write nothing (default)")
    normalize.add_argument("--commit", dest="commit", action="store_true",
                           help="Apply patches in atomic write-groups")
    normalize.add_argument("--startAfter", dest="start_after", default=None,
                           help="Resume after this document ID")
    normalize.add_argument("--batch", dest="batch", default=None,
                           help=f"Write-group size, clamped to [1, {MAX_WRITE_GROUP_SIZE}]")
    normalize.add_argument("--pageSize", dest="page_size", default=None,
                           help=f"Scan page size, clamped to [1, {MAX_PAGE_SIZE}]")

    census = subparsers.add_parser("census", help="Read-only schema census")
    census.add_argument("--limit", dest="limit", default=None,
                        help=f"Sample ceiling, clamped to [1, {MAX_CENSUS_LIMIT}] (default 2000)")
    census.add_argument("--dish", dest="dishes", action="append", default=[],
                        help="Look up reviews by dishName / dish (repeatable)")
    census.add_argument("--cuisine", dest="cuisines", action="append", default=[],
                        help="Look up reviews whose restaurantCuisines contains this value")
    census.add_argument("--where", dest="where", action="append", default=[],
                        metavar="FIELD=VALUE", help="Exact-match lookup (repeatable)")
    census.add_argument("--contains", dest="contains", action="append", default=[],
                        metavar="FIELD=VALUE", help="Array-membership lookup (repeatable)")

    probe = subparsers.add_parser("probe", help="Read-only feed probes")
    probe.add_argument("--dish", dest="dishes", action="append", default=[],
                       help="Dish name used to pick the probed restaurant/user")

    return parser


def _split_assignment(raw: str) -> Tuple[str, str]:
    field_name, sep, value = raw.partition("=")
    if not sep or not field_name.strip():
        raise ConfigurationError(f"Expected FIELD=VALUE, got {raw!r}")
    return field_name.strip(), value


def resolve_mode(args: argparse.Namespace) -> RunMode:
    if args.dry_run and args.commit:
        raise ConfigurationError("Specify either --dry-run or --commit, not both")
    return RunMode.COMMIT if args.commit else RunMode.DRY_RUN


def run_normalize(args: argparse.Namespace, config: AppConfig, mongo: MongoClient) -> int:
    mode = resolve_mode(args)
    batch_size = clamp_int(args.batch, 1, MAX_WRITE_GROUP_SIZE, config.migration.batch_size)
    page_size = clamp_int(args.page_size, 1, MAX_PAGE_SIZE, config.migration.page_size)

    driver = MigrationDriver(
        mongo,
        collection_name=config.mongo.collection,
        mode=mode,
        batch_size=batch_size,
        page_size=page_size,
        progress_interval=config.migration.progress_interval
    )
    try:
        with mongo:
            start_after = mongo.resolve_document_id(config.mongo.collection, args.start_after)
            driver.run(start_after=start_after)
    except ScanAbortedError as e:
        logger.error("Normalize failed: %s", e)
        if e.last_cursor:
            logger.error("Resume with: --startAfter %s", e.last_cursor)
        else:
            logger.error("Resume by re-running without --startAfter")
        return 1
    return 0


def build_lookups(args: argparse.Namespace) -> List:
    shapes = dish_lookups(args.dishes, args.cuisines)
    for raw in args.where:
        field_name, value = _split_assignment(raw)
        shapes.append(FieldEquals(field_name, value))
    for raw in args.contains:
        field_name, value = _split_assignment(raw)
        shapes.append(ArrayContains(field_name, value))
    return shapes


def run_census(args: argparse.Namespace, config: AppConfig, mongo: MongoClient) -> int:
    limit = clamp_int(args.limit, 1, MAX_CENSUS_LIMIT, config.census.limit)
    lookups = build_lookups(args)
    reporter = CensusReporter(
        mongo,
        collection_name=config.mongo.collection,
        limit=limit,
        examples_per_label=config.census.examples_per_label,
        purge_threshold_pct=config.census.legacy_purge_threshold_pct,
        replay_window=config.census.replay_window
    )
    with mongo:
        report = reporter.run(lookups)
    print(format_report(report))
    return 0


def run_probe(args: argparse.Namespace, config: AppConfig, mongo: MongoClient) -> int:
    with mongo:
        results = FeedProbe(mongo, config.mongo.collection).run(args.dishes)
    for result in results:
        print(result.line())
    return 0


COMMANDS = {
    "normalize": run_normalize,
    "census": run_census,
    "probe": run_probe,
}


def main(argv: Optional[List[str]] = None, mongo: Optional[MongoClient] = None) -> int:
    """CLI entry point. Returns the process exit code."""
    parser = build_parser()
    args = parser.parse_args(argv)
    config = get_config()
    setup_logging(args.log_level or config.log_level)

    if args.command is None:
        parser.print_help()
        return 1

    if mongo is None:
        mongo = MongoClient.from_config(config.mongo)

    try:
        return COMMANDS[args.command](args, config, mongo)
    except ConfigurationError as e:
        logger.error("Configuration error: %s", e)
        return 1
    except ReconcileError as e:
        logger.error("%s failed: %s", args.command, e)
        return 1


if __name__ == "__main__":
    sys.exit(main())
