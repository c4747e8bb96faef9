# -*- coding: utf-8 -*-
import argparse
import sys
from importlib import metadata

from oracle_sync.config import load_settings
from oracle_sync.errors import SyncError
from oracle_sync.jobs import DEFAULT_PIPELINE, PIPELINES, get_pipeline
from oracle_sync.logs import close_logger, make_logger
from oracle_sync.script import synchronize, test_connections


def get_version():
    """Retrieves the version for the package"""
    try:
        return metadata.version("oracle-sync")
    except metadata.PackageNotFoundError:
        return "dev"


def _execute(args, operation) -> int:
    pipeline = get_pipeline(args.pipeline)
    settings = load_settings(pipeline)
    log = make_logger(pipeline.name, settings.log_path, verbose=args.verbose)
    try:
        operation(settings, log)
    except SyncError as e:
        log.error(f"{e.stage}: {e.message}")
        return 1
    except Exception as e:
        log.exception(f"Unexpected error: {e}")
        return 1
    finally:
        close_logger(log)
    return 0


def run_sync(args) -> int:
    return _execute(args, synchronize)


def run_test(args) -> int:
    return _execute(args, test_connections)


def dry_run(args) -> int:
    pipeline = get_pipeline(args.pipeline)
    print("SQL Query:")
    print(pipeline.select_sql())
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="oracle-sync",
        description="Copy a PostgreSQL view into an Oracle Spatial table",
    )
    parser.set_defaults(func=lambda args: parser.print_help() or 0)
    parser.add_argument(
        "--version", action="version", version="%(prog)s {}".format(get_version())
    )

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--pipeline",
        default=DEFAULT_PIPELINE,
        choices=sorted(PIPELINES),
        help=f"pipeline to run (default: {DEFAULT_PIPELINE})",
    )

    verbose = argparse.ArgumentParser(add_help=False)
    verbose.add_argument(
        "--verbose", action="store_const", const=True, help="enable verbose logging"
    )

    subparsers = parser.add_subparsers(title="Commands")
    runner = subparsers.add_parser(
        "run", parents=[common, verbose], description="run the full synchronization"
    )
    runner.set_defaults(func=run_sync)

    tester = subparsers.add_parser(
        "test", parents=[common, verbose], description="test connections only"
    )
    tester.set_defaults(func=run_test)

    dry = subparsers.add_parser(
        "dry-run", parents=[common], description="show the SQL query only"
    )
    dry.set_defaults(func=dry_run)

    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    try:
        return args.func(args)
    except SyncError as e:
        # configuration errors happen before the run logger exists
        print(f"ERROR: {e.stage}: {e.message}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
