"""CLI entrypoint for lake-export-foundry.

Runs a SQL query through SQLAlchemy and streams the result to a local file
as CSV, JSON or Parquet, applying a destination config when one is given.
"""

import argparse
import logging
import os
import sys
from dataclasses import replace
from pathlib import Path
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError

from lakeexport import __version__
from lakeexport.config import DestinationConfig, OutputFormat, load_destination_config
from lakeexport.cursor import open_sql_cursor
from lakeexport.exceptions import LakeExportError
from lakeexport.export import run_export
from lakeexport.logging_config import setup_logging

logger = logging.getLogger(__name__)

DATABASE_URL_ENV = "LAKE_EXPORT_DATABASE_URL"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Export the result of a SQL query to CSV, JSON or Parquet",
    )
    parser.add_argument(
        "--config",
        help="Path to a YAML destination config (a 'destination' section or top-level keys)",
    )
    parser.add_argument(
        "--url",
        help=f"SQLAlchemy database URL. Defaults to the {DATABASE_URL_ENV} env var",
    )
    parser.add_argument("--query", required=True, help="SQL query to export")
    parser.add_argument("--output", "-o", required=True, help="Output file path")
    parser.add_argument(
        "--format",
        dest="output_format",
        choices=[f.value for f in OutputFormat],
        help="Output format. Overrides the config; inferred from --output extension otherwise",
    )
    parser.add_argument(
        "--initial",
        action="store_true",
        help="Mark this run as the initial export (delta mode skips deleted rows)",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose (DEBUG level) logging",
    )
    parser.add_argument(
        "--quiet", "-q", action="store_true", help="Suppress all output except errors"
    )
    parser.add_argument(
        "--log-format",
        choices=["human", "json", "simple"],
        default=None,
        help="Log format (default: human). Can also set via LAKE_EXPORT_LOG_FORMAT env var",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"lake-export-foundry {__version__}",
        help="Show version and exit",
    )
    return parser


def resolve_config(args: argparse.Namespace) -> DestinationConfig:
    config = load_destination_config(args.config) if args.config else DestinationConfig()

    if args.output_format:
        output_format = OutputFormat(args.output_format)
    elif not args.config:
        output_format = OutputFormat.from_string(Path(args.output).suffix or "csv")
    else:
        output_format = config.output_format

    if output_format is not config.output_format:
        config = replace(config, output_format=output_format)
    return config


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    log_level = (
        logging.DEBUG if args.verbose else logging.ERROR if args.quiet else logging.INFO
    )
    setup_logging(level=log_level, format_type=args.log_format, use_colors=True)

    url = args.url or os.environ.get(DATABASE_URL_ENV)
    if not url:
        parser.error(f"--url is required when {DATABASE_URL_ENV} is not set")

    try:
        config = resolve_config(args)
        output_path = Path(args.output)
        output_path.parent.mkdir(parents=True, exist_ok=True)

        cursor = open_sql_cursor(url, args.query)
        try:
            with output_path.open("wb") as sink:
                result = run_export(cursor, None, config, sink, is_initial_export=args.initial)
        finally:
            cursor.close()
    except LakeExportError as exc:
        logger.error(f"Export failed: {exc}")
        return 1
    except SQLAlchemyError as exc:
        logger.error(f"Database error: {exc}")
        return 1

    logger.info(f"Wrote {result.rows} rows to {output_path}")
    return 0


if __name__ == "__main__":
    try:
        sys.exit(main())
    except Exception as exc:
        logger.error(f"Fatal error: {exc}", exc_info=True)
        sys.exit(1)
