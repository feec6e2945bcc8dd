"""
Command-line interface for warehouse loads.

Usage:
    ves-etl init-schema [--config config/tables.yaml]
    ves-etl load --table <table> --input <file> --batch-id <id> [--format csv] [--metrics-port 8000]
    ves-etl validate-config [--config config/tables.yaml]
"""

import argparse
import sys
from datetime import datetime
from pathlib import Path

from dotenv import load_dotenv

from ves_dw.batch.pipeline import EtlPipeline, create_spark_session
from ves_dw.core.exceptions import MetadataError
from ves_dw.core.metadata import load_metadata
from ves_dw.core.models import LoadSummary
from ves_dw.observability.logger import get_logger
from ves_dw.observability.metrics import start_metrics_server
from ves_dw.warehouse.connection import DatabaseConnectionPool, DatabaseSettings
from ves_dw.warehouse.schema_mgmt import SchemaManager

logger = get_logger(__name__)


def build_pool(args) -> DatabaseConnectionPool:
    """Connection pool from DB_* environment variables, overridden by CLI flags."""
    settings = DatabaseSettings.from_env(
        host=args.db_host,
        port=args.db_port,
        database=args.db_name,
        user=args.db_user,
        password=args.db_password,
        schema_name=args.db_schema,
    )
    pool = DatabaseConnectionPool(settings)
    pool.open()
    return pool


def print_summary(summary: LoadSummary) -> None:
    """Print a per-batch load summary."""
    print(f"\n{'=' * 60}")
    print(f"LOAD SUMMARY: {summary.table_name} (batch {summary.batch_id})")
    print(f"{'=' * 60}")
    print(f"Status:     {summary.status}")
    print(f"Inserted:   {summary.inserted}")
    print(f"Updated:    {summary.updated}")
    print(f"Unchanged:  {summary.unchanged}")
    print(f"Skipped:    {summary.skipped}")
    if summary.conflicts:
        print(f"Conflicts:  {summary.conflicts}")
    for reason, count in sorted(summary.skipped_reasons.items()):
        print(f"  - {reason}: {count}")
    print(f"Duration:   {summary.duration_seconds:.2f}s")
    print(f"{'=' * 60}\n")


def init_schema_command(args):
    """
    Create the schema, operational tables and every configured table.

    Args:
        args: Command-line arguments
    """
    metadata = load_metadata(args.config)
    pool = build_pool(args)
    try:
        tables = SchemaManager(pool).create_tables(metadata)
        print(f"Schema '{pool.schema_name}' ready with {len(tables)} configured table(s):")
        for name in tables:
            print(f"  - {name}")
    finally:
        pool.close()


def load_command(args):
    """
    Load one staged file into one table.

    Args:
        args: Command-line arguments
    """
    input_path = Path(args.input)
    if not input_path.exists():
        logger.error(f"Input file not found: {args.input}")
        sys.exit(1)

    metadata = load_metadata(args.config)
    as_of = datetime.fromisoformat(args.as_of) if args.as_of else None

    if args.metrics_port:
        start_metrics_server(args.metrics_port)
        logger.info(f"Serving metrics on port {args.metrics_port}")

    logger.info("Creating Spark session...")
    spark = create_spark_session(f"ves-etl-{args.table}")
    pool = build_pool(args)

    try:
        pipeline = EtlPipeline(pool, metadata, spark=spark)
        summary = pipeline.run_file(
            args.table,
            str(input_path),
            args.batch_id,
            file_format=args.format,
            as_of=as_of,
        )
        print_summary(summary)
    except Exception as e:
        logger.error(f"Error during load: {e}", exc_info=True)
        sys.exit(1)
    finally:
        pool.close()
        spark.stop()


def validate_config_command(args):
    """
    Validate the table metadata file without touching the database.

    Args:
        args: Command-line arguments
    """
    try:
        metadata = load_metadata(args.config)
    except MetadataError as e:
        print(f"Invalid table metadata:\n{e}")
        sys.exit(1)

    print(f"Table metadata OK: {len(metadata.dimensions)} dimension(s), {len(metadata.facts)} fact(s)")
    for name, dim in metadata.dimensions.items():
        state = "" if dim.enabled else " (disabled)"
        print(f"  dimension {name}: keys={dim.business_keys}, tracked={len(dim.columns)}{state}")
    for name, fact in metadata.facts.items():
        state = "" if fact.enabled else " (disabled)"
        print(
            f"  fact {name}: key={fact.natural_key}, columns={len(fact.columns)}, "
            f"derived={len(fact.derived)}{state}"
        )


def add_db_arguments(parser: argparse.ArgumentParser) -> None:
    """Database flags; unset flags fall back to DB_* environment variables."""
    parser.add_argument("--db-host", help="Database host (default: $DB_HOST or localhost)")
    parser.add_argument("--db-port", type=int, help="Database port (default: $DB_PORT or 5432)")
    parser.add_argument("--db-name", help="Database name (default: $DB_NAME)")
    parser.add_argument("--db-user", help="Database user (default: $DB_USER)")
    parser.add_argument("--db-password", help="Database password (default: $DB_PASSWORD)")
    parser.add_argument("--db-schema", help="Warehouse schema (default: $DB_SCHEMA or warehouse)")


def main():
    """Main CLI entry point."""
    load_dotenv()

    parser = argparse.ArgumentParser(
        description="VES warehouse loads",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Create tables for every configured dimension and fact
  ves-etl init-schema

  # Load a staged veterans extract
  ves-etl load --table dim_veterans --input staging/veterans.csv --batch-id 20250103_001

  # Merge a JSON extract of exam requests
  ves-etl load --table fact_exam_requests --input staging/exam_requests.json \\
      --batch-id 20250103_001 --format json

  # Check config/tables.yaml
  ves-etl validate-config
        """
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Table metadata YAML (default: $VES_TABLES_CONFIG or config/tables.yaml)"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    init_parser = subparsers.add_parser("init-schema", help="Create warehouse tables")
    add_db_arguments(init_parser)

    load_parser = subparsers.add_parser("load", help="Load a staged file into a table")
    load_parser.add_argument("--table", required=True, help="Configured dimension or fact table")
    load_parser.add_argument("--input", required=True, help="Path to staged file")
    load_parser.add_argument("--batch-id", required=True, help="Batch identifier")
    load_parser.add_argument(
        "--format",
        default="csv",
        choices=["csv", "json", "parquet"],
        help="Input file format (default: csv)"
    )
    load_parser.add_argument(
        "--as-of",
        help="Load timestamp, ISO-8601 (default: now)"
    )
    load_parser.add_argument(
        "--metrics-port",
        type=int,
        help="Expose Prometheus metrics on this port while loading"
    )
    add_db_arguments(load_parser)

    subparsers.add_parser("validate-config", help="Validate table metadata")

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    try:
        if args.command == "init-schema":
            init_schema_command(args)
        elif args.command == "load":
            load_command(args)
        elif args.command == "validate-config":
            validate_config_command(args)
    except MetadataError as e:
        logger.error(str(e))
        sys.exit(1)


if __name__ == "__main__":
    main()
