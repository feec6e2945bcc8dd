"""
Admin CLI for reviewing warehouse loads.

Usage:
    ves-admin conflicts --table <fact_table> [--key <natural_key>] [--limit N]
    ves-admin quarantine-stats [--table <table>]
    ves-admin quarantine-review [--table <table>] [--batch-id <id>] [--limit N]
    ves-admin mark-reviewed --ids <id> [<id> ...]
    ves-admin history [--table <table>] [--limit N]
    ves-admin reconcile --table <dimension> [--repair]
"""

import argparse
import sys
from datetime import datetime

from dotenv import load_dotenv

from ves_dw.cli.etl_cli import add_db_arguments, build_pool
from ves_dw.core.exceptions import MetadataError
from ves_dw.core.metadata import load_metadata
from ves_dw.observability.logger import get_logger
from ves_dw.warehouse.audit import get_conflict_summary, query_quality_events
from ves_dw.warehouse.execution_log import ExecutionLogWriter
from ves_dw.warehouse.quarantine import QuarantineWriter
from ves_dw.warehouse.reconcile import find_integrity_violations, repair_multiple_current

logger = get_logger(__name__)


def format_timestamp(ts: datetime | str | None) -> str:
    """Format timestamp for display."""
    if isinstance(ts, str):
        return ts
    return ts.strftime("%Y-%m-%d %H:%M:%S") if ts else "N/A"


def conflicts_command(args):
    """
    Show policy conflicts recorded for a snapshot table.

    Args:
        args: Command line arguments
    """
    pool = build_pool(args)
    try:
        summary = get_conflict_summary(pool, table_name=args.table)
        events = query_quality_events(
            pool,
            args.table,
            event_type="policy_conflict",
            record_key=args.key,
            limit=args.limit,
        )

        print(f"\n{'=' * 80}")
        print(f"POLICY CONFLICTS: {args.table}")
        print(f"{'=' * 80}\n")
        print(f"Total conflicts: {summary['total_conflicts']}")
        for column, count in summary["conflicts_by_column"].items():
            print(f"  - {column}: {count}")
        print()

        if not events:
            print("No conflicts recorded.")
            return

        print(f"{'Timestamp':<20} {'Key':<18} {'Column':<28} {'Kept':<12} {'Ignored'}")
        print(f"{'-' * 80}")
        for event in events:
            print(
                f"{format_timestamp(event.created_at):<20} "
                f"{event.record_key or '-':<18} "
                f"{event.field_name or '-':<28} "
                f"{event.stored_value or '-':<12} "
                f"{event.incoming_value or '-'}"
            )
        print(f"\n{'=' * 80}\n")

    except Exception as e:
        logger.error(f"Error listing conflicts: {e}", exc_info=True)
        print(f"\nError: {e}")
        sys.exit(1)

    finally:
        pool.close()


def quarantine_stats_command(args):
    """
    Show quarantine statistics.

    Args:
        args: Command line arguments
    """
    pool = build_pool(args)
    try:
        writer = QuarantineWriter(pool)

        print(f"\n{'=' * 60}")
        print("QUARANTINE STATISTICS")
        print(f"{'=' * 60}\n")

        if args.table:
            stats = writer.get_quarantine_stats(args.table)
            print(f"Table: {args.table}")
            print(f"  Total quarantined: {stats.get('total_quarantined', 0)}")
            print(f"  Unreviewed:        {stats.get('unreviewed', 0)}")
        else:
            rows = writer.get_stats_by_table()
            if not rows:
                print("Quarantine is empty.")
            for row in rows:
                print(
                    f"  {row['table_name']:<30} "
                    f"total={row['total_quarantined']:>6}  unreviewed={row['unreviewed']:>6}"
                )

        print(f"\n{'=' * 60}\n")

    except Exception as e:
        logger.error(f"Error getting quarantine stats: {e}", exc_info=True)
        print(f"\nError: {e}")
        sys.exit(1)

    finally:
        pool.close()


def quarantine_review_command(args):
    """
    List quarantined records for review.

    Args:
        args: Command line arguments
    """
    pool = build_pool(args)
    try:
        records = QuarantineWriter(pool).list_quarantined(
            table_name=args.table, batch_id=args.batch_id, limit=args.limit
        )
        if not records:
            print("\nNo quarantined records found.")
            return

        print(f"\n{'=' * 80}")
        print(f"QUARANTINED RECORDS ({len(records)})")
        print(f"{'=' * 80}\n")
        for record in records:
            status = "reviewed" if record.reviewed else "pending"
            print(f"[{record.quarantine_id}] {record.table_name} key={record.record_key or '-'} "
                  f"batch={record.batch_id} ({status})")
            print(f"  Quarantined: {format_timestamp(record.quarantined_at)}")
            for rule, message in zip(record.failed_rules, record.error_messages):
                print(f"  - {rule}: {message}")
            print()

    except Exception as e:
        logger.error(f"Error reviewing quarantine: {e}", exc_info=True)
        print(f"\nError: {e}")
        sys.exit(1)

    finally:
        pool.close()


def mark_reviewed_command(args):
    """
    Mark quarantined records as reviewed.

    Args:
        args: Command line arguments
    """
    pool = build_pool(args)
    try:
        writer = QuarantineWriter(pool)
        for quarantine_id in args.ids:
            writer.mark_reviewed(quarantine_id)
        print(f"Marked {len(args.ids)} record(s) as reviewed.")

    except Exception as e:
        logger.error(f"Error marking records reviewed: {e}", exc_info=True)
        print(f"\nError: {e}")
        sys.exit(1)

    finally:
        pool.close()


def history_command(args):
    """
    Show recent load runs.

    Args:
        args: Command line arguments
    """
    pool = build_pool(args)
    try:
        entries = ExecutionLogWriter(pool).history(table_name=args.table, limit=args.limit)
        if not entries:
            print("\nNo load runs recorded.")
            return

        print(f"\n{'Started':<20} {'Table':<28} {'Batch':<18} {'Status':<8} "
              f"{'Ins':>6} {'Upd':>6} {'Same':>6} {'Skip':>6}")
        print(f"{'-' * 104}")
        for entry in entries:
            print(
                f"{format_timestamp(entry.started_at):<20} {entry.table_name:<28} "
                f"{entry.batch_id:<18} {entry.status:<8} "
                f"{entry.rows_inserted:>6} {entry.rows_updated:>6} "
                f"{entry.rows_unchanged:>6} {entry.rows_rejected:>6}"
            )
            if entry.error_message:
                print(f"  error: {entry.error_message}")
        print()

    except Exception as e:
        logger.error(f"Error reading execution history: {e}", exc_info=True)
        print(f"\nError: {e}")
        sys.exit(1)

    finally:
        pool.close()


def reconcile_command(args):
    """
    Check a dimension's version history and optionally repair it.

    Args:
        args: Command line arguments
    """
    table_config = load_metadata(args.config).get_dimension(args.table)
    pool = build_pool(args)
    try:
        violations = find_integrity_violations(pool, table_config)

        print(f"\n{'=' * 80}")
        print(f"RECONCILIATION: {args.table}")
        print(f"{'=' * 80}\n")

        if not violations:
            print("No integrity violations found.")
            return

        for violation in violations:
            print(f"  {violation['violation']:<22} key={violation['business_key']:<20} "
                  f"{violation['detail']}")
        print(f"\nTotal: {len(violations)} violation(s)")

        if args.repair:
            repaired = repair_multiple_current(pool, table_config)
            print(f"Closed {repaired} surplus current version(s).")
            remaining = find_integrity_violations(pool, table_config)
            print(f"Remaining violations: {len(remaining)}")
            if remaining:
                sys.exit(2)
        else:
            sys.exit(2)

    except Exception as e:
        logger.error(f"Error reconciling {args.table}: {e}", exc_info=True)
        print(f"\nError: {e}")
        sys.exit(1)

    finally:
        pool.close()


def main():
    """Main CLI entry point."""
    load_dotenv()

    parser = argparse.ArgumentParser(
        description="VES warehouse administration",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Milestone conflicts for one exam request
  ves-admin conflicts --table fact_exam_requests --key ER-2

  # Quarantine counts per table
  ves-admin quarantine-stats

  # Recent loads of a dimension
  ves-admin history --table dim_veterans

  # Check and repair dimension history
  ves-admin reconcile --table dim_veterans --repair
        """
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Table metadata YAML (default: $VES_TABLES_CONFIG or config/tables.yaml)"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    conflicts_parser = subparsers.add_parser("conflicts", help="Show policy conflicts")
    conflicts_parser.add_argument("--table", required=True, help="Snapshot fact table")
    conflicts_parser.add_argument("--key", help="Natural key to filter by")
    conflicts_parser.add_argument("--limit", type=int, default=50, help="Maximum events (default: 50)")
    add_db_arguments(conflicts_parser)

    stats_parser = subparsers.add_parser("quarantine-stats", help="Show quarantine statistics")
    stats_parser.add_argument("--table", help="Filter by target table")
    add_db_arguments(stats_parser)

    review_parser = subparsers.add_parser("quarantine-review", help="List quarantined records")
    review_parser.add_argument("--table", help="Filter by target table")
    review_parser.add_argument("--batch-id", help="Filter by batch")
    review_parser.add_argument("--limit", type=int, default=20, help="Maximum records (default: 20)")
    add_db_arguments(review_parser)

    reviewed_parser = subparsers.add_parser("mark-reviewed", help="Mark quarantined records reviewed")
    reviewed_parser.add_argument("--ids", type=int, nargs="+", required=True, help="Quarantine IDs")
    add_db_arguments(reviewed_parser)

    history_parser = subparsers.add_parser("history", help="Show recent load runs")
    history_parser.add_argument("--table", help="Filter by table")
    history_parser.add_argument("--limit", type=int, default=20, help="Maximum runs (default: 20)")
    add_db_arguments(history_parser)

    reconcile_parser = subparsers.add_parser("reconcile", help="Check dimension history integrity")
    reconcile_parser.add_argument("--table", required=True, help="Dimension table")
    reconcile_parser.add_argument(
        "--repair",
        action="store_true",
        help="Close surplus current versions"
    )
    add_db_arguments(reconcile_parser)

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    commands = {
        "conflicts": conflicts_command,
        "quarantine-stats": quarantine_stats_command,
        "quarantine-review": quarantine_review_command,
        "mark-reviewed": mark_reviewed_command,
        "history": history_command,
        "reconcile": reconcile_command,
    }

    try:
        commands[args.command](args)
    except MetadataError as e:
        logger.error(str(e))
        sys.exit(1)


if __name__ == "__main__":
    main()
