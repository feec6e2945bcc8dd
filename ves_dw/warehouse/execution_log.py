"""
Execution history: one row per (table, batch) load.
"""

from datetime import datetime, timezone

import psycopg
from psycopg import sql

from ves_dw.core.models import ExecutionLogEntry, LoadSummary
from ves_dw.observability.logger import get_logger

from .connection import DatabaseConnectionPool
from .identifiers import qualified_table

logger = get_logger(__name__)


class ExecutionLogWriter:
    """
    Records load runs as RUNNING, then closes them with counts and status.
    """

    def __init__(self, pool: DatabaseConnectionPool, schema_name: str | None = None):
        self.pool = pool
        self.table = qualified_table(schema_name or pool.schema_name, "etl_execution_log")

    def start(self, pipeline_name: str, table_name: str, batch_id: str) -> ExecutionLogEntry:
        """
        Insert a RUNNING row.

        Returns:
            The entry with its execution_id set
        """
        entry = ExecutionLogEntry(
            pipeline_name=pipeline_name,
            table_name=table_name,
            batch_id=batch_id,
        )
        query = sql.SQL("""
            INSERT INTO {} (pipeline_name, table_name, batch_id, status, started_at)
            VALUES (%s, %s, %s, %s, %s)
            RETURNING execution_id
        """).format(self.table)

        try:
            result = self.pool.execute_query(
                query,
                (entry.pipeline_name, entry.table_name, entry.batch_id, entry.status, entry.started_at),
            )
        except psycopg.DatabaseError as e:
            logger.error(f"Failed to start execution log for {table_name}/{batch_id}: {e}")
            raise

        entry.execution_id = result[0]["execution_id"]
        return entry

    def finish(self, entry: ExecutionLogEntry, summary: LoadSummary) -> ExecutionLogEntry:
        """Close a run from its LoadSummary."""
        entry.status = summary.status
        entry.rows_read = summary.total
        entry.rows_inserted = summary.inserted
        entry.rows_updated = summary.updated
        entry.rows_unchanged = summary.unchanged
        entry.rows_rejected = summary.skipped
        return self._close(entry)

    def fail(self, entry: ExecutionLogEntry, error: BaseException) -> ExecutionLogEntry:
        """Close a run that aborted with a batch-level error."""
        entry.status = "FAILED"
        entry.error_message = f"{type(error).__name__}: {error}"
        return self._close(entry)

    def _close(self, entry: ExecutionLogEntry) -> ExecutionLogEntry:
        entry.finished_at = datetime.now(timezone.utc)
        entry.duration_seconds = (entry.finished_at - entry.started_at).total_seconds()

        query = sql.SQL("""
            UPDATE {}
            SET status = %s,
                finished_at = %s,
                duration_seconds = %s,
                rows_read = %s,
                rows_inserted = %s,
                rows_updated = %s,
                rows_unchanged = %s,
                rows_rejected = %s,
                error_message = %s
            WHERE execution_id = %s
        """).format(self.table)

        try:
            self.pool.execute_command(
                query,
                (
                    entry.status,
                    entry.finished_at,
                    entry.duration_seconds,
                    entry.rows_read,
                    entry.rows_inserted,
                    entry.rows_updated,
                    entry.rows_unchanged,
                    entry.rows_rejected,
                    entry.error_message,
                    entry.execution_id,
                ),
            )
        except psycopg.DatabaseError as e:
            logger.error(f"Failed to close execution log {entry.execution_id}: {e}")
            raise

        return entry

    def history(self, table_name: str | None = None, limit: int = 20) -> list[ExecutionLogEntry]:
        """
        Recent runs, newest first.

        Args:
            table_name: Optional table filter
            limit: Maximum number of runs
        """
        where = sql.SQL("WHERE table_name = %(table_name)s") if table_name else sql.SQL("")
        query = sql.SQL("""
            SELECT *
            FROM {}
            {}
            ORDER BY started_at DESC, execution_id DESC
            LIMIT %(limit)s
        """).format(self.table, where)

        rows = self.pool.execute_query(query, {"table_name": table_name, "limit": limit})
        return [ExecutionLogEntry(**row) for row in rows]
