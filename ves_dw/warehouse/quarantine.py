"""
Quarantine persistence for staged rows that could not be loaded.
"""

import json
from typing import Any

import psycopg
from psycopg import sql

from ves_dw.core.models import QuarantineRecord

from .connection import DatabaseConnectionPool
from .identifiers import qualified_table


class QuarantineWriter:
    """
    Handles writing rejected records to the quarantine table.
    """

    def __init__(self, pool: DatabaseConnectionPool, schema_name: str | None = None):
        """
        Initialize quarantine writer.

        Args:
            pool: Database connection pool
            schema_name: Schema holding quarantine_record (defaults to the pool's)
        """
        self.pool = pool
        self.table = qualified_table(schema_name or pool.schema_name, "quarantine_record")

    def quarantine_record(self, record: QuarantineRecord) -> int:
        """
        Insert a record into quarantine.

        Args:
            record: QuarantineRecord instance

        Returns:
            quarantine_id of the inserted record
        """
        with self.pool.get_cursor() as cur:
            return self.write(cur, record)

    def write(self, cur: psycopg.Cursor, record: QuarantineRecord) -> int:
        """
        Insert a record on a caller's cursor, inside the caller's transaction.

        Loaders use this on the connection they already hold, so a rejection
        never needs a second pooled connection.
        """
        query = sql.SQL("""
            INSERT INTO {} (
                table_name, batch_id, record_key, raw_payload, failed_rules,
                error_messages, quarantined_at, reviewed
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
            RETURNING quarantine_id
        """).format(self.table)
        cur.execute(query, self._params(record))
        return cur.fetchone()["quarantine_id"]

    def quarantine_batch(self, records: list[QuarantineRecord]) -> int:
        """
        Insert a batch of records into quarantine.

        Returns:
            Number of records quarantined
        """
        if not records:
            return 0

        query = sql.SQL("""
            INSERT INTO {} (
                table_name, batch_id, record_key, raw_payload, failed_rules,
                error_messages, quarantined_at, reviewed
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
        """).format(self.table)

        with self.pool.get_connection() as conn:
            with conn.cursor() as cur:
                cur.executemany(query, [self._params(r) for r in records])
            conn.commit()

        return len(records)

    def list_quarantined(
        self,
        table_name: str | None = None,
        batch_id: str | None = None,
        limit: int = 100,
    ) -> list[QuarantineRecord]:
        """
        List quarantined records, newest first.

        Args:
            table_name: Optional target table filter
            batch_id: Optional batch filter
            limit: Maximum number of records
        """
        conditions = [sql.SQL("TRUE")]
        params: list[Any] = []
        if table_name:
            conditions.append(sql.SQL("table_name = %s"))
            params.append(table_name)
        if batch_id:
            conditions.append(sql.SQL("batch_id = %s"))
            params.append(batch_id)
        params.append(limit)

        query = sql.SQL("""
            SELECT quarantine_id, table_name, batch_id, record_key, raw_payload,
                   failed_rules, error_messages, quarantined_at, reviewed
            FROM {}
            WHERE {}
            ORDER BY quarantined_at DESC, quarantine_id DESC
            LIMIT %s
        """).format(self.table, sql.SQL(" AND ").join(conditions))

        return [QuarantineRecord(**row) for row in self.pool.execute_query(query, tuple(params))]

    def get_quarantine_stats(self, table_name: str | None = None) -> dict[str, Any]:
        """
        Get quarantine statistics.

        Args:
            table_name: Optional target table to filter by

        Returns:
            Dictionary with total_quarantined and unreviewed counts
        """
        where = sql.SQL("WHERE table_name = %s") if table_name else sql.SQL("")
        query = sql.SQL("""
            SELECT
                COUNT(*) AS total_quarantined,
                COUNT(*) FILTER (WHERE reviewed = FALSE) AS unreviewed
            FROM {}
            {}
        """).format(self.table, where)

        result = self.pool.execute_query(query, (table_name,) if table_name else ())
        return result[0] if result else {}

    def get_stats_by_table(self) -> list[dict[str, Any]]:
        """Quarantine counts grouped by target table."""
        query = sql.SQL("""
            SELECT
                table_name,
                COUNT(*) AS total_quarantined,
                COUNT(*) FILTER (WHERE reviewed = FALSE) AS unreviewed
            FROM {}
            GROUP BY table_name
            ORDER BY table_name
        """).format(self.table)
        return self.pool.execute_query(query)

    def mark_reviewed(self, quarantine_id: int) -> None:
        query = sql.SQL("UPDATE {} SET reviewed = TRUE WHERE quarantine_id = %s").format(self.table)
        self.pool.execute_command(query, (quarantine_id,))

    @staticmethod
    def _params(record: QuarantineRecord) -> tuple:
        return (
            record.table_name,
            record.batch_id,
            _without_nul(record.record_key),
            json.dumps(_without_nul(record.raw_payload), default=str),
            _without_nul(record.failed_rules),
            _without_nul(record.error_messages),
            record.quarantined_at,
            record.reviewed,
        )


def _without_nul(value: Any) -> Any:
    """
    Replace NUL characters with the text "\\x00".

    PostgreSQL text and jsonb cannot store NUL, and a rejected row is often
    rejected precisely because it carried one.
    """
    if isinstance(value, str):
        return value.replace("\x00", "\\x00")
    if isinstance(value, dict):
        return {_without_nul(k): _without_nul(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_without_nul(v) for v in value]
    return value
