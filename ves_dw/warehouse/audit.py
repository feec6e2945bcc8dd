"""
Data-quality event log.

Policy conflicts (a staged milestone that contradicts a stored one) and
in-batch superseded records are written here so they can be reviewed and,
if needed, corrected at the source.
"""

from typing import Any

import psycopg
from psycopg import sql

from ves_dw.core.models import DataQualityEvent
from ves_dw.observability.logger import get_logger

from .connection import DatabaseConnectionPool
from .identifiers import qualified_table

logger = get_logger(__name__)


def _event_table(pool: DatabaseConnectionPool, schema_name: str | None) -> sql.Identifier:
    return qualified_table(schema_name or pool.schema_name, "data_quality_event")


def _insert_sql(table: sql.Identifier) -> sql.Composed:
    return sql.SQL("""
        INSERT INTO {} (
            table_name,
            batch_id,
            record_key,
            event_type,
            field_name,
            stored_value,
            incoming_value,
            created_at
        ) VALUES (
            %(table_name)s,
            %(batch_id)s,
            %(record_key)s,
            %(event_type)s,
            %(field_name)s,
            %(stored_value)s,
            %(incoming_value)s,
            %(created_at)s
        )
    """).format(table)


def _event_params(event: DataQualityEvent) -> dict[str, Any]:
    return event.model_dump(exclude={"event_id"})


def write_quality_events(
    cur: psycopg.Cursor,
    table: sql.Identifier,
    events: list[DataQualityEvent],
) -> None:
    """
    Write events on an open cursor, inside the caller's transaction.

    The snapshot merger uses this so a conflict is recorded if and only if
    the merge that raised it commits.
    """
    if events:
        cur.executemany(_insert_sql(table), [_event_params(e) for e in events])


def insert_quality_event(
    pool: DatabaseConnectionPool,
    event: DataQualityEvent,
    schema_name: str | None = None,
) -> int:
    """
    Insert a single data-quality event.

    Returns:
        event_id: Generated event ID

    Raises:
        psycopg.DatabaseError: If insert fails
    """
    query = sql.SQL("{} RETURNING event_id").format(
        _insert_sql(_event_table(pool, schema_name))
    )

    try:
        with pool.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(query, _event_params(event))
                event_id = cur.fetchone()["event_id"]
            conn.commit()

        logger.debug(
            f"Inserted data quality event: event_id={event_id}, "
            f"table={event.table_name}, type={event.event_type}"
        )
        return event_id

    except psycopg.DatabaseError as e:
        logger.error(f"Failed to insert data quality event: {e}")
        raise


def insert_quality_events_batch(
    pool: DatabaseConnectionPool,
    events: list[DataQualityEvent],
    schema_name: str | None = None,
) -> int:
    """
    Insert multiple data-quality events in one transaction.

    Returns:
        count: Number of events inserted

    Raises:
        psycopg.DatabaseError: If batch insert fails
    """
    if not events:
        return 0

    try:
        with pool.get_connection() as conn:
            with conn.cursor() as cur:
                write_quality_events(cur, _event_table(pool, schema_name), events)
            conn.commit()

        logger.info(f"Inserted {len(events)} data quality events in batch")
        return len(events)

    except psycopg.DatabaseError as e:
        logger.error(f"Failed to insert data quality events batch: {e}")
        raise


def query_quality_events(
    pool: DatabaseConnectionPool,
    table_name: str,
    event_type: str | None = None,
    record_key: str | None = None,
    limit: int = 100,
    schema_name: str | None = None,
) -> list[DataQualityEvent]:
    """
    Query data-quality events for a table, newest first.

    Args:
        pool: Database connection pool
        table_name: Target table
        event_type: Optional filter ("policy_conflict", "superseded_in_batch")
        record_key: Optional natural/business key filter
        limit: Maximum number of events to return

    Raises:
        psycopg.DatabaseError: If query fails
    """
    conditions = [sql.SQL("table_name = %(table_name)s")]
    if event_type:
        conditions.append(sql.SQL("event_type = %(event_type)s"))
    if record_key:
        conditions.append(sql.SQL("record_key = %(record_key)s"))

    query = sql.SQL("""
        SELECT
            event_id,
            table_name,
            batch_id,
            record_key,
            event_type,
            field_name,
            stored_value,
            incoming_value,
            created_at
        FROM {}
        WHERE {}
        ORDER BY created_at DESC, event_id DESC
        LIMIT %(limit)s
    """).format(_event_table(pool, schema_name), sql.SQL(" AND ").join(conditions))

    params = {
        "table_name": table_name,
        "event_type": event_type,
        "record_key": record_key,
        "limit": limit,
    }

    try:
        rows = pool.execute_query(query, params)
        logger.debug(f"Found {len(rows)} data quality events for table={table_name}")
        return [DataQualityEvent(**row) for row in rows]

    except psycopg.DatabaseError as e:
        logger.error(f"Failed to query data quality events: {e}")
        raise


def get_conflict_summary(
    pool: DatabaseConnectionPool,
    table_name: str | None = None,
    schema_name: str | None = None,
) -> dict[str, Any]:
    """
    Count policy conflicts per table and column.

    Returns:
        Dictionary with:
        - total_conflicts
        - conflicts_by_column: {"table.column": count}

    Raises:
        psycopg.DatabaseError: If query fails
    """
    where = sql.SQL("AND table_name = %(table_name)s") if table_name else sql.SQL("")
    query = sql.SQL("""
        SELECT table_name, field_name, COUNT(*) AS conflict_count
        FROM {}
        WHERE event_type = 'policy_conflict' {}
        GROUP BY table_name, field_name
        ORDER BY table_name, field_name
    """).format(_event_table(pool, schema_name), where)

    try:
        rows = pool.execute_query(query, {"table_name": table_name})
        by_column = {f"{r['table_name']}.{r['field_name']}": r["conflict_count"] for r in rows}
        return {
            "total_conflicts": sum(by_column.values()),
            "conflicts_by_column": by_column,
        }

    except psycopg.DatabaseError as e:
        logger.error(f"Failed to get conflict summary: {e}")
        raise
