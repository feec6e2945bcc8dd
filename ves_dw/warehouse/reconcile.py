"""
Reconciliation pass for Type 2 dimensions.

The loaders prevent two current versions per key; this module detects and
repairs history that was broken anyway (manual edits, tables created
without the one-current index, restores).
"""

from typing import Any

from psycopg import sql

from ves_dw.core.exceptions import IntegrityViolationError
from ves_dw.core.metadata import DimensionTableConfig
from ves_dw.observability.logger import get_logger

from .base_loader import LOCK_SQL
from .connection import DatabaseConnectionPool
from .identifiers import (
    check_identifier,
    column,
    column_list,
    key_predicate,
    lock_key,
    qualified_table,
)

logger = get_logger(__name__)

MULTIPLE_CURRENT = "multiple_current"
NO_CURRENT = "no_current"
OVERLAP = "overlapping_interval"
GAP = "interval_gap"


def _render_key(row: dict[str, Any], keys: list[str]) -> str:
    return "|".join(str(row[k]) for k in keys)


def find_integrity_violations(
    pool: DatabaseConnectionPool,
    table_config: DimensionTableConfig,
    schema_name: str | None = None,
) -> list[dict[str, Any]]:
    """
    Find broken version history in a dimension.

    Reports business keys with more than one current row, keys with no
    current row, and consecutive versions whose intervals overlap or leave
    a gap.

    Returns:
        List of {"violation", "business_key", "detail"} dictionaries
    """
    table = qualified_table(schema_name or pool.schema_name, table_config.table_name)
    keys = table_config.business_keys
    key_cols = column_list(keys)
    sk = column(table_config.surrogate_key)

    current_sql = sql.SQL("""
        SELECT {keys}, COUNT(*) FILTER (WHERE is_current) AS current_count
        FROM {table}
        GROUP BY {keys}
        HAVING COUNT(*) FILTER (WHERE is_current) <> 1
        ORDER BY {keys}
    """).format(keys=key_cols, table=table)

    interval_sql = sql.SQL("""
        SELECT {keys}, {sk} AS version_sk, effective_start, effective_end, next_start
        FROM (
            SELECT {keys}, {sk}, effective_start, effective_end,
                   LEAD(effective_start) OVER (
                       PARTITION BY {keys} ORDER BY effective_start, {sk}
                   ) AS next_start
            FROM {table}
        ) versions
        WHERE next_start IS NOT NULL
          AND (effective_end IS NULL OR effective_end <> next_start)
        ORDER BY {keys}, effective_start
    """).format(keys=key_cols, sk=sk, table=table)

    violations: list[dict[str, Any]] = []

    for row in pool.execute_query(current_sql):
        count = row["current_count"]
        violations.append({
            "violation": MULTIPLE_CURRENT if count > 1 else NO_CURRENT,
            "business_key": _render_key(row, keys),
            "detail": f"{count} current versions",
        })

    for row in pool.execute_query(interval_sql):
        end, next_start = row["effective_end"], row["next_start"]
        kind = OVERLAP if end is None or end > next_start else GAP
        violations.append({
            "violation": kind,
            "business_key": _render_key(row, keys),
            "detail": (
                f"version {row['version_sk']} ends at {end}, "
                f"next version starts at {next_start}"
            ),
        })

    if violations:
        logger.warning(
            f"Found {len(violations)} integrity violation(s) in {table_config.table_name}",
            extra={"table_name": table_config.table_name},
        )
    return violations


def check_integrity(
    pool: DatabaseConnectionPool,
    table_config: DimensionTableConfig,
    schema_name: str | None = None,
) -> None:
    """
    Raises:
        IntegrityViolationError: If any violation is found
    """
    violations = find_integrity_violations(pool, table_config, schema_name)
    if violations:
        raise IntegrityViolationError(table_config.table_name, violations)


def repair_multiple_current(
    pool: DatabaseConnectionPool,
    table_config: DimensionTableConfig,
    schema_name: str | None = None,
) -> int:
    """
    Leave exactly one current version per business key.

    The version with the latest effective_start stays current; every other
    current version is closed at the start of its successor.

    Returns:
        Number of versions closed
    """
    schema_name = check_identifier(schema_name or pool.schema_name)
    table = qualified_table(schema_name, table_config.table_name)
    keys = table_config.business_keys
    sk = column(table_config.surrogate_key)

    find_sql = sql.SQL("""
        SELECT {keys}
        FROM {table}
        WHERE is_current
        GROUP BY {keys}
        HAVING COUNT(*) > 1
    """).format(keys=column_list(keys), table=table)

    current_sql = sql.SQL("""
        SELECT {sk} AS version_sk, effective_start
        FROM {table}
        WHERE {pred} AND is_current
        ORDER BY effective_start, {sk}
        FOR UPDATE
    """).format(sk=sk, table=table, pred=key_predicate(keys))

    close_sql = sql.SQL("""
        UPDATE {table}
        SET effective_end = GREATEST(%(end)s, effective_start),
            is_current = FALSE,
            updated_at = NOW()
        WHERE {sk} = %(version_sk)s
    """).format(table=table, sk=sk)

    repaired = 0
    for key_row in pool.execute_query(find_sql):
        key_values = {k: key_row[k] for k in keys}
        with pool.get_connection() as conn:
            with conn.transaction():
                with conn.cursor() as cur:
                    cur.execute(
                        LOCK_SQL,
                        (lock_key(schema_name, table_config.table_name, *key_values.values()),),
                    )
                    cur.execute(current_sql, key_values)
                    versions = cur.fetchall()
                    for version, successor in zip(versions, versions[1:]):
                        cur.execute(
                            close_sql,
                            {"end": successor["effective_start"], "version_sk": version["version_sk"]},
                        )
                        repaired += 1

        logger.info(
            f"Repaired current versions of {table_config.table_name} key {key_values}",
            extra={"table_name": table_config.table_name},
        )

    return repaired
