"""
Schema management operations for the data warehouse.

Creates the operational tables (quarantine, data-quality events, execution
log) and one table per configured dimension or snapshot fact. DDL is built
from validated metadata; table and column names go through
psycopg.sql.Identifier only.
"""

from psycopg import sql

from ves_dw.core.metadata import (
    ColumnType,
    DimensionTableConfig,
    SnapshotTableConfig,
    WarehouseMetadata,
)
from ves_dw.observability.logger import get_logger

from .connection import DatabaseConnectionPool
from .identifiers import check_identifier, column, column_list, qualified_table

logger = get_logger(__name__)

PG_TYPES = {
    ColumnType.TEXT: "TEXT",
    ColumnType.INTEGER: "INTEGER",
    ColumnType.BIGINT: "BIGINT",
    ColumnType.NUMERIC: "NUMERIC",
    ColumnType.BOOLEAN: "BOOLEAN",
    ColumnType.DATE: "DATE",
    ColumnType.TIMESTAMP: "TIMESTAMPTZ",
}

OPERATIONAL_DDL = (
    """
    CREATE TABLE IF NOT EXISTS {schema}.quarantine_record (
        quarantine_id BIGINT GENERATED ALWAYS AS IDENTITY PRIMARY KEY,
        table_name TEXT NOT NULL,
        batch_id TEXT NOT NULL,
        record_key TEXT,
        raw_payload JSONB NOT NULL,
        failed_rules TEXT[] NOT NULL,
        error_messages TEXT[] NOT NULL,
        quarantined_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        reviewed BOOLEAN NOT NULL DEFAULT FALSE
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_quarantine_table_batch
        ON {schema}.quarantine_record (table_name, batch_id)
    """,
    """
    CREATE TABLE IF NOT EXISTS {schema}.data_quality_event (
        event_id BIGINT GENERATED ALWAYS AS IDENTITY PRIMARY KEY,
        table_name TEXT NOT NULL,
        batch_id TEXT NOT NULL,
        record_key TEXT,
        event_type TEXT NOT NULL,
        field_name TEXT,
        stored_value TEXT,
        incoming_value TEXT,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_dq_event_table_key
        ON {schema}.data_quality_event (table_name, record_key)
    """,
    """
    CREATE TABLE IF NOT EXISTS {schema}.etl_execution_log (
        execution_id BIGINT GENERATED ALWAYS AS IDENTITY PRIMARY KEY,
        pipeline_name TEXT NOT NULL,
        table_name TEXT NOT NULL,
        batch_id TEXT NOT NULL,
        status TEXT NOT NULL,
        started_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        finished_at TIMESTAMPTZ,
        duration_seconds DOUBLE PRECISION,
        rows_read INTEGER NOT NULL DEFAULT 0,
        rows_inserted INTEGER NOT NULL DEFAULT 0,
        rows_updated INTEGER NOT NULL DEFAULT 0,
        rows_unchanged INTEGER NOT NULL DEFAULT 0,
        rows_rejected INTEGER NOT NULL DEFAULT 0,
        error_message TEXT
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_execution_log_table
        ON {schema}.etl_execution_log (table_name, started_at DESC)
    """,
)


def _column_def(name: str, column_type: ColumnType, not_null: bool = False) -> sql.Composed:
    definition = sql.SQL("{} {}").format(column(name), sql.SQL(PG_TYPES[column_type]))
    if not_null:
        definition = sql.SQL("{} NOT NULL").format(definition)
    return definition


def dimension_ddl(schema_name: str, config: DimensionTableConfig) -> list[sql.Composed]:
    """
    DDL for a Type 2 dimension.

    The partial unique index on the business keys allows at most one
    current version per key.
    """
    table = qualified_table(schema_name, config.table_name)
    columns = [
        sql.SQL("{} BIGINT GENERATED ALWAYS AS IDENTITY PRIMARY KEY").format(
            column(config.surrogate_key)
        ),
        *(_column_def(k, config.key_type(k), not_null=True) for k in config.business_keys),
        *(_column_def(name, t) for name, t in config.columns.items()),
        sql.SQL(
            "content_hash CHAR(32) NOT NULL, "
            "effective_start TIMESTAMPTZ NOT NULL, "
            "effective_end TIMESTAMPTZ, "
            "is_current BOOLEAN NOT NULL DEFAULT TRUE, "
            "source_system TEXT, "
            "batch_id TEXT, "
            "created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(), "
            "updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(), "
            "CHECK (effective_end IS NULL OR effective_end >= effective_start), "
            "CHECK (is_current = (effective_end IS NULL))"
        ),
    ]
    name = config.table_name
    keys = column_list(config.business_keys)
    return [
        sql.SQL("CREATE TABLE IF NOT EXISTS {} ({})").format(table, sql.SQL(", ").join(columns)),
        sql.SQL("CREATE UNIQUE INDEX IF NOT EXISTS {} ON {} ({}) WHERE is_current").format(
            sql.Identifier(check_identifier(f"{name}_one_current")), table, keys
        ),
        sql.SQL("CREATE INDEX IF NOT EXISTS {} ON {} ({}, effective_start)").format(
            sql.Identifier(check_identifier(f"{name}_history")), table, keys
        ),
    ]


def snapshot_ddl(schema_name: str, config: SnapshotTableConfig) -> list[sql.Composed]:
    """DDL for an accumulating-snapshot fact; one row per natural key."""
    table = qualified_table(schema_name, config.table_name)
    columns = [
        sql.SQL("{} BIGINT GENERATED ALWAYS AS IDENTITY PRIMARY KEY").format(
            column(config.surrogate_key)
        ),
        sql.SQL("{} UNIQUE").format(
            _column_def(config.natural_key, config.natural_key_type, not_null=True)
        ),
        *(_column_def(name, c.type) for name, c in config.columns.items()),
        *(_column_def(name, config.derived_type(name)) for name in config.derived),
        sql.SQL(
            "source_system TEXT, "
            "batch_id TEXT, "
            "created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(), "
            "updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()"
        ),
    ]
    return [
        sql.SQL("CREATE TABLE IF NOT EXISTS {} ({})").format(table, sql.SQL(", ").join(columns)),
    ]


class SchemaManager:
    """
    Manages warehouse DDL.

    Handles:
    - Creating the target schema and operational tables
    - Creating configured dimension and snapshot tables
    - Listing what exists
    """

    def __init__(self, pool: DatabaseConnectionPool, schema_name: str | None = None):
        """
        Initialize schema manager.

        Args:
            pool: Database connection pool
            schema_name: Target schema (defaults to the pool's configured schema)
        """
        self.pool = pool
        self.schema_name = check_identifier(schema_name or pool.schema_name)

    def create_schema(self) -> None:
        """Create the target schema and the operational tables."""
        schema = sql.Identifier(self.schema_name)
        statements = [sql.SQL("CREATE SCHEMA IF NOT EXISTS {}").format(schema)]
        statements.extend(sql.SQL(ddl).format(schema=schema) for ddl in OPERATIONAL_DDL)
        self._execute_all(statements)

    def create_table(self, config: DimensionTableConfig | SnapshotTableConfig) -> None:
        if isinstance(config, DimensionTableConfig):
            statements = dimension_ddl(self.schema_name, config)
        else:
            statements = snapshot_ddl(self.schema_name, config)
        self._execute_all(statements)
        logger.info(
            f"Ensured {config.kind} table {self.schema_name}.{config.table_name}",
            extra={"table_name": config.table_name, "kind": config.kind},
        )

    def create_tables(self, metadata: WarehouseMetadata) -> list[str]:
        """
        Create the schema, operational tables and every configured table.

        Returns:
            Names of the configured tables ensured
        """
        self.create_schema()
        for config in [*metadata.dimensions.values(), *metadata.facts.values()]:
            self.create_table(config)
        return metadata.table_names

    def list_tables(self) -> list[str]:
        """
        List tables in the target schema.

        Returns:
            Table names, sorted
        """
        query = """
            SELECT table_name
            FROM information_schema.tables
            WHERE table_schema = %s
            ORDER BY table_name
        """
        return [row["table_name"] for row in self.pool.execute_query(query, (self.schema_name,))]

    def table_exists(self, table_name: str) -> bool:
        return table_name in self.list_tables()

    def _execute_all(self, statements: list[sql.Composable]) -> None:
        with self.pool.get_connection() as conn:
            with conn.cursor() as cur:
                for statement in statements:
                    cur.execute(statement)
            conn.commit()
