"""
Generic SCD Type 2 loader.

One loader serves every configured dimension. Per business key the state
machine is ABSENT -> CURRENT on first sight, then CURRENT -> EXPIRED plus a
new CURRENT whenever the content hash of the tracked columns changes.
Matching hashes write nothing, so re-running a batch adds no history.
"""

from collections.abc import Iterable
from datetime import datetime, timezone
from typing import Any

import psycopg
from psycopg import sql

from ves_dw.core.exceptions import RecordRejectedError
from ves_dw.core.hashing import hash_record
from ves_dw.core.merge import ScdAction, latest_per_key, plan_scd_action
from ves_dw.core.metadata import DimensionTableConfig, WarehouseMetadata
from ves_dw.core.models import DataQualityEvent, DimensionVersion, LoadSummary, SourceRecord
from ves_dw.core.rules import RuleEngine
from ves_dw.observability.logger import get_logger, log_operation
from ves_dw.observability.metrics import record_load_summary

from .audit import insert_quality_events_batch
from .base_loader import REASON_SUPERSEDED, REASON_VALIDATION, BaseLoader, utc
from .connection import DatabaseConnectionPool
from .identifiers import column, column_list, key_predicate, placeholders, qualified_table

logger = get_logger(__name__)

INSERT_AUDIT_COLUMNS = (
    "content_hash",
    "effective_start",
    "is_current",
    "source_system",
    "batch_id",
    "created_at",
    "updated_at",
)


class _ScdStatements:
    """SQL for one dimension, composed once per batch."""

    def __init__(self, schema_name: str, config: DimensionTableConfig):
        table = qualified_table(schema_name, config.table_name)
        sk = column(config.surrogate_key)
        keys = config.business_keys

        self.select_current = sql.SQL(
            "SELECT {sk}, content_hash, effective_start FROM {table} "
            "WHERE {pred} AND is_current FOR UPDATE"
        ).format(sk=sk, table=table, pred=key_predicate(keys))

        self.expire = sql.SQL(
            "UPDATE {table} SET effective_end = %(boundary)s, is_current = FALSE, "
            "updated_at = %(now)s WHERE {sk} = %(surrogate_key)s"
        ).format(table=table, sk=sk)

        insert_columns = [*keys, *config.tracked_columns, *INSERT_AUDIT_COLUMNS]
        self.insert = sql.SQL("INSERT INTO {table} ({cols}) VALUES ({vals}) RETURNING {sk}").format(
            table=table,
            cols=column_list(insert_columns),
            vals=placeholders(insert_columns),
            sk=sk,
        )

        self.history = sql.SQL(
            "SELECT * FROM {table} WHERE {pred} ORDER BY effective_start, {sk}"
        ).format(table=table, pred=key_predicate(keys), sk=sk)


class ScdLoader(BaseLoader):
    """
    Applies staged batches to Type 2 dimensions.

    Each record is applied in its own transaction: an advisory lock on
    (table, business key), a FOR UPDATE read of the current version, then
    either nothing, an insert, or an expire and insert sharing one boundary
    timestamp. A partial unique index on the business keys backs the
    single-current rule in the database.
    """

    def apply_scd_merge(
        self,
        table_name: str,
        records: Iterable[SourceRecord | dict[str, Any]],
        batch_id: str,
        as_of: datetime | None = None,
    ) -> LoadSummary:
        """
        Load one batch into a dimension.

        Args:
            table_name: Configured dimension
            records: SourceRecords or flat dicts (optionally carrying
                     source_system and arrival_ts)
            batch_id: Batch identifier stamped on new versions
            as_of: Load timestamp used for effective_start/effective_end
                   (defaults to now, UTC)

        Returns:
            LoadSummary with inserted/updated/unchanged/skipped counts

        Raises:
            TableNotConfiguredError: If the table has no metadata
            TableKindMismatchError: If the table is a fact
            psycopg.OperationalError: If the database becomes unavailable
        """
        config = self.metadata.get_dimension(table_name)
        summary = LoadSummary(table_name=table_name, batch_id=batch_id)

        if not config.enabled:
            logger.info(f"Table {table_name} is disabled; skipping batch {batch_id}")
            summary.status = "SKIPPED"
            return summary.finish()

        as_of = utc(as_of) if as_of else datetime.now(timezone.utc)

        with log_operation(f"SCD2 load {table_name}", logger=logger, batch_id=batch_id):
            engine = RuleEngine(config)
            statements = _ScdStatements(self.schema_name, config)

            valid = []
            for position, record in self._stage(config, records, summary, batch_id):
                result = engine.validate_record(record.values)
                if not result.passed:
                    self._reject(
                        config,
                        summary,
                        batch_id,
                        record.values,
                        RecordRejectedError(
                            REASON_VALIDATION,
                            result.error_messages,
                            result.failed_rules,
                            result.record_key,
                        ),
                    )
                    continue
                valid.append((position, record, result))

            winners, superseded = latest_per_key(
                valid,
                key=lambda item: tuple(item[2].payload[k] for k in config.business_keys),
                order=lambda item: self._arrival_order(item[0], item[1]),
            )
            self._record_superseded(config, summary, batch_id, superseded)

            with self.pool.get_connection() as conn:
                for _, record, result in winners:
                    try:
                        action = self._apply_record(
                            conn, config, statements, record, result.payload, batch_id, as_of
                        )
                    except (psycopg.DataError, psycopg.IntegrityError) as e:
                        self._reject(
                            config,
                            summary,
                            batch_id,
                            record.values,
                            self._database_rejection(e, result.record_key),
                            conn=conn,
                        )
                        continue

                    if action == ScdAction.INSERT:
                        summary.inserted += 1
                    elif action == ScdAction.EXPIRE_AND_INSERT:
                        summary.updated += 1
                    else:
                        summary.unchanged += 1

        summary.finish()
        record_load_summary(summary)
        logger.info(
            f"SCD2 load of {table_name} finished with status {summary.status}",
            extra={
                "table_name": table_name,
                "batch_id": batch_id,
                "inserted": summary.inserted,
                "updated": summary.updated,
                "unchanged": summary.unchanged,
                "skipped": summary.skipped,
                "skipped_reasons": summary.skipped_reasons,
            },
        )
        return summary

    def _apply_record(
        self,
        conn: psycopg.Connection,
        config: DimensionTableConfig,
        statements: _ScdStatements,
        record: SourceRecord,
        payload: dict[str, Any],
        batch_id: str,
        as_of: datetime,
    ) -> ScdAction:
        key_values = {k: payload[k] for k in config.business_keys}
        incoming_hash = hash_record(payload, config.tracked_columns)

        with conn.transaction():
            with conn.cursor() as cur:
                self._lock(cur, self.schema_name, config.table_name, tuple(key_values.values()))

                cur.execute(statements.select_current, key_values)
                current = cur.fetchone()

                action = plan_scd_action(
                    current["content_hash"] if current else None,
                    incoming_hash,
                    has_current=current is not None,
                )
                if action == ScdAction.UNCHANGED:
                    return action

                # Expired end == new start; never earlier than the version it closes
                boundary = max(as_of, current["effective_start"]) if current else as_of
                now = datetime.now(timezone.utc)

                if current is not None:
                    cur.execute(
                        statements.expire,
                        {
                            "boundary": boundary,
                            "now": now,
                            "surrogate_key": current[config.surrogate_key],
                        },
                    )

                row = {
                    **key_values,
                    **{c: payload.get(c) for c in config.tracked_columns},
                    "content_hash": incoming_hash,
                    "effective_start": boundary,
                    "is_current": True,
                    "source_system": record.source_system,
                    "batch_id": batch_id,
                    "created_at": now,
                    "updated_at": now,
                }
                cur.execute(statements.insert, row)

        logger.debug(
            f"{action.value} on {config.table_name}",
            extra={"table_name": config.table_name, "business_key": str(key_values)},
        )
        return action

    def _record_superseded(
        self,
        config: DimensionTableConfig,
        summary: LoadSummary,
        batch_id: str,
        superseded: list,
    ) -> None:
        """Count in-batch duplicates that lost to a later arrival, and log them as events."""
        if not superseded:
            return

        events = []
        for _, record, result in superseded:
            message = "A later record for the same business key arrived in this batch"
            summary.record_skip(REASON_SUPERSEDED, result.record_key, [message])
            events.append(
                DataQualityEvent(
                    table_name=config.table_name,
                    batch_id=batch_id,
                    record_key=result.record_key,
                    event_type="superseded_in_batch",
                    incoming_value=str(record.arrival_ts) if record.arrival_ts else None,
                )
            )

        logger.info(
            f"{len(superseded)} superseded record(s) skipped in {config.table_name}",
            extra={"table_name": config.table_name, "batch_id": batch_id},
        )
        insert_quality_events_batch(self.pool, events, self.schema_name)

    def get_versions(self, table_name: str, business_key: dict[str, Any]) -> list[DimensionVersion]:
        """
        Full version history of one business key, oldest first.

        Args:
            table_name: Configured dimension
            business_key: Value per business-key column
        """
        config = self.metadata.get_dimension(table_name)
        statements = _ScdStatements(self.schema_name, config)
        rows = self.pool.execute_query(statements.history, business_key)
        return [
            DimensionVersion.from_row(
                row, config.surrogate_key, config.business_keys, config.tracked_columns
            )
            for row in rows
        ]

    def get_current(self, table_name: str, business_key: dict[str, Any]) -> DimensionVersion | None:
        versions = [v for v in self.get_versions(table_name, business_key) if v.is_current]
        return versions[-1] if versions else None


def apply_scd_merge(
    pool: DatabaseConnectionPool,
    table_config: DimensionTableConfig,
    records: Iterable[SourceRecord | dict[str, Any]],
    batch_id: str,
    as_of: datetime | None = None,
    schema_name: str | None = None,
) -> LoadSummary:
    """
    Load one batch into a single dimension without assembling full metadata.

    See ScdLoader.apply_scd_merge.
    """
    metadata = WarehouseMetadata(dimensions={table_config.table_name: table_config})
    loader = ScdLoader(pool, metadata, schema_name)
    return loader.apply_scd_merge(table_config.table_name, records, batch_id, as_of)
