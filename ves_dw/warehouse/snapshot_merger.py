"""
Generic accumulating-snapshot merger.

One row per process instance (e.g. one exam request), updated in place as
the process reaches new milestones. Each column is merged by its declared
policy: PRESERVE_IF_SET columns are append-only milestones, OVERWRITE
columns track the latest known state. Derived lag and SLA metrics are
recomputed on every merge.
"""

from collections.abc import Iterable
from datetime import datetime, timezone
from typing import Any

import psycopg
from psycopg import sql

from ves_dw.core.derived import compute_derived
from ves_dw.core.exceptions import RecordRejectedError
from ves_dw.core.merge import SnapshotMergeResult, merge_snapshot_values
from ves_dw.core.metadata import SnapshotTableConfig, WarehouseMetadata
from ves_dw.core.models import AccumulatingSnapshotRow, DataQualityEvent, LoadSummary, SourceRecord
from ves_dw.core.rules import RuleEngine
from ves_dw.observability.logger import get_logger, log_operation
from ves_dw.observability.metrics import record_load_summary, record_policy_conflict

from .audit import write_quality_events
from .base_loader import REASON_VALIDATION, BaseLoader, utc
from .connection import DatabaseConnectionPool
from .identifiers import column, column_list, key_predicate, placeholders, qualified_table

logger = get_logger(__name__)


class _SnapshotStatements:
    """SQL for one snapshot table, composed once per batch."""

    def __init__(self, schema_name: str, config: SnapshotTableConfig):
        table = qualified_table(schema_name, config.table_name)
        self.event_table = qualified_table(schema_name, "data_quality_event")
        nk = [config.natural_key]
        value_columns = [*config.columns, *config.derived]

        self.select = sql.SQL("SELECT * FROM {table} WHERE {pred} FOR UPDATE").format(
            table=table, pred=key_predicate(nk)
        )
        self.fetch = sql.SQL("SELECT * FROM {table} WHERE {pred}").format(
            table=table, pred=key_predicate(nk)
        )

        insert_columns = [*nk, *value_columns, "source_system", "batch_id", "created_at", "updated_at"]
        self.insert = sql.SQL("INSERT INTO {table} ({cols}) VALUES ({vals})").format(
            table=table, cols=column_list(insert_columns), vals=placeholders(insert_columns)
        )

        assignments = sql.SQL(", ").join(
            sql.SQL("{} = {}").format(column(c), sql.Placeholder(c))
            for c in [*value_columns, "batch_id", "updated_at"]
        )
        self.update = sql.SQL(
            "UPDATE {table} SET {assignments}, "
            "source_system = COALESCE(%(source_system)s, source_system) "
            "WHERE {sk} = %(__surrogate_key)s"
        ).format(table=table, assignments=assignments, sk=column(config.surrogate_key))


class SnapshotMerger(BaseLoader):
    """
    Applies staged batches to accumulating-snapshot fact tables.

    Each record is merged in its own transaction under an advisory lock on
    (table, natural key) with the existing row read FOR UPDATE. Duplicates of
    a natural key within a batch are merged one after another in arrival
    order, so later milestones accumulate.
    """

    def apply_snapshot_merge(
        self,
        table_name: str,
        records: Iterable[SourceRecord | dict[str, Any]],
        batch_id: str,
        as_of: datetime | None = None,
    ) -> LoadSummary:
        """
        Merge one batch into a snapshot fact.

        Args:
            table_name: Configured fact table
            records: SourceRecords or flat dicts (optionally carrying
                     source_system and arrival_ts)
            batch_id: Batch identifier stamped on touched rows
            as_of: Load timestamp; its date closes open_ended durations
                   (defaults to now, UTC)

        Returns:
            LoadSummary with inserted/updated/unchanged/skipped counts and
            the number of policy conflicts

        Raises:
            TableNotConfiguredError: If the table has no metadata
            TableKindMismatchError: If the table is a dimension
            psycopg.OperationalError: If the database becomes unavailable
        """
        config = self.metadata.get_fact(table_name)
        summary = LoadSummary(table_name=table_name, batch_id=batch_id)

        if not config.enabled:
            logger.info(f"Table {table_name} is disabled; skipping batch {batch_id}")
            summary.status = "SKIPPED"
            return summary.finish()

        as_of = utc(as_of) if as_of else datetime.now(timezone.utc)

        with log_operation(f"Snapshot merge {table_name}", logger=logger, batch_id=batch_id):
            engine = RuleEngine(config)
            statements = _SnapshotStatements(self.schema_name, config)

            staged = sorted(
                self._stage(config, records, summary, batch_id),
                key=lambda item: self._arrival_order(*item),
            )

            with self.pool.get_connection() as conn:
                for _, record in staged:
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
                            conn=conn,
                        )
                        continue

                    try:
                        merge, changed = self._apply_record(
                            conn, config, statements, record, result.payload,
                            result.record_key, batch_id, as_of,
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

                    summary.conflicts += len(merge.conflicts)
                    if merge.is_new:
                        summary.inserted += 1
                    elif changed:
                        summary.updated += 1
                    else:
                        summary.unchanged += 1

        summary.finish()
        record_load_summary(summary)
        logger.info(
            f"Snapshot merge of {table_name} finished with status {summary.status}",
            extra={
                "table_name": table_name,
                "batch_id": batch_id,
                "inserted": summary.inserted,
                "updated": summary.updated,
                "unchanged": summary.unchanged,
                "skipped": summary.skipped,
                "conflicts": summary.conflicts,
                "skipped_reasons": summary.skipped_reasons,
            },
        )
        return summary

    def _apply_record(
        self,
        conn: psycopg.Connection,
        config: SnapshotTableConfig,
        statements: _SnapshotStatements,
        record: SourceRecord,
        payload: dict[str, Any],
        record_key: str | None,
        batch_id: str,
        as_of: datetime,
    ) -> tuple[SnapshotMergeResult, bool]:
        """
        Merge one record.

        Returns:
            (merge result, whether any stored value changed)
        """
        natural_key = payload[config.natural_key]
        incoming = {c: payload[c] for c in config.columns if c in payload}

        with conn.transaction():
            with conn.cursor() as cur:
                self._lock(cur, self.schema_name, config.table_name, (natural_key,))

                cur.execute(statements.select, {config.natural_key: natural_key})
                stored = cur.fetchone()

                merge = merge_snapshot_values(stored, incoming, config.policies)
                derived = compute_derived(config.derived, merge.values, as_of.date())
                now = datetime.now(timezone.utc)

                row = {
                    config.natural_key: natural_key,
                    **merge.values,
                    **derived,
                    "source_system": record.source_system,
                    "batch_id": batch_id,
                    "updated_at": now,
                }

                if stored is None:
                    cur.execute(statements.insert, {**row, "created_at": now})
                    changed = True
                else:
                    cur.execute(
                        statements.update,
                        {**row, "__surrogate_key": stored[config.surrogate_key]},
                    )
                    changed = merge.changed or any(
                        stored.get(name) != value for name, value in derived.items()
                    )

                if merge.conflicts:
                    events = self._conflict_events(config, batch_id, record_key, merge)
                    write_quality_events(cur, statements.event_table, events)

        # Conflicts are reported only once the merge that kept the stored value committed
        for conflict in merge.conflicts:
            record_policy_conflict(config.table_name, conflict.column)
            logger.warning(
                f"Policy conflict on {config.table_name}.{conflict.column}: "
                f"kept stored value {conflict.stored_value!r}, "
                f"ignored incoming {conflict.incoming_value!r}",
                extra={
                    "table_name": config.table_name,
                    "batch_id": batch_id,
                    "record_key": record_key,
                    "column": conflict.column,
                    "stored_value": str(conflict.stored_value),
                    "incoming_value": str(conflict.incoming_value),
                },
            )

        return merge, changed

    @staticmethod
    def _conflict_events(
        config: SnapshotTableConfig,
        batch_id: str,
        record_key: str | None,
        merge: SnapshotMergeResult,
    ) -> list[DataQualityEvent]:
        return [
            DataQualityEvent(
                table_name=config.table_name,
                batch_id=batch_id,
                record_key=record_key,
                event_type="policy_conflict",
                field_name=conflict.column,
                stored_value=str(conflict.stored_value),
                incoming_value=str(conflict.incoming_value),
            )
            for conflict in merge.conflicts
        ]

    def get_row(self, table_name: str, natural_key: Any) -> AccumulatingSnapshotRow | None:
        """Fetch the snapshot row of one process instance, if born."""
        config = self.metadata.get_fact(table_name)
        statements = _SnapshotStatements(self.schema_name, config)
        rows = self.pool.execute_query(statements.fetch, {config.natural_key: natural_key})
        if not rows:
            return None
        return AccumulatingSnapshotRow.from_row(
            rows[0],
            config.surrogate_key,
            config.natural_key,
            [*config.columns, *config.derived],
        )


def apply_snapshot_merge(
    pool: DatabaseConnectionPool,
    table_config: SnapshotTableConfig,
    records: Iterable[SourceRecord | dict[str, Any]],
    batch_id: str,
    as_of: datetime | None = None,
    schema_name: str | None = None,
) -> LoadSummary:
    """
    Merge one batch into a single snapshot fact without assembling full metadata.

    See SnapshotMerger.apply_snapshot_merge.
    """
    metadata = WarehouseMetadata(facts={table_config.table_name: table_config})
    merger = SnapshotMerger(pool, metadata, schema_name)
    return merger.apply_snapshot_merge(table_config.table_name, records, batch_id, as_of)
