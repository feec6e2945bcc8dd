"""
Shared plumbing for the dimension loader and the snapshot merger.

Both loaders process a batch one record at a time, each record in its own
transaction under a per-key advisory lock. A record that cannot be applied
is quarantined and counted as skipped; the rest of the batch continues.
"""

from collections.abc import Iterable
from datetime import datetime, timezone
from typing import Any

import psycopg
from psycopg import sql
from pydantic import ValidationError as PydanticValidationError

from ves_dw.core.exceptions import RecordRejectedError
from ves_dw.core.metadata import TableConfig, WarehouseMetadata
from ves_dw.core.models import LoadSummary, QuarantineRecord, SourceRecord
from ves_dw.observability.logger import get_logger

from .connection import DatabaseConnectionPool
from .identifiers import check_identifier, lock_key
from .quarantine import QuarantineWriter

logger = get_logger(__name__)

REASON_VALIDATION = "validation_failed"
REASON_SUPERSEDED = "superseded_in_batch"
REASON_DATA_ERROR = "data_error"
REASON_INTEGRITY_ERROR = "integrity_error"

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

LOCK_SQL = sql.SQL("SELECT pg_advisory_xact_lock(hashtextextended(%s, 0))")


def utc(value: datetime) -> datetime:
    """Naive datetimes are taken to be UTC."""
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


class BaseLoader:
    """
    Common state and per-row failure handling for the warehouse loaders.
    """

    def __init__(
        self,
        pool: DatabaseConnectionPool,
        metadata: WarehouseMetadata,
        schema_name: str | None = None,
    ):
        """
        Args:
            pool: Database connection pool
            metadata: Validated table metadata
            schema_name: Target schema (defaults to the pool's configured schema)
        """
        self.pool = pool
        self.metadata = metadata
        self.schema_name = check_identifier(schema_name or pool.schema_name)
        self.quarantine = QuarantineWriter(pool, self.schema_name)

    def _stage(
        self,
        config: TableConfig,
        records: Iterable[SourceRecord | dict[str, Any]],
        summary: LoadSummary,
        batch_id: str,
    ) -> list[tuple[int, SourceRecord]]:
        """Wrap raw rows as SourceRecords, rejecting rows whose envelope is malformed."""
        staged = []
        for position, row in enumerate(records):
            try:
                staged.append((position, SourceRecord.from_row(row)))
            except PydanticValidationError as e:
                payload = dict(row) if isinstance(row, dict) else {"row": str(row)}
                self._reject(
                    config,
                    summary,
                    batch_id,
                    payload,
                    RecordRejectedError(REASON_VALIDATION, [str(e)], ["source_envelope"]),
                )
        return staged

    @staticmethod
    def _arrival_order(position: int, record: SourceRecord) -> tuple[datetime, int]:
        arrival = utc(record.arrival_ts) if record.arrival_ts else EPOCH
        return arrival, position

    @staticmethod
    def _lock(cur: psycopg.Cursor, schema_name: str, table_name: str, key: tuple) -> None:
        """Serialise writers of one key until the surrounding transaction ends."""
        cur.execute(LOCK_SQL, (lock_key(schema_name, table_name, *key),))

    def _reject(
        self,
        config: TableConfig,
        summary: LoadSummary,
        batch_id: str,
        payload: dict[str, Any],
        error: RecordRejectedError,
        conn: psycopg.Connection | None = None,
    ) -> None:
        """
        Quarantine one record and count it as skipped.

        Inside a batch pass `conn`, the connection the loader already holds:
        the quarantine row is written there in its own transaction.
        """
        logger.warning(
            f"Rejected record from {config.table_name}: {error}",
            extra={
                "table_name": config.table_name,
                "batch_id": batch_id,
                "record_key": error.record_key,
                "reason": error.reason,
                "failed_rules": error.failed_rules,
            },
        )
        record = QuarantineRecord(
            table_name=config.table_name,
            batch_id=batch_id,
            record_key=error.record_key,
            raw_payload=payload,
            failed_rules=error.failed_rules,
            error_messages=_pad_messages(error.messages, len(error.failed_rules)),
        )
        try:
            if conn is None:
                self.quarantine.quarantine_record(record)
            else:
                with conn.transaction():
                    with conn.cursor() as cur:
                        self.quarantine.write(cur, record)
        except psycopg.DataError as e:
            # The row is still skipped; the log line is its only record
            logger.error(
                f"Could not quarantine record from {config.table_name}: {e}",
                extra={
                    "table_name": config.table_name,
                    "batch_id": batch_id,
                    "record_key": error.record_key,
                    "raw_payload": repr(payload),
                },
            )
        summary.record_skip(error.reason, error.record_key, error.messages)

    @staticmethod
    def _database_rejection(error: psycopg.Error, record_key: str | None) -> RecordRejectedError:
        """Map a row-level database error to a rejection."""
        reason = (
            REASON_INTEGRITY_ERROR
            if isinstance(error, psycopg.IntegrityError)
            else REASON_DATA_ERROR
        )
        message = str(error).strip() or type(error).__name__
        return RecordRejectedError(reason, [message], record_key=record_key)


def _pad_messages(messages: list[str], count: int) -> list[str]:
    """Quarantine rows pair each failed rule with one message."""
    if len(messages) == count:
        return messages
    joined = "; ".join(messages) or "rejected"
    return [joined] * count
