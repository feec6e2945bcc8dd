"""
Batch pipeline orchestration.

Coordinates one table load: read staged rows -> dispatch to the SCD loader
or the snapshot merger by table kind -> record the execution log row.
"""

from collections.abc import Iterable
from datetime import datetime
from pathlib import Path
from typing import Any

from pyspark.sql import SparkSession

from ves_dw.batch.readers import FileReader
from ves_dw.core.metadata import DimensionTableConfig, WarehouseMetadata
from ves_dw.core.models import LoadSummary, SourceRecord
from ves_dw.observability.logger import get_logger
from ves_dw.observability.metrics import record_batch_failure
from ves_dw.warehouse.connection import DatabaseConnectionPool
from ves_dw.warehouse.execution_log import ExecutionLogWriter
from ves_dw.warehouse.scd_loader import ScdLoader
from ves_dw.warehouse.snapshot_merger import SnapshotMerger

logger = get_logger(__name__)


def create_spark_session(app_name: str = "ves-dw-etl") -> SparkSession:
    """
    Create Spark session for reading staged files.

    Args:
        app_name: Application name

    Returns:
        SparkSession
    """
    spark = SparkSession.builder \
        .appName(app_name) \
        .master("local[*]") \
        .config("spark.sql.adaptive.enabled", "true") \
        .config("spark.ui.enabled", "false") \
        .getOrCreate()

    return spark


class EtlPipeline:
    """
    Runs table loads and keeps the execution history.

    Flow:
    1. Read staged rows (from memory or a CSV/JSON/Parquet file)
    2. Apply them with the SCD loader (dimensions) or the snapshot merger (facts)
    3. Record RUNNING -> SUCCESS / PARTIAL / FAILED / SKIPPED in the execution log
    """

    def __init__(
        self,
        pool: DatabaseConnectionPool,
        metadata: WarehouseMetadata,
        spark: SparkSession | None = None,
        schema_name: str | None = None,
    ):
        """
        Initialize the pipeline.

        Args:
            pool: Database connection pool
            metadata: Validated table metadata
            spark: Spark session, needed only for run_file
            schema_name: Target schema (defaults to the pool's configured schema)
        """
        self.pool = pool
        self.metadata = metadata
        self.spark = spark
        self.scd_loader = ScdLoader(pool, metadata, schema_name)
        self.snapshot_merger = SnapshotMerger(pool, metadata, schema_name)
        self.execution_log = ExecutionLogWriter(pool, self.scd_loader.schema_name)

    def run_table(
        self,
        table_name: str,
        records: Iterable[SourceRecord | dict[str, Any]],
        batch_id: str,
        as_of: datetime | None = None,
    ) -> LoadSummary:
        """
        Load one batch into one table.

        Returns:
            LoadSummary of the load

        Raises:
            TableNotConfiguredError: If the table has no metadata (nothing is logged)
            Exception: Any batch-level error, after the run is logged as FAILED
        """
        config = self.metadata.get(table_name)
        is_dimension = isinstance(config, DimensionTableConfig)
        pipeline_name = f"{'scd2' if is_dimension else 'snapshot'}:{table_name}"

        entry = self.execution_log.start(pipeline_name, table_name, batch_id)
        try:
            if is_dimension:
                summary = self.scd_loader.apply_scd_merge(table_name, records, batch_id, as_of)
            else:
                summary = self.snapshot_merger.apply_snapshot_merge(
                    table_name, records, batch_id, as_of
                )
        except Exception as e:
            logger.error(
                f"Load of {table_name} batch {batch_id} failed: {e}",
                extra={"table_name": table_name, "batch_id": batch_id},
                exc_info=True,
            )
            record_batch_failure(table_name)
            self.execution_log.fail(entry, e)
            raise

        self.execution_log.finish(entry, summary)
        return summary

    def run_file(
        self,
        table_name: str,
        file_path: str,
        batch_id: str,
        file_format: str = "csv",
        as_of: datetime | None = None,
        **read_options
    ) -> LoadSummary:
        """
        Read a staged file with Spark and load it into one table.

        Raises:
            RuntimeError: If the pipeline was built without a Spark session
            FileNotFoundError: If the staged file does not exist
        """
        if self.spark is None:
            raise RuntimeError("run_file needs a Spark session; pass spark= to EtlPipeline")

        # Fail before touching the execution log for a bad path or table
        self.metadata.get(table_name)
        if not Path(file_path).exists():
            raise FileNotFoundError(f"Staged file not found: {file_path}")

        logger.info(f"Reading {file_format} file {file_path} for {table_name}")
        records = FileReader(self.spark).read_records(file_path, file_format, **read_options)
        logger.info(f"Read {len(records)} staged records")

        return self.run_table(table_name, records, batch_id, as_of)
