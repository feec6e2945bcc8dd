"""
Integration tests for pipeline orchestration and the execution log.
"""

from datetime import datetime, timezone

import psycopg
import pytest

from ves_dw.batch.pipeline import EtlPipeline
from ves_dw.core.exceptions import TableNotConfiguredError
from ves_dw.core.metadata import MetadataBuilder
from ves_dw.observability.metrics import REGISTRY
from ves_dw.warehouse.execution_log import ExecutionLogWriter

AS_OF = datetime(2025, 1, 31, tzinfo=timezone.utc)


@pytest.fixture
def pipeline(clean_db, test_metadata):
    return EtlPipeline(clean_db, test_metadata)


@pytest.mark.integration
def test_clean_dimension_batch_logs_success(pipeline):
    summary = pipeline.run_table(
        "dim_veterans",
        [{"veteran_id": "VET000001", "first_name": "Maria", "disability_rating": "10"}],
        "batch1",
        as_of=AS_OF,
    )

    assert summary.status == "SUCCESS"

    entry = pipeline.execution_log.history("dim_veterans")[0]
    assert entry.pipeline_name == "scd2:dim_veterans"
    assert entry.batch_id == "batch1"
    assert entry.status == "SUCCESS"
    assert entry.rows_read == 1
    assert entry.rows_inserted == 1
    assert entry.finished_at is not None
    assert entry.error_message is None


@pytest.mark.integration
def test_partial_snapshot_batch_logs_counts(pipeline):
    summary = pipeline.run_table(
        "fact_exam_requests",
        [
            {"exam_request_id": "ER-1", "request_received_date": "2025-01-01"},
            {"exam_request_id": "ER-3", "request_received_date": "2025-02-30"},
        ],
        "batch1",
        as_of=AS_OF,
    )

    assert summary.status == "PARTIAL"

    entry = pipeline.execution_log.history("fact_exam_requests")[0]
    assert entry.pipeline_name == "snapshot:fact_exam_requests"
    assert entry.status == "PARTIAL"
    assert entry.rows_read == 2
    assert entry.rows_inserted == 1
    assert entry.rows_rejected == 1


@pytest.mark.integration
def test_disabled_table_logs_skipped(pipeline):
    summary = pipeline.run_table("dim_facilities", [{"facility_id": "F1"}], "batch1")

    assert summary.status == "SKIPPED"
    assert pipeline.execution_log.history("dim_facilities")[0].status == "SKIPPED"


@pytest.mark.integration
def test_batch_level_error_logs_failed_and_propagates(clean_db):
    metadata = (
        MetadataBuilder()
        .add_dimension("dim_never_created", ["entity_id"], {"label": "text"})
        .build()
    )
    pipeline = EtlPipeline(clean_db, metadata)
    sample = {"table_name": "dim_never_created", "status": "FAILED"}
    before = REGISTRY.get_sample_value("ves_etl_batches_processed_total", sample) or 0

    with pytest.raises(psycopg.errors.UndefinedTable):
        pipeline.run_table("dim_never_created", [{"entity_id": "E1", "label": "x"}], "batch1")

    entry = ExecutionLogWriter(clean_db).history("dim_never_created")[0]
    assert entry.status == "FAILED"
    assert entry.error_message.startswith("UndefinedTable:")
    assert REGISTRY.get_sample_value("ves_etl_batches_processed_total", sample) == before + 1


@pytest.mark.integration
def test_unknown_table_is_not_logged(pipeline):
    with pytest.raises(TableNotConfiguredError):
        pipeline.run_table("dim_nope", [], "batch1")

    assert pipeline.execution_log.history("dim_nope") == []


@pytest.mark.integration
def test_history_is_newest_first(pipeline):
    for batch_id in ("batch1", "batch2", "batch3"):
        pipeline.run_table("dim_veterans", [{"veteran_id": "VET000001"}], batch_id, as_of=AS_OF)

    history = pipeline.execution_log.history("dim_veterans", limit=2)

    assert [e.batch_id for e in history] == ["batch3", "batch2"]
    assert history[0].rows_unchanged == 1


@pytest.mark.integration
def test_run_file_requires_spark(pipeline, test_data_dir):
    with pytest.raises(RuntimeError):
        pipeline.run_file("dim_veterans", f"{test_data_dir}/veterans_batch1.csv", "batch1")
