"""
End-to-end tests: staged CSV files -> Spark reader -> loaders -> PostgreSQL.

Loads two daily extracts of veterans and exam requests and checks the
resulting history, snapshot rows, quarantine and audit trail.
"""

import os
from datetime import date, datetime, timezone

import pytest

from ves_dw.batch.pipeline import EtlPipeline
from ves_dw.warehouse.audit import query_quality_events
from ves_dw.warehouse.quarantine import QuarantineWriter

DAY1 = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)
DAY2 = datetime(2025, 1, 21, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def pipeline(clean_db, test_metadata, spark_session):
    return EtlPipeline(clean_db, test_metadata, spark=spark_session)


@pytest.mark.e2e
@pytest.mark.slow
def test_dimension_extracts(pipeline, clean_db, test_data_dir):
    """Two veterans extracts: rejects quarantined, changes versioned."""
    first = pipeline.run_file(
        "dim_veterans", os.path.join(test_data_dir, "veterans_batch1.csv"), "vet_day1", as_of=DAY1
    )

    assert first.inserted == 2
    assert first.skipped == 2
    assert first.skipped_reasons == {"validation_failed": 2}
    assert first.status == "PARTIAL"

    second = pipeline.run_file(
        "dim_veterans", os.path.join(test_data_dir, "veterans_batch2.csv"), "vet_day2", as_of=DAY2
    )

    assert second.unchanged == 1
    assert second.updated == 1
    assert second.inserted == 1
    assert second.status == "SUCCESS"

    loader = pipeline.scd_loader
    carter = loader.get_versions("dim_veterans", {"veteran_id": "VET000002"})
    assert [v.attributes["disability_rating"] for v in carter] == [50, 70]
    assert carter[0].attributes["email"] is None
    assert carter[0].effective_end == carter[1].effective_start == DAY2
    assert carter[1].source_system == "VBMS"

    lopez = loader.get_versions("dim_veterans", {"veteran_id": "VET000001"})
    assert len(lopez) == 1
    assert lopez[0].attributes["date_of_birth"] == date(1980, 4, 12)

    nguyen = loader.get_current("dim_veterans", {"veteran_id": "VET000003"})
    assert nguyen.attributes["disability_rating"] == 30
    assert nguyen.batch_id == "vet_day2"

    quarantined = QuarantineWriter(clean_db).list_quarantined(table_name="dim_veterans", batch_id="vet_day1")
    assert sorted(q.record_key for q in quarantined) == ["BAD-KEY", "VET000003"]

    history = pipeline.execution_log.history("dim_veterans")
    assert [e.status for e in history] == ["SUCCESS", "PARTIAL"]


@pytest.mark.e2e
@pytest.mark.slow
def test_snapshot_extracts(pipeline, clean_db, test_data_dir):
    """Two exam-request extracts: milestones accumulate, late dates are conflicts."""
    first = pipeline.run_file(
        "fact_exam_requests",
        os.path.join(test_data_dir, "exam_requests_batch1.csv"),
        "er_day1",
        as_of=DAY1,
    )

    assert first.inserted == 2
    assert first.skipped_reasons == {"validation_failed": 1}

    second = pipeline.run_file(
        "fact_exam_requests",
        os.path.join(test_data_dir, "exam_requests_batch2.csv"),
        "er_day2",
        as_of=DAY2,
    )

    assert second.updated == 2
    assert second.conflicts == 1
    assert second.status == "SUCCESS"

    merger = pipeline.snapshot_merger
    er1 = merger.get_row("fact_exam_requests", "ER-1")
    assert er1.values["request_received_date"] == date(2025, 1, 1)
    assert er1.values["examiner_assigned_date"] == date(2025, 1, 4)
    assert er1.values["request_status"] == "ASSIGNED"
    assert er1.values["evaluator_id"] == "EVAL02"
    assert er1.values["days_to_assignment"] == 3
    assert er1.values["total_cycle_time_days"] == 20
    assert er1.values["sla_met_flag"] is None

    er2 = merger.get_row("fact_exam_requests", "ER-2")
    assert er2.values["examiner_assigned_date"] == date(2025, 1, 5)
    assert er2.values["exam_completed_date"] == date(2025, 1, 20)
    assert er2.values["request_status"] == "COMPLETED"
    assert er2.values["days_to_assignment"] == 4
    assert er2.values["sla_met_flag"] is True
    assert er2.values["sla_variance_days"] == -11

    assert merger.get_row("fact_exam_requests", "ER-3") is None

    [event] = query_quality_events(clean_db, "fact_exam_requests", event_type="policy_conflict")
    assert event.record_key == "ER-2"
    assert event.field_name == "examiner_assigned_date"
    assert event.stored_value == "2025-01-05"
    assert event.incoming_value == "2025-01-02"


@pytest.mark.e2e
@pytest.mark.slow
def test_reloading_the_same_extract_is_a_no_op(pipeline, test_data_dir):
    path = os.path.join(test_data_dir, "veterans_batch2.csv")

    pipeline.run_file("dim_veterans", path, "vet_day2", as_of=DAY1)
    rerun = pipeline.run_file("dim_veterans", path, "vet_day2", as_of=DAY2)

    assert rerun.unchanged == 3
    assert rerun.inserted == rerun.updated == 0


@pytest.mark.e2e
def test_missing_file_raises(pipeline, test_data_dir):
    with pytest.raises(FileNotFoundError):
        pipeline.run_file("dim_veterans", os.path.join(test_data_dir, "nope.csv"), "b1")
