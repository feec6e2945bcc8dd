"""
Integration tests for quarantine queries and operations.

Tests quarantine filtering, statistics, and review functionality.
"""

import pytest

from ves_dw.core.models import QuarantineRecord
from ves_dw.warehouse.quarantine import QuarantineWriter


def rejected(table_name, batch_id, key, rule="veteran_id_format"):
    return QuarantineRecord(
        table_name=table_name,
        batch_id=batch_id,
        record_key=key,
        raw_payload={"veteran_id": key, "disability_rating": "thirty"},
        failed_rules=[rule],
        error_messages=[f"{rule} failed"],
    )


@pytest.fixture
def writer(clean_db):
    return QuarantineWriter(clean_db)


@pytest.mark.integration
def test_quarantine_record_round_trip(writer):
    """Test that a rejected row keeps its payload and error context."""
    quarantine_id = writer.quarantine_record(rejected("dim_veterans", "batch1", "BAD-KEY"))

    [record] = writer.list_quarantined(table_name="dim_veterans")

    assert record.quarantine_id == quarantine_id
    assert record.record_key == "BAD-KEY"
    assert record.raw_payload == {"veteran_id": "BAD-KEY", "disability_rating": "thirty"}
    assert record.failed_rules == ["veteran_id_format"]
    assert record.reviewed is False


@pytest.mark.integration
def test_quarantine_query_by_table_and_batch(writer):
    writer.quarantine_batch([
        rejected("dim_veterans", "batch1", "A"),
        rejected("dim_veterans", "batch2", "B"),
        rejected("fact_exam_requests", "batch1", "ER-3", rule="request_received_date_type_check"),
    ])

    assert len(writer.list_quarantined(table_name="dim_veterans")) == 2
    assert [r.record_key for r in writer.list_quarantined(table_name="dim_veterans", batch_id="batch2")] == ["B"]
    assert len(writer.list_quarantined(batch_id="batch1")) == 2
    assert len(writer.list_quarantined(limit=1)) == 1


@pytest.mark.integration
def test_quarantine_batch_of_nothing(writer):
    assert writer.quarantine_batch([]) == 0


@pytest.mark.integration
def test_quarantine_stats_and_review(writer):
    """Test statistics before and after an analyst review."""
    ids = [
        writer.quarantine_record(rejected("dim_veterans", "batch1", key))
        for key in ("A", "B", "C")
    ]
    writer.quarantine_record(rejected("fact_exam_requests", "batch1", "ER-3"))

    assert writer.get_quarantine_stats() == {"total_quarantined": 4, "unreviewed": 4}

    writer.mark_reviewed(ids[0])

    assert writer.get_quarantine_stats("dim_veterans") == {"total_quarantined": 3, "unreviewed": 2}
    assert writer.get_stats_by_table() == [
        {"table_name": "dim_veterans", "total_quarantined": 3, "unreviewed": 2},
        {"table_name": "fact_exam_requests", "total_quarantined": 1, "unreviewed": 1},
    ]
