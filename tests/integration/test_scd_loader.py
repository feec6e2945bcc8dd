"""
Integration tests for the SCD Type 2 loader.

Runs against a PostgreSQL testcontainer with the tables from
tests/fixtures/tables.yaml.
"""

from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone

import pytest

from ves_dw.core.exceptions import TableKindMismatchError, TableNotConfiguredError
from ves_dw.warehouse.audit import query_quality_events
from ves_dw.warehouse.quarantine import QuarantineWriter
from ves_dw.warehouse.reconcile import find_integrity_violations
from ves_dw.warehouse.scd_loader import ScdLoader, apply_scd_merge

T1 = datetime(2025, 1, 3, 6, 0, tzinfo=timezone.utc)
T2 = T1 + timedelta(days=1)
T3 = T1 + timedelta(days=2)

V1 = {"veteran_id": "VET000001"}


def veteran(rating, veteran_id="VET000001", **extra):
    return {
        "veteran_id": veteran_id,
        "first_name": "Maria",
        "last_name": "Lopez",
        "disability_rating": rating,
        **extra,
    }


@pytest.fixture
def loader(clean_db, test_metadata):
    return ScdLoader(clean_db, test_metadata)


@pytest.mark.integration
def test_unchanged_batch_adds_no_version_and_change_expires(loader):
    """Identical hash is a no-op; a changed rating closes the old version."""
    first = loader.apply_scd_merge("dim_veterans", [veteran(10)], "batch1", as_of=T1)
    assert first.inserted == 1
    assert first.status == "SUCCESS"

    second = loader.apply_scd_merge("dim_veterans", [veteran(10)], "batch2", as_of=T2)
    assert second.unchanged == 1
    assert second.inserted == 0 and second.updated == 0
    assert len(loader.get_versions("dim_veterans", V1)) == 1

    third = loader.apply_scd_merge("dim_veterans", [veteran(30)], "batch3", as_of=T3)
    assert third.updated == 1

    versions = loader.get_versions("dim_veterans", V1)
    assert len(versions) == 2
    old, new = versions
    assert old.is_current is False
    assert old.attributes["disability_rating"] == 10
    assert old.effective_start == T1
    assert old.effective_end == T3
    assert new.is_current is True
    assert new.attributes["disability_rating"] == 30
    assert new.effective_start == T3
    assert new.effective_end is None
    assert new.batch_id == "batch3"
    assert old.content_hash != new.content_hash


@pytest.mark.integration
def test_rerunning_a_batch_is_idempotent(loader):
    batch = [veteran(10), veteran(50, veteran_id="VET000002")]

    loader.apply_scd_merge("dim_veterans", batch, "batch1", as_of=T1)
    rerun = loader.apply_scd_merge("dim_veterans", batch, "batch1", as_of=T2)

    assert rerun.unchanged == 2
    assert rerun.inserted == 0
    assert len(loader.get_versions("dim_veterans", V1)) == 1
    assert len(loader.get_versions("dim_veterans", {"veteran_id": "VET000002"})) == 1


@pytest.mark.integration
def test_history_stays_contiguous_with_one_current(loader, test_metadata):
    for day, rating in enumerate([10, 20, 20, 30, 40]):
        loader.apply_scd_merge(
            "dim_veterans", [veteran(rating)], f"batch{day}", as_of=T1 + timedelta(days=day)
        )

    versions = loader.get_versions("dim_veterans", V1)
    assert [v.attributes["disability_rating"] for v in versions] == [10, 20, 30, 40]
    assert sum(v.is_current for v in versions) == 1
    for earlier, later in zip(versions, versions[1:]):
        assert earlier.effective_end == later.effective_start

    config = test_metadata.get_dimension("dim_veterans")
    assert find_integrity_violations(loader.pool, config) == []


@pytest.mark.integration
def test_late_as_of_never_precedes_current_start(loader):
    """A load stamped before the current version starts closes it at its own start."""
    loader.apply_scd_merge("dim_veterans", [veteran(10)], "batch1", as_of=T2)
    loader.apply_scd_merge("dim_veterans", [veteran(30)], "batch0", as_of=T1)

    old, new = loader.get_versions("dim_veterans", V1)
    assert old.effective_end == T2
    assert new.effective_start == T2
    assert new.is_current is True


@pytest.mark.integration
def test_type_coercion_keeps_hash_stable(loader):
    """A string rating from a CSV hashes the same as the integer."""
    loader.apply_scd_merge("dim_veterans", [veteran(10)], "batch1", as_of=T1)
    summary = loader.apply_scd_merge("dim_veterans", [veteran("10")], "batch2", as_of=T2)

    assert summary.unchanged == 1


@pytest.mark.integration
def test_latest_arrival_wins_within_batch(loader, clean_db):
    batch = [
        veteran(30, arrival_ts=T2, source_system="VBMS"),
        veteran(10, arrival_ts=T1, source_system="VBMS"),
    ]

    summary = loader.apply_scd_merge("dim_veterans", batch, "batch1", as_of=T3)

    assert summary.inserted == 1
    assert summary.skipped == 1
    assert summary.skipped_reasons == {"superseded_in_batch": 1}
    assert summary.status == "PARTIAL"

    current = loader.get_current("dim_veterans", V1)
    assert current.attributes["disability_rating"] == 30
    assert current.source_system == "VBMS"

    events = query_quality_events(clean_db, "dim_veterans", event_type="superseded_in_batch")
    assert len(events) == 1
    assert events[0].record_key == "VET000001"


@pytest.mark.integration
def test_invalid_rows_are_quarantined_and_batch_continues(loader, clean_db):
    batch = [
        veteran(10),
        veteran("thirty", veteran_id="VET000003"),
        veteran(20, veteran_id="BAD-KEY"),
        {"first_name": "No Key"},
    ]

    summary = loader.apply_scd_merge("dim_veterans", batch, "batch1", as_of=T1)

    assert summary.inserted == 1
    assert summary.skipped == 3
    assert summary.skipped_reasons == {"validation_failed": 3}
    assert summary.status == "PARTIAL"

    quarantined = QuarantineWriter(clean_db).list_quarantined(table_name="dim_veterans")
    assert len(quarantined) == 3
    by_key = {q.record_key: q for q in quarantined}
    assert by_key["VET000003"].failed_rules == ["disability_rating_type_check"]
    assert by_key["VET000003"].raw_payload["disability_rating"] == "thirty"
    assert by_key["BAD-KEY"].failed_rules == ["veteran_id_format"]
    assert by_key[None].failed_rules == ["veteran_id_required"]
    assert all(q.batch_id == "batch1" for q in quarantined)


@pytest.mark.integration
def test_disabled_table_is_skipped(loader):
    summary = loader.apply_scd_merge(
        "dim_facilities", [{"facility_id": "F1", "facility_name": "X"}], "batch1"
    )

    assert summary.status == "SKIPPED"
    assert summary.total == 0


@pytest.mark.integration
def test_wrong_table_kind_or_name_raises(loader):
    with pytest.raises(TableKindMismatchError):
        loader.apply_scd_merge("fact_exam_requests", [], "batch1")

    with pytest.raises(TableNotConfiguredError):
        loader.apply_scd_merge("dim_nope", [], "batch1")


@pytest.mark.integration
def test_module_level_merge(clean_db, test_metadata):
    config = test_metadata.get_dimension("dim_veterans")

    summary = apply_scd_merge(clean_db, config, [veteran(10)], "batch1", as_of=T1)

    assert summary.inserted == 1


@pytest.mark.integration
def test_concurrent_loads_keep_one_current(clean_db, test_metadata):
    """Concurrent writers of one key serialise on the advisory lock."""

    def load(rating):
        return ScdLoader(clean_db, test_metadata).apply_scd_merge(
            "dim_veterans", [veteran(rating)], f"batch_{rating}", as_of=T1
        )

    with ThreadPoolExecutor(max_workers=2) as executor:
        summaries = list(executor.map(load, [10, 20, 30, 40]))

    assert sum(s.inserted for s in summaries) == 1
    assert sum(s.updated for s in summaries) == 3

    versions = ScdLoader(clean_db, test_metadata).get_versions("dim_veterans", V1)
    assert len(versions) == 4
    assert sum(v.is_current for v in versions) == 1

    config = test_metadata.get_dimension("dim_veterans")
    assert find_integrity_violations(clean_db, config) == []


@pytest.mark.integration
def test_nul_in_text_is_quarantined_on_a_pool_of_one(single_connection_pool, test_metadata):
    """The database rejection is quarantined on the loader's own connection."""
    loader = ScdLoader(single_connection_pool, test_metadata)
    batch = [veteran(10, first_name="Ma\x00ria"), veteran(20, veteran_id="VET000002")]

    summary = loader.apply_scd_merge("dim_veterans", batch, "batch1", as_of=T1)

    assert summary.inserted == 1
    assert summary.skipped_reasons == {"data_error": 1}
    assert loader.get_versions("dim_veterans", V1) == []

    [record] = QuarantineWriter(single_connection_pool).list_quarantined(table_name="dim_veterans")
    assert record.record_key == "VET000001"
    assert record.failed_rules == ["data_error"]
    assert record.raw_payload["first_name"] == "Ma\\x00ria"
