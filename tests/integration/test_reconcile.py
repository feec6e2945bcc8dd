"""
Integration tests for the dimension reconciliation pass.

The loaders cannot produce broken history, so these tests write it by hand
into a probe dimension created without its one-current index.
"""

from datetime import datetime, timedelta, timezone

import pytest
from psycopg import sql

from ves_dw.core.exceptions import IntegrityViolationError
from ves_dw.core.hashing import compute_content_hash
from ves_dw.core.metadata import MetadataBuilder
from ves_dw.warehouse.reconcile import (
    GAP,
    MULTIPLE_CURRENT,
    NO_CURRENT,
    OVERLAP,
    check_integrity,
    find_integrity_violations,
    repair_multiple_current,
)
from ves_dw.warehouse.schema_mgmt import SchemaManager

T1 = datetime(2025, 1, 1, tzinfo=timezone.utc)
T2 = T1 + timedelta(days=1)
T3 = T1 + timedelta(days=2)


@pytest.fixture
def probe(clean_db, db_connection):
    config = (
        MetadataBuilder()
        .add_dimension("dim_reconcile_probe", ["entity_id"], {"label": "text"})
        .build()
        .get_dimension("dim_reconcile_probe")
    )
    table = sql.Identifier(clean_db.schema_name, config.table_name)

    with db_connection.cursor() as cur:
        cur.execute(sql.SQL("DROP TABLE IF EXISTS {}").format(table))
    db_connection.commit()

    SchemaManager(clean_db).create_table(config)

    with db_connection.cursor() as cur:
        cur.execute(
            sql.SQL("DROP INDEX {}").format(
                sql.Identifier(clean_db.schema_name, "dim_reconcile_probe_one_current")
            )
        )
    db_connection.commit()

    def insert(entity_id, label, start, end=None):
        with db_connection.cursor() as cur:
            cur.execute(
                sql.SQL(
                    "INSERT INTO {} (entity_id, label, content_hash, effective_start, "
                    "effective_end, is_current) VALUES (%s, %s, %s, %s, %s, %s)"
                ).format(table),
                (entity_id, label, compute_content_hash([label]), start, end, end is None),
            )
        db_connection.commit()

    yield config, insert

    with db_connection.cursor() as cur:
        cur.execute(sql.SQL("DROP TABLE IF EXISTS {}").format(table))
    db_connection.commit()


@pytest.mark.integration
def test_clean_history_has_no_violations(clean_db, probe):
    config, insert = probe
    insert("E1", "a", T1, T2)
    insert("E1", "b", T2)

    assert find_integrity_violations(clean_db, config) == []
    check_integrity(clean_db, config)


@pytest.mark.integration
def test_two_current_versions_are_reported(clean_db, probe):
    config, insert = probe
    insert("E1", "a", T1)
    insert("E1", "b", T2)

    violations = find_integrity_violations(clean_db, config)

    kinds = sorted(v["violation"] for v in violations)
    assert kinds == sorted([MULTIPLE_CURRENT, OVERLAP])
    assert all(v["business_key"] == "E1" for v in violations)

    with pytest.raises(IntegrityViolationError) as exc_info:
        check_integrity(clean_db, config)
    assert exc_info.value.table_name == "dim_reconcile_probe"


@pytest.mark.integration
def test_gap_and_missing_current_are_reported(clean_db, probe):
    config, insert = probe
    insert("E1", "a", T1, T2)
    insert("E1", "b", T3)
    insert("E2", "a", T1, T2)

    violations = {(v["business_key"], v["violation"]) for v in find_integrity_violations(clean_db, config)}

    assert violations == {("E1", GAP), ("E2", NO_CURRENT)}


@pytest.mark.integration
def test_repair_closes_all_but_latest_current(clean_db, probe, db_connection):
    config, insert = probe
    insert("E1", "a", T1)
    insert("E1", "b", T2)
    insert("E1", "c", T3)
    insert("E2", "a", T1)

    repaired = repair_multiple_current(clean_db, config)

    assert repaired == 2
    assert find_integrity_violations(clean_db, config) == []

    with db_connection.cursor() as cur:
        cur.execute(
            sql.SQL(
                "SELECT label, effective_start, effective_end, is_current FROM {} "
                "WHERE entity_id = 'E1' ORDER BY effective_start"
            ).format(sql.Identifier(clean_db.schema_name, config.table_name))
        )
        rows = cur.fetchall()

    assert [r["label"] for r in rows if r["is_current"]] == ["c"]
    assert rows[0]["effective_end"] == T2
    assert rows[1]["effective_end"] == T3
