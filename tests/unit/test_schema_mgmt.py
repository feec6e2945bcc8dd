"""
Unit tests for the warehouse DDL.
"""

import os
import re

import pytest

from ves_dw.warehouse.schema_mgmt import OPERATIONAL_DDL

INIT_SQL = os.path.join(os.path.dirname(os.path.dirname(os.path.dirname(__file__))), "docker", "init-db.sql")


def normalise(statement):
    return " ".join(statement.split()).rstrip(";")


def bootstrap_statements():
    with open(INIT_SQL) as f:
        text = re.sub(r"--[^\n]*", "", f.read())
    return [normalise(s) for s in text.split(";") if s.strip()]


@pytest.mark.unit
def test_bootstrap_script_matches_operational_ddl():
    """docker/init-db.sql creates exactly what init-schema creates, in the default schema"""
    expected = ["CREATE SCHEMA IF NOT EXISTS warehouse"] + [
        normalise(ddl.format(schema="warehouse")) for ddl in OPERATIONAL_DDL
    ]

    assert bootstrap_statements() == expected
