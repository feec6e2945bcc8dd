"""
Shared fixtures for the VES warehouse tests

Unit tests need nothing external. Integration and e2e tests share one
PostgreSQL testcontainer per session (tables created from
tests/fixtures/tables.yaml) and truncate it before every test; e2e tests
also get a local Spark session.
"""
import os
from typing import Generator

import psycopg
import pytest
from psycopg import sql
from psycopg.rows import dict_row
from pyspark.sql import SparkSession
from testcontainers.postgres import PostgresContainer

from ves_dw.core.metadata import WarehouseMetadata, load_metadata
from ves_dw.warehouse.connection import DatabaseConnectionPool, DatabaseSettings
from ves_dw.warehouse.schema_mgmt import SchemaManager

ROOT_DIR = os.path.dirname(os.path.dirname(__file__))
FIXTURES_DIR = os.path.join(os.path.dirname(__file__), "fixtures")
INIT_SQL = os.path.join(ROOT_DIR, "docker", "init-db.sql")

TEST_SCHEMA = "warehouse"
TEST_DB = {"username": "ves_test", "password": "ves_test_pw", "dbname": "ves_warehouse_test"}
OPERATIONAL_TABLES = ("quarantine_record", "data_quality_event", "etl_execution_log")


@pytest.fixture(scope="session")
def spark_session() -> Generator[SparkSession, None, None]:
    """Local Spark for reading staged fixture files"""
    spark = (
        SparkSession.builder
        .appName("ves-dw-test")
        .master("local[2]")
        .config("spark.sql.shuffle.partitions", "2")
        .config("spark.ui.enabled", "false")
        .getOrCreate()
    )
    spark.sparkContext.setLogLevel("WARN")
    yield spark
    spark.stop()


@pytest.fixture(scope="session")
def test_data_dir() -> str:
    return FIXTURES_DIR


@pytest.fixture(scope="session")
def test_metadata() -> WarehouseMetadata:
    """Table metadata from tests/fixtures/tables.yaml"""
    return load_metadata(os.path.join(FIXTURES_DIR, "tables.yaml"))


@pytest.fixture(scope="session")
def postgres_container() -> Generator[PostgresContainer, None, None]:
    """PostgreSQL 16 with docker/init-db.sql applied"""
    with PostgresContainer(image="postgres:16.2-alpine", driver=None, **TEST_DB) as postgres:
        with open(INIT_SQL) as f:
            init_sql = f.read()
        with psycopg.connect(postgres.get_connection_url(), autocommit=True) as conn:
            conn.execute(init_sql)
        yield postgres


@pytest.fixture(scope="session")
def db_settings(postgres_container) -> DatabaseSettings:
    return DatabaseSettings(
        host=postgres_container.get_container_host_ip(),
        port=int(postgres_container.get_exposed_port(5432)),
        database=TEST_DB["dbname"],
        user=TEST_DB["username"],
        password=TEST_DB["password"],
        schema_name=TEST_SCHEMA,
        max_size=4,
    )


@pytest.fixture(scope="session")
def db_pool(db_settings, test_metadata) -> Generator[DatabaseConnectionPool, None, None]:
    """Open pool with every fixture table created"""
    with DatabaseConnectionPool(db_settings) as pool:
        SchemaManager(pool).create_tables(test_metadata)
        yield pool


@pytest.fixture
def db_connection(postgres_container) -> Generator[psycopg.Connection, None, None]:
    """Raw connection for setting up or asserting on rows behind the loaders' backs"""
    with psycopg.connect(postgres_container.get_connection_url(), row_factory=dict_row) as conn:
        yield conn
        conn.rollback()


@pytest.fixture
def clean_db(db_pool, db_connection, test_metadata) -> DatabaseConnectionPool:
    """The shared pool over an emptied warehouse"""
    truncate = sql.SQL("TRUNCATE TABLE {} RESTART IDENTITY CASCADE")
    with db_connection.cursor() as cur:
        for table in (*test_metadata.table_names, *OPERATIONAL_TABLES):
            cur.execute(truncate.format(sql.Identifier(TEST_SCHEMA, table)))
    db_connection.commit()
    return db_pool


@pytest.fixture
def single_connection_pool(clean_db, db_settings) -> Generator[DatabaseConnectionPool, None, None]:
    """A second pool over the emptied warehouse that holds at most one connection"""
    settings = db_settings.model_copy(update={"max_size": 1, "timeout": 5.0})
    with DatabaseConnectionPool(settings) as pool:
        yield pool
